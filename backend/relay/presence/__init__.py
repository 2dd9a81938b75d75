"""Presence engine: session registry, presence coordinator and fan-out.

Import the submodules directly (``relay.presence.registry`` and friends).
``relay.credentials`` imports the registry, so nothing is re-exported here.
"""
