"""Realtime transport glue (Socket.IO server and inbound event routing)."""

from .events import EventRouter
from .socketio import create_sio

__all__ = ["EventRouter", "create_sio"]
