"""Tests for SessionRegistry and Session."""
from relay.presence.registry import PresenceState, SessionRegistry
from relay.scheduling import TimerHandle


class TestSessionRegistry:

    def test_unknown_identity_is_offline(self):
        registry = SessionRegistry()
        assert registry.state_of("alice") == PresenceState.OFFLINE
        assert registry.get("alice") is None
        assert registry.connections_of("alice") == frozenset()

    def test_add_connection_creates_session(self):
        registry = SessionRegistry()
        session = registry.add_connection("alice", "c1")

        assert session.identity == "alice"
        assert "alice" in registry
        assert registry.identity_of("c1") == "alice"
        assert registry.state_of("alice") == PresenceState.ONLINE

    def test_multiple_connections_share_session(self):
        registry = SessionRegistry()
        first = registry.add_connection("alice", "c1")
        second = registry.add_connection("alice", "c2")

        assert first is second
        assert registry.connections_of("alice") == frozenset({"c1", "c2"})
        assert registry.connection_count() == 2
        assert len(registry) == 1

    def test_removing_last_connection_leaves_grace_pending_session(self):
        registry = SessionRegistry()
        registry.add_connection("alice", "c1")

        assert registry.remove_connection("c1") == "alice"
        assert registry.state_of("alice") == PresenceState.GRACE_PENDING
        assert registry.identity_of("c1") is None

    def test_remove_unknown_connection(self):
        registry = SessionRegistry()
        assert registry.remove_connection("nope") is None

    def test_connection_switching_identity_moves(self):
        registry = SessionRegistry()
        registry.add_connection("alice", "c1")
        registry.add_connection("bob", "c1")

        assert registry.identity_of("c1") == "bob"
        assert registry.connections_of("alice") == frozenset()
        assert registry.connections_of("bob") == frozenset({"c1"})

    def test_discard_drops_reverse_index(self):
        registry = SessionRegistry()
        registry.add_connection("alice", "c1")

        session = registry.discard("alice")

        assert session is not None
        assert "alice" not in registry
        assert registry.identity_of("c1") is None
        assert registry.discard("alice") is None

    def test_connections_of_is_a_snapshot(self):
        registry = SessionRegistry()
        registry.add_connection("alice", "c1")
        snapshot = registry.connections_of("alice")
        registry.add_connection("alice", "c2")
        assert snapshot == frozenset({"c1"})

    def test_sessions_lists_every_identity(self):
        registry = SessionRegistry()
        registry.add_connection("alice", "c1")
        registry.add_connection("bob", "c2")

        assert {s.identity for s in registry.sessions()} == {"alice", "bob"}
        assert registry.connection_count() == 2


class TestSession:

    def test_replace_grace_timer_cancels_previous(self):
        session = SessionRegistry().add_connection("alice", "c1")
        first = TimerHandle(2.5, "grace:alice")
        second = TimerHandle(2.5, "grace:alice")

        session.replace_grace_timer(first)
        session.replace_grace_timer(second)

        assert first.cancelled
        assert second.pending
        assert session.grace_timer is second

    def test_cancel_timers(self):
        session = SessionRegistry().add_connection("alice", "c1")
        grace = TimerHandle(2.5)
        refresh = TimerHandle(3540)
        session.grace_timer = grace
        session.refresh_timer = refresh

        session.cancel_timers()

        assert grace.cancelled and refresh.cancelled
        assert session.grace_timer is None and session.refresh_timer is None
