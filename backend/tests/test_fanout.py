"""Tests for room and friend fan-out."""
import pytest


@pytest.fixture
def online(relay, backend, credential):
    """alice and bob are friends and online; carol is online but unrelated."""
    backend.friends = {"alice": ["bob"], "bob": ["alice"], "carol": []}

    async def _login_all():
        await relay.coordinator.login("alice-1", "alice", credential("alice"))
        await relay.coordinator.login("bob-1", "bob", credential("bob"))
        await relay.coordinator.login("bob-2", "bob", credential("bob"))
        await relay.coordinator.login("carol-1", "carol", credential("carol"))
    return _login_all


class TestBroadcastToFriends:

    @pytest.mark.asyncio
    async def test_friend_message_reaches_every_friend_connection(self, relay, transport, online):
        """Scenario: alice messages friends; every bob connection gets it, carol nothing."""
        await online()
        transport.emitted.clear()

        delivered = await relay.fanout.broadcast_to_friends(
            "alice", "friend_message", {"identity": "alice", "message": "hi"}
        )

        expected = [("friend_message", {"identity": "alice", "message": "hi"})]
        assert delivered == 2
        assert transport.sent_to("bob-1") == expected
        assert transport.sent_to("bob-2") == expected
        assert transport.sent_to("carol-1") == []
        assert transport.sent_to("alice-1") == []

    @pytest.mark.asyncio
    async def test_uses_stored_credential(self, relay, backend, online):
        await online()
        backend.friend_calls.clear()

        await relay.fanout.broadcast_to_friends("alice", "friend_message", {})

        assert backend.friend_calls == [("alice", relay.credentials.credential_for("alice"))]

    @pytest.mark.asyncio
    async def test_skips_friends_without_live_connections(self, relay, backend, transport, online):
        """The backend lists dave, but dave has no connection here."""
        await online()
        backend.friends["alice"] = ["bob", "dave"]
        transport.emitted.clear()

        delivered = await relay.fanout.broadcast_to_friends("alice", "friend_message", {"message": "x"})

        assert delivered == 2
        assert {e["to"] for e in transport.emitted} == {"bob-1", "bob-2"}

    @pytest.mark.asyncio
    async def test_skips_friend_in_grace_period(self, relay, backend, transport, online):
        await online()
        await relay.coordinator.disconnect("bob-1")
        await relay.coordinator.disconnect("bob-2")
        transport.emitted.clear()

        delivered = await relay.fanout.broadcast_to_friends("alice", "friend_message", {})

        assert delivered == 0
        assert transport.emitted == []

    @pytest.mark.asyncio
    async def test_friend_lookup_failure_sends_nothing(self, relay, backend, transport, online):
        await online()
        transport.emitted.clear()
        backend.failing.add("get_online_friends")

        delivered = await relay.fanout.broadcast_to_friends("alice", "friend_message", {})

        assert delivered == 0
        assert transport.emitted == []

    @pytest.mark.asyncio
    async def test_broken_connection_does_not_stop_others(self, relay, transport, online):
        await online()
        transport.emitted.clear()
        transport.broken.add("bob-1")

        delivered = await relay.fanout.broadcast_to_friends("alice", "friend_message", {})

        assert delivered == 1
        assert [e["to"] for e in transport.emitted] == ["bob-2"]

    @pytest.mark.asyncio
    async def test_duplicate_friend_entries_deliver_once(self, relay, backend, transport, online):
        await online()
        backend.friends["alice"] = ["bob", "bob"]
        transport.emitted.clear()

        delivered = await relay.fanout.broadcast_to_friends("alice", "friend_message", {})

        assert delivered == 2

    @pytest.mark.asyncio
    async def test_self_in_friend_list_is_skipped(self, relay, backend, transport, online):
        await online()
        backend.friends["alice"] = ["alice", "bob"]
        transport.emitted.clear()

        await relay.fanout.broadcast_to_friends("alice", "friend_message", {})

        assert transport.sent_to("alice-1") == []


class TestDirectAndRoomDelivery:

    @pytest.mark.asyncio
    async def test_send_to_identity_hits_every_connection(self, relay, transport, online):
        await online()
        transport.emitted.clear()

        delivered = await relay.fanout.send_to_identity("bob", "ping", {"n": 1})

        assert delivered == 2
        assert transport.sent_to("bob-1") == [("ping", {"n": 1})]

    @pytest.mark.asyncio
    async def test_send_to_offline_identity(self, relay, transport):
        assert await relay.fanout.send_to_identity("nobody", "ping", {}) == 0
        assert transport.emitted == []

    @pytest.mark.asyncio
    async def test_broadcast_to_room_delegates_to_transport(self, relay, transport):
        await relay.fanout.broadcast_to_room("lobby", "announce_message", {"message": "hello"})
        assert transport.sent_to_room("lobby") == [("announce_message", {"message": "hello"})]
