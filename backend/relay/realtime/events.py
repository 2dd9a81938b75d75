"""Inbound event router.

Maps Socket.IO event names to presence and fan-out operations.

Protocol Event Types (client -> server):
    - login: {identity, credential}
    - join_room / leave_room: "room" or {room}
    - send_message: {identity, room, message} -> receive_message {identity, message} to room
    - announce: {room, message} -> announce_message {message} to room
    - send_message_to_friends: {identity, message} -> friend message to online friends
    - disconnect: emitted by the transport when the channel closes

Nothing in here may take a connection down: malformed payloads, events
before ``login`` and repeated disconnects are logged and ignored.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from relay.presence.coordinator import PresenceCoordinator
from relay.presence.fanout import NotificationFanout, Transport

from .schemas import (
    AnnouncePayload,
    FriendMessagePayload,
    LoginPayload,
    RoomPayload,
    SendMessagePayload,
)

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)
Handler = Callable[[str, Any], Awaitable[None]]

RECEIVE_MESSAGE_EVENT = "receive_message"
ANNOUNCE_MESSAGE_EVENT = "announce_message"


class EventRouter:
    """Stateless dispatch from event name to handler.

    Args:
        coordinator: Presence state machine.
        fanout: Room and friend delivery.
        transport: Socket.IO server, used for room membership.
        friend_message_event: Outbound event name for friend messages
            (``friend_message`` or ``message_alarm`` depending on deployment).
    """

    def __init__(
        self,
        coordinator: PresenceCoordinator,
        fanout: NotificationFanout,
        transport: Transport,
        friend_message_event: str = "friend_message",
    ) -> None:
        self.coordinator = coordinator
        self.fanout = fanout
        self.transport = transport
        self.friend_message_event = friend_message_event
        self.handlers: Dict[str, Handler] = {
            "login": self.on_login,
            "join_room": self.on_join_room,
            "leave_room": self.on_leave_room,
            "send_message": self.on_send_message,
            "announce": self.on_announce,
            "send_message_to_friends": self.on_send_message_to_friends,
            "disconnect": self.on_disconnect,
        }

    def register(self, sio: Any) -> None:
        """Attach every handler to a ``socketio.AsyncServer``."""

        def bind(event: str) -> Callable[..., Awaitable[None]]:
            async def handler(sid: str, *args: Any) -> None:
                await self.dispatch(event, sid, *args)
            handler.__name__ = f"on_{event}"
            return handler

        for event in self.handlers:
            sio.on(event, handler=bind(event))

    async def dispatch(self, event: str, sid: str, *args: Any) -> None:
        handler = self.handlers.get(event)
        if handler is None:
            logger.debug("[WS] Ignoring unknown event %r from %s", event, sid)
            return
        data = args[0] if args else None
        try:
            await handler(sid, data)
        except Exception:
            logger.exception("[WS] Handler for %r failed (sid=%s)", event, sid)

    # -----------------------------------------------------------------------
    # Handlers
    # -----------------------------------------------------------------------

    async def on_login(self, sid: str, data: Any) -> None:
        payload = self._parse(LoginPayload, data, "login", sid)
        if payload is None:
            return
        logger.info("[WS] LOGIN %s on %s", payload.identity, sid)
        await self.coordinator.login(sid, payload.identity, payload.credential)

    async def on_join_room(self, sid: str, data: Any) -> None:
        payload = self._parse(RoomPayload, self._room_data(data), "join_room", sid)
        if payload is None:
            return
        await self.transport.enter_room(sid, payload.room)
        logger.info("[WS] %s joined room %s", sid, payload.room)

    async def on_leave_room(self, sid: str, data: Any) -> None:
        payload = self._parse(RoomPayload, self._room_data(data), "leave_room", sid)
        if payload is None:
            return
        await self.transport.leave_room(sid, payload.room)
        logger.info("[WS] %s left room %s", sid, payload.room)

    async def on_send_message(self, sid: str, data: Any) -> None:
        payload = self._parse(SendMessagePayload, data, "send_message", sid)
        if payload is None:
            return
        identity = payload.identity or self.coordinator.registry.identity_of(sid)
        if not identity:
            logger.warning("[WS] send_message from %s without identity; ignored", sid)
            return
        await self.fanout.broadcast_to_room(
            payload.room,
            RECEIVE_MESSAGE_EVENT,
            {"identity": identity, "message": payload.message},
        )

    async def on_announce(self, sid: str, data: Any) -> None:
        payload = self._parse(AnnouncePayload, data, "announce", sid)
        if payload is None:
            return
        await self.fanout.broadcast_to_room(
            payload.room, ANNOUNCE_MESSAGE_EVENT, {"message": payload.message}
        )

    async def on_send_message_to_friends(self, sid: str, data: Any) -> None:
        payload = self._parse(FriendMessagePayload, data, "send_message_to_friends", sid)
        if payload is None:
            return
        identity = self.coordinator.registry.identity_of(sid)
        if identity is None:
            logger.warning("[WS] send_message_to_friends from %s before login; ignored", sid)
            return
        if payload.identity and payload.identity != identity:
            logger.warning(
                "[WS] %s logged in as %s tried to message friends as %s; ignored",
                sid, identity, payload.identity,
            )
            return
        await self.fanout.broadcast_to_friends(
            identity,
            self.friend_message_event,
            {"identity": identity, "message": payload.message},
        )

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        identity = await self.coordinator.disconnect(sid)
        logger.info("[WS] %s disconnected (identity=%s, reason=%s)", sid, identity, reason)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _room_data(data: Any) -> Any:
        if isinstance(data, str):
            return {"room": data}
        return data

    @staticmethod
    def _parse(model: Type[P], data: Any, event: str, sid: str) -> Optional[P]:
        if not isinstance(data, dict):
            logger.warning("[WS] Malformed %s payload from %s: %r", event, sid, data)
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "[WS] Malformed %s payload from %s: %d error(s)",
                event, sid, e.error_count(),
            )
            return None
