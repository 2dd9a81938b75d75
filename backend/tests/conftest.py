"""Shared test fixtures and configuration for relay tests."""
import asyncio
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from relay.backend_client import BackendError
from relay.config import AppConfig, PresenceSettings
from relay.runtime import Relay
from relay.scheduling import Scheduler, TimerHandle

START_TIME = 1_700_000_000.0
GRACE = 2.5


class ManualScheduler(Scheduler):
    """Virtual-time scheduler: timers fire only when advance() is awaited."""

    def __init__(self, start: float = START_TIME) -> None:
        super().__init__()
        self._now = start
        self._seq = 0
        self._timers: List[Tuple[float, int, TimerHandle, Any]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay, callback, label=""):
        handle = TimerHandle(max(0.0, delay), label)
        self._seq += 1
        self._timers.append((self._now + handle.delay, self._seq, handle, callback))
        return handle

    def pending(self, prefix: str = "") -> List[TimerHandle]:
        return [
            handle for _, _, handle, _ in self._timers
            if handle.pending and handle.label.startswith(prefix)
        ]

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = sorted(
                (t for t in self._timers if t[2].pending and t[0] <= target),
                key=lambda t: (t[0], t[1]),
            )
            if not due:
                break
            entry = due[0]
            self._timers.remove(entry)
            self._now = max(self._now, entry[0])
            if entry[2]._mark_fired():
                await entry[3]()
        self._now = target
        self._timers = [t for t in self._timers if t[2].pending]

    async def shutdown(self) -> None:
        for _, _, handle, _ in self._timers:
            handle.cancel()
        self._timers.clear()


class FakeTransport:
    """Records what the relay would have sent over Socket.IO."""

    def __init__(self) -> None:
        self.emitted: List[Dict[str, Any]] = []
        self.rooms: Dict[str, Set[str]] = defaultdict(set)
        self.broken: Set[str] = set()

    async def emit(self, event, data=None, to=None, room=None, **kwargs):
        if to is not None and to in self.broken:
            raise ConnectionError(f"{to} is gone")
        self.emitted.append({"event": event, "data": data, "to": to, "room": room})

    async def enter_room(self, sid, room, namespace=None):
        self.rooms[room].add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms[room].discard(sid)

    def sent_to(self, sid: str) -> List[Tuple[str, Any]]:
        return [(e["event"], e["data"]) for e in self.emitted if e["to"] == sid]

    def sent_to_room(self, room: str) -> List[Tuple[str, Any]]:
        return [(e["event"], e["data"]) for e in self.emitted if e["room"] == room]

    def events(self, name: str) -> List[Dict[str, Any]]:
        return [e for e in self.emitted if e["event"] == name]


class FakeBackend:
    """In-memory stand-in for the system of record."""

    def __init__(self, scheduler: ManualScheduler) -> None:
        self.scheduler = scheduler
        self.friends: Dict[str, List[str]] = {}
        self.status_calls: List[Tuple[str, bool, Optional[str]]] = []
        self.friend_calls: List[Tuple[str, Optional[str]]] = []
        self.refresh_calls: List[str] = []
        self.failing: Set[str] = set()
        self.failures: Counter = Counter()
        self.online_gate: Optional[asyncio.Event] = None
        self.reissue_ttl = 3600

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failing:
            self.failures[operation] += 1
            raise BackendError(operation, "simulated failure", status_code=503)

    async def set_online_status(self, identity, is_online, credential):
        if is_online and self.online_gate is not None:
            await self.online_gate.wait()
        self._maybe_fail("set_online_status")
        self.status_calls.append((identity, is_online, credential))

    async def get_online_friends(self, identity, credential):
        self.friend_calls.append((identity, credential))
        self._maybe_fail("get_online_friends")
        return list(self.friends.get(identity, []))

    async def refresh_credential(self, identity, credential=None):
        self.refresh_calls.append(identity)
        self._maybe_fail("refresh_credential")
        return make_credential(identity, self.scheduler.now() + self.reissue_ttl)

    async def aclose(self):
        pass

    def offline_calls(self, identity: str) -> int:
        return sum(1 for who, online, _ in self.status_calls if who == identity and not online)

    def online_calls(self, identity: str) -> int:
        return sum(1 for who, online, _ in self.status_calls if who == identity and online)


def make_credential(identity: str, expires_at: float) -> str:
    return jwt.encode(
        {"sub": identity, "exp": int(expires_at)}, "test-secret", algorithm="HS256"
    )


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def backend(scheduler):
    return FakeBackend(scheduler)


@pytest.fixture
def credential(scheduler):
    """Factory for credentials valid for `ttl` seconds of virtual time."""
    def _make(identity: str, ttl: float = 3600) -> str:
        return make_credential(identity, scheduler.now() + ttl)
    return _make


@pytest.fixture
def relay(scheduler, transport, backend):
    config = AppConfig(presence=PresenceSettings(grace_period_seconds=GRACE))
    return Relay(config, transport, backend=backend, scheduler=scheduler)


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    from relay.main import app
    return TestClient(app)
