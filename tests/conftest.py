"""Shared fixtures: a game server wired to an in-memory transport."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from gomoku.config import Settings
from gomoku.server import GameServer


class RecordingTransport:
    """Keeps every frame instead of writing to sockets."""

    def __init__(self) -> None:
        self.connected: List[str] = []
        self.frames: List[Tuple[str, str, Dict[str, Any]]] = []

    async def send_many(self, conn_ids, event: str, payload: Dict[str, Any]) -> int:
        delivered = 0
        for conn_id in conn_ids:
            if conn_id in self.connected:
                self.frames.append((conn_id, event, payload))
                delivered += 1
        return delivered

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> int:
        return await self.send_many(list(self.connected), event, payload)

    def events(self, conn_id: str, name: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            payload
            for target, event, payload in self.frames
            if target == conn_id and (name is None or event == name)
        ]

    def names(self, conn_id: str) -> List[str]:
        return [event for target, event, _ in self.frames if target == conn_id]

    def last(self, conn_id: str, name: str) -> Dict[str, Any]:
        found = self.events(conn_id, name)
        assert found, f"{conn_id} never received {name}: {self.names(conn_id)}"
        return found[-1]

    def clear(self) -> None:
        self.frames.clear()


class Harness:
    def __init__(self, settings: Settings) -> None:
        self.transport = RecordingTransport()
        self.server = GameServer(self.transport, settings)

    def connect(self, *conn_ids: str) -> None:
        for conn_id in conn_ids:
            self.transport.connected.append(conn_id)
            self.server.connect(conn_id)

    async def send(self, conn_id: str, event: str, data: Any = None) -> None:
        await self.server.dispatch(conn_id, event, data)

    async def drop(self, conn_id: str) -> None:
        self.transport.connected.remove(conn_id)
        await self.server.disconnect(conn_id)

    def room_of(self, conn_id: str):
        return self.server.rooms.get(self.server.sessions.get(conn_id).room_id)

    async def private_match(self, host: str = "alice", guest: str = "bob"):
        """Create a private room for ``host`` and seat ``guest``; the match starts."""
        self.connect(host, guest)
        await self.send(host, "create_room", {"username": host.title()})
        room_id = self.transport.last(host, "room_created")["roomId"]
        await self.send(guest, "join_room", {"username": guest.title(), "roomId": room_id})
        return self.server.rooms.get(room_id)


SLOW_TIMERS = Settings(
    close_grace_sec=30.0,
    match_start_delay_sec=30.0,
    sweep_interval_sec=600.0,
    idle_timeout_sec=3600.0,
)

INSTANT_TIMERS = Settings(
    close_grace_sec=0.0,
    match_start_delay_sec=0.0,
    sweep_interval_sec=600.0,
    idle_timeout_sec=3600.0,
)


@pytest_asyncio.fixture
async def harness():
    h = Harness(SLOW_TIMERS)
    yield h
    await h.server.cleaner.stop()


@pytest_asyncio.fixture
async def instant():
    h = Harness(INSTANT_TIMERS)
    yield h
    await h.server.cleaner.stop()


@pytest.fixture
def settings() -> Settings:
    return INSTANT_TIMERS
