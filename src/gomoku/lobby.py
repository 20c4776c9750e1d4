"""Process-wide bookkeeping: the matchmaking queue, live rooms, and sessions.

None of these structures lock on their own. ``GameServer`` mutates them only
while holding its registry lock.
"""

from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Set

from .game import FIRST_SYMBOL, SECOND_SYMBOL, Player, Room

ROOM_ID_LENGTH = 8


# ---------- Matchmaking ----------


class MatchmakingQueue:
    """Players waiting for an opponent, paired strictly by arrival order."""

    def __init__(self) -> None:
        self._waiting: "OrderedDict[str, Player]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._waiting)

    def __contains__(self, player_id: object) -> bool:
        return player_id in self._waiting

    def enqueue(self, player: Player) -> bool:
        if player.id in self._waiting:
            return False
        self._waiting[player.id] = player
        return True

    def remove(self, player_id: str) -> Optional[Player]:
        return self._waiting.pop(player_id, None)

    def waiting(self) -> List[Player]:
        return list(self._waiting.values())

    def try_pair(self, registry: "RoomRegistry") -> Optional[Room]:
        """Seat the two longest-waiting players in a new room, if two are waiting."""
        if len(self._waiting) < 2:
            return None
        _, first = self._waiting.popitem(last=False)
        _, second = self._waiting.popitem(last=False)
        return registry.create(
            [replace(first, symbol=FIRST_SYMBOL), replace(second, symbol=SECOND_SYMBOL)]
        )


# ---------- Rooms ----------


class RoomRegistry:
    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}
        self._issued: Set[str] = set()

    def __len__(self) -> int:
        return len(self._rooms)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def _generate_room_id(self) -> str:
        while True:
            room_id = uuid.uuid4().hex[:ROOM_ID_LENGTH]
            if room_id not in self._issued:
                return room_id

    def create(self, players: List[Player]) -> Room:
        room_id = self._generate_room_id()
        self._issued.add(room_id)
        room = Room(room_id=room_id, players=list(players))
        self._rooms[room_id] = room
        return room

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        if not room_id:
            return None
        return self._rooms.get(room_id)

    def remove(self, room_id: str) -> Optional[Room]:
        """Drop a room. Removing an unknown id is a no-op."""
        room = self._rooms.pop(room_id, None)
        if room is not None:
            room.close()
        return room

    def idle(self, max_idle: float, now: Optional[float] = None) -> List[Room]:
        now = time.time() if now is None else now
        return [room for room in self._rooms.values() if now - room.last_activity > max_idle]


# ---------- Sessions ----------


@dataclass(frozen=True)
class Session:
    """What one connection currently is: a named player, maybe seated in a room."""

    conn_id: str
    player: Optional[Player] = None
    room_id: Optional[str] = None
    connected_at: float = field(default_factory=time.time)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, conn_id: object) -> bool:
        return conn_id in self._sessions

    def connect(self, conn_id: str) -> Session:
        session = Session(conn_id=conn_id)
        self._sessions[conn_id] = session
        return session

    def disconnect(self, conn_id: str) -> Optional[Session]:
        return self._sessions.pop(conn_id, None)

    def get(self, conn_id: str) -> Session:
        return self._sessions.get(conn_id) or Session(conn_id=conn_id)

    def _update(self, conn_id: str, **changes: object) -> Session:
        session = replace(self.get(conn_id), **changes)
        self._sessions[conn_id] = session
        return session

    def bind_player(self, conn_id: str, player: Player) -> Session:
        return self._update(conn_id, player=player)

    def bind_room(self, conn_id: str, room: Room) -> Session:
        return self._update(conn_id, player=room.get_player(conn_id), room_id=room.room_id)

    def leave_room(self, conn_id: str) -> Optional[Session]:
        if conn_id not in self._sessions:
            return None
        return self._update(conn_id, room_id=None)

    def clear(self, conn_id: str) -> Optional[Session]:
        if conn_id not in self._sessions:
            return None
        return self._update(conn_id, player=None, room_id=None)
