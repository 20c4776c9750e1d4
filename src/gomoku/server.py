"""Event handling for connected players: matchmaking, rooms, moves, and teardown."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .cleaner import SessionCleaner
from .config import Settings
from .errors import GomokuError, StateError, ValidationError
from .game import (
    FIRST_SYMBOL,
    Outcome,
    Phase,
    Player,
    Room,
    serialize_line,
)
from .lobby import ConnectionRegistry, MatchmakingQueue, RoomRegistry, Session
from .protocol import ChatRequest, JoinRequest, JoinRoomRequest, MoveRequest, parse

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Notice:
    event: str
    payload: Dict[str, Any]
    # None means every connected client
    to: Optional[List[str]] = None


@dataclass
class Outbox:
    """Notifications gathered under the locks and delivered after release."""

    notices: List[Notice] = field(default_factory=list)
    # (delay, callback, args) started once every notice is out
    timers: List[Tuple[float, Callable[..., Awaitable[Any]], Tuple[Any, ...]]] = field(
        default_factory=list
    )

    def send(self, conn_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.notices.append(Notice(event, payload, [conn_id]))

    def room(self, room: Room, event: str, payload: Dict[str, Any]) -> None:
        self.notices.append(Notice(event, payload, room.player_ids()))

    def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        self.notices.append(Notice(event, payload, None))

    def after(self, delay: float, callback: Callable[..., Awaitable[Any]], *args: Any) -> None:
        self.timers.append((delay, callback, args))


Handler = Callable[[str, Any], Awaitable[Outbox]]


class GameServer:
    """Routes one connection's events onto the shared lobby and its room.

    ``transport`` is anything exposing ``send_many(conn_ids, event, payload)``
    and ``broadcast(event, payload)`` coroutines that never raise on a dead
    connection.

    Lock order is always ``self._lock`` (queue, rooms, sessions) first and a
    room's own lock second. Handlers that only touch one seated room take just
    that room's lock.
    """

    def __init__(self, transport: Any, settings: Optional[Settings] = None) -> None:
        self.transport = transport
        self.settings = settings or Settings()
        self.queue = MatchmakingQueue()
        self.rooms = RoomRegistry()
        self.sessions = ConnectionRegistry()
        self.cleaner = SessionCleaner(self, self.settings)
        self._lock = asyncio.Lock()
        self._handlers: Dict[str, Handler] = {
            "join_game": self.join_game,
            "create_room": self.create_room,
            "join_room": self.join_room,
            "make_move": self.make_move,
            "ready": self.ready,
            "chat_message": self.chat_message,
            "restart_game": self.restart_game,
            "leave_room": self.leave_room,
            "ping": self.ping,
        }

    # ---- connection lifecycle ----

    def connect(self, conn_id: str) -> Session:
        logger.info("Connection opened: %s", conn_id)
        return self.sessions.connect(conn_id)

    async def dispatch(self, conn_id: str, event: str, data: Any = None) -> None:
        """Handle one inbound event, containing any failure to this connection."""
        try:
            handler = self._handlers.get(event)
            if handler is None:
                raise ValidationError(f"Unknown event: {event}", code="unknown_event")
            outbox = await handler(conn_id, data)
        except GomokuError as exc:
            logger.info("Rejected %s from %s: %s (%s)", event, conn_id, exc.message, exc.code)
            outbox = Outbox()
            outbox.send(conn_id, "error", exc.to_payload())
        except Exception:
            logger.exception("Unhandled failure in %s from %s", event, conn_id)
            outbox = Outbox()
            outbox.send(
                conn_id,
                "error",
                {"message": "Internal server error", "code": "internal", "kind": "internal"},
            )
        await self.deliver(outbox)

    async def disconnect(self, conn_id: str) -> None:
        logger.info("Connection closed: %s", conn_id)
        outbox = Outbox()
        try:
            async with self._lock:
                session = self.sessions.disconnect(conn_id)
                if session is None:
                    return
                if self.queue.remove(conn_id) is not None:
                    outbox.broadcast("waiting_list_update", {"waitingCount": len(self.queue)})
                room = self.rooms.get(session.room_id)
                if room is not None:
                    await self._depart(
                        room, conn_id, outbox, "player_disconnected", "opponent_disconnected"
                    )
        except Exception:
            logger.exception("Cleanup after %s disconnected failed", conn_id)
        await self.deliver(outbox)

    async def deliver(self, outbox: Outbox) -> None:
        """Send every notice in order, then start the timers they announced."""
        for notice in outbox.notices:
            if notice.to is None:
                await self.transport.broadcast(notice.event, notice.payload)
            else:
                await self.transport.send_many(notice.to, notice.event, notice.payload)
        for delay, callback, args in outbox.timers:
            self.cleaner.defer(delay, callback, *args)

    # ---- helpers ----

    def _seated(self, conn_id: str) -> Tuple[Session, Room]:
        session = self.sessions.get(conn_id)
        room = self.rooms.get(session.room_id)
        if session.player is None or room is None:
            raise StateError("You are not in an active room", code="no_session")
        return session, room

    def _ensure_unattached(self, conn_id: str) -> None:
        session = self.sessions.get(conn_id)
        if conn_id in self.queue:
            raise StateError("You are already waiting for a match", code="already_queued")
        if self.rooms.get(session.room_id) is not None:
            raise StateError("You are already in a room", code="already_in_room")

    def _game_started_notice(self, room: Room, outbox: Outbox) -> None:
        logger.info(
            "Game started in room %s: %s",
            room.room_id,
            " vs ".join(f"{p.name} ({p.symbol})" for p in room.players),
        )
        outbox.room(
            room,
            "game_started",
            {
                "roomId": room.room_id,
                "currentTurn": room.current_turn,
                "players": room.roster(),
                "message": f"Game started! {room.current_turn} moves first",
            },
        )

    def _game_over_notice(self, room: Room, outcome: Outcome, outbox: Outbox) -> None:
        winner = outcome.winner
        if winner is None:
            message = "Draw!"
            logger.info("Game over in room %s: draw", room.room_id)
        elif outcome.reason == "five_in_a_row":
            message = f"{winner.name} wins!"
            logger.info("Game over in room %s: %s (%s) wins", room.room_id, winner.name, winner.symbol)
        else:
            message = "Your opponent left. You win!"
            logger.info(
                "Game over in room %s: %s wins by %s", room.room_id, winner.name, outcome.reason
            )
        outbox.room(
            room,
            "game_over",
            {
                "roomId": room.room_id,
                "winner": winner.symbol if winner else None,
                "winnerName": winner.name if winner else None,
                "reason": outcome.reason,
                "winningLine": serialize_line(outcome.line),
                "board": [list(row) for row in room.board],
                "message": message,
            },
        )
        logger.info("Room %s will close in %ss", room.room_id, self.settings.close_grace_sec)
        outbox.after(
            self.settings.close_grace_sec,
            self.close_finished_room,
            room.room_id,
            room.generation,
        )

    async def _depart(
        self, room: Room, conn_id: str, outbox: Outbox, event: str, reason: str
    ) -> None:
        # caller holds self._lock
        async with room.lock:
            player = room.get_player(conn_id)
            if player is None:
                return
            outcome = room.remove_player(conn_id, reason)
            if room.is_empty:
                self.rooms.remove(room.room_id)
                logger.info("Room %s closed: empty", room.room_id)
                return
            logger.info("Player %s left room %s (%s)", player.name, room.room_id, event)
            outbox.room(
                room,
                event,
                {
                    "playerId": player.id,
                    "playerName": player.name,
                    "message": f"{player.name} left the room",
                    "remainingPlayers": room.roster(),
                },
            )
            if outcome is not None:
                self._game_over_notice(room, outcome, outbox)

    # ---- matchmaking ----

    async def join_game(self, conn_id: str, data: Any) -> Outbox:
        name = parse(JoinRequest, data).username
        outbox = Outbox()
        async with self._lock:
            self._ensure_unattached(conn_id)
            player = Player(id=conn_id, name=name)
            self.queue.enqueue(player)
            self.sessions.bind_player(conn_id, player)
            logger.info("%s (%s) is waiting for a match", name, conn_id)
            outbox.send(
                conn_id,
                "waiting",
                {"message": "Waiting for another player...", "waitingCount": len(self.queue)},
            )
            outbox.broadcast("waiting_list_update", {"waitingCount": len(self.queue)})

            room = self.queue.try_pair(self.rooms)
            if room is not None:
                for p in room.players:
                    self.sessions.bind_room(p.id, room)
                first, second = room.players
                logger.info(
                    "Matched %s vs %s in room %s", first.name, second.name, room.room_id
                )
                outbox.room(
                    room,
                    "match_found",
                    {
                        "roomId": room.room_id,
                        "players": room.roster(),
                        "message": "Match found! The game is about to start...",
                    },
                )
                outbox.broadcast("waiting_list_update", {"waitingCount": len(self.queue)})
                outbox.after(
                    self.settings.match_start_delay_sec,
                    self.start_matched_room,
                    room.room_id,
                    room.generation,
                )
        return outbox

    async def start_matched_room(self, room_id: str, generation: int) -> bool:
        """Start a paired room unless it was started, emptied or closed meanwhile."""
        outbox = Outbox()
        room = self.rooms.get(room_id)
        if room is None:
            return False
        async with room.lock:
            if (
                room.room_id not in self.rooms
                or room.generation != generation
                or room.phase is not Phase.READY_NOT_STARTED
                or not room.is_full
            ):
                return False
            room.start()
            self._game_started_notice(room, outbox)
        await self.deliver(outbox)
        return True

    # ---- private rooms ----

    async def create_room(self, conn_id: str, data: Any) -> Outbox:
        name = parse(JoinRequest, data).username
        outbox = Outbox()
        async with self._lock:
            self._ensure_unattached(conn_id)
            room = self.rooms.create([Player(id=conn_id, name=name, symbol=FIRST_SYMBOL)])
            session = self.sessions.bind_room(conn_id, room)
            logger.info("%s created room %s", name, room.room_id)
            outbox.send(
                conn_id,
                "room_created",
                {
                    "roomId": room.room_id,
                    "message": "Room created, waiting for another player...",
                    "playerSymbol": session.player.symbol,
                },
            )
        return outbox

    async def join_room(self, conn_id: str, data: Any) -> Outbox:
        request = parse(JoinRoomRequest, data)
        name = request.username
        outbox = Outbox()
        async with self._lock:
            self._ensure_unattached(conn_id)
            room = self.rooms.get(request.room_id)
            if room is None:
                raise StateError("Room does not exist", code="room_not_found")
            async with room.lock:
                seated = room.add_player(Player(id=conn_id, name=name))
                self.sessions.bind_room(conn_id, room)
                logger.info("%s joined room %s as %s", name, room.room_id, seated.symbol)
                outbox.room(
                    room,
                    "player_joined",
                    {
                        "roomId": room.room_id,
                        "players": room.roster(),
                        "playerSymbol": seated.symbol,
                        "message": f"{name} joined the room",
                    },
                )
                room.start()
                self._game_started_notice(room, outbox)
        return outbox

    # ---- in-room actions ----

    async def make_move(self, conn_id: str, data: Any) -> Outbox:
        request = parse(MoveRequest, data, code="malformed_move")
        _, room = self._seated(conn_id)
        outbox = Outbox()
        async with room.lock:
            result = room.play(conn_id, request.x, request.y)
            move = result.move
            logger.debug(
                "%s (%s) played (%d, %d) in room %s",
                result.player.name, move.symbol, move.x, move.y, room.room_id,
            )
            if result.outcome is not None:
                self._game_over_notice(room, result.outcome, outbox)
            else:
                outbox.room(
                    room,
                    "move_made",
                    {
                        "x": move.x,
                        "y": move.y,
                        "symbol": move.symbol,
                        "playerName": result.player.name,
                        "currentTurn": room.current_turn,
                        "board": [list(row) for row in room.board],
                    },
                )
        return outbox

    async def ready(self, conn_id: str, data: Any) -> Outbox:
        session, room = self._seated(conn_id)
        outbox = Outbox()
        async with room.lock:
            everyone_ready = room.mark_ready(conn_id)
            logger.info("%s is ready in room %s", session.player.name, room.room_id)
            outbox.room(
                room,
                "player_ready",
                {
                    "playerId": conn_id,
                    "playerName": session.player.name,
                    "message": f"{session.player.name} is ready",
                },
            )
            if everyone_ready:
                room.start()
                self._game_started_notice(room, outbox)
        return outbox

    async def restart_game(self, conn_id: str, data: Any) -> Outbox:
        session, room = self._seated(conn_id)
        outbox = Outbox()
        async with room.lock:
            room.reset()
            logger.info("%s reset room %s", session.player.name, room.room_id)
            outbox.room(
                room,
                "game_reset",
                {
                    "roomId": room.room_id,
                    "phase": room.phase.value,
                    "players": room.roster(),
                    "message": "The game was reset, get ready...",
                },
            )
        return outbox

    async def leave_room(self, conn_id: str, data: Any) -> Outbox:
        outbox = Outbox()
        async with self._lock:
            session = self.sessions.get(conn_id)
            if self.queue.remove(conn_id) is not None:
                self.sessions.clear(conn_id)
                logger.info("%s left the matchmaking queue", session.player.name)
                outbox.broadcast("waiting_list_update", {"waitingCount": len(self.queue)})
                return outbox
            room = self.rooms.get(session.room_id)
            if session.player is None or room is None:
                raise StateError("You are not in an active room", code="no_session")
            await self._depart(room, conn_id, outbox, "player_left", "opponent_left")
            self.sessions.clear(conn_id)
        return outbox

    async def chat_message(self, conn_id: str, data: Any) -> Outbox:
        text = parse(ChatRequest, data).message
        session = self.sessions.get(conn_id)
        if session.player is None:
            raise StateError("Join the game before chatting", code="no_session")
        payload = {
            "playerId": conn_id,
            "playerName": session.player.name,
            "playerSymbol": session.player.symbol,
            "message": text,
            "timestamp": _now_iso(),
        }
        outbox = Outbox()
        room = self.rooms.get(session.room_id)
        if room is not None:
            outbox.room(room, "chat_message", payload)
        else:
            outbox.broadcast("global_chat_message", payload)
        return outbox

    async def ping(self, conn_id: str, data: Any) -> Outbox:
        outbox = Outbox()
        outbox.send(conn_id, "pong", {"timestamp": _now_iso()})
        return outbox

    # ---- closure ----

    async def close_room(self, room_id: str, reason: str, generation: Optional[int] = None) -> bool:
        """Remove a room and tell its occupants. Unknown ids are a no-op.

        With ``generation`` set, only a room still showing that finished match
        is closed.
        """
        outbox = Outbox()
        async with self._lock:
            room = self.rooms.get(room_id)
            if room is None:
                return False
            async with room.lock:
                if generation is not None and (
                    room.generation != generation or room.phase is not Phase.FINISHED
                ):
                    return False
                outbox.room(
                    room,
                    "room_closed",
                    {"roomId": room_id, "reason": reason, "message": "The room was closed"},
                )
                self.rooms.remove(room_id)
                for player_id in room.player_ids():
                    if self.sessions.get(player_id).room_id == room_id:
                        self.sessions.leave_room(player_id)
                logger.info(
                    "Room %s closed: %s (%s)",
                    room_id, reason, ", ".join(p.name for p in room.players) or "empty",
                )
        await self.deliver(outbox)
        return True

    async def close_finished_room(self, room_id: str, generation: int) -> bool:
        return await self.close_room(room_id, "finished", generation)

    async def close_idle_rooms(self, max_idle: float, now: Optional[float] = None) -> int:
        async with self._lock:
            stale = [room.room_id for room in self.rooms.idle(max_idle, now)]
        closed = 0
        for room_id in stale:
            try:
                if await self.close_room(room_id, "idle"):
                    closed += 1
            except Exception:
                logger.exception("Closing idle room %s failed", room_id)
        return closed

    # ---- reporting ----

    def status(self) -> Dict[str, Any]:
        rooms = [room.snapshot() for room in self.rooms]
        return {
            "onlineUsers": len(self.sessions),
            "waitingUsers": len(self.queue),
            "activeRooms": len(rooms),
            "rooms": rooms,
            "serverTime": _now_iso(),
        }
