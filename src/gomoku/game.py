"""Core rules for Gomoku: board, win detection, and the per-room match state."""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from .errors import StateError, ValidationError

Symbol = str  # "X" or "O"
Cell = Optional[Symbol]
Board = List[List[Cell]]  # indexed board[y][x]
Line = List[Tuple[int, int]]

BOARD_SIZE = 15
WIN_LENGTH = 5
MAX_MOVES = BOARD_SIZE * BOARD_SIZE

FIRST_SYMBOL: Symbol = "X"
SECOND_SYMBOL: Symbol = "O"
SYMBOLS: Tuple[Symbol, Symbol] = (FIRST_SYMBOL, SECOND_SYMBOL)

# horizontal, vertical, diagonal, anti-diagonal
DIRECTIONS: Tuple[Tuple[int, int], ...] = ((1, 0), (0, 1), (1, 1), (1, -1))


def other_symbol(symbol: Symbol) -> Symbol:
    return SECOND_SYMBOL if symbol == FIRST_SYMBOL else FIRST_SYMBOL


def new_board() -> Board:
    return [[None] * BOARD_SIZE for _ in range(BOARD_SIZE)]


def in_bounds(x: int, y: int) -> bool:
    return 0 <= x < BOARD_SIZE and 0 <= y < BOARD_SIZE


def find_winning_line(board: Board, x: int, y: int) -> Optional[Line]:
    """Return the run through ``(x, y)`` that completes five in a row, if any.

    Walks at most ``WIN_LENGTH - 1`` cells each way along every axis, so a
    longer run reports the contiguous cells within that reach. Directions are
    tried in ``DIRECTIONS`` order and the first qualifying one wins.
    """
    symbol = board[y][x]
    if symbol is None:
        return None

    for dx, dy in DIRECTIONS:
        line: Line = [(x, y)]

        for step in range(1, WIN_LENGTH):
            nx, ny = x + dx * step, y + dy * step
            if not in_bounds(nx, ny) or board[ny][nx] != symbol:
                break
            line.append((nx, ny))

        for step in range(1, WIN_LENGTH):
            nx, ny = x - dx * step, y - dy * step
            if not in_bounds(nx, ny) or board[ny][nx] != symbol:
                break
            line.insert(0, (nx, ny))

        if len(line) >= WIN_LENGTH:
            return line
    return None


# ---------- Players ----------


@dataclass(frozen=True)
class Player:
    # id is the owning connection's id
    id: str
    name: str
    symbol: Optional[Symbol] = None

    def summary(self) -> Dict[str, Optional[str]]:
        return {"id": self.id, "name": self.name, "symbol": self.symbol}


# ---------- Room ----------


class Phase(str, enum.Enum):
    FORMING = "forming"
    READY_NOT_STARTED = "ready_not_started"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    CLOSED = "closed"


@dataclass(frozen=True)
class Move:
    symbol: Symbol
    x: int
    y: int
    timestamp: float


@dataclass(frozen=True)
class Outcome:
    """Terminal result of a match. ``winner`` is None for a draw."""

    winner: Optional[Player]
    reason: str
    line: Optional[Line] = None


@dataclass
class MoveResult:
    move: Move
    player: Player
    outcome: Optional[Outcome] = None


@dataclass(eq=False)
class Room:
    """State machine for one two-player match.

    Callers serialize access through ``lock``; none of the methods here await.
    ``generation`` increments whenever a match starts or the board is reset so
    delayed work can tell whether the room moved on since it was scheduled.
    """

    room_id: str
    players: List[Player] = field(default_factory=list)
    board: Board = field(default_factory=new_board)
    current_turn: Symbol = FIRST_SYMBOL
    phase: Phase = Phase.FORMING
    moves: List[Move] = field(default_factory=list)
    ready: Set[str] = field(default_factory=set)
    outcome: Optional[Outcome] = None
    generation: int = 0
    created_at: float = field(default_factory=time.time)
    last_activity: float = 0.0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        if not self.last_activity:
            self.last_activity = self.created_at
        if len(self.players) >= 2 and self.phase is Phase.FORMING:
            self.phase = Phase.READY_NOT_STARTED

    # ---- queries ----

    @property
    def started(self) -> bool:
        return self.phase is Phase.IN_PROGRESS

    @property
    def is_full(self) -> bool:
        return len(self.players) >= 2

    @property
    def is_empty(self) -> bool:
        return not self.players

    def player_ids(self) -> List[str]:
        return [p.id for p in self.players]

    def get_player(self, player_id: str) -> Optional[Player]:
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def roster(self) -> List[Dict[str, Optional[str]]]:
        return [p.summary() for p in self.players]

    def touch(self, now: Optional[float] = None) -> None:
        self.last_activity = time.time() if now is None else now

    # ---- transitions ----

    def add_player(self, player: Player) -> Player:
        """Seat a second player in a forming room; they take the free symbol."""
        if self.phase is Phase.CLOSED:
            raise StateError("Room does not exist", code="room_not_found")
        if self.is_full:
            raise StateError("Room is full", code="room_full")
        if self.phase is not Phase.FORMING:
            raise StateError("Game already started", code="game_started")

        taken = {p.symbol for p in self.players}
        free = next(s for s in SYMBOLS if s not in taken)
        seated = Player(id=player.id, name=player.name, symbol=free)
        # slot order follows symbol order, whoever arrived first
        self.players.append(seated)
        self.players.sort(key=lambda p: SYMBOLS.index(p.symbol))
        if self.is_full:
            self.phase = Phase.READY_NOT_STARTED
        self.touch()
        return seated

    def start(self) -> None:
        if self.phase is not Phase.READY_NOT_STARTED or not self.is_full:
            raise StateError("Room is not ready to start", code="not_ready")
        self.board = new_board()
        self.moves = []
        self.current_turn = FIRST_SYMBOL
        self.outcome = None
        self.ready.clear()
        self.phase = Phase.IN_PROGRESS
        self.generation += 1
        self.touch()

    def mark_ready(self, player_id: str) -> bool:
        """Record readiness; return True once both occupants are ready."""
        if self.get_player(player_id) is None:
            raise StateError("You are not in this room", code="no_session")
        if self.phase is not Phase.READY_NOT_STARTED:
            raise StateError(
                "Ready is only accepted in a full room that has not started",
                code="not_ready",
            )
        self.ready.add(player_id)
        self.touch()
        return all(p.id in self.ready for p in self.players)

    def play(self, player_id: str, x: object, y: object) -> MoveResult:
        if self.phase is not Phase.IN_PROGRESS:
            raise StateError("Game has not started", code="game_not_started")
        player = self.get_player(player_id)
        if player is None:
            raise StateError("You are not in this room", code="no_session")
        if player.symbol != self.current_turn:
            raise StateError("It is not your turn", code="not_your_turn")
        if isinstance(x, bool) or isinstance(y, bool) or not (
            isinstance(x, int) and isinstance(y, int)
        ):
            raise ValidationError("Move coordinates must be integers", code="malformed_move")
        if not in_bounds(x, y):
            raise ValidationError(
                f"Position ({x}, {y}) is off the board", code="out_of_bounds"
            )
        if self.board[y][x] is not None:
            raise ValidationError(
                f"Position ({x}, {y}) is already taken", code="cell_occupied"
            )

        self.board[y][x] = player.symbol
        move = Move(symbol=player.symbol, x=x, y=y, timestamp=time.time())
        self.moves.append(move)
        self.touch(move.timestamp)

        line = find_winning_line(self.board, x, y)
        if line is not None:
            return MoveResult(move, player, self._finish(Outcome(player, "five_in_a_row", line)))
        if len(self.moves) >= MAX_MOVES:
            return MoveResult(move, player, self._finish(Outcome(None, "draw")))

        self.current_turn = other_symbol(self.current_turn)
        return MoveResult(move, player)

    def remove_player(self, player_id: str, reason: str) -> Optional[Outcome]:
        """Drop an occupant. Forfeits an in-progress match to whoever remains."""
        player = self.get_player(player_id)
        if player is None:
            return None
        self.players.remove(player)
        self.ready.discard(player_id)

        if self.is_empty:
            self.phase = Phase.CLOSED
            return None
        if self.phase is Phase.IN_PROGRESS:
            return self._finish(Outcome(self.players[0], reason))
        if self.phase is Phase.READY_NOT_STARTED:
            self.phase = Phase.FORMING
        return None

    def reset(self) -> None:
        if self.phase is Phase.CLOSED:
            raise StateError("Room does not exist", code="room_not_found")
        self.board = new_board()
        self.moves = []
        self.current_turn = FIRST_SYMBOL
        self.outcome = None
        self.ready.clear()
        self.phase = Phase.READY_NOT_STARTED if self.is_full else Phase.FORMING
        self.generation += 1
        self.touch()

    def close(self) -> None:
        self.phase = Phase.CLOSED

    def _finish(self, outcome: Outcome) -> Outcome:
        self.phase = Phase.FINISHED
        self.outcome = outcome
        return outcome

    # ---- serialization ----

    def snapshot(self) -> Dict[str, object]:
        return {
            "roomId": self.room_id,
            "players": self.roster(),
            "phase": self.phase.value,
            "gameStarted": self.started,
            "currentTurn": self.current_turn,
            "moveCount": len(self.moves),
            "createdAt": _iso(self.created_at),
            "lastActivity": _iso(self.last_activity),
        }


def serialize_line(line: Optional[Line]) -> Optional[List[Dict[str, int]]]:
    if line is None:
        return None
    return [{"x": x, "y": y} for x, y in line]


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
