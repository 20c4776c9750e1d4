"""Tests for the matchmaking queue, room registry, and session records."""

from gomoku.game import Phase, Player
from gomoku.lobby import ROOM_ID_LENGTH, ConnectionRegistry, MatchmakingQueue, RoomRegistry


def test_queue_pairs_in_arrival_order():
    queue = MatchmakingQueue()
    registry = RoomRegistry()
    for conn_id, name in [("c1", "Ann"), ("c2", "Ben"), ("c3", "Cid")]:
        assert queue.enqueue(Player(conn_id, name))

    room = queue.try_pair(registry)
    assert room is not None
    assert [(p.id, p.symbol) for p in room.players] == [("c1", "X"), ("c2", "O")]
    assert room.phase is Phase.READY_NOT_STARTED
    assert [p.id for p in queue.waiting()] == ["c3"]
    assert queue.try_pair(registry) is None


def test_queue_ignores_duplicates():
    queue = MatchmakingQueue()
    assert queue.enqueue(Player("c1", "Ann"))
    assert not queue.enqueue(Player("c1", "Ann again"))
    assert len(queue) == 1
    assert queue.try_pair(RoomRegistry()) is None


def test_queue_remove_is_idempotent():
    queue = MatchmakingQueue()
    queue.enqueue(Player("c1", "Ann"))
    assert queue.remove("c1").name == "Ann"
    assert queue.remove("c1") is None
    assert "c1" not in queue


def test_registry_ids_are_short_and_unique():
    registry = RoomRegistry()
    rooms = [registry.create([Player(f"c{i}", "P", "X")]) for i in range(50)]
    ids = {room.room_id for room in rooms}
    assert len(ids) == 50
    assert all(len(room_id) == ROOM_ID_LENGTH for room_id in ids)


def test_registry_remove_unknown_room_is_noop():
    registry = RoomRegistry()
    room = registry.create([Player("c1", "Ann", "X")])
    assert registry.remove(room.room_id) is room
    assert room.phase is Phase.CLOSED
    assert registry.remove(room.room_id) is None
    assert registry.get(room.room_id) is None
    assert len(registry) == 0


def test_registry_reports_idle_rooms():
    registry = RoomRegistry()
    stale = registry.create([Player("c1", "Ann", "X")])
    fresh = registry.create([Player("c2", "Ben", "X")])
    stale.last_activity = 1000.0
    fresh.last_activity = 4000.0
    assert registry.idle(3600.0, now=4700.0) == [stale]


def test_sessions_follow_player_and_room():
    sessions = ConnectionRegistry()
    registry = RoomRegistry()
    sessions.connect("c1")
    assert sessions.get("c1").player is None

    room = registry.create([Player("c1", "Ann", "X")])
    session = sessions.bind_room("c1", room)
    assert session.room_id == room.room_id
    assert session.player.symbol == "X"

    sessions.leave_room("c1")
    assert sessions.get("c1").room_id is None
    assert sessions.get("c1").player.name == "Ann"

    sessions.clear("c1")
    assert sessions.get("c1").player is None
    assert sessions.disconnect("c1") is not None
    assert sessions.disconnect("c1") is None
    assert len(sessions) == 0
