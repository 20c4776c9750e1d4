"""Tests for the FastAPI surface: health, status, and the game websocket."""

from __future__ import annotations

from fastapi.testclient import TestClient

from gomoku.web import create_app


def _until(ws, event):
    """Read frames until ``event`` arrives; return everything seen."""
    seen = []
    while True:
        frame = ws.receive_json()
        seen.append(frame)
        if frame["event"] == event:
            return seen


def _names(frames):
    return [frame["event"] for frame in frames]


def test_health(settings):
    with TestClient(create_app(settings)) as client:
        response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["timestamp"]


def test_status_starts_empty(settings):
    with TestClient(create_app(settings)) as client:
        payload = client.get("/status").json()
    assert payload["onlineUsers"] == 0
    assert payload["waitingUsers"] == 0
    assert payload["activeRooms"] == 0
    assert payload["rooms"] == []
    assert payload["serverTime"]


def test_private_room_over_websocket(settings):
    with TestClient(create_app(settings)) as client:
        with client.websocket_connect("/ws") as alice:
            assert alice.receive_json()["event"] == "connected"
            alice.send_json({"event": "create_room", "data": {"username": "Alice"}})
            created = alice.receive_json()
            assert created["event"] == "room_created"
            assert created["data"]["playerSymbol"] == "X"
            room_id = created["data"]["roomId"]

            with client.websocket_connect("/ws") as bob:
                assert bob.receive_json()["event"] == "connected"
                bob.send_json(
                    {"event": "join_room", "data": {"username": "Bob", "roomId": room_id}}
                )
                assert _names(_until(bob, "game_started")) == ["player_joined", "game_started"]
                assert _names(_until(alice, "game_started")) == ["player_joined", "game_started"]

                alice.send_json({"event": "make_move", "data": {"x": 7, "y": 7}})
                moved = _until(bob, "move_made")[-1]["data"]
                assert moved["symbol"] == "X"
                assert moved["currentTurn"] == "O"
                assert moved["board"][7][7] == "X"
                _until(alice, "move_made")

                status = client.get("/status").json()
                assert status["onlineUsers"] == 2
                assert status["activeRooms"] == 1
                assert status["rooms"][0]["roomId"] == room_id

                bob.send_json({"event": "make_move", "data": {"x": 15, "y": 0}})
                error = _until(bob, "error")[-1]["data"]
                assert error["code"] == "out_of_bounds"

            frames = _until(alice, "game_over")
            assert "player_disconnected" in _names(frames)
            over = frames[-1]["data"]
            assert over["winner"] == "X"
            assert over["reason"] == "opponent_disconnected"


def test_matchmaking_over_websocket(settings):
    with TestClient(create_app(settings)) as client:
        with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
            first.receive_json()
            second.receive_json()

            first.send_json({"event": "join_game", "data": {"username": "Ann"}})
            waiting = _until(first, "waiting")[-1]["data"]
            assert waiting["waitingCount"] == 1

            second.send_json({"event": "join_game", "data": {"username": "Ben"}})
            frames = _until(first, "game_started")
            assert "match_found" in _names(frames)
            started = frames[-1]["data"]
            assert started["currentTurn"] == "X"
            assert [(p["name"], p["symbol"]) for p in started["players"]] == [
                ("Ann", "X"),
                ("Ben", "O"),
            ]
            _until(second, "game_started")


def test_bad_frames_do_not_drop_the_connection(settings):
    with TestClient(create_app(settings)) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("not json")
            error = ws.receive_json()
            assert error["event"] == "error"
            assert error["data"]["code"] == "invalid_frame"

            ws.send_json({"event": "ping"})
            pong = ws.receive_json()
            assert pong["event"] == "pong"
            assert pong["data"]["timestamp"]


def test_binary_frame_is_rejected_without_dropping_the_player(settings):
    with TestClient(create_app(settings)) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"event": "create_room", "data": {"username": "Ann"}})
            assert ws.receive_json()["event"] == "room_created"

            ws.send_bytes(b"\x00garbage")
            error = ws.receive_json()
            assert error["event"] == "error"
            assert error["data"]["code"] == "invalid_frame"

            status = client.get("/status").json()
            assert status["onlineUsers"] == 1
            assert status["activeRooms"] == 1

            ws.send_json({"event": "ping"})
            assert ws.receive_json()["event"] == "pong"
