"""FastAPI application: the game websocket plus health and status endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect

from .config import Settings, load_settings
from .server import GameServer
from .transport import WebSocketTransport

logger = logging.getLogger(__name__)


def _decode_frame(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the JSON object carried by a text frame; binary frames are rejected."""
    raw = message.get("text")
    if raw is None:
        return None
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        return None
    return frame


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    transport = WebSocketTransport()
    server = GameServer(transport, settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        server.cleaner.start()
        logger.info("Gomoku server ready on %s:%s", settings.host, settings.port)
        try:
            yield
        finally:
            await server.cleaner.stop()

    app = FastAPI(
        title="Gomoku",
        description="Real-time two-player five-in-a-row over websockets",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.transport = transport
    app.state.server = server

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/status")
    def status(request: Request) -> Dict[str, object]:
        return request.app.state.server.status()

    @app.websocket("/ws")
    async def game_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        conn_id = uuid.uuid4().hex
        transport.register(conn_id, websocket)
        server.connect(conn_id)
        await transport.send(conn_id, "connected", {"id": conn_id})

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                frame = _decode_frame(message)
                if frame is None:
                    await transport.send(
                        conn_id,
                        "error",
                        {
                            "message": 'Frames must be JSON objects like {"event": ..., "data": ...}',
                            "code": "invalid_frame",
                            "kind": "validation",
                        },
                    )
                    continue
                await server.dispatch(conn_id, frame["event"], frame.get("data"))
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Websocket loop for %s failed", conn_id)
        finally:
            transport.unregister(conn_id)
            # runs to completion even if this endpoint is cancelled
            await asyncio.shield(server.cleaner.defer(0, server.disconnect, conn_id))

    return app


app = create_app()
