"""Websocket delivery for the game server."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Maps connection ids to accepted websockets and delivers JSON frames.

    Every frame is ``{"event": name, "data": payload}``. A socket that fails
    to take a frame is logged and skipped; the rest of the fan-out proceeds.
    """

    def __init__(self) -> None:
        self._sockets: Dict[str, WebSocket] = {}

    @property
    def connection_count(self) -> int:
        return len(self._sockets)

    def register(self, conn_id: str, websocket: WebSocket) -> None:
        self._sockets[conn_id] = websocket

    def unregister(self, conn_id: str) -> Optional[WebSocket]:
        return self._sockets.pop(conn_id, None)

    async def send(self, conn_id: str, event: str, payload: Dict[str, Any]) -> bool:
        websocket = self._sockets.get(conn_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json({"event": event, "data": payload})
        except Exception as exc:
            logger.warning("Dropping %s for %s: %s", event, conn_id, exc)
            return False
        return True

    async def send_many(self, conn_ids: Iterable[str], event: str, payload: Dict[str, Any]) -> int:
        delivered = 0
        for conn_id in list(conn_ids):
            if await self.send(conn_id, event, payload):
                delivered += 1
        return delivered

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> int:
        return await self.send_many(list(self._sockets), event, payload)
