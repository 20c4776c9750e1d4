"""Background timers: delayed room closure, idle sweeps, and deferred starts."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Set

from .config import Settings

if TYPE_CHECKING:
    from .server import GameServer

logger = logging.getLogger(__name__)


class SessionCleaner:
    """Owns every fire-and-forget task the server schedules.

    Timers are never cancelled when a room changes underneath them; the
    callbacks re-check the room on wake-up instead. Only ``stop`` cancels,
    at shutdown.
    """

    def __init__(self, server: "GameServer", settings: Settings) -> None:
        self.server = server
        self.settings = settings
        self._tasks: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def defer(self, delay: float, callback: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
        async def _runner() -> None:
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await callback(*args)
            except Exception:
                logger.exception("Deferred %s%r failed", getattr(callback, "__name__", callback), args)

        task = asyncio.get_running_loop().create_task(_runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def sweep_once(self, now: Optional[float] = None) -> int:
        closed = await self.server.close_idle_rooms(self.settings.idle_timeout_sec, now)
        if closed:
            logger.info("Idle sweep closed %d room(s)", closed)
        return closed

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_sec)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Idle sweep failed")

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop(self) -> None:
        tasks = list(self._tasks)
        if self._sweeper is not None:
            tasks.append(self._sweeper)
            self._sweeper = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until every scheduled one-shot timer has fired."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
