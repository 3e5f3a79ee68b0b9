from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict

from .errors import LivenessTimeout
from .registry import Connection, ConnectionRegistry, is_ws_open

logger = logging.getLogger(__name__)

TimeoutCallback = Callable[[Connection], Awaitable[None]]


class LivenessMonitor:
    """One heartbeat task per open connection."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        on_timeout: TimeoutCallback,
        *,
        interval: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._on_timeout = on_timeout
        self.interval = interval
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}

    def start(self, conn: Connection) -> None:
        task = self._tasks.get(conn.conn_id)
        if task and not task.done():
            return
        self._tasks[conn.conn_id] = asyncio.create_task(
            self._run(conn), name=f"heartbeat-{conn.conn_id}"
        )

    def stop(self, conn: Connection) -> None:
        task = self._tasks.pop(conn.conn_id, None)
        if task is None:
            return
        if task is not asyncio.current_task():
            task.cancel()

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def active(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def probe(self, conn: Connection) -> None:
        if not is_ws_open(conn.websocket):
            raise LivenessTimeout(conn.conn_id, "transport no longer open")
        try:
            await conn.websocket.send_json(
                {"type": "heartbeat", "serverTime": int(self._clock() * 1000)}
            )
        except Exception as exc:
            raise LivenessTimeout(conn.conn_id, repr(exc)) from exc
        self._registry.touch(conn)

    async def _run(self, conn: Connection) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                await self.probe(conn)
        except LivenessTimeout as exc:
            logger.warning("%s; closing", exc)
            await self._force_close(conn)

    async def _force_close(self, conn: Connection) -> None:
        try:
            await conn.websocket.close(code=1011)
        except Exception as exc:
            logger.debug("Close of %s after heartbeat failure raised %r", conn.conn_id, exc)
        await self._on_timeout(conn)
