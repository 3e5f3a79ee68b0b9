from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

from .registry import ConnectionRegistry
from .sessions import SessionStore

logger = logging.getLogger(__name__)


class SessionReaper:
    """Periodically purges sessions whose host is gone and which have sat idle too long.

    Host disconnect alone never removes a session; this sweep is the only path
    that does, so a host that reconnects within the retention window finds
    its guests and artifact still in place.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: SessionStore,
        *,
        interval: float = 30 * 60.0,
        retention: float = 2 * 60 * 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._store = store
        self.interval = interval
        self.retention = retention
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="session-reaper")

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: Optional[float] = None) -> List[str]:
        now = self._clock() if now is None else now
        purged: List[str] = []
        for session in self._store.sessions():
            if self._registry.is_open(session.host_id):
                continue
            idle = now - session.last_activity
            if idle <= self.retention:
                continue
            self._store.purge(session.session_id)
            purged.append(session.session_id)
            logger.info("Reaped session %s (idle %.0fs, no host)", session.session_id, idle)
        if purged:
            logger.info("Reaper sweep removed %d session(s), %d remain", len(purged), len(self._store))
        return purged

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception as exc:
                logger.exception("Reaper sweep failed: %s", exc)
