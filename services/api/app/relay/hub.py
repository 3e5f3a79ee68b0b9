from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from .. import config
from .broadcast import Broadcaster
from .liveness import LivenessMonitor
from .reaper import SessionReaper
from .registry import Connection, ConnectionRegistry
from .router import MessageRouter
from .sessions import SessionStore

logger = logging.getLogger(__name__)


class RelayHub:
    """Process-wide owner of the registry, sessions and background tasks.

    The web layer talks to the relay only through this object.
    """

    def __init__(
        self,
        *,
        heartbeat_interval: float = config.HEARTBEAT_INTERVAL_SEC,
        reaper_interval: float = config.REAPER_INTERVAL_SEC,
        retention: float = config.SESSION_RETENTION_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = ConnectionRegistry(clock=clock)
        self.store = SessionStore(self.registry, clock=clock)
        self.broadcaster = Broadcaster(self.registry, self.store)
        self.router = MessageRouter(self.registry, self.store, self.broadcaster, clock=clock)
        self.liveness = LivenessMonitor(
            self.registry,
            self.disconnect,
            interval=heartbeat_interval,
            clock=clock,
        )
        self.reaper = SessionReaper(
            self.registry,
            self.store,
            interval=reaper_interval,
            retention=retention,
            clock=clock,
        )
        self._started = False

    # --- Lifecycle -------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self.reaper.start()
        self._started = True
        logger.info("Relay hub started")

    async def stop(self) -> None:
        await self.reaper.stop()
        await self.liveness.stop_all()
        self.store.clear()
        self.registry.clear()
        self._started = False
        logger.info("Relay hub stopped")

    # --- Connections -----------------------------------------------------

    def connect(self, websocket: Any, remote: Optional[str] = None) -> Connection:
        conn = self.registry.register(websocket, remote=remote)
        self.liveness.start(conn)
        return conn

    async def receive(
        self,
        conn: Connection,
        text: Optional[str] = None,
        data: Optional[bytes] = None,
    ) -> None:
        if conn not in self.registry:
            # heartbeat failure already ran close cleanup; late frames are dropped
            logger.debug("Dropping frame from deregistered connection %s", conn.conn_id)
            return
        await self.router.dispatch(conn, text=text, data=data)

    async def disconnect(self, conn: Connection) -> None:
        """Standard close cleanup; safe to call more than once."""
        self.liveness.stop(conn)
        if conn not in self.registry:
            return
        self.store.leave(conn)
        self.registry.deregister(conn)

    def stats(self) -> Dict[str, Any]:
        return {
            "connections": self.registry.counts(),
            "sessions": len(self.store),
            "heartbeats": self.liveness.active(),
            "reaper": self.reaper.running,
        }
