from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Sequence, Tuple, Union

from .errors import DeliveryError
from .registry import Connection, ConnectionRegistry, is_ws_open
from .sessions import Session, SessionStore

logger = logging.getLogger(__name__)

Frame = Union[bytes, Dict[str, Any]]


async def send_frame(websocket: Any, frame: Frame) -> None:
    if isinstance(frame, (bytes, bytearray)):
        await websocket.send_bytes(bytes(frame))
    else:
        await websocket.send_json(frame)


def position_frame(page: int) -> Dict[str, Any]:
    return {"type": "page", "page": page}


class Broadcaster:
    """Fans session state out to guests, one independent delivery per recipient.

    Every recipient's sends are started before any of them is awaited, so a
    slow or broken guest never blocks the others. There is no per-send
    timeout: the caller still waits for the slowest guest to finish.
    """

    def __init__(self, registry: ConnectionRegistry, store: SessionStore) -> None:
        self._registry = registry
        self._store = store

    async def broadcast_artifact(self, session: Session) -> int:
        snapshot = session.artifact
        if snapshot is None:
            return 0
        # the snapshot and position are captured now; a re-upload mid-flight wins next time
        frames: List[Frame] = [snapshot, position_frame(session.position)]
        return await self._fan_out(session, frames)

    async def broadcast_position(self, session: Session) -> int:
        return await self._fan_out(session, [position_frame(session.position)])

    async def forward_to_host(self, session: Session, payload: Dict[str, Any]) -> bool:
        host = self._registry.get(session.host_id)
        if host is None or not is_ws_open(host.websocket):
            logger.info("Session %s has no open host; advisory dropped", session.session_id)
            return False
        try:
            await send_frame(host.websocket, payload)
        except Exception as exc:
            logger.warning("Advisory to host %s failed: %r", host.conn_id, exc)
            return False
        return True

    async def catch_up(self, conn: Connection, session: Session) -> bool:
        """Bring a newly joined guest to the session's current state.

        The guest is already subscribed, so a host page change can land while
        the artifact is in flight; the position is read only after that send
        and re-sent until it stops moving, leaving the latest page last.
        """
        try:
            if session.artifact is not None:
                await self._deliver(conn, [session.artifact])
            sent = None
            while sent != session.position:
                sent = session.position
                await self._deliver(conn, [position_frame(sent)])
        except DeliveryError as exc:
            logger.warning("Catch-up for session %s failed: %s", session.session_id, exc)
            self._store.drop_guest(session, conn.conn_id)
            return False
        return True

    async def _fan_out(self, session: Session, frames: Sequence[Frame]) -> int:
        recipients: List[Connection] = []
        for conn_id in list(session.guests):
            conn = self._registry.get(conn_id)
            if conn is None or not is_ws_open(conn.websocket):
                self._store.drop_guest(session, conn_id)
                continue
            recipients.append(conn)

        if not recipients:
            return 0

        results = await asyncio.gather(
            *(self._deliver(conn, frames) for conn in recipients),
            return_exceptions=True,
        )

        delivered = 0
        for conn, result in zip(recipients, results):
            if isinstance(result, DeliveryError):
                logger.warning("Session %s: %s", session.session_id, result)
                self._store.drop_guest(session, conn.conn_id)
            elif isinstance(result, BaseException):
                logger.error(
                    "Session %s: unexpected delivery failure for %s",
                    session.session_id,
                    conn.conn_id,
                    exc_info=result,
                )
                self._store.drop_guest(session, conn.conn_id)
            else:
                delivered += 1
        logger.debug(
            "Session %s fan-out: %d/%d delivered", session.session_id, delivered, len(recipients)
        )
        return delivered

    async def _deliver(self, conn: Connection, frames: Sequence[Frame]) -> Tuple[str, int]:
        try:
            for frame in frames:
                await send_frame(conn.websocket, frame)
        except Exception as exc:
            raise DeliveryError(conn.conn_id, exc) from exc
        return conn.conn_id, len(frames)
