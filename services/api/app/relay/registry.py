from __future__ import annotations

import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from fastapi.websockets import WebSocketState

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    UNSET = "unset"
    HOST = "host"
    GUEST = "guest"


def _new_conn_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(eq=False)
class Connection:
    """Identity record for one open socket. The transport object is held, not decorated."""

    websocket: Any
    conn_id: str = field(default_factory=_new_conn_id)
    role: Role = Role.UNSET
    session_id: Optional[str] = None
    remote: str = "unknown"
    connected_at: float = 0.0
    last_seen: float = 0.0

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.conn_id,
            "role": self.role.value,
            "sessionId": self.session_id,
            "remote": self.remote,
        }


def is_ws_open(websocket: Any) -> bool:
    return (
        getattr(websocket, "client_state", None) == WebSocketState.CONNECTED
        and getattr(websocket, "application_state", None) == WebSocketState.CONNECTED
    )


class ConnectionRegistry:
    """Owns every Connection record, keyed by transport and by id."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._by_socket: Dict[Any, Connection] = {}
        self._by_id: Dict[str, Connection] = {}

    def register(self, websocket: Any, remote: Optional[str] = None) -> Connection:
        existing = self._by_socket.get(websocket)
        if existing is not None:
            return existing
        now = self._clock()
        conn = Connection(
            websocket=websocket,
            remote=remote or "unknown",
            connected_at=now,
            last_seen=now,
        )
        self._by_socket[websocket] = conn
        self._by_id[conn.conn_id] = conn
        logger.info("Connection %s registered from %s", conn.conn_id, conn.remote)
        return conn

    def set_role(self, conn: Connection, role: Role, session_id: Optional[str] = None) -> bool:
        """Overwrite the role/session binding. Returns False when nothing changed."""
        if conn.role == role and conn.session_id == session_id:
            return False
        logger.info(
            "Connection %s role %s -> %s (session %s -> %s)",
            conn.conn_id,
            conn.role.value,
            role.value,
            conn.session_id,
            session_id,
        )
        conn.role = role
        conn.session_id = session_id
        return True

    def deregister(self, conn: Connection) -> bool:
        removed = self._by_id.pop(conn.conn_id, None)
        self._by_socket.pop(conn.websocket, None)
        if removed is not None:
            logger.info("Connection %s deregistered (%s)", conn.conn_id, conn.role.value)
        return removed is not None

    def get(self, conn_id: Optional[str]) -> Optional[Connection]:
        if conn_id is None:
            return None
        return self._by_id.get(conn_id)

    def touch(self, conn: Connection) -> None:
        conn.last_seen = self._clock()

    def is_open(self, conn_id: Optional[str]) -> bool:
        conn = self.get(conn_id)
        return conn is not None and is_ws_open(conn.websocket)

    def connections(self) -> List[Connection]:
        return list(self._by_id.values())

    def counts(self) -> Dict[str, int]:
        totals = {role.value: 0 for role in Role}
        for conn in self._by_id.values():
            totals[conn.role.value] += 1
        return {
            "total": len(self._by_id),
            "hosts": totals[Role.HOST.value],
            "guests": totals[Role.GUEST.value],
            "unset": totals[Role.UNSET.value],
        }

    def clear(self) -> None:
        self._by_socket.clear()
        self._by_id.clear()

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, conn: Connection) -> bool:
        return self._by_id.get(conn.conn_id) is conn
