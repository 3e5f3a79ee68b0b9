from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from .errors import InvalidArtifact, SessionNotFound
from .registry import Connection, ConnectionRegistry, Role

logger = logging.getLogger(__name__)

ARTIFACT_MAGIC = b"%PDF-"
LEGACY_SESSION_ID = "legacy"
INITIAL_POSITION = 1


@dataclass(eq=False)
class Session:
    session_id: str
    host_id: Optional[str] = None
    guests: Set[str] = field(default_factory=set)
    artifact: Optional[bytes] = None
    position: int = INITIAL_POSITION
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    created_at: float = 0.0
    last_activity: float = 0.0

    @property
    def is_legacy(self) -> bool:
        return self.session_id == LEGACY_SESSION_ID

    def summary(self) -> Dict[str, object]:
        return {
            "sessionId": self.session_id,
            "hostId": self.host_id,
            "guests": len(self.guests),
            "currentPage": self.position,
            "hasPdf": self.artifact is not None,
            "pdfSize": len(self.artifact) if self.artifact is not None else 0,
            "fileName": self.file_name,
        }


def has_artifact_signature(data: bytes) -> bool:
    return len(data) >= len(ARTIFACT_MAGIC) and data[: len(ARTIFACT_MAGIC)] == ARTIFACT_MAGIC


class SessionStore:
    """Session id -> Session, and the only code that binds connections to sessions."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._clock = clock
        self._sessions: Dict[str, Session] = {}

    # --- Lookup ----------------------------------------------------------

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def require(self, session_id: Optional[str]) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def hosted_by(self, conn: Connection) -> Optional[Session]:
        session = self.get(conn.session_id)
        if session is not None and session.host_id == conn.conn_id:
            return session
        return None

    def legacy_session(self) -> Session:
        session = self._sessions.get(LEGACY_SESSION_ID)
        if session is None:
            session = self._new_session(LEGACY_SESSION_ID)
            logger.info("Legacy session created")
        return session

    # --- Mutations -------------------------------------------------------

    def create_session(
        self,
        conn: Connection,
        file_name: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> str:
        owned = self.hosted_by(conn)
        if owned is not None and not owned.is_legacy:
            logger.info("Connection %s already hosts session %s", conn.conn_id, owned.session_id)
            if file_name is not None:
                owned.file_name = file_name
            if file_size is not None:
                owned.file_size = file_size
            return owned.session_id

        session = self._new_session(uuid.uuid4().hex)
        session.file_name = file_name
        session.file_size = file_size
        self.bind_host(conn, session.session_id)
        logger.info("Session %s created by %s (%s)", session.session_id, conn.conn_id, file_name)
        return session.session_id

    def bind_host(self, conn: Connection, session_id: str) -> Session:
        session = self.require(session_id)
        if session.host_id == conn.conn_id and conn.role == Role.HOST:
            return session
        self._unbind(conn)
        if session.host_id is not None and session.host_id != conn.conn_id:
            logger.info(
                "Session %s host slot moves from %s to %s",
                session_id,
                session.host_id,
                conn.conn_id,
            )
        session.host_id = conn.conn_id
        session.last_activity = self._clock()
        self._registry.set_role(conn, Role.HOST, session_id)
        return session

    def join_session(self, session_id: Optional[str], conn: Connection) -> Session:
        session = self.require(session_id)
        if conn.conn_id in session.guests and conn.session_id == session.session_id:
            return session
        self._unbind(conn)
        self._registry.set_role(conn, Role.GUEST, session.session_id)
        session.guests.add(conn.conn_id)
        session.last_activity = self._clock()
        logger.info(
            "Connection %s joined session %s (%d guests)",
            conn.conn_id,
            session.session_id,
            len(session.guests),
        )
        return session

    def set_artifact(self, session_id: Optional[str], data: bytes) -> Session:
        session = self.require(session_id)
        if not has_artifact_signature(data):
            raise InvalidArtifact(f"artifact for session {session.session_id} lacks %PDF- signature")
        # bytes() detaches the snapshot from any caller-owned buffer
        session.artifact = bytes(data)
        session.last_activity = self._clock()
        logger.info("Session %s artifact replaced (%d bytes)", session.session_id, len(data))
        return session

    def set_position(self, session_id: Optional[str], page: int) -> Session:
        session = self.require(session_id)
        session.position = page
        session.last_activity = self._clock()
        return session

    def drop_guest(self, session: Session, conn_id: str) -> None:
        if conn_id in session.guests:
            session.guests.discard(conn_id)
            logger.info("Guest %s pruned from session %s", conn_id, session.session_id)

    def leave(self, conn: Connection) -> None:
        """Detach a closing connection. Sessions are never deleted here."""
        self._unbind(conn)

    def purge(self, session_id: str) -> Optional[Session]:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        for conn_id in list(session.guests):
            guest = self._registry.get(conn_id)
            if guest is not None and guest.session_id == session_id:
                self._registry.set_role(guest, Role.UNSET, None)
        session.guests.clear()
        return session

    def clear(self) -> None:
        self._sessions.clear()

    # --- Internals -------------------------------------------------------

    def _new_session(self, session_id: str) -> Session:
        now = self._clock()
        session = Session(session_id=session_id, created_at=now, last_activity=now)
        self._sessions[session_id] = session
        return session

    def _unbind(self, conn: Connection) -> None:
        previous = self.get(conn.session_id)
        if previous is None:
            return
        if conn.conn_id in previous.guests:
            previous.guests.discard(conn.conn_id)
        if previous.host_id == conn.conn_id:
            previous.host_id = None
            previous.last_activity = self._clock()
            logger.info("Session %s lost its host %s", previous.session_id, conn.conn_id)

    def __len__(self) -> int:
        return len(self._sessions)
