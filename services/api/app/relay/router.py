from __future__ import annotations

import datetime as dt
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import BaseModel

from .broadcast import Broadcaster, send_frame
from .errors import ProtocolError, SessionNotFound
from .protocol import (
    CreateSessionMessage,
    DebugRequestMessage,
    DiagnosticMessage,
    PageMessage,
    PageRequestMessage,
    PingMessage,
    RegisterMessage,
    classify_frame,
    parse_control,
)
from .registry import Connection, ConnectionRegistry, Role
from .sessions import Session, SessionStore

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Any], Awaitable[None]]


def proposed_page(action: str, current_page: int) -> int:
    if action == "next":
        return current_page + 1
    return max(1, current_page - 1)


class MessageRouter:
    """Classifies inbound frames and applies them to the registry and session store.

    Sessionless clients are served by the legacy session; a connection that
    is bound to a session id always acts on that session instead.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: SessionStore,
        broadcaster: Broadcaster,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._store = store
        self._broadcaster = broadcaster
        self._clock = clock
        self._handlers: Dict[Type[BaseModel], Handler] = {
            RegisterMessage: self._on_register,
            CreateSessionMessage: self._on_create_session,
            PageMessage: self._on_page,
            PageRequestMessage: self._on_page_request,
            PingMessage: self._on_ping,
            DiagnosticMessage: self._on_test,
            DebugRequestMessage: self._on_debug_request,
        }

    async def dispatch(
        self,
        conn: Connection,
        text: Optional[str] = None,
        data: Optional[bytes] = None,
    ) -> None:
        self._registry.touch(conn)
        try:
            kind, payload = classify_frame(text=text, data=data)
            if kind == "artifact":
                await self._on_artifact(conn, payload)
                return
            message = parse_control(payload)
            await self._handlers[type(message)](conn, message)
        except ProtocolError as exc:
            logger.info("Dropped frame from %s: %s", conn.conn_id, exc)
        except Exception as exc:
            logger.exception("Handler failed for connection %s: %s", conn.conn_id, exc)

    # --- Session control -------------------------------------------------

    async def _on_register(self, conn: Connection, message: RegisterMessage) -> None:
        if message.role == "host":
            if message.sessionId:
                # host resume is not supported; a host always starts from create_session
                logger.info(
                    "Host %s registered with sessionId %s; ignoring it",
                    conn.conn_id,
                    message.sessionId,
                )
            if conn.role == Role.HOST and self._store.get(conn.session_id) is not None:
                return
            legacy = self._store.legacy_session()
            self._store.bind_host(conn, legacy.session_id)
            return

        target = message.sessionId or self._store.legacy_session().session_id
        current = self._store.get(target)
        # a repeat register for the same session gets no second artifact
        already_joined = (
            current is not None
            and conn.role == Role.GUEST
            and conn.session_id == target
            and conn.conn_id in current.guests
        )

        if message.sessionId:
            try:
                session = self._store.join_session(message.sessionId, conn)
            except SessionNotFound as exc:
                logger.info("Guest %s join rejected: %s", conn.conn_id, exc)
                await self._reply(conn, {"type": "session_error", "message": str(exc)})
                return
        else:
            session = self._store.join_session(target, conn)

        await self._reply(
            conn,
            {
                "type": "session_joined",
                "sessionId": session.session_id,
                "message": f"Joined session {session.session_id}",
            },
        )
        if already_joined:
            return
        await self._broadcaster.catch_up(conn, session)

    async def _on_create_session(self, conn: Connection, message: CreateSessionMessage) -> None:
        session_id = self._store.create_session(
            conn,
            file_name=message.fileName,
            file_size=message.fileSize,
        )
        await self._reply(conn, {"type": "session_created", "sessionId": session_id})

    # --- Artifact and position -------------------------------------------

    async def _on_artifact(self, conn: Connection, data: bytes) -> None:
        if conn.role == Role.GUEST:
            logger.info("Ignoring %d-byte upload from guest %s", len(data), conn.conn_id)
            return
        if conn.role == Role.UNSET:
            logger.info("Unregistered connection %s uploaded; promoting to legacy host", conn.conn_id)
            self._store.bind_host(conn, self._store.legacy_session().session_id)

        session = await self._hosted_session(conn)
        if session is None:
            return
        self._store.set_artifact(session.session_id, data)
        delivered = await self._broadcaster.broadcast_artifact(session)
        logger.info(
            "Session %s artifact (%d bytes) delivered to %d guest(s)",
            session.session_id,
            len(data),
            delivered,
        )

    async def _on_page(self, conn: Connection, message: PageMessage) -> None:
        if conn.role != Role.HOST:
            logger.info("Ignoring page %d from non-host %s", message.page, conn.conn_id)
            return
        session = await self._hosted_session(conn)
        if session is None:
            return
        self._store.set_position(session.session_id, message.page)
        await self._broadcaster.broadcast_position(session)

    async def _on_page_request(self, conn: Connection, message: PageRequestMessage) -> None:
        if conn.role != Role.GUEST:
            logger.info("Ignoring page_request from %s (%s)", conn.conn_id, conn.role.value)
            return
        session = self._store.get(conn.session_id)
        if session is None:
            logger.info("page_request from %s has no live session", conn.conn_id)
            return
        await self._broadcaster.forward_to_host(
            session,
            {
                "type": "page_request",
                "action": message.action,
                "currentPage": message.currentPage,
                "page": proposed_page(message.action, message.currentPage),
                "guestId": conn.conn_id,
                "sessionId": session.session_id,
            },
        )

    # --- Diagnostics -----------------------------------------------------

    async def _on_ping(self, conn: Connection, message: PingMessage) -> None:
        await self._reply(
            conn,
            {"type": "pong", "timestamp": message.timestamp, "serverTime": self._now_ms()},
        )

    async def _on_test(self, conn: Connection, message: DiagnosticMessage) -> None:
        await self._reply(
            conn,
            {
                "type": "test_response",
                "originalMessage": message.message,
                "receivedTimestamp": message.timestamp,
                "responseTimestamp": self._now_ms(),
            },
        )

    async def _on_debug_request(self, conn: Connection, message: DebugRequestMessage) -> None:
        await self._reply(conn, self.debug_snapshot(conn, message.clientInfo))

    def debug_snapshot(self, conn: Connection, client_info: Any = None) -> Dict[str, Any]:
        session = self._store.get(conn.session_id)
        summary = session.summary() if session is not None else {}
        return {
            "type": "debug_response",
            "serverTime": dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc).isoformat(),
            "connection": conn.describe(),
            "connections": self._registry.counts(),
            "sessions": {"total": len(self._store)},
            "sessionId": summary.get("sessionId"),
            "currentPage": summary.get("currentPage"),
            "hasPdf": summary.get("hasPdf", False),
            "pdfSize": summary.get("pdfSize", 0),
            "guests": summary.get("guests", 0),
            "clientInfo": client_info,
        }

    # --- Helpers ---------------------------------------------------------

    async def _hosted_session(self, conn: Connection) -> Optional[Session]:
        session = self._store.get(conn.session_id)
        if session is None:
            exc = SessionNotFound(conn.session_id)
            logger.info("Host %s acting on a missing session: %s", conn.conn_id, exc)
            await self._reply(conn, {"type": "session_error", "message": str(exc)})
            return None
        if session.host_id != conn.conn_id:
            logger.info(
                "Connection %s no longer holds the host slot of session %s",
                conn.conn_id,
                session.session_id,
            )
            await self._reply(
                conn,
                {
                    "type": "session_error",
                    "message": f"Not the host of session {session.session_id}",
                },
            )
            return None
        return session

    async def _reply(self, conn: Connection, payload: Dict[str, Any]) -> None:
        try:
            await send_frame(conn.websocket, payload)
        except Exception as exc:
            logger.warning("Reply %s to %s failed: %r", payload.get("type"), conn.conn_id, exc)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
