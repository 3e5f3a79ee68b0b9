from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base class for failures inside the relay."""


class ProtocolError(RelayError):
    """Inbound frame that is neither valid JSON control nor a signed artifact."""


class InvalidArtifact(ProtocolError):
    """Binary payload without the artifact signature."""


class SessionNotFound(RelayError):
    def __init__(self, session_id: Optional[str]) -> None:
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id


class DeliveryError(RelayError):
    def __init__(self, conn_id: str, cause: BaseException) -> None:
        super().__init__(f"delivery to {conn_id} failed: {cause!r}")
        self.conn_id = conn_id
        self.cause = cause


class LivenessTimeout(RelayError):
    def __init__(self, conn_id: str, reason: str) -> None:
        super().__init__(f"connection {conn_id} failed heartbeat: {reason}")
        self.conn_id = conn_id
