from __future__ import annotations

import json
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import ProtocolError
from .sessions import ARTIFACT_MAGIC, has_artifact_signature

Timestamp = Union[int, float, None]


class RegisterMessage(BaseModel):
    type: Literal["register"]
    role: Literal["host", "guest"]
    sessionId: Optional[str] = None


class CreateSessionMessage(BaseModel):
    type: Literal["create_session"]
    fileName: Optional[str] = None
    fileSize: Optional[int] = None


class PageMessage(BaseModel):
    type: Literal["page"]
    page: int


class PageRequestMessage(BaseModel):
    type: Literal["page_request"]
    action: Literal["prev", "next"]
    currentPage: int


class PingMessage(BaseModel):
    type: Literal["ping"]
    timestamp: Timestamp = None


class DiagnosticMessage(BaseModel):
    type: Literal["test"]
    message: Any = None
    timestamp: Timestamp = None


class DebugRequestMessage(BaseModel):
    type: Literal["debug_request"]
    clientInfo: Any = None


ControlMessage = Annotated[
    Union[
        RegisterMessage,
        CreateSessionMessage,
        PageMessage,
        PageRequestMessage,
        PingMessage,
        DiagnosticMessage,
        DebugRequestMessage,
    ],
    Field(discriminator="type"),
]

_control_adapter: TypeAdapter = TypeAdapter(ControlMessage)


def parse_control(payload: Dict[str, Any]) -> BaseModel:
    try:
        return _control_adapter.validate_python(payload)
    except ValidationError as exc:
        raise ProtocolError(f"invalid {payload.get('type')!r} message: {exc.errors()}") from exc


def _decode_json_object(raw: Union[str, bytes]) -> Dict[str, Any]:
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"malformed JSON frame: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("JSON frame is not an object")
    if not isinstance(payload.get("type"), str):
        raise ProtocolError("JSON frame has no 'type' field")
    return payload


def classify_frame(
    text: Optional[str] = None, data: Optional[bytes] = None
) -> Tuple[str, Union[Dict[str, Any], bytes]]:
    """Return ("control", payload) or ("artifact", bytes); raise ProtocolError otherwise.

    Binary frames that look like JSON are parsed as control messages first,
    since older clients send their control messages as binary.
    """
    if text is not None:
        return "control", _decode_json_object(text)

    if data is None:
        raise ProtocolError("empty frame")

    if data.lstrip()[:1] == b"{":
        try:
            return "control", _decode_json_object(data)
        except ProtocolError:
            pass  # fall through to the signature check

    if len(data) < len(ARTIFACT_MAGIC):
        raise ProtocolError(f"binary frame of {len(data)} bytes is shorter than the artifact magic")
    if not has_artifact_signature(data):
        raise ProtocolError(f"binary frame of {len(data)} bytes has no artifact signature")
    return "artifact", data
