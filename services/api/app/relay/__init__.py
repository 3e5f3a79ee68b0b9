"""Shared-document relay: connection registry, sessions, routing and fan-out."""

from .hub import RelayHub
from .registry import Connection, ConnectionRegistry, Role
from .sessions import Session, SessionStore

__all__ = ["Connection", "ConnectionRegistry", "RelayHub", "Role", "Session", "SessionStore"]
