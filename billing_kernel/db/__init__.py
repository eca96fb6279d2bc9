"""Database layer - engine, base classes and column types."""

from billing_kernel.db.base import UUID, Base, DecimalString, TrackedBase, TZDateTime, UUIDString
from billing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "DecimalString",
    "TZDateTime",
    "UUID",
]
