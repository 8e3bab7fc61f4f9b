"""Database layer - engine, base classes and column types."""

from workflow_kernel.db.base import UUID, Base, JSONPayload, UTCDateTime, UUIDString
from workflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "JSONPayload",
    "UTCDateTime",
    "UUID",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
]
