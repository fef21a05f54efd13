"""Database layer - declarative base, engine and session helpers."""

from dca_kernel.db.base import Base, TimestampedBase, UUIDString, as_utc
from dca_kernel.db.engine import (
    build_engine,
    build_session_factory,
    create_tables,
    session_scope,
)

__all__ = [
    "Base",
    "TimestampedBase",
    "UUIDString",
    "as_utc",
    "build_engine",
    "build_session_factory",
    "create_tables",
    "session_scope",
]
