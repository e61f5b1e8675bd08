"""Database layer - engine, base classes."""

from backoffice_kernel.db.base import MONEY, Base, TrackedBase, UUIDString
from backoffice_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "MONEY",
    "build_engine",
    "init_engine_from_url",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
]
