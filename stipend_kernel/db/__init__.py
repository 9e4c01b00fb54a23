"""Database layer - engine, base classes, money helpers and immutability."""

from stipend_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from stipend_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from stipend_kernel.db.types import ZERO, money_from_str, round_money

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "ZERO",
    "money_from_str",
    "round_money",
]
