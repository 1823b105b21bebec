"""Database layer: engine, base classes, column types and immutability."""

from fees_kernel.db.base import Base, TimestampedBase, UUIDString
from fees_kernel.db.engine import create_tables, get_engine, get_session_factory
from fees_kernel.db.types import Money, PayloadHash, as_utc, round_money

__all__ = [
    "Base",
    "Money",
    "PayloadHash",
    "TimestampedBase",
    "UUIDString",
    "as_utc",
    "create_tables",
    "get_engine",
    "get_session_factory",
    "round_money",
]
