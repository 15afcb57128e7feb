"""Coordinator state store (SQLite)."""

from gridpool.db.connection import Database
from gridpool.db.migrations import MIGRATIONS, run_migrations
from gridpool.db.schema import initialize

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
