"""Persistence layer exports."""

from .repo import Database, SQLLedgerRepository
from .repo_base import LedgerRepository, RepositoryError

__all__ = [
    "Database",
    "LedgerRepository",
    "RepositoryError",
    "SQLLedgerRepository",
]
