"""
Lab Persistence module.

Storage for smoke-run history. The abstract RunRepository defines the
contract; SQLiteRunRepository implements it with aiosqlite.
"""

from .repository import RunRepository
from .sqlite_repository import SQLiteRunRepository

__all__ = ["RunRepository", "SQLiteRunRepository"]
