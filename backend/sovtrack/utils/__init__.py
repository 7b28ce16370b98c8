"""
Utility modules for sovtrack
"""

from .database import (
    get_db_context,
    init_db,
    close_db,
    enable_sqlite_savepoints,
)

__all__ = [
    "get_db_context",
    "init_db",
    "close_db",
    "enable_sqlite_savepoints",
]
