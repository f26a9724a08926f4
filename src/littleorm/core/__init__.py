"""
Core components.

This module contains the building blocks of littleorm:
- Database handle with statement timeouts and the transaction helper
- Builder context and its pool
- SQLAlchemy driver and transaction collaborators
- Destination column mapping
"""

from .context import Context, FindType
from .database import Database, open_database
from .driver import ExecResult, SQLAlchemyDriver, Transaction
from .mapping import column, columns_for
from .pool import ContextPool

__all__ = [
    "Context",
    "FindType",
    "Database",
    "open_database",
    "ExecResult",
    "SQLAlchemyDriver",
    "Transaction",
    "column",
    "columns_for",
    "ContextPool",
]
