"""
littleorm - fluent SQL statement builder over SQLAlchemy.

Statements are assembled from chained calls on pooled builder contexts and
run with a bounded timeout, optionally inside a caller managed transaction.

Key components:
- Database handle, context pool and transaction helper
- Builder context with select/insert/update/delete terminals
- Explicit column mapping for pydantic models and dataclasses
- YAML configuration and logging setup
"""

from .core import (
    Context,
    ContextPool,
    Database,
    ExecResult,
    FindType,
    SQLAlchemyDriver,
    Transaction,
    column,
    columns_for,
    open_database,
)
from .config import get_littleorm_config, load_config, validate_config, setup_orm_logging
from .exceptions import (
    LittleOrmError,
    ConfigurationError,
    QueryTimeoutError,
    MalformedInputError,
    RowLengthMismatchError,
    NoRowsError,
    TransactionError,
    NestedTransactionError,
    TransactionClosedError,
    StaleContextError,
    InvalidSelectorError,
)

__version__ = "1.0.0"
__all__ = [
    # Core components
    "Context",
    "ContextPool",
    "Database",
    "ExecResult",
    "FindType",
    "SQLAlchemyDriver",
    "Transaction",
    "column",
    "columns_for",
    "open_database",

    # Configuration
    "get_littleorm_config",
    "load_config",
    "validate_config",
    "setup_orm_logging",

    # Errors
    "LittleOrmError",
    "ConfigurationError",
    "QueryTimeoutError",
    "MalformedInputError",
    "RowLengthMismatchError",
    "NoRowsError",
    "TransactionError",
    "NestedTransactionError",
    "TransactionClosedError",
    "StaleContextError",
    "InvalidSelectorError",
]
