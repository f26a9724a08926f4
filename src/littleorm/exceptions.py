"""Exception hierarchy for littleorm.

Driver errors raised by SQLAlchemy are not wrapped; they reach the caller
unchanged. Everything raised by littleorm itself derives from LittleOrmError.
"""


class LittleOrmError(Exception):
    """Base exception for littleorm errors."""
    pass


class ConfigurationError(LittleOrmError, ValueError):
    """Raised when configuration values are missing or invalid."""
    pass


class QueryTimeoutError(LittleOrmError, TimeoutError):
    """Raised when a statement does not finish within the configured timeout."""

    def __init__(self, message: str, timeout: float = None, sql: str = None):
        super().__init__(message)
        self.timeout = timeout
        self.sql = sql


class MalformedInputError(LittleOrmError, ValueError):
    """Raised when builder input cannot be turned into a valid statement."""
    pass


class RowLengthMismatchError(MalformedInputError):
    """Raised when a batch insert row does not match the field list."""

    def __init__(self, row_index: int, expected: int, actual: int):
        super().__init__(
            f"Row {row_index} has {actual} values, expected {expected}"
        )
        self.row_index = row_index
        self.expected = expected
        self.actual = actual


class NoRowsError(LittleOrmError, LookupError):
    """Raised when a single-row read finds nothing."""
    pass


class TransactionError(LittleOrmError):
    """Base exception for transaction misuse."""
    pass


class NestedTransactionError(TransactionError):
    """Raised when a transaction is started inside an active one."""
    pass


class TransactionClosedError(TransactionError):
    """Raised when a committed or rolled back transaction is used again."""
    pass


class StaleContextError(LittleOrmError, RuntimeError):
    """Raised when a context is used after it went back to the pool."""
    pass


class InvalidSelectorError(LittleOrmError, RuntimeError):
    """Raised for an unknown find type. Indicates a bug in littleorm."""
    pass
