"""
Driver collaborator built on SQLAlchemy Core.

SQLAlchemyDriver runs statements on pooled engine connections. Transaction
exposes the same read/write surface bound to a single connection, plus
commit and rollback. Statements go through `exec_driver_sql`, so the
positional markers produced by the builder reach the DB-API driver as is.

Engines backed by a StaticPool (in-memory SQLite) hand every caller the same
DB-API connection. For those the driver serializes statements, and an open
transaction owns the connection until it commits or rolls back.
"""

import time
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence
import logging

import pandas as pd
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from ..exceptions import (
    ConfigurationError,
    NoRowsError,
    QueryTimeoutError,
    TransactionClosedError,
)
from .mapping import build_row

logger = logging.getLogger(__name__)

PARAMSTYLE_MARKERS = {
    'qmark': '?',
    'format': '%s',
    'pyformat': '%s',
}

# DB-API connection methods that abort a running statement
INTERRUPT_METHODS = ('interrupt', 'cancel')


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a write statement."""
    rowcount: int
    lastrowid: Optional[int] = None


def marker_for(engine: Engine, override: Optional[str] = None) -> str:
    """
    Resolve the positional placeholder marker for an engine.

    Args:
        engine: SQLAlchemy engine
        override: Explicit marker from configuration

    Returns:
        Marker string, e.g. "?" or "%s"
    """
    if override:
        return override
    paramstyle = engine.dialect.paramstyle
    try:
        return PARAMSTYLE_MARKERS[paramstyle]
    except KeyError:
        raise ConfigurationError(
            f"Driver paramstyle '{paramstyle}' has no positional marker; "
            f"set query.param_marker explicitly"
        ) from None


def _check_deadline(deadline: Optional[float], sql: str) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise QueryTimeoutError("Deadline passed before the statement started", sql=sql)


def _acquire(lock: threading.Lock, deadline: Optional[float], sql: str) -> None:
    """Take `lock`, waiting no longer than `deadline`."""
    if deadline is None:
        lock.acquire()
        return
    remaining = deadline - time.monotonic()
    if remaining <= 0 or not lock.acquire(timeout=remaining):
        raise QueryTimeoutError("Timed out waiting for the connection", sql=sql)


def _bind(params: Sequence[Any]) -> Optional[tuple]:
    return tuple(params) if params else None


class _StatementRunner:
    """Statement execution shared by the driver and transactions."""

    def _read_connection(self, deadline: Optional[float], sql: str):
        raise NotImplementedError

    def _write_connection(self, deadline: Optional[float], sql: str):
        raise NotImplementedError

    def execute(self, sql: str, params: Sequence[Any] = (),
                deadline: Optional[float] = None) -> ExecResult:
        """Run a write statement and report affected rows."""
        _check_deadline(deadline, sql)
        with self._write_connection(deadline, sql) as conn:
            result = conn.exec_driver_sql(sql, _bind(params))
            lastrowid = getattr(result, 'lastrowid', None)
            return ExecResult(rowcount=result.rowcount, lastrowid=lastrowid)

    def get_one(self, dest: Optional[type], sql: str, params: Sequence[Any] = (),
                deadline: Optional[float] = None) -> Any:
        """Fetch exactly one row mapped to `dest`."""
        _check_deadline(deadline, sql)
        with self._read_connection(deadline, sql) as conn:
            row = conn.exec_driver_sql(sql, _bind(params)).first()
        if row is None:
            raise NoRowsError(f"No rows in result set: {sql}")
        return build_row(dest, row)

    def get_many(self, dest: Optional[type], sql: str, params: Sequence[Any] = (),
                 deadline: Optional[float] = None) -> List[Any]:
        """Fetch all rows mapped to `dest`."""
        _check_deadline(deadline, sql)
        with self._read_connection(deadline, sql) as conn:
            rows = conn.exec_driver_sql(sql, _bind(params)).all()
        return [build_row(dest, row) for row in rows]

    def get_frame(self, sql: str, params: Sequence[Any] = (),
                  deadline: Optional[float] = None) -> pd.DataFrame:
        """Fetch all rows as a DataFrame."""
        _check_deadline(deadline, sql)
        with self._read_connection(deadline, sql) as conn:
            result = conn.exec_driver_sql(sql, _bind(params))
            columns = list(result.keys())
            rows = [tuple(row) for row in result.all()]
        return pd.DataFrame.from_records(rows, columns=columns)


class SQLAlchemyDriver(_StatementRunner):
    """Driver collaborator over a SQLAlchemy engine."""

    def __init__(self, engine: Engine, param_marker: Optional[str] = None):
        """
        Initialize driver with an engine.

        Args:
            engine: SQLAlchemy Engine instance (owns the connection pool)
            param_marker: Explicit placeholder marker, derived from the dialect if None
        """
        self.engine = engine
        self.param_marker = marker_for(engine, param_marker)
        # Held per statement, and by a transaction from begin() to commit/rollback
        self._shared_lock = threading.Lock() if isinstance(engine.pool, StaticPool) else None

    @property
    def name(self) -> str:
        return self.engine.dialect.name

    @property
    def shares_connection(self) -> bool:
        """True when every caller uses the same DB-API connection."""
        return self._shared_lock is not None

    @contextmanager
    def _exclusive(self, deadline: Optional[float], sql: str):
        if self._shared_lock is None:
            yield
        else:
            _acquire(self._shared_lock, deadline, sql)
            try:
                yield
            finally:
                self._shared_lock.release()

    @contextmanager
    def _read_connection(self, deadline: Optional[float], sql: str):
        with self._exclusive(deadline, sql), self.engine.connect() as conn:
            yield conn

    @contextmanager
    def _write_connection(self, deadline: Optional[float], sql: str):
        with self._exclusive(deadline, sql), self.engine.begin() as conn:
            yield conn

    def begin(self, timeout: Optional[float] = None) -> 'Transaction':
        """
        Open a transaction on a dedicated connection.

        Args:
            timeout: Seconds to wait for the shared connection, and for a
                running statement when committing; None waits indefinitely

        Raises:
            QueryTimeoutError: The shared connection stayed busy past the timeout
        """
        release = None
        if self._shared_lock is not None:
            deadline = time.monotonic() + timeout if timeout is not None else None
            _acquire(self._shared_lock, deadline, 'begin')
            release = self._shared_lock.release

        try:
            conn = self.engine.connect()
            try:
                conn.begin()
            except Exception:
                conn.close()
                raise
        except Exception:
            if release is not None:
                release()
            raise
        return Transaction(conn, timeout=timeout, on_close=release)

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self.engine.dispose()


class Transaction(_StatementRunner):
    """
    Transaction collaborator bound to one connection.

    The connection is closed by commit() or rollback(); after that the
    transaction rejects further use. A statement abandoned after a timeout
    may still hold the connection: rollback() then interrupts it and returns
    at once, and the rollback itself runs as soon as the statement stops.
    """

    def __init__(self, conn: Connection, timeout: Optional[float] = None,
                 on_close: Optional[Callable[[], None]] = None):
        self._conn = conn
        self._timeout = timeout
        self._on_close = on_close
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def _bound_connection(self, deadline: Optional[float] = None, sql: str = ''):
        _acquire(self._lock, deadline, sql)
        try:
            if self._closed:
                raise TransactionClosedError("Transaction already committed or rolled back")
            yield self._conn
        finally:
            self._lock.release()

    _read_connection = _bound_connection
    _write_connection = _bound_connection

    def _mark_closed(self) -> None:
        with self._state_lock:
            if self._closed:
                raise TransactionClosedError("Transaction already committed or rolled back")
            self._closed = True

    def commit(self) -> None:
        """
        Commit and close the connection.

        Raises:
            QueryTimeoutError: A running statement kept the connection past the
                timeout; the transaction is rolled back instead
        """
        self._mark_closed()
        deadline = time.monotonic() + self._timeout if self._timeout is not None else None
        try:
            _acquire(self._lock, deadline, 'commit')
        except QueryTimeoutError:
            self._abandon()
            raise
        self._finish(self._conn.commit)

    def rollback(self) -> None:
        """Roll back and close the connection, deferring the work while a statement runs."""
        self._mark_closed()
        if not self._lock.acquire(blocking=False):
            self._abandon()
            return
        self._finish(self._conn.rollback)

    def _finish(self, operation: Callable[[], None]) -> None:
        # Caller holds self._lock
        try:
            operation()
        finally:
            try:
                self._conn.close()
            finally:
                self._lock.release()
                if self._on_close is not None:
                    self._on_close()

    def _abandon(self) -> None:
        self._interrupt()
        threading.Thread(target=self._rollback_when_idle,
                         name='littleorm-rollback', daemon=True).start()

    def _interrupt(self) -> None:
        """Ask the DB-API driver to abort the statement running on this connection."""
        raw = self._conn.connection.driver_connection
        for name in INTERRUPT_METHODS:
            method = getattr(raw, name, None)
            if method is None:
                continue
            try:
                method()
            except Exception as e:
                logger.warning(f"Could not interrupt running statement: {e}")
            return
        logger.warning(f"{type(raw).__name__} cannot interrupt statements; "
                       f"rollback waits for the running statement")

    def _rollback_when_idle(self) -> None:
        self._lock.acquire()
        try:
            self._finish(self._conn.rollback)
        except Exception as e:
            logger.error(f"Deferred rollback failed: {e}")
        else:
            logger.info("Deferred rollback completed")
