"""
Database handle.

The Database owns the driver, the per-statement timeout and the context pool.
It is created once, passed explicitly to whoever needs it, and closed at
shutdown. Statements run on a worker thread so the caller waits at most the
configured timeout.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Sequence, Union
import logging

from ..config.db_config import load_config, validate_config
from ..config.logging_config import OrmLoggerAdapter, setup_orm_logging
from ..exceptions import ConfigurationError, NestedTransactionError, QueryTimeoutError
from .context import Context
from .driver import SQLAlchemyDriver
from .engine import get_engine
from .pool import ContextPool


def _seconds(timeout: Union[float, int, timedelta]) -> float:
    if isinstance(timeout, timedelta):
        timeout = timeout.total_seconds()
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigurationError(f"timeout must be a positive number of seconds, got {timeout!r}")
    return float(timeout)


class Database:
    """
    Entry point for building and running statements.

    Usage:
        db = open_database("sqlite://", timeout=5)
        user = db.acquire().name("users").where("id=?", 1).find_one(User)

        def transfer(tx, amount):
            db.acquire_tx(tx).name("accounts").where("id=?", 1).update("balance=balance-?", amount)
            db.acquire_tx(tx).name("accounts").where("id=?", 2).update("balance=balance+?", amount)

        db.with_tx(transfer, 100)
    """

    def __init__(self, driver, timeout: Union[float, timedelta] = 10.0, max_idle: int = 64,
                 max_workers: int = 8, slow_query_threshold: float = 1.0,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the database handle.

        Args:
            driver: Driver collaborator (execute/get_one/get_many/get_frame/begin/close)
            timeout: Per-statement timeout in seconds or as a timedelta
            max_idle: Idle builder contexts kept for reuse
            max_workers: Worker threads running statements
            slow_query_threshold: Statements slower than this (seconds) log a warning
            logger: Optional base logger
        """
        self.driver = driver
        self.timeout = _seconds(timeout)
        self.slow_query_threshold = slow_query_threshold
        self.logger = OrmLoggerAdapter(
            logger or logging.getLogger('littleorm.database'),
            {'database': getattr(driver, 'name', 'db')}
        )

        self.pool = ContextPool(
            self._allocate_context,
            max_idle=max_idle,
            logger=OrmLoggerAdapter(logging.getLogger('littleorm.pool'),
                                    {'database': getattr(driver, 'name', 'db')}),
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix='littleorm')
        self._local = threading.local()
        self._stats_lock = threading.Lock()

        # Performance tracking
        self.query_stats = {
            'total_queries': 0,
            'total_query_time': 0.0,
            'slow_queries': 0,
            'failed_queries': 0,
            'timed_out_queries': 0,
        }

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> 'Database':
        """
        Create a database handle from a configuration dictionary.

        Args:
            config: Full configuration; defaults plus environment when None
        """
        config = validate_config(config) if config is not None else load_config()
        setup_orm_logging(config)

        query_config = config['query']
        driver = SQLAlchemyDriver(get_engine(config['connection']),
                                  param_marker=query_config.get('param_marker'))
        return cls(
            driver,
            timeout=query_config['timeout'],
            max_idle=config['pool'].get('max_idle', 64),
            max_workers=query_config.get('max_workers', 8),
            slow_query_threshold=query_config.get('slow_query_threshold', 1.0),
        )

    @property
    def param_marker(self) -> str:
        return self.driver.param_marker

    def _allocate_context(self) -> Context:
        return Context(self)

    def acquire(self) -> Context:
        """Get a reset builder context."""
        return self.pool.acquire()

    def acquire_tx(self, tx) -> Context:
        """Get a reset builder context that runs inside `tx`."""
        return self.acquire().bind(tx)

    # ------------------------------------------------------------------
    # Execution

    def run(self, call: Callable, sql: str, params: Sequence[Any]) -> Any:
        """
        Run a driver call under the statement timeout.

        Args:
            call: Driver method taking (sql, params, deadline=...)
            sql: SQL statement
            params: Bound parameters

        Raises:
            QueryTimeoutError: The statement did not finish in time
        """
        start_time = time.time()
        deadline = time.monotonic() + self.timeout
        future = self._executor.submit(call, sql, params, deadline=deadline)

        try:
            result = future.result(timeout=self.timeout)
        except QueryTimeoutError:
            self._count('timed_out_queries')
            raise
        except FutureTimeoutError:
            future.cancel()
            self._count('timed_out_queries')
            self.logger.error(f"Statement timed out after {self.timeout:.3f}s: {sql}")
            raise QueryTimeoutError(
                f"Statement exceeded the {self.timeout:.3f}s timeout",
                timeout=self.timeout, sql=sql
            ) from None
        except Exception as e:
            self._count('failed_queries')
            self.logger.error(f"Statement failed after {time.time() - start_time:.3f}s: {e}")
            raise

        duration = time.time() - start_time
        self._track_query_performance(duration)
        self.logger.query(sql, params, duration)
        return result

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.query_stats[key] += 1

    def _track_query_performance(self, duration: float) -> None:
        """Track statement performance metrics."""
        with self._stats_lock:
            self.query_stats['total_queries'] += 1
            self.query_stats['total_query_time'] += duration
            slow = duration > self.slow_query_threshold
            if slow:
                self.query_stats['slow_queries'] += 1
        if slow:
            self.logger.warning(f"Slow query detected: {duration:.3f}s > {self.slow_query_threshold}s")

    # ------------------------------------------------------------------
    # Transactions

    def begin(self):
        """Open a transaction on the driver, waiting at most `timeout` for the connection."""
        return self.driver.begin(timeout=self.timeout)

    @contextmanager
    def transaction(self):
        """
        Run a block inside a transaction.

        Commits when the block finishes, rolls back when it raises. If the
        rollback fails too, the rollback error is raised with the block's
        error as its __cause__. Nested use in the same thread is rejected.

        Usage:
            with db.transaction() as tx:
                db.acquire_tx(tx).name("users").where("id=?", 1).delete()
        """
        if getattr(self._local, 'tx', None) is not None:
            raise NestedTransactionError("Nested transactions are not supported")

        tx = self.begin()
        self._local.tx = tx
        start_time = time.time()
        try:
            yield tx
        except BaseException as exc:
            try:
                tx.rollback()
            except Exception as rollback_exc:
                self.logger.transaction('unit of work', False, error=f"{exc!r}; rollback failed: {rollback_exc!r}")
                raise rollback_exc from exc
            self.logger.transaction('unit of work', False, error=repr(exc))
            raise
        else:
            tx.commit()
            self.logger.transaction('unit of work', True, time.time() - start_time)
        finally:
            self._local.tx = None

    def with_tx(self, fn: Callable[[Any, Any], Any], arg: Any = None) -> Any:
        """
        Call `fn(tx, arg)` inside a transaction and return its result.

        Args:
            fn: Unit of work; it must not start another transaction
            arg: Single argument handed to the unit of work
        """
        with self.transaction() as tx:
            return fn(tx, arg)

    # ------------------------------------------------------------------
    # Maintenance

    def get_performance_stats(self) -> Dict[str, Any]:
        """Get performance statistics for the database handle."""
        with self._stats_lock:
            stats = self.query_stats.copy()

        if stats['total_queries'] > 0:
            stats['avg_query_time'] = stats['total_query_time'] / stats['total_queries']
        else:
            stats['avg_query_time'] = 0.0

        stats['pool_stats'] = self.pool.get_stats()
        stats['timeout'] = self.timeout
        return stats

    def health_check(self) -> Dict[str, Any]:
        """Run `select 1` through the driver."""
        try:
            value = self.acquire().get(int, 'select 1')
            if value != 1:
                raise RuntimeError("Basic query failed")
            return {
                'status': 'healthy',
                'driver': getattr(self.driver, 'name', 'unknown'),
                'pool_stats': self.pool.get_stats(),
                'timestamp': time.time(),
            }
        except Exception as e:
            return {
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': time.time(),
            }

    def close(self) -> None:
        """Stop the worker threads and close the driver."""
        self.logger.info("Shutting down database handle")
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.driver.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def open_database(url: str, timeout: Union[float, timedelta] = 10.0,
                  param_marker: Optional[str] = None, **engine_args) -> Database:
    """
    Open a database from a SQLAlchemy URL.

    Args:
        url: SQLAlchemy URL, e.g. "mysql+pymysql://user:pw@host/db" or "sqlite://"
        timeout: Per-statement timeout in seconds or as a timedelta
        param_marker: Explicit placeholder marker, derived from the driver if None
        **engine_args: Passed to sqlalchemy.create_engine
    """
    engine = get_engine({'url': url, 'engine_args': engine_args})
    return Database(SQLAlchemyDriver(engine, param_marker=param_marker), timeout=timeout)
