"""Shared fixtures: a recording fake driver and an in-memory SQLite database."""

import threading
import time

import pandas as pd
import pytest

from littleorm import Database, open_database
from littleorm.core.driver import ExecResult
from littleorm.exceptions import NoRowsError, TransactionClosedError


class FakeTransaction:
    """Transaction double that records statements on its driver."""

    def __init__(self, driver):
        self.driver = driver
        self.committed = False
        self.rolled_back = False
        self.commit_error = None
        self.rollback_error = None

    def _check_open(self):
        if self.committed or self.rolled_back:
            raise TransactionClosedError("Transaction already committed or rolled back")

    def execute(self, sql, params=(), deadline=None):
        self._check_open()
        return self.driver._record('execute', sql, params, target=self)

    def get_one(self, dest, sql, params=(), deadline=None):
        self._check_open()
        return self.driver._record('get_one', sql, params, dest=dest, target=self)

    def get_many(self, dest, sql, params=(), deadline=None):
        self._check_open()
        return self.driver._record('get_many', sql, params, dest=dest, target=self)

    def get_frame(self, sql, params=(), deadline=None):
        self._check_open()
        return self.driver._record('get_frame', sql, params, target=self)

    def commit(self):
        self.committed = True
        if self.commit_error is not None:
            raise self.commit_error

    def rollback(self):
        self.rolled_back = True
        if self.rollback_error is not None:
            raise self.rollback_error


class FakeDriver:
    """Driver double recording every call instead of talking to a database."""

    name = 'fake'
    param_marker = '?'

    def __init__(self):
        self.calls = []
        self.transactions = []
        self.one = {'id': 1}
        self.many = []
        self.rowcount = 1
        self.delay = 0.0
        self.error = None
        self.begin_error = None
        self.begin_timeout = None
        self.closed = False
        self._lock = threading.Lock()

    def _record(self, kind, sql, params, dest=None, target=None):
        with self._lock:
            self.calls.append({
                'kind': kind,
                'sql': sql,
                'params': list(params),
                'dest': dest,
                'target': target if target is not None else self,
            })
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if kind == 'execute':
            return ExecResult(rowcount=self.rowcount, lastrowid=len(self.calls))
        if kind == 'get_one':
            if self.one is None:
                raise NoRowsError(f"No rows in result set: {sql}")
            return self.one
        if kind == 'get_many':
            return list(self.many)
        return pd.DataFrame(self.many)

    @property
    def last(self):
        return self.calls[-1]

    def execute(self, sql, params=(), deadline=None):
        return self._record('execute', sql, params)

    def get_one(self, dest, sql, params=(), deadline=None):
        return self._record('get_one', sql, params, dest=dest)

    def get_many(self, dest, sql, params=(), deadline=None):
        return self._record('get_many', sql, params, dest=dest)

    def get_frame(self, sql, params=(), deadline=None):
        return self._record('get_frame', sql, params)

    def begin(self, timeout=None):
        self.begin_timeout = timeout
        if self.begin_error is not None:
            raise self.begin_error
        tx = FakeTransaction(self)
        self.transactions.append(tx)
        return tx

    def close(self):
        self.closed = True


@pytest.fixture
def fake_driver():
    """Recording driver."""
    return FakeDriver()


@pytest.fixture
def db(fake_driver):
    """Database handle over the recording driver."""
    database = Database(fake_driver, timeout=2.0, max_idle=8, max_workers=4)
    yield database
    database.close()


@pytest.fixture
def sqlite_db():
    """In-memory SQLite database with an empty little_orm table."""
    database = open_database("sqlite://", timeout=5.0)
    database.acquire().create("""
        create table little_orm (
            id integer primary key autoincrement,
            name varchar(32) not null default '',
            age integer not null,
            created_at datetime not null default current_timestamp,
            updated_at datetime not null default current_timestamp
        )
    """)
    yield database
    database.close()
