"""
Fluent statement builder.

A Context accumulates the fragments of one statement (table, projection,
filters, grouping, ordering, paging, locking, parameters) and runs it with
exactly one terminal operation. Contexts come from the database's context
pool and go back to it when the terminal operation finishes, whether it
succeeded or not. A configuration method that rejects its input returns the
context as well. Holding on to a context after that is a caller bug.

Usage:
    users = db.acquire().name("users").where("age > ?", 18).order("id").find_many(User)
    rows = db.acquire().name("users").where("id=?", 7).update("age=age+?", 1)
"""

import functools
from enum import IntEnum
from typing import Any, List, Optional, Sequence

import pandas as pd

from ..exceptions import (
    InvalidSelectorError,
    MalformedInputError,
    RowLengthMismatchError,
    StaleContextError,
)
from ..utils.sql import (
    SEQ_COMMA,
    SEQ_SPACE,
    compact,
    in_clause,
    limit_clause,
    set_clause,
    sql_join,
    sql_where,
    values_clause,
)
from .driver import ExecResult
from .mapping import check_mapping, check_sequence, columns_for


class FindType(IntEnum):
    """Read selector for terminal find operations."""
    ONE = 0
    MANY = 1


def terminal(method):
    """Run a terminal operation and return the context to its pool afterwards."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if not self._checked_out:
            raise StaleContextError(
                f"{method.__name__}() called on a context that was already returned to the pool"
            )
        try:
            return method(self, *args, **kwargs)
        finally:
            self._db.pool.release(self)

    return wrapper


def validating(method):
    """Return the context to its pool when a configuration method rejects its input."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except MalformedInputError:
            if self._checked_out:
                self._db.pool.release(self)
            raise

    return wrapper


def _check_count(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedInputError(f"{what} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise MalformedInputError(f"{what} must not be negative, got {value}")
    return value


class Context:
    """
    Reusable statement builder bound to a database.

    Configuration methods return the context itself for chaining and do no
    I/O; invalid SQL fragments surface as driver errors at execution time.
    """

    def __init__(self, db):
        self._db = db
        self._checked_out = False
        self._reset()

    def _reset(self) -> 'Context':
        self._tx = None
        self._sql = ''
        self._name = ''
        self._what: List[str] = []
        self._wheres: List[str] = []
        self._where_args: List[Any] = []
        self._order = ''
        self._group = ''
        self._having = ''
        self._having_args: List[Any] = []
        self._raw_args: List[Any] = []
        self._limit = 0
        self._offset = 0
        self._lock_x = False
        self._lock_s = False
        return self

    # ------------------------------------------------------------------
    # Inspection

    @property
    def table(self) -> str:
        return self._name

    @property
    def projection(self) -> List[str]:
        return list(self._what)

    @property
    def filters(self) -> List[str]:
        return list(self._wheres)

    @property
    def params(self) -> List[Any]:
        """Parameters bound by a built SELECT, in placeholder order."""
        return self._where_args + self._having_args

    @property
    def tx(self):
        return self._tx

    @property
    def lock_exclusive(self) -> bool:
        return self._lock_x

    @property
    def lock_shared(self) -> bool:
        return self._lock_s

    # ------------------------------------------------------------------
    # Configuration

    def bind(self, tx) -> 'Context':
        """Run the terminal operation inside an open transaction."""
        self._tx = tx
        return self

    def name(self, name: str) -> 'Context':
        """Set the table name."""
        self._name = name
        return self

    def what(self, what: Sequence[str]) -> 'Context':
        """
        Set the projection.

        Without a projection the columns declared on the destination type are
        selected, falling back to `*`. Selecting `*` into a mapped type breaks
        once the table gains a column the type does not know about.
        """
        self._what = list(what)
        return self

    def where(self, where: str, *args) -> 'Context':
        """Append a filter; filters are joined with `and`."""
        self._wheres.append(where)
        self._where_args.extend(args)
        return self

    @validating
    def where_in(self, field: str, values: Sequence[Any]) -> 'Context':
        """
        Append `field in (?, ?, ...)` with one marker per value.

        Args:
            field: Column expression
            values: list or tuple of scalar values, bound in order

        Raises:
            MalformedInputError: values is not a list/tuple or holds unsupported types
        """
        values = check_sequence(values, 'where_in')
        return self.where(in_clause(field, len(values), self._db.param_marker), *values)

    def order(self, order: str) -> 'Context':
        self._order = order
        return self

    @validating
    def limit(self, limit: int) -> 'Context':
        """Set the row limit; 0 means no limit."""
        self._limit = _check_count(limit, 'limit')
        return self

    @validating
    def offset(self, offset: int) -> 'Context':
        """Set the row offset; only applied together with a limit."""
        self._offset = _check_count(offset, 'offset')
        return self

    def group(self, group: str) -> 'Context':
        self._group = group
        return self

    def having(self, having: str, *args) -> 'Context':
        """Set the having clause; its parameters bind after the filter parameters."""
        self._having = having
        self._having_args = list(args)
        return self

    def lock_x(self) -> 'Context':
        """Exclusive lock (`for update`). Combining it with lock_s() is a caller error."""
        self._lock_x = True
        return self

    def lock_s(self) -> 'Context':
        """Shared lock (`lock in share mode`). Combining it with lock_x() is a caller error."""
        self._lock_s = True
        return self

    # ------------------------------------------------------------------
    # Assembly

    def build_select(self, dest: Optional[type] = None) -> str:
        """
        Assemble the SELECT statement for the accumulated fragments.

        Args:
            dest: Destination type used to infer the projection

        Returns:
            SQL string
        """
        if self._what:
            what = sql_join(self._what, SEQ_COMMA)
        else:
            what = sql_join(columns_for(dest), SEQ_COMMA) or '*'

        parts = [
            'select',
            what,
            'from ' + self._name,
            sql_where(self._wheres),
            'group by ' + self._group if self._group else '',
            'having ' + self._having if self._having else '',
            'order by ' + self._order if self._order else '',
            limit_clause(self._offset, self._limit),
            'lock in share mode' if self._lock_s else '',
            'for update' if self._lock_x else '',
        ]
        return sql_join(compact(parts), SEQ_SPACE)

    def _target(self):
        return self._tx if self._tx is not None else self._db.driver

    def _find(self, dest: Optional[type], find_type: FindType) -> Any:
        if self._sql:
            query, params = self._sql, self._raw_args
        else:
            query, params = self.build_select(dest), self.params
            self._sql = query

        target = self._target()
        if find_type == FindType.ONE:
            call = functools.partial(target.get_one, dest)
        elif find_type == FindType.MANY:
            call = functools.partial(target.get_many, dest)
        else:
            raise InvalidSelectorError(f"Unknown find type: {find_type!r}")
        return self._db.run(call, query, params)

    def _exec(self, query: str, params: Sequence[Any] = ()) -> ExecResult:
        return self._db.run(self._target().execute, query, list(params))

    def _insert_batch(self, fields: Sequence[str], rows: Sequence[Sequence[Any]]) -> ExecResult:
        fields = list(fields)
        if not fields:
            raise MalformedInputError('insert_batch requires at least one field')
        if not rows:
            raise MalformedInputError('insert_batch requires at least one row')

        params: List[Any] = []
        for index, row in enumerate(rows):
            row = check_sequence(row, 'insert_batch')
            if len(row) != len(fields):
                raise RowLengthMismatchError(index, len(fields), len(row))
            params.extend(row)

        query = "insert into {} ({}) values {}".format(
            self._name,
            sql_join(fields, SEQ_COMMA),
            values_clause(len(rows), len(fields), self._db.param_marker),
        )
        return self._exec(query, params)

    def _update(self, sql_set: str, args: Sequence[Any]) -> int:
        query = sql_join(compact(['update', self._name, 'set', sql_set, sql_where(self._wheres)]), SEQ_SPACE)
        # own SET parameters come before the filter parameters
        params = list(args) + self._where_args
        return self._exec(query, params).rowcount

    # ------------------------------------------------------------------
    # Terminal operations

    @terminal
    def find_one(self, dest: Optional[type] = None) -> Any:
        """
        Fetch one row.

        Args:
            dest: pydantic model, dataclass, scalar type, dict or None

        Raises:
            NoRowsError: Nothing matched
        """
        return self._find(dest, FindType.ONE)

    @terminal
    def find_many(self, dest: Optional[type] = None) -> List[Any]:
        """Fetch all matching rows as a list of `dest` instances."""
        return self._find(dest, FindType.MANY)

    @terminal
    def find_frame(self) -> pd.DataFrame:
        """Fetch all matching rows as a DataFrame."""
        query = self.build_select()
        call = self._target().get_frame
        return self._db.run(call, query, self.params)

    @terminal
    def insert(self, data: dict) -> ExecResult:
        """
        Insert one row from a column->value mapping.

        Column order follows the mapping's iteration order.
        """
        fields, values = check_mapping(data, 'insert')
        return self._insert_batch(fields, [values])

    @terminal
    def insert_batch(self, fields: Sequence[str], *rows: Sequence[Any]) -> ExecResult:
        """
        Insert several rows in one statement.

        Raises:
            RowLengthMismatchError: A row's length differs from len(fields)
        """
        return self._insert_batch(fields, rows)

    @terminal
    def update(self, sql_set: str, *args) -> int:
        """Run `update <table> set <sql_set> <where>`; returns affected rows."""
        return self._update(sql_set, args)

    @terminal
    def update_map(self, data: dict) -> int:
        """Update from a column->value mapping; returns affected rows."""
        fields, values = check_mapping(data, 'update_map')
        return self._update(set_clause(fields, self._db.param_marker), values)

    @terminal
    def delete(self) -> int:
        """Run `delete from <table> <where>`; returns affected rows."""
        query = sql_join(compact(['delete from', self._name, sql_where(self._wheres)]), SEQ_SPACE)
        return self._exec(query, self._where_args).rowcount

    @terminal
    def select(self, dest: Optional[type], sql: str, *args) -> List[Any]:
        """Fetch many rows with caller supplied SQL and parameters."""
        self._sql = sql
        self._raw_args = list(args)
        return self._find(dest, FindType.MANY)

    @terminal
    def get(self, dest: Optional[type], sql: str, *args) -> Any:
        """Fetch one row with caller supplied SQL and parameters."""
        self._sql = sql
        self._raw_args = list(args)
        return self._find(dest, FindType.ONE)

    @terminal
    def exec(self, sql: str, *args) -> ExecResult:
        """Run caller supplied SQL with its parameters."""
        return self._exec(sql, args)

    @terminal
    def create(self, sql: str) -> ExecResult:
        """Run a CREATE statement verbatim."""
        return self._exec(sql)

    @terminal
    def drop(self) -> ExecResult:
        """Drop the table if it exists."""
        return self._exec(f"drop table if exists {self._name}")
