"""
SQL fragment assembly helpers.

Pure functions used by the builder context to join fragments into WHERE
clauses, column lists and placeholder groups.
"""

from typing import Iterable, List, Sequence

GROUPING = " and "           # where fragments
SEQ_COMMA = ", "             # column and value lists
SEQ_SPACE = " "              # statement parts
DEFAULT_PARAM_MARKER = "?"


def sql_join(parts: Iterable[str], sep: str) -> str:
    """Join fragments with a separator."""
    return sep.join(parts)


def sql_where(wheres: Sequence[str], grouping: str = GROUPING) -> str:
    """
    Build a WHERE clause from filter fragments.

    Args:
        wheres: Boolean SQL expressions
        grouping: Logical connective between fragments

    Returns:
        "where <f1> and <f2> ..." or an empty string when there are no fragments
    """
    if wheres:
        return "where " + grouping.join(wheres)
    return ""


def placeholders(count: int, marker: str = DEFAULT_PARAM_MARKER) -> str:
    """Return a comma separated group of `count` markers, e.g. "?, ?, ?"."""
    return sql_join([marker] * count, SEQ_COMMA)


def in_clause(field: str, count: int, marker: str = DEFAULT_PARAM_MARKER) -> str:
    """Return "<field> in (?, ...)" with one marker per value."""
    return f"{field} in ({placeholders(count, marker)})"


def set_clause(fields: Sequence[str], marker: str = DEFAULT_PARAM_MARKER) -> str:
    """Return "a=?, b=?" for an UPDATE statement."""
    return sql_join([f"{field}={marker}" for field in fields], SEQ_COMMA)


def values_clause(rows: int, width: int, marker: str = DEFAULT_PARAM_MARKER) -> str:
    """Return "(?, ?), (?, ?)" for `rows` value groups of `width` markers."""
    group = f"({placeholders(width, marker)})"
    return sql_join([group] * rows, SEQ_COMMA)


def limit_clause(offset: int, limit: int) -> str:
    """Return the MySQL style "limit <offset>, <count>" clause, empty when limit is 0."""
    if limit:
        return f"limit {offset}, {limit}"
    return ""


def compact(parts: Iterable[str]) -> List[str]:
    """Drop empty fragments."""
    return [part for part in parts if part]
