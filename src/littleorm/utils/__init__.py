"""
SQL string assembly utilities.
"""

from .sql import (
    GROUPING,
    SEQ_COMMA,
    SEQ_SPACE,
    DEFAULT_PARAM_MARKER,
    sql_join,
    sql_where,
    placeholders,
    in_clause,
    set_clause,
    values_clause,
    limit_clause,
    compact,
)

__all__ = [
    'GROUPING',
    'SEQ_COMMA',
    'SEQ_SPACE',
    'DEFAULT_PARAM_MARKER',
    'sql_join',
    'sql_where',
    'placeholders',
    'in_clause',
    'set_clause',
    'values_clause',
    'limit_clause',
    'compact',
]
