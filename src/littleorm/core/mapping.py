"""
Destination type mapping.

Destinations declare their columns up front. Pydantic models use `column()`,
dataclasses use `dataclasses.field(metadata={"db": ...})`. The resolved
field-to-column mapping is computed once per type and cached.
"""

import dataclasses
from datetime import date, datetime, time
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type
from uuid import UUID

from pydantic import BaseModel, Field

from ..exceptions import MalformedInputError

DB_TAG = "db"

# Parameter kinds accepted by where_in and the mutation helpers
SCALAR_TYPES = (type(None), bool, int, float, Decimal, str, bytes, datetime, date, time, UUID)

# Destinations that take the first column of a row
SCALAR_DESTINATIONS = (bool, int, float, Decimal, str, bytes)


def column(name: str, default: Any = None, **kwargs) -> Any:
    """
    Declare a pydantic model field bound to a table column.

    Usage:
        class User(BaseModel):
            id: int = column("id", default=0)
            created_at: Optional[datetime] = column("created_at")
    """
    return Field(default, json_schema_extra={DB_TAG: name}, **kwargs)


def _is_model(dest: Any) -> bool:
    return isinstance(dest, type) and issubclass(dest, BaseModel)


def _is_dataclass_type(dest: Any) -> bool:
    return isinstance(dest, type) and dataclasses.is_dataclass(dest)


@lru_cache(maxsize=None)
def field_map(dest: type) -> Tuple[Tuple[str, str], ...]:
    """
    Return the ordered (field name, column name) pairs declared on a type.

    Fields without a declared column are skipped; types that declare nothing
    (or are not models) return an empty tuple.
    """
    pairs = []
    if _is_model(dest):
        for name, info in dest.model_fields.items():
            extra = info.json_schema_extra
            if isinstance(extra, dict) and extra.get(DB_TAG):
                pairs.append((name, extra[DB_TAG]))
    elif _is_dataclass_type(dest):
        for f in dataclasses.fields(dest):
            tag = f.metadata.get(DB_TAG)
            if tag:
                pairs.append((f.name, tag))
    return tuple(pairs)


def columns_for(dest: Optional[type]) -> List[str]:
    """Return the ordered column names declared on a destination type."""
    if dest is None:
        return []
    return [col for _, col in field_map(dest)]


def build_row(dest: Optional[type], row: Any) -> Any:
    """
    Convert a result row into an instance of the destination type.

    Args:
        dest: Model class, dataclass, scalar type, dict or None
        row: SQLAlchemy Row

    Returns:
        Mapped value
    """
    if dest is None or dest is dict:
        return dict(row._mapping)

    if dest in SCALAR_DESTINATIONS:
        value = row[0]
        if value is None or isinstance(value, dest):
            return value
        return dest(value)

    pairs = field_map(dest)
    if not pairs:
        raise MalformedInputError(f"Destination {dest.__name__} declares no columns")

    mapping = row._mapping
    values: Dict[str, Any] = {
        name: mapping[col] for name, col in pairs if col in mapping
    }
    if _is_model(dest):
        return dest.model_validate(values)
    return dest(**values)


def check_scalars(values: Any, what: str) -> None:
    """Reject parameter values the driver cannot bind."""
    for value in values:
        if not isinstance(value, SCALAR_TYPES):
            raise MalformedInputError(
                f"{what}: unsupported parameter type {type(value).__name__}"
            )


def check_sequence(values: Any, what: str) -> list:
    """
    Accept only an ordered, generic sequence (list or tuple) of scalars.

    Returns:
        The values as a new list
    """
    if not isinstance(values, (list, tuple)):
        raise MalformedInputError(
            f"{what} expects a list or tuple of values, got {type(values).__name__}"
        )
    check_scalars(values, what)
    return list(values)


def check_mapping(data: Any, what: str) -> Tuple[List[str], list]:
    """Split a field->value mapping into parallel field and value lists."""
    if not isinstance(data, Mapping):
        raise MalformedInputError(f"{what} expects a mapping, got {type(data).__name__}")
    if not data:
        raise MalformedInputError(f"{what} got an empty mapping")
    fields = list(data.keys())
    values = list(data.values())
    check_scalars(values, what)
    return fields, values
