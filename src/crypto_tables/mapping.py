"""Declarations that map dataclass records to tables.

A record type is a dataclass decorated with :func:`table`. Every field with a
supported scalar annotation becomes a column; :func:`column` adds constraints.

Example::

    @table("Accounts")
    @dataclass
    class Account:
        id: int | None = column(primary_key=True, auto_increment=True)
        name: str | None = None
        secret: str | None = column(encrypted=True)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from crypto_tables.types import ValueKind

T = TypeVar("T")

# Attribute set on decorated record types
TABLE_NAME_ATTR = "__table_name__"

# Key used in dataclasses.field(metadata=...)
COLUMN_METADATA_KEY = "crypto_tables.column"


@dataclass(frozen=True)
class ForeignKey:
    """Foreign key declaration placed on an integer column.

    Attributes:
        navigation: Name of the field that receives the referenced record.
        auto_resolve: Whether reads eagerly load the referenced record.
    """

    navigation: str
    auto_resolve: bool = True


@dataclass(frozen=True)
class ColumnOptions:
    """Options attached to a dataclass field by :func:`column`."""

    kind: ValueKind | None = None
    name: str | None = None
    primary_key: bool = False
    auto_increment: bool = False
    encrypted: bool = False
    not_null: bool = False
    default_value: Any = None
    foreign_key: ForeignKey | None = None
    ignored: bool = False


def table(name: str) -> Callable[[type[T]], type[T]]:
    """Class decorator declaring the table name of a record type."""

    def decorate(cls: type[T]) -> type[T]:
        setattr(cls, TABLE_NAME_ATTR, name)
        return cls

    return decorate


def column(
    kind: ValueKind | None = None,
    *,
    name: str | None = None,
    primary_key: bool = False,
    auto_increment: bool = False,
    encrypted: bool = False,
    not_null: bool = False,
    default_value: Any = None,
    foreign_key: ForeignKey | None = None,
    ignored: bool = False,
    default: Any = None,
) -> Any:
    """Declare column options for a dataclass field.

    Args:
        kind: Explicit value kind, overriding the one inferred from the annotation.
        name: Storage column name (defaults to the field name).
        primary_key: Column is the table's primary key.
        auto_increment: Key is generated by the database.
        encrypted: Values are stored encrypted.
        not_null: Column has a NOT NULL constraint.
        default_value: SQL DEFAULT used when the field is None on insert.
        foreign_key: Foreign key pointing at a navigation field.
        ignored: Field is not stored at all.
        default: Python-side default of the dataclass field.

    Returns:
        A dataclasses.field carrying the options in its metadata.
    """
    if name is not None and not name:
        raise ValueError("Column name can't be empty")
    options = ColumnOptions(
        kind=kind,
        name=name,
        primary_key=primary_key,
        auto_increment=auto_increment,
        encrypted=encrypted,
        not_null=not_null or default_value is not None,
        default_value=default_value,
        foreign_key=foreign_key,
        ignored=ignored,
    )
    return dataclasses.field(default=default, metadata={COLUMN_METADATA_KEY: options})


def table_name_of(record_type: type) -> str | None:
    """Return the declared table name of a record type, if any."""
    return getattr(record_type, TABLE_NAME_ATTR, None)


def is_record_type(candidate: object) -> bool:
    """Return whether candidate is a dataclass declared with @table."""
    return (
        isinstance(candidate, type)
        and dataclasses.is_dataclass(candidate)
        and table_name_of(candidate) is not None
    )


def options_of(field: dataclasses.Field) -> ColumnOptions:
    """Return the column options declared on a field (defaults if none)."""
    return field.metadata.get(COLUMN_METADATA_KEY, ColumnOptions())
