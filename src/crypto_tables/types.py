"""Value kinds and storage classes for mapped columns."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum


class StorageClass(Enum):
    """SQL declared type of a column."""

    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"
    BLOB = "BLOB"


class ValueKind(Enum):
    """Value kinds a record field can be mapped to."""

    INT8 = "int8"
    UINT8 = "uint8"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    UINT32 = "uint32"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    DECIMAL = "decimal"
    BOOL = "bool"
    STRING = "string"
    TIMESTAMP = "timestamp"
    BYTES = "bytes"

    @property
    def size_bytes(self) -> int | None:
        """Return the fixed binary size, or None for variable-length kinds."""
        sizes = {
            ValueKind.INT8: 1,
            ValueKind.UINT8: 1,
            ValueKind.INT16: 2,
            ValueKind.UINT16: 2,
            ValueKind.INT32: 4,
            ValueKind.UINT32: 4,
            ValueKind.INT64: 8,
            ValueKind.UINT64: 8,
            ValueKind.FLOAT32: 4,
            ValueKind.FLOAT64: 8,
            ValueKind.DECIMAL: 16,
            ValueKind.BOOL: 1,
            ValueKind.TIMESTAMP: 8,
        }
        return sizes.get(self)

    @property
    def is_integer(self) -> bool:
        return self in INTEGER_KINDS

    @property
    def is_blob_stored(self) -> bool:
        """Return whether plain values are stored as opaque binary.

        The native 64-bit SQLite integer cannot hold every unsigned 64-bit
        value, so 64-bit integers, timestamps and decimals always use their
        binary layout. Byte sequences are blobs by nature.
        """
        return self in BLOB_STORED_KINDS

    @property
    def storage_class(self) -> StorageClass:
        """Return the SQL type used for a plain (non-encrypted) column."""
        if self.is_blob_stored:
            return StorageClass.BLOB
        if self in (ValueKind.FLOAT32, ValueKind.FLOAT64):
            return StorageClass.REAL
        if self is ValueKind.STRING:
            return StorageClass.TEXT
        return StorageClass.INTEGER


INTEGER_KINDS: frozenset[ValueKind] = frozenset(
    {
        ValueKind.INT8,
        ValueKind.UINT8,
        ValueKind.INT16,
        ValueKind.UINT16,
        ValueKind.INT32,
        ValueKind.UINT32,
        ValueKind.INT64,
        ValueKind.UINT64,
    }
)

BLOB_STORED_KINDS: frozenset[ValueKind] = frozenset(
    {
        ValueKind.INT64,
        ValueKind.UINT64,
        ValueKind.TIMESTAMP,
        ValueKind.DECIMAL,
        ValueKind.BYTES,
    }
)

# Kinds a foreign key column may have
FOREIGN_KEY_KINDS: frozenset[ValueKind] = frozenset(
    {ValueKind.INT16, ValueKind.UINT16, ValueKind.INT32, ValueKind.UINT32}
)

# Python annotation -> default value kind (exact type match)
PYTHON_TYPE_KINDS: dict[type, ValueKind] = {
    bool: ValueKind.BOOL,
    int: ValueKind.INT32,
    float: ValueKind.FLOAT64,
    str: ValueKind.STRING,
    bytes: ValueKind.BYTES,
    bytearray: ValueKind.BYTES,
    datetime: ValueKind.TIMESTAMP,
    Decimal: ValueKind.DECIMAL,
}


def kind_for_python_type(python_type: object) -> ValueKind | None:
    """Return the default value kind for a Python annotation, if supported."""
    if isinstance(python_type, type):
        return PYTHON_TYPE_KINDS.get(python_type)
    return None
