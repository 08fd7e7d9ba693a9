"""Column codec: field values to storage values and back.

Plain columns keep native SQLite values where SQLite can hold them exactly;
64-bit integers, timestamps, decimals and byte strings are stored as binary.
Encrypted columns always store the binary layout XORed with the row keystream.
"""

from __future__ import annotations

import struct
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from crypto_tables.errors import NoKeyError
from crypto_tables.types import ValueKind

if TYPE_CHECKING:
    from crypto_tables.cipher import CipherContext
    from crypto_tables.schema import ColumnSchema

_FORMAT_MAP = {
    ValueKind.INT8: "<b",
    ValueKind.UINT8: "<B",
    ValueKind.INT16: "<h",
    ValueKind.UINT16: "<H",
    ValueKind.INT32: "<i",
    ValueKind.UINT32: "<I",
    ValueKind.INT64: "<q",
    ValueKind.UINT64: "<Q",
    ValueKind.FLOAT32: "<f",
    ValueKind.FLOAT64: "<d",
    ValueKind.BOOL: "<?",
}

# 100 ns ticks counted from 0001-01-01T00:00:00
_EPOCH = datetime(1, 1, 1)
_TICKS_MASK = (1 << 62) - 1
_KIND_SHIFT = 62
_KIND_UNSPECIFIED = 0
_KIND_UTC = 1

# Microseconds representable from _EPOCH up to datetime.max
_MAX_MICROSECONDS = (datetime.max - _EPOCH) // timedelta(microseconds=1) + 1

_DECIMAL_MAX_SCALE = 28
_DECIMAL_SIGN_BIT = 0x80000000
_UINT32_MASK = 0xFFFFFFFF


def timestamp_to_bytes(value: datetime) -> bytes:
    """Pack a datetime as tick count plus kind bits."""
    kind = _KIND_UNSPECIFIED
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
        kind = _KIND_UTC
    delta = value - _EPOCH
    ticks = (delta.days * 86_400 + delta.seconds) * 10_000_000 + delta.microseconds * 10
    return struct.pack("<q", (kind << _KIND_SHIFT) | ticks)


def timestamp_from_bytes(data: bytes) -> datetime:
    """Unpack a datetime; tick counts past datetime.max wrap around.

    Every 8-byte input yields a datetime, so data decrypted with a wrong
    key reads as a wrong date instead of failing.
    """
    raw = struct.unpack("<Q", data)[0]
    ticks = raw & _TICKS_MASK
    kind = raw >> _KIND_SHIFT
    value = _EPOCH + timedelta(microseconds=(ticks // 10) % _MAX_MICROSECONDS)
    if kind == _KIND_UTC:
        return value.replace(tzinfo=timezone.utc)
    return value


def decimal_to_bytes(value: Decimal) -> bytes:
    """Pack a decimal as a 96-bit coefficient followed by scale/sign flags.

    Raises:
        ValueError: If the value is not finite or doesn't fit the layout.
    """
    if not value.is_finite():
        raise ValueError(f"Decimal value must be finite: {value}")
    sign, digits, exponent = value.as_tuple()
    coefficient = int("".join(map(str, digits))) if digits else 0
    if exponent > 0:
        coefficient *= 10**exponent
        scale = 0
    else:
        scale = -exponent
    if scale > _DECIMAL_MAX_SCALE:
        raise ValueError(f"Decimal scale {scale} exceeds {_DECIMAL_MAX_SCALE}: {value}")
    if coefficient >> 96:
        raise ValueError(f"Decimal coefficient doesn't fit in 96 bits: {value}")

    flags = scale << 16
    if sign:
        flags |= _DECIMAL_SIGN_BIT
    return struct.pack(
        "<IIII",
        coefficient & _UINT32_MASK,
        (coefficient >> 32) & _UINT32_MASK,
        (coefficient >> 64) & _UINT32_MASK,
        flags,
    )


def decimal_from_bytes(data: bytes) -> Decimal:
    lo, mid, hi, flags = struct.unpack("<IIII", data)
    coefficient = lo | (mid << 32) | (hi << 64)
    scale = (flags >> 16) & 0xFF
    sign = 1 if flags & _DECIMAL_SIGN_BIT else 0
    digits = tuple(int(d) for d in str(coefficient))
    return Decimal((sign, digits, -scale))


def to_bytes(value: Any, kind: ValueKind) -> bytes:
    """Serialize a value to the binary layout of its kind."""
    if kind is ValueKind.STRING:
        if not isinstance(value, str):
            raise TypeError(f"Expected str, got {type(value).__name__}")
        return value.encode("utf-16-le", "surrogatepass")
    elif kind is ValueKind.BYTES:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"Expected bytes, got {type(value).__name__}")
        return bytes(value)
    elif kind is ValueKind.TIMESTAMP:
        if not isinstance(value, datetime):
            raise TypeError(f"Expected datetime, got {type(value).__name__}")
        return timestamp_to_bytes(value)
    elif kind is ValueKind.DECIMAL:
        if not isinstance(value, Decimal):
            value = Decimal(value)
        return decimal_to_bytes(value)
    else:
        try:
            return struct.pack(_FORMAT_MAP[kind], value)
        except struct.error as e:
            raise ValueError(f"Value {value!r} doesn't fit {kind.value}: {e}") from e


def from_bytes(data: bytes, kind: ValueKind) -> Any:
    """Deserialize a value from the binary layout of its kind."""
    data = bytes(data)
    if kind is ValueKind.STRING:
        return data.decode("utf-16-le", "surrogatepass")
    elif kind is ValueKind.BYTES:
        return data
    elif kind is ValueKind.TIMESTAMP:
        return timestamp_from_bytes(data)
    elif kind is ValueKind.DECIMAL:
        return decimal_from_bytes(data)
    else:
        return struct.unpack(_FORMAT_MAP[kind], data)[0]


def encode(value: Any, kind: ValueKind, ordinal: int, cipher: CipherContext | None = None) -> Any:
    """Convert a field value to the value handed to SQLite.

    With a cipher the binary layout is encrypted with the keystream of the
    column ordinal; without one the plain storage form is returned.
    """
    if value is None:
        return None
    if cipher is not None:
        return cipher.apply_keystream(to_bytes(value, kind), ordinal)

    if kind.is_blob_stored:
        return to_bytes(value, kind)
    if kind is ValueKind.BOOL:
        return 1 if value else 0
    if kind.is_integer:
        # Range check through the binary layout
        to_bytes(value, kind)
        return int(value)
    if kind in (ValueKind.FLOAT32, ValueKind.FLOAT64):
        return float(value)
    if kind is ValueKind.STRING and not isinstance(value, str):
        raise TypeError(f"Expected str, got {type(value).__name__}")
    return value


def decode(raw: Any, kind: ValueKind, ordinal: int, cipher: CipherContext | None = None) -> Any:
    """Convert a value read from SQLite back to a field value."""
    if raw is None:
        return None
    if cipher is not None:
        return from_bytes(cipher.apply_keystream(bytes(raw), ordinal), kind)

    if kind.is_blob_stored:
        return from_bytes(raw, kind)
    if kind is ValueKind.BOOL:
        return bool(raw)
    if kind.is_integer:
        return int(raw)
    if kind in (ValueKind.FLOAT32, ValueKind.FLOAT64):
        return float(raw)
    if kind is ValueKind.STRING:
        return str(raw)
    return raw


def encode_column(column: ColumnSchema, value: Any, cipher: CipherContext | None = None) -> Any:
    """Encode a value for a column, encrypting it when the column is encrypted.

    Raises:
        NoKeyError: If an encrypted column is encoded without a cipher.
    """
    if value is None:
        return None
    if column.is_encrypted:
        if cipher is None:
            raise NoKeyError(f"Column '{column.name}' is encrypted but no cipher is available.")
        return encode(value, column.kind, column.ordinal, cipher)
    return encode(value, column.kind, column.ordinal)


def decode_column(column: ColumnSchema, raw: Any, cipher: CipherContext | None = None) -> Any:
    """Decode a stored value of a column, decrypting it when the column is encrypted.

    Raises:
        NoKeyError: If an encrypted column is decoded without a cipher.
    """
    if raw is None:
        return None
    if column.is_encrypted:
        if cipher is None:
            raise NoKeyError(f"Column '{column.name}' is encrypted but no cipher is available.")
        return decode(raw, column.kind, column.ordinal, cipher)
    return decode(raw, column.kind, column.ordinal)
