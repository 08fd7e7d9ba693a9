"""Crypto Tables - typed records over SQLite with encrypted columns."""

from crypto_tables.cipher import CipherContext, CryptoAlgorithm, KeyRing, check_key, generate_salt
from crypto_tables.connection import CryptoConnection
from crypto_tables.engine import SQLiteEngine
from crypto_tables.errors import (
    CryptoError,
    CryptoTablesError,
    JoinError,
    NoKeyError,
    SchemaError,
    StorageError,
    TranslateError,
)
from crypto_tables.mapping import ForeignKey, column, table
from crypto_tables.parsing import parse_predicate
from crypto_tables.predicate import col
from crypto_tables.schema import SALT_COLUMN_NAME, SchemaRegistry, TableSchema
from crypto_tables.translator import SortOrder
from crypto_tables.types import ValueKind

__version__ = "0.1.0"

__all__ = [
    "SALT_COLUMN_NAME",
    "CipherContext",
    "CryptoAlgorithm",
    "CryptoConnection",
    "CryptoError",
    "CryptoTablesError",
    "ForeignKey",
    "JoinError",
    "KeyRing",
    "NoKeyError",
    "SQLiteEngine",
    "SchemaError",
    "SchemaRegistry",
    "SortOrder",
    "StorageError",
    "TableSchema",
    "TranslateError",
    "ValueKind",
    "check_key",
    "col",
    "column",
    "generate_salt",
    "parse_predicate",
    "table",
]
