"""Exception hierarchy for crypto_tables."""

from __future__ import annotations


class CryptoTablesError(Exception):
    """Base exception for all crypto_tables errors.

    Args:
        message: Human readable description.
        cause: Optional hint about the probable reason, appended to the message.
    """

    def __init__(self, message: str, cause: str | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(f"{message} {cause}" if cause else message)


# --- Schema ---


class SchemaError(CryptoTablesError):
    """Malformed record type mapping, discovered at first use of the type."""


class MissingDeclarationError(SchemaError):
    """Record type has no @table declaration."""


class ReservedColumnError(SchemaError):
    """A column uses the reserved salt column name."""


class PrimaryKeyError(SchemaError):
    """Table does not have exactly one primary key."""


class DuplicateColumnError(SchemaError):
    """Two columns share the same storage name."""


class EncryptedColumnError(SchemaError):
    """Encrypted column combined with a forbidden constraint."""


class ForeignKeyError(SchemaError):
    """Invalid foreign key declaration."""


# --- Crypto ---


class CryptoError(CryptoTablesError):
    """Missing or invalid encryption key."""


class NoKeyError(CryptoError):
    """Neither a table key nor a default key has been set."""


class InvalidKeyError(CryptoError):
    """Key does not satisfy the selected algorithm."""


# --- Predicate translation ---


class TranslateError(CryptoTablesError):
    """Predicate, order-by or limit misuse."""


class NullPredicateError(TranslateError):
    """A query was issued without a condition."""


class EncryptedColumnInPredicateError(TranslateError):
    """Encrypted columns cannot be compared in SQL."""


class BlobTypeInComparisonError(TranslateError):
    """Blob-stored columns only support null checks."""


class EncryptedOrderByError(TranslateError):
    """Encrypted columns cannot be used for ordering."""


class InvalidLimitError(TranslateError):
    """Limit count must be positive."""


class UnknownFieldError(TranslateError):
    """Field is not a mapped column of the table."""


class PredicateSyntaxError(TranslateError):
    """Predicate text could not be parsed."""


# --- Joins ---


class JoinError(CryptoTablesError):
    """Invalid join condition."""


class SelfJoinError(JoinError):
    """A table cannot be joined with itself."""


class UnmappedFieldError(JoinError):
    """Join field is not a mapped column."""


# --- Storage ---


class StorageError(CryptoTablesError):
    """Error reported by the SQL engine or a rejected write."""
