"""Table metadata: column and table schemas and the registry that builds them."""

from __future__ import annotations

import dataclasses
import logging
import threading
import typing
from dataclasses import dataclass, field
from types import UnionType
from typing import Any, Union

from crypto_tables.errors import (
    DuplicateColumnError,
    EncryptedColumnError,
    ForeignKeyError,
    MissingDeclarationError,
    PrimaryKeyError,
    ReservedColumnError,
    SchemaError,
)
from crypto_tables.mapping import is_record_type, options_of, table_name_of
from crypto_tables.types import (
    FOREIGN_KEY_KINDS,
    StorageClass,
    ValueKind,
    kind_for_python_type,
)

logger = logging.getLogger(__name__)

# Reserved column holding the per-row salt of tables with encrypted columns
SALT_COLUMN_NAME = "SaltColumn"


@dataclass(frozen=True)
class ForeignKeyRef:
    """A relationship from an integer column to another table's primary key."""

    referenced_table: str
    referenced_type: type
    referenced_column: str
    field_name: str
    column_name: str
    navigation_field: str
    auto_resolve: bool = True


@dataclass(frozen=True)
class ColumnSchema:
    """Metadata for one mapped field."""

    name: str
    field_name: str
    kind: ValueKind
    ordinal: int
    nullable: bool = False
    is_primary_key: bool = False
    is_auto_increment: bool = False
    is_encrypted: bool = False
    is_not_null: bool = False
    default_value: Any = None
    foreign_key: ForeignKeyRef | None = None

    @property
    def storage_class(self) -> StorageClass:
        """SQL declared type; encrypted columns are always blobs."""
        if self.is_encrypted:
            return StorageClass.BLOB
        return self.kind.storage_class

    @property
    def is_blob_stored(self) -> bool:
        return self.kind.is_blob_stored


@dataclass(eq=False)
class TableSchema:
    """Cached storage mapping of one record type.

    Columns are kept in declaration order: the order feeds the keystream
    ordinal and the positional split of join rows.
    """

    name: str
    record_type: type
    columns: dict[str, ColumnSchema]
    has_encrypted_columns: bool
    encryption_key: bytes | None = field(default=None, repr=False)

    @property
    def primary_key(self) -> ColumnSchema:
        for col in self.columns.values():
            if col.is_primary_key:
                return col
        raise PrimaryKeyError(f"Table {self.name} has no primary key.")

    @property
    def foreign_keys(self) -> list[ForeignKeyRef]:
        return [col.foreign_key for col in self.columns.values() if col.foreign_key is not None]

    @property
    def column_count(self) -> int:
        """Number of stored columns, including the salt column if present."""
        return len(self.columns) + (1 if self.has_encrypted_columns else 0)

    @property
    def storage_column_names(self) -> list[str]:
        """Stored column names in physical order, salt column last."""
        names = list(self.columns)
        if self.has_encrypted_columns:
            names.append(SALT_COLUMN_NAME)
        return names

    def column(self, name: str) -> ColumnSchema | None:
        """Get a column by storage name."""
        return self.columns.get(name)

    def column_for_field(self, field_name: str) -> ColumnSchema | None:
        """Get a column by the record field it maps."""
        for col in self.columns.values():
            if col.field_name == field_name:
                return col
        return None

    def new_record(self, values: dict[str, Any]) -> Any:
        """Create a fresh record from decoded field values.

        Fields missing from values keep their dataclass default, or are None
        when the field has no default.
        """
        kwargs: dict[str, Any] = {}
        late: dict[str, Any] = {}
        for f in dataclasses.fields(self.record_type):
            if f.name in values:
                if f.init:
                    kwargs[f.name] = values[f.name]
                else:
                    late[f.name] = values[f.name]
            elif f.init and f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                kwargs[f.name] = None
        record = self.record_type(**kwargs)
        for name, value in late.items():
            setattr(record, name, value)
        return record

    def __repr__(self) -> str:
        return f"TableSchema({self.name!r}, columns={list(self.columns)!r})"


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    """Strip None from an Optional/union annotation.

    Returns:
        (inner annotation, nullable flag).
    """
    origin = typing.get_origin(annotation)
    if origin is Union or origin is UnionType:
        args = typing.get_args(annotation)
        non_none = [a for a in args if a is not type(None)]
        nullable = len(non_none) != len(args)
        if len(non_none) == 1:
            return non_none[0], nullable
        return annotation, nullable
    return annotation, False


def _primary_key_column(record_type: type) -> tuple[str, ValueKind | None] | None:
    """Find the storage name and kind of a record type's primary key without building its schema."""
    for f in dataclasses.fields(record_type):
        options = options_of(f)
        if not options.primary_key or options.ignored:
            continue
        kind = options.kind
        if kind is None:
            try:
                hints = typing.get_type_hints(record_type)
            except NameError as e:
                raise SchemaError(
                    f"Can't resolve field annotations of table {table_name_of(record_type)}: {e}"
                ) from e
            kind = kind_for_python_type(_unwrap_optional(hints.get(f.name))[0])
        return options.name or f.name, kind
    return None


def _foreign_key_ref(
    table_name: str,
    f: dataclasses.Field,
    column_name: str,
    kind: ValueKind,
    hints: dict[str, Any],
) -> ForeignKeyRef:
    options = options_of(f)
    declaration = options.foreign_key
    assert declaration is not None

    if kind not in FOREIGN_KEY_KINDS:
        raise ForeignKeyError(
            f"Foreign key column '{column_name}' in table {table_name} must be a 16 or 32 bit integer, "
            f"not {kind.value}."
        )
    if not declaration.navigation:
        raise ForeignKeyError(f"Foreign key on '{f.name}' in table {table_name} has an empty navigation field name.")
    if declaration.navigation not in hints:
        raise ForeignKeyError(
            f"Can't find navigation field '{declaration.navigation}' for foreign key '{f.name}' in table {table_name}."
        )

    referenced_type, _ = _unwrap_optional(hints[declaration.navigation])
    if not is_record_type(referenced_type):
        raise ForeignKeyError(
            f"Navigation field '{declaration.navigation}' in table {table_name} must be typed as a mapped record."
        )

    referenced_key = _primary_key_column(referenced_type)
    if referenced_key is None:
        raise ForeignKeyError(f"Table {table_name_of(referenced_type)} doesn't contain a primary key column.")
    referenced_column, referenced_kind = referenced_key
    if referenced_kind is None or not referenced_kind.is_integer or referenced_kind.is_blob_stored:
        raise ForeignKeyError(
            f"Foreign key '{f.name}' in table {table_name} references primary key '{referenced_column}' "
            f"of table {table_name_of(referenced_type)}, which is not an integer column."
        )

    return ForeignKeyRef(
        referenced_table=table_name_of(referenced_type),
        referenced_type=referenced_type,
        referenced_column=referenced_column,
        field_name=f.name,
        column_name=column_name,
        navigation_field=declaration.navigation,
        auto_resolve=declaration.auto_resolve,
    )


def build_table_schema(record_type: type) -> TableSchema:
    """Scan a record type once and build its validated schema.

    Raises:
        SchemaError: If the mapping violates any rule.
    """
    table_name = table_name_of(record_type)
    if table_name is None:
        raise MissingDeclarationError(f"Type {record_type.__name__} doesn't have a @table declaration.")
    if not table_name:
        raise SchemaError(f"Table name of {record_type.__name__} can't be empty.")
    if not dataclasses.is_dataclass(record_type):
        raise SchemaError(f"Record type {record_type.__name__} for table {table_name} must be a dataclass.")

    try:
        hints = typing.get_type_hints(record_type)
    except NameError as e:
        raise SchemaError(f"Can't resolve field annotations of table {table_name}: {e}") from e

    columns: list[ColumnSchema] = []
    for f in dataclasses.fields(record_type):
        options = options_of(f)
        if options.ignored:
            continue

        annotation, nullable = _unwrap_optional(hints.get(f.name))
        kind = options.kind or kind_for_python_type(annotation)
        if kind is None:
            if options.foreign_key is not None or options.primary_key or options.encrypted:
                raise SchemaError(
                    f"Field '{f.name}' in table {table_name} has unsupported type {annotation!r}; pass an explicit kind."
                )
            # Navigation fields and other non-scalar fields are not columns
            continue

        column_name = options.name or f.name

        if column_name == SALT_COLUMN_NAME:
            raise ReservedColumnError(
                f"Table {table_name} can't contain column with name: {SALT_COLUMN_NAME}.",
                "This name is reserved for the per-row salt.",
            )
        if options.encrypted and options.primary_key:
            raise EncryptedColumnError(f"Primary key column '{column_name}' in table {table_name} can't be encrypted.")
        if options.encrypted and options.auto_increment:
            raise EncryptedColumnError(
                f"Auto-increment column '{column_name}' in table {table_name} can't be encrypted."
            )
        if options.encrypted and options.default_value is not None:
            raise EncryptedColumnError(
                f"Encrypted column '{column_name}' in table {table_name} can't have a default value.",
                "Encrypted columns can be not null, but without default.",
            )
        if options.auto_increment and not (options.primary_key and kind.is_integer and not kind.is_blob_stored):
            raise SchemaError(
                f"Auto-increment column '{column_name}' in table {table_name} must be an integer primary key."
            )

        foreign_key = None
        if options.foreign_key is not None:
            if options.primary_key:
                raise ForeignKeyError(f"Column '{column_name}' in table {table_name} can't be primary and foreign key.")
            if options.encrypted:
                raise ForeignKeyError(f"Foreign key column '{column_name}' in table {table_name} can't be encrypted.")
            if options.auto_increment:
                raise ForeignKeyError(
                    f"Foreign key column '{column_name}' in table {table_name} can't be auto-increment."
                )
            if options.default_value is not None:
                raise ForeignKeyError(
                    f"Foreign key column '{column_name}' in table {table_name} can't have a default value."
                )
            foreign_key = _foreign_key_ref(table_name, f, column_name, kind, hints)

        columns.append(
            ColumnSchema(
                name=column_name,
                field_name=f.name,
                kind=kind,
                ordinal=len(columns),
                nullable=nullable,
                is_primary_key=options.primary_key,
                is_auto_increment=options.auto_increment,
                is_encrypted=options.encrypted,
                is_not_null=options.not_null,
                default_value=options.default_value,
                foreign_key=foreign_key,
            )
        )

    primary_keys = [c for c in columns if c.is_primary_key]
    if not primary_keys:
        raise PrimaryKeyError(f"Table {table_name} must contain a primary key column.")
    if len(primary_keys) > 1:
        raise PrimaryKeyError(f"Table {table_name} can't contain more than one primary key column.")

    by_name: dict[str, ColumnSchema] = {}
    for col in columns:
        if col.name in by_name:
            raise DuplicateColumnError(
                f"Table {table_name} contains columns with same names {col.name}.",
                "Table can't contain two columns with same names.",
            )
        by_name[col.name] = col

    return TableSchema(
        name=table_name,
        record_type=record_type,
        columns=by_name,
        has_encrypted_columns=any(c.is_encrypted for c in columns),
    )


class SchemaRegistry:
    """Lazily built, cached table schemas keyed by record type.

    The registry is an ordinary object owned by the caller. Insertion is
    guarded by a re-entrant lock so concurrent first use of a type builds
    one schema; lookups of populated entries do not lock.
    """

    def __init__(self) -> None:
        self._schemas: dict[type, TableSchema] = {}
        self._lock = threading.RLock()

    def schema_for(self, record_type: type) -> TableSchema:
        """Get the schema of a record type, building and validating it on first use.

        Every table reachable through foreign keys is registered as well.

        Raises:
            SchemaError: If this type or a referenced type is malformed.
        """
        schema = self._schemas.get(record_type)
        if schema is not None:
            return schema

        with self._lock:
            schema = self._schemas.get(record_type)
            if schema is not None:
                return schema

            schema = build_table_schema(record_type)
            # Cache before recursing so reference cycles terminate
            self._schemas[record_type] = schema
            logger.debug("Registered table %s (%d columns)", schema.name, len(schema.columns))
            try:
                for fk in schema.foreign_keys:
                    self.schema_for(fk.referenced_type)
            except SchemaError:
                del self._schemas[record_type]
                raise
        return schema

    def lookup(self, record_type: type) -> TableSchema | None:
        """Get an already registered schema without building it."""
        return self._schemas.get(record_type)

    def schema_by_name(self, table_name: str) -> TableSchema | None:
        """Get an already registered schema by table name."""
        for schema in self._schemas.values():
            if schema.name == table_name:
                return schema
        return None

    def tables(self) -> list[TableSchema]:
        """List all registered schemas."""
        return list(self._schemas.values())

    def clear(self) -> None:
        """Forget all schemas (and the table keys stored on them)."""
        with self._lock:
            self._schemas.clear()

    def __contains__(self, record_type: object) -> bool:
        return record_type in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)
