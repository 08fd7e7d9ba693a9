"""Rebuild records from result rows.

Join rows are positional: each table contributes its mapped columns followed
by its salt column (if it has encrypted columns), in the order the tables
appear in the query.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from crypto_tables.cipher import CipherContext, KeyRing
from crypto_tables.codec import decode_column
from crypto_tables.errors import StorageError
from crypto_tables.schema import SALT_COLUMN_NAME, SchemaRegistry, TableSchema
from crypto_tables.types import StorageClass

logger = logging.getLogger(__name__)

# fetch(referenced schema, referenced column, value) -> record or None
Fetcher = Callable[[TableSchema, str, Any], Any]


@dataclass(frozen=True)
class RowColumn:
    """One named value of a result row; storage_class is None for SQL NULL."""

    name: str
    value: Any
    storage_class: StorageClass | None

    @property
    def is_absent(self) -> bool:
        return self.storage_class is None


def storage_class_of(value: Any) -> StorageClass | None:
    """Return the storage class of a value as returned by sqlite3."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return StorageClass.BLOB
    if isinstance(value, str):
        return StorageClass.TEXT
    if isinstance(value, float):
        return StorageClass.REAL
    return StorageClass.INTEGER


def row_columns(names: Sequence[str], values: Sequence[Any]) -> list[RowColumn]:
    """Pair column names with values."""
    if len(names) != len(values):
        raise StorageError(f"Row has {len(values)} values for {len(names)} column names.")
    return [RowColumn(name, value, storage_class_of(value)) for name, value in zip(names, values)]


def column_count(schema: TableSchema) -> int:
    """Number of stored columns of a table, salt column included."""
    return schema.column_count


class RowAssembler:
    """Decode rows into field maps and records for one or more tables."""

    def __init__(self, registry: SchemaRegistry, keyring: KeyRing) -> None:
        self.registry = registry
        self.keyring = keyring

    def split_row(self, row: list[RowColumn], schemas: Sequence[TableSchema]) -> list[list[RowColumn]]:
        """Split a positional row into one partition per table.

        Raises:
            StorageError: If the row width doesn't match the tables.
        """
        if len(schemas) == 1:
            return [list(row)]

        expected = sum(column_count(s) for s in schemas)
        if len(row) != expected:
            raise StorageError(
                f"Join row has {len(row)} columns, expected {expected} for tables "
                f"{', '.join(s.name for s in schemas)}."
            )

        partitions = []
        offset = 0
        for schema in schemas:
            count = column_count(schema)
            partitions.append(list(row[offset : offset + count]))
            offset += count
        return partitions

    def decode_partition(self, schema: TableSchema, partition: Iterable[RowColumn]) -> dict[str, Any]:
        """Decode the columns of one table into a field-name -> value map.

        Columns that aren't present in the partition are left out, so a
        partial select only yields the selected fields.
        """
        partition = list(partition)
        salt = None
        for rc in partition:
            if rc.name == SALT_COLUMN_NAME:
                salt = rc.value
                break

        cipher: CipherContext | None = None
        values: dict[str, Any] = {}
        for rc in partition:
            column = schema.column(rc.name)
            if column is None:
                continue
            if column.is_encrypted and rc.value is not None and cipher is None:
                if salt is None:
                    raise StorageError(
                        f"Row of table {schema.name} holds encrypted values but no {SALT_COLUMN_NAME}.",
                        "The table structure probably doesn't match the record type.",
                    )
                cipher = self.keyring.context_for(schema, bytes(salt))
            values[column.field_name] = decode_column(column, rc.value, cipher)
        return values

    def assemble(
        self,
        rows: Iterable[list[RowColumn]],
        schemas: Sequence[TableSchema],
        outer: bool = False,
    ) -> list[list[dict[str, Any] | None]]:
        """Decode rows into per-table field maps.

        With outer=True a non-leading table whose columns are all NULL is
        reported as None (no matching row in a left join).
        """
        result = []
        for row in rows:
            decoded: list[dict[str, Any] | None] = []
            for index, (schema, partition) in enumerate(zip(schemas, self.split_row(row, schemas))):
                if outer and index > 0 and all(rc.is_absent for rc in partition):
                    decoded.append(None)
                else:
                    decoded.append(self.decode_partition(schema, partition))
            result.append(decoded)
        return result

    def build_records(
        self,
        rows: Iterable[list[RowColumn]],
        schemas: Sequence[TableSchema],
        outer: bool = False,
    ) -> list[list[Any]]:
        """Decode rows into fresh record instances, one per table and row."""
        return [
            [None if values is None else schema.new_record(values) for schema, values in zip(schemas, decoded)]
            for decoded in self.assemble(rows, schemas, outer)
        ]

    def resolve_references(
        self,
        record: Any,
        schema: TableSchema,
        fetch: Fetcher,
        visited: dict[tuple[str, Any], Any] | None = None,
    ) -> Any:
        """Load the records referenced by auto-resolved foreign keys.

        Each referenced record is fetched once per (table, key); records
        already seen in this traversal are reused, which ends reference
        cycles.
        """
        if visited is None:
            visited = {}
        pk_value = getattr(record, schema.primary_key.field_name, None)
        if pk_value is not None:
            visited.setdefault((schema.name, pk_value), record)

        for fk in schema.foreign_keys:
            if not fk.auto_resolve:
                continue
            value = getattr(record, fk.field_name, None)
            if value is None:
                continue

            key = (fk.referenced_table, value)
            if key in visited:
                setattr(record, fk.navigation_field, visited[key])
                continue

            referenced_schema = self.registry.schema_for(fk.referenced_type)
            referenced = fetch(referenced_schema, fk.referenced_column, value)
            logger.debug(
                "Resolved %s.%s -> %s (%s)",
                schema.name,
                fk.column_name,
                referenced_schema.name,
                "found" if referenced is not None else "missing",
            )
            setattr(record, fk.navigation_field, referenced)
            if referenced is not None:
                visited[key] = referenced
                self.resolve_references(referenced, referenced_schema, fetch, visited)
        return record
