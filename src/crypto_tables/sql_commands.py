"""SQL text for table and row operations.

Values never appear in the generated text; every value is a ``?``
parameter. The only literals are validated LIMIT counts and column
defaults in CREATE TABLE.
"""

from __future__ import annotations

from typing import Any, Sequence

from crypto_tables import codec
from crypto_tables.schema import SALT_COLUMN_NAME, ColumnSchema, TableSchema
from crypto_tables.translator import SortOrder, validate_limit
from crypto_tables.types import StorageClass


def sql_literal(value: Any) -> str:
    """Render a plain storage value as an SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, (bytes, bytearray)):
        return f"X'{bytes(value).hex().upper()}'"
    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    return str(value)


def column_definition(column: ColumnSchema) -> str:
    """Column clause of CREATE TABLE."""
    definition = f"{column.name} {column.storage_class.value}"
    if column.is_primary_key and column.is_auto_increment:
        definition += " PRIMARY KEY AUTOINCREMENT"
    elif column.is_primary_key:
        definition += " PRIMARY KEY NOT NULL"
    elif column.is_not_null:
        definition += " NOT NULL"
        if column.default_value is not None:
            default = codec.encode(column.default_value, column.kind, column.ordinal)
            definition += f" DEFAULT {sql_literal(default)}"
    return definition


def create_table(schema: TableSchema) -> str:
    definitions = [column_definition(c) for c in schema.columns.values()]
    if schema.has_encrypted_columns:
        definitions.append(f"{SALT_COLUMN_NAME} {StorageClass.BLOB.value}")
    for fk in schema.foreign_keys:
        definitions.append(
            f"FOREIGN KEY({fk.column_name}) REFERENCES {fk.referenced_table}({fk.referenced_column})"
        )
    body = ",\n".join(definitions)
    return f"CREATE TABLE IF NOT EXISTS {schema.name}\n(\n{body}\n)"


def drop_table(table_name: str) -> str:
    return f'DROP TABLE IF EXISTS "{table_name}"'


def clear_table(table_name: str) -> str:
    # SQLite has no TRUNCATE
    return f"DELETE FROM {table_name}"


def table_info(table_name: str) -> str:
    return f'PRAGMA TABLE_INFO("{table_name}")'


def insert(table_name: str, columns: Sequence[str], replace: bool = False) -> str:
    verb = "INSERT OR REPLACE" if replace else "INSERT"
    if not columns:
        return f"{verb} INTO {table_name} DEFAULT VALUES"
    placeholders = ", ".join("?" for _ in columns)
    return f"{verb} INTO {table_name} ({', '.join(columns)}) VALUES ({placeholders})"


def update(table_name: str, columns: Sequence[str], where: str) -> str:
    assignments = ", ".join(f"{c} = ?" for c in columns)
    return f"UPDATE {table_name} SET {assignments} WHERE {where}"


def select(
    table_name: str,
    where: str | None = None,
    columns: Sequence[str] | None = None,
    order_by: str | None = None,
    sort_order: SortOrder = SortOrder.ASC,
    limit: int | None = None,
) -> str:
    """SELECT statement for one table."""
    selected = ", ".join(columns) if columns else "*"
    cmd = f"SELECT {selected} FROM {table_name}"
    if where:
        cmd += f" WHERE {where}"
    if order_by:
        cmd += f" ORDER BY {order_by} {sort_order.value}"
    if limit is not None:
        cmd += f" LIMIT {validate_limit(limit)}"
    return cmd


def select_top(table_name: str) -> str:
    return f"SELECT * FROM {table_name} LIMIT ?"


def value_condition(column_name: str, value: Any) -> str:
    """WHERE body matching a single column value (NULL aware)."""
    return f"{column_name} IS NULL" if value is None else f"{column_name} = ?"


def delete(table_name: str, where: str) -> str:
    return f"DELETE FROM {table_name} WHERE {where}"


def aggregate(
    function: str,
    table_name: str,
    column_name: str = "*",
    distinct: bool = False,
    where: str | None = None,
) -> str:
    """SELECT of one aggregate (COUNT, MAX, MIN, SUM, AVG)."""
    prefix = "DISTINCT " if distinct else ""
    cmd = f"SELECT {function}({prefix}{column_name}) FROM {table_name}"
    if where:
        cmd += f" WHERE {where}"
    return cmd


def qualified_columns(schema: TableSchema) -> list[str]:
    """Stored columns of a table prefixed with the table name, salt column last."""
    return [f"{schema.name}.{name}" for name in schema.storage_column_names]


def join(
    schemas: Sequence[TableSchema],
    on_clauses: Sequence[str],
    where: str | None = None,
    left: bool = False,
) -> str:
    """SELECT over a chain of joins; the column list keeps table order.

    Args:
        schemas: Joined tables, the first one is the FROM table.
        on_clauses: One ON clause per joined table (len(schemas) - 1).
        where: Optional WHERE body with qualified columns.
        left: Use LEFT JOIN instead of INNER JOIN.
    """
    if len(on_clauses) != len(schemas) - 1:
        raise ValueError(f"Expected {len(schemas) - 1} join conditions, got {len(on_clauses)}")
    selected = ", ".join(c for schema in schemas for c in qualified_columns(schema))
    kind = "LEFT JOIN" if left else "INNER JOIN"
    cmd = f"SELECT {selected} FROM {schemas[0].name}"
    for schema, on in zip(schemas[1:], on_clauses):
        cmd += f" {kind} {schema.name} ON {on}"
    if where:
        cmd += f" WHERE {where}"
    return cmd
