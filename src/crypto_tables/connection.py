"""Connection facade: typed records in, typed records out."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar, Union

from crypto_tables import sql_commands
from crypto_tables.assembler import RowAssembler, RowColumn
from crypto_tables.cipher import CipherContext, CryptoAlgorithm, KeyRing, generate_salt
from crypto_tables.codec import decode_column, encode, encode_column
from crypto_tables.engine import MEMORY, SQLiteEngine
from crypto_tables.errors import (
    BlobTypeInComparisonError,
    EncryptedColumnInPredicateError,
    StorageError,
    TranslateError,
)
from crypto_tables.join import JoinTranslator
from crypto_tables.parsing import parse_predicate
from crypto_tables.predicate import Column, IsTrue, Node
from crypto_tables.schema import SALT_COLUMN_NAME, ColumnSchema, SchemaRegistry, TableSchema
from crypto_tables.translator import (
    PredicateTranslator,
    SortOrder,
    resolve_column,
    translate_order_by,
    validate_limit,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A condition tree, a bare boolean column, or predicate text
Predicate = Union[Node, Column, str]

# (field of the first table, field of the joined table)
JoinOn = tuple[str, str]


class CryptoConnection:
    """Reads and writes mapped records, encrypting the marked columns.

    Example::

        with CryptoConnection("app.db") as db:
            db.set_encryption_key(key)
            db.create_table(Account)
            db.insert(Account(name="alice", secret="s3cr3t"))
            rows = db.find(Account, col("name") == "alice")
    """

    def __init__(
        self,
        engine_or_path: SQLiteEngine | str | Path = MEMORY,
        algorithm: CryptoAlgorithm = CryptoAlgorithm.AES_256,
        registry: SchemaRegistry | None = None,
    ) -> None:
        if isinstance(engine_or_path, SQLiteEngine):
            self.engine = engine_or_path
        else:
            self.engine = SQLiteEngine(engine_or_path)
        self.registry = registry if registry is not None else SchemaRegistry()
        self.keyring = KeyRing(algorithm)
        self.translator = PredicateTranslator()
        self.joins = JoinTranslator()
        self.assembler = RowAssembler(self.registry, self.keyring)

    @property
    def algorithm(self) -> CryptoAlgorithm:
        return self.keyring.algorithm

    def close(self) -> None:
        """Forget every key and close the database."""
        self.keyring.clear(self.registry.tables())
        self.engine.close()

    def __enter__(self) -> CryptoConnection:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # --- Keys ---

    def set_encryption_key(self, key: bytes) -> None:
        """Install the default key used by tables without their own key."""
        self.keyring.set_default_key(key)

    def set_table_key(self, record_type: type, key: bytes) -> None:
        """Install a key used only for one table."""
        self.keyring.set_table_key(self.registry.schema_for(record_type), key)

    # --- Helpers ---

    def _schema(self, record_type: type) -> TableSchema:
        return self.registry.schema_for(record_type)

    def _node(self, predicate: Predicate | None) -> Node | None:
        if predicate is None:
            return None
        if isinstance(predicate, str):
            return parse_predicate(predicate)
        if isinstance(predicate, Column):
            return IsTrue(predicate.name)
        return predicate

    def _where(self, schema: TableSchema, predicate: Predicate | None, qualify: bool = False) -> tuple[str, list[Any]]:
        return self.translator.translate(self._node(predicate), schema, qualify)

    def _row_cipher(self, schema: TableSchema) -> tuple[bytes | None, CipherContext | None]:
        """Draw a fresh salt and cipher for a row written to the table."""
        if not schema.has_encrypted_columns:
            return None, None
        salt = generate_salt()
        return salt, self.keyring.context_for(schema, salt)

    def _row_values(self, schema: TableSchema, item: Any, include_auto_increment: bool) -> tuple[list[str], list[Any]]:
        """Collect the storage names and encoded values of a record."""
        salt, cipher = self._row_cipher(schema)
        names: list[str] = []
        values: list[Any] = []
        for column in schema.columns.values():
            if column.is_auto_increment and not include_auto_increment:
                continue
            value = getattr(item, column.field_name, None)
            if value is None and column.default_value is not None:
                continue
            if value is None and column.is_not_null and not column.is_auto_increment:
                raise StorageError(
                    f"Column '{column.name}' of table {schema.name} is NOT NULL and has no default value, "
                    "but the record holds None."
                )
            names.append(column.name)
            try:
                values.append(encode_column(column, value, cipher))
            except (TypeError, ValueError) as e:
                raise StorageError(f"Invalid value for column '{column.name}' of table {schema.name}: {e}") from e

        if salt is not None:
            names.append(SALT_COLUMN_NAME)
            values.append(salt)
        return names, values

    def _records(self, schema: TableSchema, rows: list[list[RowColumn]]) -> list[Any]:
        records = [r[0] for r in self.assembler.build_records(rows, [schema])]
        visited: dict[tuple[str, Any], Any] = {}
        for record in records:
            self.assembler.resolve_references(record, schema, self._fetch_referenced, visited)
        return records

    def _fetch_referenced(self, schema: TableSchema, column_name: str, value: Any) -> Any:
        column = schema.column(column_name)
        assert column is not None
        sql = sql_commands.select(schema.name, sql_commands.value_condition(column.name, value), limit=1)
        params = [] if value is None else [encode(value, column.kind, column.ordinal)]
        rows = self.engine.query(sql, params)
        if not rows:
            return None
        return self.assembler.build_records(rows, [schema])[0][0]

    def _lookup_column(self, schema: TableSchema, field_name: str) -> ColumnSchema:
        column = resolve_column(schema, field_name)
        if column.is_encrypted:
            raise EncryptedColumnInPredicateError(
                f"Can't search by encrypted column '{column.name}' of table {schema.name}."
            )
        return column

    # --- Tables ---

    def create_table(self, record_type: type) -> None:
        """Create the table of a record type if it doesn't exist yet."""
        schema = self._schema(record_type)
        self.engine.execute(sql_commands.create_table(schema))
        logger.info("Created table %s", schema.name)

    def delete_table(self, record_type: type) -> None:
        """Drop the table of a record type if it exists."""
        schema = self._schema(record_type)
        self.engine.execute(sql_commands.drop_table(schema.name))
        logger.info("Dropped table %s", schema.name)

    def clear_table(self, record_type: type) -> int:
        """Delete every row of a table.

        Returns:
            Number of deleted rows.
        """
        schema = self._schema(record_type)
        count, _ = self.engine.execute(sql_commands.clear_table(schema.name))
        return count

    def check_table_structure(self, record_type: type) -> None:
        """Check that the database table matches the mapping of a record type.

        Raises:
            StorageError: If the table is missing or its columns differ.
        """
        schema = self._schema(record_type)
        rows = self.engine.query(sql_commands.table_info(schema.name))
        if not rows:
            raise StorageError(f"Database doesn't contain table with name: {schema.name}.")

        stored = []
        for row in rows:
            info = {rc.name: rc.value for rc in row}
            stored.append((info["name"], str(info["type"]).upper()))

        expected = [(c.name, c.storage_class.value) for c in schema.columns.values()]
        if schema.has_encrypted_columns:
            expected.append((SALT_COLUMN_NAME, "BLOB"))
        if stored != expected:
            raise StorageError(
                f"Table {schema.name} in the database doesn't match the structure of {record_type.__name__}.",
                f"Expected columns {expected}, found {stored}.",
            )

    # --- Writes ---

    def insert(self, item: T) -> T:
        """Insert a record; an auto-increment key is written back to it."""
        schema = self._schema(type(item))
        names, values = self._row_values(schema, item, include_auto_increment=False)
        _, rowid = self.engine.execute(sql_commands.insert(schema.name, names), values)

        pk = schema.primary_key
        if pk.is_auto_increment and rowid is not None:
            setattr(item, pk.field_name, rowid)
        return item

    def insert_or_replace(self, item: T) -> T:
        """Insert a record, replacing the row with the same primary key."""
        schema = self._schema(type(item))
        names, values = self._row_values(schema, item, include_auto_increment=True)
        _, rowid = self.engine.execute(sql_commands.insert(schema.name, names, replace=True), values)

        pk = schema.primary_key
        if pk.is_auto_increment and getattr(item, pk.field_name, None) is None and rowid is not None:
            setattr(item, pk.field_name, rowid)
        return item

    def update(self, item: Any, predicate: Predicate) -> int:
        """Overwrite the rows matching a condition with the values of a record.

        Encrypted rows are re-encrypted under a fresh salt.

        Returns:
            Number of updated rows.
        """
        schema = self._schema(type(item))
        where, where_params = self._where(schema, predicate)
        names, values = self._row_values(schema, item, include_auto_increment=False)
        if not names:
            return 0
        count, _ = self.engine.execute(sql_commands.update(schema.name, names, where), values + where_params)
        return count

    def delete(self, record_type: type, predicate: Predicate) -> int:
        """Delete the rows matching a condition."""
        schema = self._schema(record_type)
        where, params = self._where(schema, predicate)
        count, _ = self.engine.execute(sql_commands.delete(schema.name, where), params)
        return count

    def delete_by_value(self, record_type: type, field_name: str, value: Any) -> int:
        """Delete the rows whose column equals a value (or is NULL for None)."""
        schema = self._schema(record_type)
        column = self._lookup_column(schema, field_name)
        params = [] if value is None else [encode(value, column.kind, column.ordinal)]
        sql = sql_commands.delete(schema.name, sql_commands.value_condition(column.name, value))
        count, _ = self.engine.execute(sql, params)
        return count

    # --- Reads ---

    def table(self, record_type: type[T]) -> list[T]:
        """Read every row of a table."""
        schema = self._schema(record_type)
        return self._records(schema, self.engine.query(sql_commands.select(schema.name)))

    def find(
        self,
        record_type: type[T],
        predicate: Predicate,
        limit: int | None = None,
        order_by: str | None = None,
        sort_order: SortOrder = SortOrder.ASC,
    ) -> list[T]:
        """Read the rows matching a condition.

        Args:
            record_type: Mapped record type.
            predicate: Condition tree, bare boolean column, or predicate text.
            limit: Maximum number of rows (must be positive).
            order_by: Field to sort by (not an encrypted one).
            sort_order: Sort direction.
        """
        schema = self._schema(record_type)
        where, params = self._where(schema, predicate)
        order_column = translate_order_by(order_by, schema) if order_by is not None else None
        if limit is not None:
            validate_limit(limit)
        sql = sql_commands.select(schema.name, where, order_by=order_column, sort_order=sort_order, limit=limit)
        return self._records(schema, self.engine.query(sql, params))

    def find_first(self, record_type: type[T], predicate: Predicate) -> T | None:
        found = self.find(record_type, predicate, limit=1)
        return found[0] if found else None

    def find_by_value(self, record_type: type[T], field_name: str, value: Any) -> list[T]:
        """Read the rows whose column equals a value (or is NULL for None)."""
        schema = self._schema(record_type)
        column = self._lookup_column(schema, field_name)
        params = [] if value is None else [encode(value, column.kind, column.ordinal)]
        sql = sql_commands.select(schema.name, sql_commands.value_condition(column.name, value))
        return self._records(schema, self.engine.query(sql, params))

    def select(self, record_type: type[T], predicate: Predicate, *fields: str) -> list[T]:
        """Read only some fields of the matching rows; the others keep their defaults."""
        schema = self._schema(record_type)
        if not fields:
            raise TranslateError(f"No fields selected from table {schema.name}.")
        where, params = self._where(schema, predicate)
        columns = [resolve_column(schema, f) for f in fields]
        names = [c.name for c in columns]
        if any(c.is_encrypted for c in columns):
            names.append(SALT_COLUMN_NAME)
        sql = sql_commands.select(schema.name, where, columns=names)
        return self._records(schema, self.engine.query(sql, params))

    def select_top(self, record_type: type[T], count: int) -> list[T]:
        """Read the first rows of a table."""
        schema = self._schema(record_type)
        validate_limit(count)
        return self._records(schema, self.engine.query(sql_commands.select_top(schema.name), [count]))

    def join(
        self,
        first: type,
        second: type,
        on: JoinOn,
        where: Predicate | None = None,
        *,
        third: type | None = None,
        on_third: JoinOn | None = None,
        fourth: type | None = None,
        on_fourth: JoinOn | None = None,
        result: Callable[..., Any] | None = None,
    ) -> list[Any]:
        """Inner join of two to four tables, each joined to the first one.

        Args:
            first: Main record type; where applies to its fields.
            second: Second record type.
            on: (first field, second field) equality.
            where: Optional condition on the first table.
            third, on_third: Optional third table and its join with the first.
            fourth, on_fourth: Optional fourth table and its join with the first.
            result: Combines the records of a row; defaults to a tuple.
        """
        record_types = [first, second]
        ons = [on]
        if third is not None:
            if on_third is None:
                raise TranslateError("Joining a third table requires on_third.")
            record_types.append(third)
            ons.append(on_third)
        if fourth is not None:
            if third is None or on_fourth is None:
                raise TranslateError("Joining a fourth table requires third and on_fourth.")
            record_types.append(fourth)
            ons.append(on_fourth)
        return self._join(record_types, ons, where, outer=False, result=result)

    def left_join(
        self,
        left: type,
        right: type,
        on: JoinOn,
        where: Predicate | None = None,
        result: Callable[..., Any] | None = None,
    ) -> list[Any]:
        """Left join of two tables; the right record is None when nothing matches."""
        return self._join([left, right], [on], where, outer=True, result=result)

    def _join(
        self,
        record_types: Sequence[type],
        ons: Sequence[JoinOn],
        where: Predicate | None,
        outer: bool,
        result: Callable[..., Any] | None,
    ) -> list[Any]:
        schemas = [self._schema(t) for t in record_types]
        main = schemas[0]
        clauses = [self.joins.translate(left, right, main, other) for (left, right), other in zip(ons, schemas[1:])]

        where_sql, params = (None, [])
        if where is not None:
            where_sql, params = self._where(main, where, qualify=True)

        sql = sql_commands.join(schemas, clauses, where_sql, left=outer)
        rows = self.engine.query(sql, params)

        visited: dict[tuple[str, Any], Any] = {}
        joined = []
        for records in self.assembler.build_records(rows, schemas, outer=outer):
            for schema, record in zip(schemas, records):
                if record is not None:
                    self.assembler.resolve_references(record, schema, self._fetch_referenced, visited)
            joined.append(result(*records) if result is not None else tuple(records))
        return joined

    # --- Aggregates ---

    def _aggregate_column(self, schema: TableSchema, field_name: str, function: str) -> ColumnSchema:
        column = resolve_column(schema, field_name)
        if column.is_encrypted:
            raise EncryptedColumnInPredicateError(
                f"Can't compute {function} of encrypted column '{column.name}' of table {schema.name}."
            )
        if column.is_blob_stored:
            raise BlobTypeInComparisonError(
                f"Can't compute {function} of {column.kind.value} column '{column.name}' of table {schema.name}."
            )
        return column

    def _aggregate(
        self,
        function: str,
        record_type: type,
        field_name: str | None,
        predicate: Predicate | None,
        distinct: bool = False,
    ) -> Any:
        schema = self._schema(record_type)
        column_name = "*"
        if field_name is not None:
            if function == "COUNT" and not distinct:
                column_name = resolve_column(schema, field_name).name
            else:
                column_name = self._aggregate_column(schema, field_name, function).name
        where, params = (None, [])
        if predicate is not None:
            where, params = self._where(schema, predicate)
        sql = sql_commands.aggregate(function, schema.name, column_name, distinct, where)
        return self.engine.query_scalar(sql, params)

    def count(self, record_type: type, predicate: Predicate | None = None) -> int:
        """Number of rows, optionally only those matching a condition."""
        return int(self._aggregate("COUNT", record_type, None, predicate) or 0)

    def count_column(self, record_type: type, field_name: str, predicate: Predicate | None = None) -> int:
        """Number of non-NULL values of a column."""
        return int(self._aggregate("COUNT", record_type, field_name, predicate) or 0)

    def count_distinct(self, record_type: type, field_name: str, predicate: Predicate | None = None) -> int:
        """Number of distinct non-NULL values of a plain column."""
        return int(self._aggregate("COUNT", record_type, field_name, predicate, distinct=True) or 0)

    def max(self, record_type: type, field_name: str, predicate: Predicate | None = None) -> Any:
        value = self._aggregate("MAX", record_type, field_name, predicate)
        return decode_column(resolve_column(self._schema(record_type), field_name), value)

    def min(self, record_type: type, field_name: str, predicate: Predicate | None = None) -> Any:
        value = self._aggregate("MIN", record_type, field_name, predicate)
        return decode_column(resolve_column(self._schema(record_type), field_name), value)

    def sum(self, record_type: type, field_name: str, predicate: Predicate | None = None) -> Any:
        return self._aggregate("SUM", record_type, field_name, predicate)

    def avg(self, record_type: type, field_name: str, predicate: Predicate | None = None) -> float | None:
        return self._aggregate("AVG", record_type, field_name, predicate)
