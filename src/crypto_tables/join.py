"""Translate join conditions between two mapped tables."""

from __future__ import annotations

from crypto_tables.errors import JoinError, SelfJoinError, UnmappedFieldError
from crypto_tables.schema import ColumnSchema, TableSchema


class JoinTranslator:
    """Emit ``left_table.column = right_table.column`` clauses.

    Only equality joins between plain columns of two different tables are
    supported; the same clause serves inner and left joins.
    """

    def translate(
        self,
        left_field: str,
        right_field: str,
        left_schema: TableSchema,
        right_schema: TableSchema,
    ) -> str:
        """Build the ON clause of a join.

        Raises:
            SelfJoinError: If both schemas describe the same table.
            UnmappedFieldError: If a field isn't a column of its table.
            JoinError: If a joined column is encrypted.
        """
        if left_schema.name == right_schema.name:
            raise SelfJoinError(f"Table {left_schema.name} can't be joined with itself.")
        left = self._column(left_schema, left_field)
        right = self._column(right_schema, right_field)
        return f"{left_schema.name}.{left.name} = {right_schema.name}.{right.name}"

    def _column(self, schema: TableSchema, field_name: str) -> ColumnSchema:
        column = schema.column_for_field(field_name) or schema.column(field_name)
        if column is None:
            raise UnmappedFieldError(f"Field '{field_name}' is not a mapped column of table {schema.name}.")
        if column.is_encrypted:
            raise JoinError(
                f"Encrypted column '{column.name}' of table {schema.name} can't be used in a join condition."
            )
        return column


def translate_join(
    left_field: str,
    right_field: str,
    left_schema: TableSchema,
    right_schema: TableSchema,
) -> str:
    """Shortcut for JoinTranslator().translate(...)."""
    return JoinTranslator().translate(left_field, right_field, left_schema, right_schema)
