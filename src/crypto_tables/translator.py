"""Translate conditions into parameterized SQL."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from crypto_tables import codec
from crypto_tables.errors import (
    BlobTypeInComparisonError,
    EncryptedColumnInPredicateError,
    EncryptedOrderByError,
    InvalidLimitError,
    NullPredicateError,
    TranslateError,
    UnknownFieldError,
)
from crypto_tables.predicate import And, Column, Comparison, IsTrue, Node, Not, NullCheck, Operator, Or
from crypto_tables.schema import ColumnSchema, TableSchema
from crypto_tables.types import ValueKind

logger = logging.getLogger(__name__)


class SortOrder(Enum):
    ASC = "ASC"
    DESC = "DESC"


def resolve_column(schema: TableSchema, name: str) -> ColumnSchema:
    """Find a column by field name, falling back to the storage name.

    Raises:
        UnknownFieldError: If the table has no such column.
    """
    column = schema.column_for_field(name) or schema.column(name)
    if column is None:
        raise UnknownFieldError(f"Table {schema.name} has no column mapped to '{name}'.")
    return column


class PredicateTranslator:
    """Emit a WHERE clause body and its parameters for a condition tree.

    Every binary node is wrapped in parentheses and every literal becomes a
    ``?`` parameter, in depth-first, left-to-right order.
    """

    def translate(self, predicate: Node | None, schema: TableSchema, qualify: bool = False) -> tuple[str, list[Any]]:
        """Translate a condition for one table.

        Args:
            predicate: Condition tree.
            schema: Table the fields belong to.
            qualify: Prefix columns with the table name (for joins).

        Returns:
            (sql, params) tuple.

        Raises:
            TranslateError: If the condition can't be evaluated by SQL.
        """
        if predicate is None:
            raise NullPredicateError(
                f"Predicate for table {schema.name} can't be None.",
                "Use table() to read every row.",
            )
        if isinstance(predicate, Column):
            predicate = IsTrue(predicate.name)
        params: list[Any] = []
        sql = self._visit(predicate, schema, qualify, params)
        logger.debug("Translated predicate for %s: %s (%d params)", schema.name, sql, len(params))
        return sql, params

    def _visit(self, node: Node, schema: TableSchema, qualify: bool, params: list[Any]) -> str:
        if isinstance(node, And):
            left = self._visit(node.left, schema, qualify, params)
            right = self._visit(node.right, schema, qualify, params)
            return f"({left} AND {right})"
        elif isinstance(node, Or):
            left = self._visit(node.left, schema, qualify, params)
            right = self._visit(node.right, schema, qualify, params)
            return f"({left} OR {right})"
        elif isinstance(node, Not):
            return f"(NOT {self._visit(node.operand, schema, qualify, params)})"
        elif isinstance(node, NullCheck):
            column = self._leaf_column(schema, node.field)
            op = "IS NULL" if node.is_null else "IS NOT NULL"
            return f"({self._name(schema, column, qualify)} {op})"
        elif isinstance(node, Comparison):
            return self._comparison(node, schema, qualify, params)
        elif isinstance(node, IsTrue):
            column = self._leaf_column(schema, node.field)
            self._check_comparable(schema, column)
            if column.kind is not ValueKind.BOOL:
                raise TranslateError(
                    f"Column '{column.name}' in table {schema.name} is not boolean and can't be used as a condition."
                )
            return self._name(schema, column, qualify)
        else:
            raise TranslateError(f"Unsupported condition node: {type(node).__name__}")

    def _comparison(self, node: Comparison, schema: TableSchema, qualify: bool, params: list[Any]) -> str:
        column = self._leaf_column(schema, node.field)
        name = self._name(schema, column, qualify)

        if node.value is None:
            if node.operator is Operator.EQ:
                return f"({name} IS NULL)"
            if node.operator is Operator.NE:
                return f"({name} IS NOT NULL)"
            raise TranslateError(
                f"Column '{column.name}' can't be compared with None using {node.operator.value}."
            )

        self._check_comparable(schema, column)
        try:
            params.append(codec.encode(node.value, column.kind, column.ordinal))
        except (TypeError, ValueError) as e:
            raise TranslateError(f"Invalid value {node.value!r} for column '{column.name}': {e}") from e
        return f"({name} {node.operator.value} ?)"

    def _leaf_column(self, schema: TableSchema, field_name: str) -> ColumnSchema:
        column = resolve_column(schema, field_name)
        if column.is_encrypted:
            raise EncryptedColumnInPredicateError(
                f"Encrypted column '{column.name}' of table {schema.name} can't be used in a predicate.",
                "Encrypted values can't be compared by the database.",
            )
        return column

    def _check_comparable(self, schema: TableSchema, column: ColumnSchema) -> None:
        if column.is_blob_stored:
            raise BlobTypeInComparisonError(
                f"Column '{column.name}' of table {schema.name} is stored as {column.kind.value} blob "
                "and can only be checked for null."
            )

    def _name(self, schema: TableSchema, column: ColumnSchema, qualify: bool) -> str:
        return f"{schema.name}.{column.name}" if qualify else column.name


def translate_order_by(field_name: str, schema: TableSchema) -> str:
    """Return the storage column to order by.

    Raises:
        UnknownFieldError: If the field isn't mapped.
        EncryptedOrderByError: If the column is encrypted.
    """
    column = resolve_column(schema, field_name)
    if column.is_encrypted:
        raise EncryptedOrderByError(
            f"Can't order by encrypted column '{column.name}' of table {schema.name}."
        )
    return column.name


def validate_limit(limit: int) -> int:
    """Raise InvalidLimitError unless limit is a positive integer."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise InvalidLimitError(f"Limit number can't be less or equal to 0: {limit!r}")
    return limit
