"""Typed boolean conditions over record fields.

Conditions are small immutable trees. They are normally built with
:func:`col`::

    (col("age") >= 18) & (col("name") == "Alice") | ~col("active")
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Operator(Enum):
    """Comparison operators and their SQL spelling."""

    EQ = "="
    NE = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="

    @property
    def is_ordering(self) -> bool:
        return self not in (Operator.EQ, Operator.NE)


class Node:
    """Base class of condition nodes; combine with &, | and ~."""

    def __and__(self, other: object) -> And:
        return And(self, as_node(other))

    def __rand__(self, other: object) -> And:
        return And(as_node(other), self)

    def __or__(self, other: object) -> Or:
        return Or(self, as_node(other))

    def __ror__(self, other: object) -> Or:
        return Or(as_node(other), self)

    def __invert__(self) -> Not:
        return Not(self)

    def __bool__(self) -> bool:
        raise TypeError("Conditions have no truth value; use & / | to combine them")


@dataclass(frozen=True)
class Comparison(Node):
    field: str
    operator: Operator
    value: Any


@dataclass(frozen=True)
class NullCheck(Node):
    field: str
    is_null: bool = True


@dataclass(frozen=True)
class IsTrue(Node):
    """A boolean field used as a condition on its own."""

    field: str


@dataclass(frozen=True)
class And(Node):
    left: Node
    right: Node


@dataclass(frozen=True)
class Or(Node):
    left: Node
    right: Node


@dataclass(frozen=True)
class Not(Node):
    operand: Node


class Column:
    """Reference to a record field that builds condition nodes."""

    __hash__ = None  # type: ignore[assignment]

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"col({self.name!r})"

    def _compare(self, operator: Operator, value: Any) -> Comparison:
        if isinstance(value, Column):
            raise TypeError("Comparing two columns is not supported")
        return Comparison(self.name, operator, value)

    def __eq__(self, value: object) -> Node:  # type: ignore[override]
        if value is None:
            return NullCheck(self.name, True)
        return self._compare(Operator.EQ, value)

    def __ne__(self, value: object) -> Node:  # type: ignore[override]
        if value is None:
            return NullCheck(self.name, False)
        return self._compare(Operator.NE, value)

    def __lt__(self, value: Any) -> Comparison:
        return self._compare(Operator.LT, value)

    def __le__(self, value: Any) -> Comparison:
        return self._compare(Operator.LE, value)

    def __gt__(self, value: Any) -> Comparison:
        return self._compare(Operator.GT, value)

    def __ge__(self, value: Any) -> Comparison:
        return self._compare(Operator.GE, value)

    def is_null(self) -> NullCheck:
        return NullCheck(self.name, True)

    def is_not_null(self) -> NullCheck:
        return NullCheck(self.name, False)

    def is_true(self) -> IsTrue:
        return IsTrue(self.name)

    def __and__(self, other: object) -> And:
        return And(IsTrue(self.name), as_node(other))

    def __rand__(self, other: object) -> And:
        return And(as_node(other), IsTrue(self.name))

    def __or__(self, other: object) -> Or:
        return Or(IsTrue(self.name), as_node(other))

    def __ror__(self, other: object) -> Or:
        return Or(as_node(other), IsTrue(self.name))

    def __invert__(self) -> Not:
        return Not(IsTrue(self.name))

    def __bool__(self) -> bool:
        raise TypeError("Columns have no truth value; use & / | to combine conditions")


def col(name: str) -> Column:
    """Start a condition on the named record field."""
    return Column(name)


def as_node(value: object) -> Node:
    """Coerce a bare column to an IsTrue node; pass nodes through."""
    if isinstance(value, Node):
        return value
    if isinstance(value, Column):
        return IsTrue(value.name)
    raise TypeError(f"Expected a condition, got {type(value).__name__}")
