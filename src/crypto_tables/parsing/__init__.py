"""Parsing of predicate text into condition trees."""

from __future__ import annotations

from crypto_tables.errors import PredicateSyntaxError
from crypto_tables.parsing.predicate_lexer import PredicateLexer
from crypto_tables.parsing.predicate_parser import PredicateParser
from crypto_tables.predicate import Node


def parse_predicate(text: str) -> Node:
    """Parse predicate text such as ``age >= 18 and not banned``.

    Raises:
        PredicateSyntaxError: If the text is empty or malformed.
    """
    if not text or not text.strip():
        raise PredicateSyntaxError("Predicate text can't be empty.")
    try:
        return PredicateParser().parse(text)
    except SyntaxError as e:
        raise PredicateSyntaxError(f"Invalid predicate {text!r}: {e}") from e


__all__ = [
    "PredicateLexer",
    "PredicateParser",
    "parse_predicate",
]
