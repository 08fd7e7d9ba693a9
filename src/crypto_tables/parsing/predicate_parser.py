"""Parser for the predicate text language.

Grammar (informal)::

    condition : condition AND condition
              | condition OR condition
              | NOT condition
              | ( condition )
              | IDENTIFIER op value
              | IDENTIFIER IS [NOT] NULL
              | IDENTIFIER
"""

from __future__ import annotations

from typing import Any

import ply.yacc as yacc

from crypto_tables.parsing.predicate_lexer import PredicateLexer
from crypto_tables.predicate import And, Comparison, IsTrue, Node, Not, NullCheck, Operator, Or

_OPERATORS = {
    "=": Operator.EQ,
    "==": Operator.EQ,
    "!=": Operator.NE,
    "<>": Operator.NE,
    "<": Operator.LT,
    "<=": Operator.LE,
    ">": Operator.GT,
    ">=": Operator.GE,
}


class PredicateParser:
    """Parser producing condition nodes from predicate text."""

    tokens = PredicateLexer.tokens

    # Operator precedence
    precedence = (
        ("left", "OR"),
        ("left", "AND"),
        ("right", "NOT"),
    )

    def __init__(self) -> None:
        self.lexer = PredicateLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_condition_and(self, p: yacc.YaccProduction) -> None:
        """condition : condition AND condition"""
        p[0] = And(p[1], p[3])

    def p_condition_or(self, p: yacc.YaccProduction) -> None:
        """condition : condition OR condition"""
        p[0] = Or(p[1], p[3])

    def p_condition_not(self, p: yacc.YaccProduction) -> None:
        """condition : NOT condition"""
        p[0] = Not(p[2])

    def p_condition_paren(self, p: yacc.YaccProduction) -> None:
        """condition : LPAREN condition RPAREN"""
        p[0] = p[2]

    def p_condition_comparison(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER EQ value
                     | IDENTIFIER EQEQ value
                     | IDENTIFIER NEQ value
                     | IDENTIFIER LT value
                     | IDENTIFIER LTE value
                     | IDENTIFIER GT value
                     | IDENTIFIER GTE value"""
        operator = _OPERATORS[p[2]]
        if p[3] is None and operator in (Operator.EQ, Operator.NE):
            p[0] = NullCheck(p[1], operator is Operator.EQ)
        else:
            p[0] = Comparison(p[1], operator, p[3])

    def p_condition_is_null(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER IS NULL"""
        p[0] = NullCheck(p[1], True)

    def p_condition_is_not_null(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER IS NOT NULL"""
        p[0] = NullCheck(p[1], False)

    def p_condition_bare(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER"""
        p[0] = IsTrue(p[1])

    def p_value_number(self, p: yacc.YaccProduction) -> None:
        """value : INTEGER
                 | FLOAT"""
        p[0] = p[1]

    def p_value_negative(self, p: yacc.YaccProduction) -> None:
        """value : MINUS INTEGER
                 | MINUS FLOAT"""
        p[0] = -p[2]

    def p_value_string(self, p: yacc.YaccProduction) -> None:
        """value : STRING"""
        p[0] = p[1]

    def p_value_bool(self, p: yacc.YaccProduction) -> None:
        """value : TRUE
                 | FALSE"""
        p[0] = p[1].lower() == "true"

    def p_value_null(self, p: yacc.YaccProduction) -> None:
        """value : NULL"""
        p[0] = None

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="condition", **kwargs)

    def parse(self, data: str) -> Node:
        """Parse predicate text into a condition tree."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)

        return self.parser.parse(data, lexer=self.lexer.lexer)
