"""Tests for the predicate text lexer and parser."""

import pytest

from crypto_tables.errors import PredicateSyntaxError, TranslateError
from crypto_tables.parsing import parse_predicate
from crypto_tables.parsing.predicate_lexer import PredicateLexer
from crypto_tables.predicate import And, Comparison, IsTrue, Not, NullCheck, Operator, Or


class TestPredicateLexer:
    """Tests for the predicate lexer."""

    def test_tokenize_comparison(self):
        """Test tokenizing a simple condition."""
        lexer = PredicateLexer()
        lexer.build()

        tokens = lexer.tokenize('age >= 18 and name = "Bob"')
        token_types = [t.type for t in tokens]

        assert token_types == ["IDENTIFIER", "GTE", "INTEGER", "AND", "IDENTIFIER", "EQ", "STRING"]
        assert tokens[2].value == 18
        assert tokens[6].value == "Bob"

    def test_operators(self):
        """Test that two-character operators win over one-character ones."""
        lexer = PredicateLexer()
        lexer.build()

        tokens = lexer.tokenize("== = != <> <= < >= >")
        assert [t.type for t in tokens] == ["EQEQ", "EQ", "NEQ", "NEQ", "LTE", "LT", "GTE", "GT"]

    def test_keywords_case_insensitive(self):
        lexer = PredicateLexer()
        lexer.build()

        tokens = lexer.tokenize("A IS NOT NULL Or TRUE")
        assert [t.type for t in tokens] == ["IDENTIFIER", "IS", "NOT", "NULL", "OR", "TRUE"]

    def test_float(self):
        lexer = PredicateLexer()
        lexer.build()

        [token] = lexer.tokenize("2.5")
        assert token.type == "FLOAT"
        assert token.value == 2.5


class TestPredicateParser:
    """Tests for parse_predicate."""

    def test_comparison(self):
        assert parse_predicate("age >= 18") == Comparison("age", Operator.GE, 18)
        assert parse_predicate("age == 18") == Comparison("age", Operator.EQ, 18)
        assert parse_predicate("age <> 18") == Comparison("age", Operator.NE, 18)

    def test_string_literal(self):
        assert parse_predicate('name = "Alice"') == Comparison("name", Operator.EQ, "Alice")

    def test_escaped_quote(self):
        assert parse_predicate(r'name = "say \"hi\""') == Comparison("name", Operator.EQ, 'say "hi"')

    def test_non_ascii_literal(self):
        """Test that string literals keep characters outside ASCII."""
        assert parse_predicate('name = "Алиса"') == Comparison("name", Operator.EQ, "Алиса")
        assert parse_predicate('city = "Zürich"') == Comparison("city", Operator.EQ, "Zürich")
        assert parse_predicate('note = "Яблоко \\"зелёное\\"\\n"') == Comparison(
            "note", Operator.EQ, 'Яблоко "зелёное"\n'
        )

    def test_negative_numbers(self):
        assert parse_predicate("x > -5") == Comparison("x", Operator.GT, -5)
        assert parse_predicate("x < -2.5") == Comparison("x", Operator.LT, -2.5)

    def test_booleans(self):
        assert parse_predicate("flag = true") == Comparison("flag", Operator.EQ, True)
        assert parse_predicate("flag = FALSE") == Comparison("flag", Operator.EQ, False)

    def test_null_checks(self):
        assert parse_predicate("email is null") == NullCheck("email", True)
        assert parse_predicate("email is not null") == NullCheck("email", False)
        assert parse_predicate("email = null") == NullCheck("email", True)
        assert parse_predicate("email != null") == NullCheck("email", False)

    def test_bare_identifier(self):
        assert parse_predicate("active") == IsTrue("active")
        assert parse_predicate("not active") == Not(IsTrue("active"))

    def test_precedence(self):
        """Test that AND binds tighter than OR."""
        a = Comparison("a", Operator.EQ, 1)
        b = Comparison("b", Operator.EQ, 2)
        c = Comparison("c", Operator.EQ, 3)
        assert parse_predicate("a = 1 or b = 2 and c = 3") == Or(a, And(b, c))
        assert parse_predicate("(a = 1 or b = 2) and c = 3") == And(Or(a, b), c)

    def test_not_binds_tightest(self):
        a = Comparison("a", Operator.EQ, 1)
        assert parse_predicate("not a = 1 and b") == And(Not(a), IsTrue("b"))

    def test_compound(self):
        """Test a full example condition."""
        parsed = parse_predicate('name = "Alice" and (age >= 18 or not active) and email is not null')
        expected = And(
            And(
                Comparison("name", Operator.EQ, "Alice"),
                Or(Comparison("age", Operator.GE, 18), Not(IsTrue("active"))),
            ),
            NullCheck("email", False),
        )
        assert parsed == expected

    def test_incomplete(self):
        with pytest.raises(PredicateSyntaxError):
            parse_predicate("age >=")

    def test_illegal_character(self):
        with pytest.raises(PredicateSyntaxError):
            parse_predicate("age $ 3")

    def test_empty(self):
        with pytest.raises(PredicateSyntaxError):
            parse_predicate("   ")

    def test_syntax_error_is_translate_error(self):
        with pytest.raises(TranslateError):
            parse_predicate("and and")
