"""Lexer for the predicate text language."""

import codecs

import ply.lex as lex


class PredicateLexer:
    """Lexer for tokenizing predicate text."""

    # Reserved keywords (matched case-insensitively)
    reserved = {
        "and": "AND",
        "or": "OR",
        "not": "NOT",
        "is": "IS",
        "null": "NULL",
        "true": "TRUE",
        "false": "FALSE",
    }

    # Token list
    tokens = [
        "IDENTIFIER",
        "INTEGER",
        "FLOAT",
        "STRING",
        "LPAREN",
        "RPAREN",
        "EQ",
        "EQEQ",
        "NEQ",
        "LT",
        "LTE",
        "GT",
        "GTE",
        "MINUS",
    ] + list(reserved.values())

    # Simple tokens; PLY tries longer string rules first
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_NEQ = r"!=|<>"
    t_EQEQ = r"=="
    t_EQ = r"="
    t_LTE = r"<="
    t_LT = r"<"
    t_GTE = r">="
    t_GT = r">"
    t_MINUS = r"-"

    t_ignore = " \t\r\n"

    def __init__(self) -> None:
        self.lexer: lex.LexToken = None  # type: ignore

    def t_FLOAT(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+\.\d+(?:[eE][+-]?\d+)?"
        t.value = float(t.value)
        return t

    def t_INTEGER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+"
        t.value = int(t.value)
        return t

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r'"([^"\\]|\\.)*"'
        # Remove quotes and handle escapes; characters beyond Latin-1 travel as \uXXXX
        t.value = codecs.decode(t.value[1:-1].encode("latin-1", "backslashreplace"), "unicode_escape")
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_]*"
        t.type = self.reserved.get(t.value.lower(), "IDENTIFIER")
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise SyntaxError(f"Illegal character '{t.value[0]}' at position {t.lexpos}")

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens
