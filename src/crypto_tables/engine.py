"""Thin adapter over a sqlite3 connection."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Sequence

from crypto_tables.assembler import RowColumn, row_columns
from crypto_tables.errors import StorageError

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def _cause_for(error: sqlite3.Error) -> str | None:
    text = str(error).lower()
    if "no such table" in text:
        return "Table probably does not exist in the database."
    if "no such column" in text or "has no column" in text:
        return "Table structure probably doesn't match the record type."
    if "constraint" in text:
        return "A table constraint rejected the row."
    return None


class SQLiteEngine:
    """Executes SQL text with positional parameters.

    Every sqlite3 error is re-raised as StorageError. Writes run in their
    own transaction.
    """

    def __init__(self, path: str | Path = MEMORY, foreign_keys: bool = False) -> None:
        self._path = path
        self._connection = self._connect(foreign_keys)

    @property
    def path(self) -> str | Path:
        return self._path

    def _connect(self, foreign_keys: bool) -> sqlite3.Connection:
        if str(self._path) != MEMORY:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            connection = sqlite3.connect(str(self._path))
            if foreign_keys:
                connection.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StorageError(f"Can't open database {self._path}: {e}") from e
        return connection

    def execute(self, sql: str, params: Sequence[Any] = ()) -> tuple[int, int | None]:
        """Run a statement that returns no rows.

        Returns:
            (affected row count, last inserted rowid).
        """
        logger.debug("SQL: %s (%d params)", sql, len(params))
        try:
            with self._connection:
                cursor = self._connection.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise StorageError(f"{e} while executing: {sql}", _cause_for(e)) from e
        return cursor.rowcount, cursor.lastrowid

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[list[RowColumn]]:
        """Run a query and return its rows as named columns."""
        logger.debug("SQL: %s (%d params)", sql, len(params))
        try:
            cursor = self._connection.execute(sql, tuple(params))
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"{e} while querying: {sql}", _cause_for(e)) from e
        names = [d[0] for d in cursor.description or ()]
        return [row_columns(names, row) for row in rows]

    def query_scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Run a query and return the first column of the first row."""
        rows = self.query(sql, params)
        if not rows or not rows[0]:
            return None
        return rows[0][0].value

    def close(self) -> None:
        try:
            self._connection.close()
        except sqlite3.Error as e:
            raise StorageError(f"Can't close database {self._path}: {e}") from e

    def __enter__(self) -> SQLiteEngine:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
