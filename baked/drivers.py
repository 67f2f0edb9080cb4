"""Statement execution adapters for Baker.

Baker runs against two database driver shapes: a DB-API connection whose
cursors offer ``fetchone``/``fetchall`` (the build host's ``sqlite3``), and a
step-style engine whose prepared statements are bound, stepped row by row and
freed (the runtime's embedded database). Both are wrapped behind one small
statement interface chosen once at construction.

Key classes:
- StatementDriver: Abstract statement interface used by Baker.
- AccessorDriver: Wraps a DB-API connection.
- SteppingDriver: Wraps a prepare/bind/step engine.

Functions:
    make_driver: Pick the driver matching a database object's shape.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

Row = dict[str, Any]


class StatementDriver(ABC):
    """Executes parameterized SQL and returns rows as dictionaries."""

    @abstractmethod
    def all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        """Run a statement and return every row."""
        ...

    def one(self, sql: str, params: Sequence[Any] = ()) -> Row | None:
        """Run a statement and return its first row, or None."""
        rows = self.all(sql, params)
        return rows[0] if rows else None


class AccessorDriver(StatementDriver):
    """Driver for DB-API connections with single-row and all-rows accessors.

    Attributes:
        conn: Connection exposing ``execute`` returning a cursor.
    """

    def __init__(self, conn: Any):
        self.conn = conn

    def all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        cursor = self.conn.execute(sql, tuple(params))
        columns = [col[0] for col in cursor.description or ()]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def one(self, sql: str, params: Sequence[Any] = ()) -> Row | None:
        cursor = self.conn.execute(sql, tuple(params))
        row = cursor.fetchone()
        if row is None:
            return None
        columns = [col[0] for col in cursor.description or ()]
        return dict(zip(columns, row))


class SteppingDriver(StatementDriver):
    """Driver for engines with prepare/bind/step statement objects.

    Attributes:
        db: Engine exposing ``prepare(sql)``.
    """

    def __init__(self, db: Any):
        self.db = db

    def all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        stmt = self.db.prepare(sql)
        try:
            stmt.bind(list(params))
            rows: list[Row] = []
            while stmt.step():
                rows.append(stmt.get_as_object())
            return rows
        finally:
            stmt.free()

    def one(self, sql: str, params: Sequence[Any] = ()) -> Row | None:
        stmt = self.db.prepare(sql)
        try:
            stmt.bind(list(params))
            return stmt.get_as_object() if stmt.step() else None
        finally:
            stmt.free()


def make_driver(db: Any) -> StatementDriver:
    """Wrap a database object in the driver that matches its shape.

    Args:
        db: A DB-API connection, a step-style engine, or a ready driver.

    Returns:
        A StatementDriver.

    Raises:
        TypeError: If the object has neither shape.
    """
    if isinstance(db, StatementDriver):
        return db
    if callable(getattr(db, "prepare", None)):
        return SteppingDriver(db)
    if callable(getattr(db, "execute", None)):
        return AccessorDriver(db)
    raise TypeError(f"Unsupported database object: {type(db).__name__}")
