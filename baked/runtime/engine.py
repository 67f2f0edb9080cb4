"""Step-style embedded database for the runtime host.

The runtime opens its copy of ``site.db`` from the block store and exposes it
through prepared statements that are bound, stepped one row at a time and
freed, the same shape Baker accepts from any embedded engine.

Opening prefers an in-memory image: when ``sqlite3`` can deserialize a
database the file is assembled from its blocks and loaded straight into
memory. Otherwise the file is copied out to a scratch file that SQLite opens
read-only, which is slower but gives the same results.

Key classes:
- EmbeddedDatabase: Connection wrapper with ``prepare``.
- Statement: One prepared statement.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .blockstore import BlockFile

LOGGER = logging.getLogger(__name__)

MODE_DESERIALIZE = "deserialize"
MODE_SCRATCH = "scratch"


def supports_deserialize() -> bool:
    """Whether this ``sqlite3`` can load a database image from memory."""
    return hasattr(sqlite3.Connection, "deserialize")


class Statement:
    """A prepared statement.

    ``bind`` sets parameters, each ``step`` advances to the next row and
    returns False when there are no more, ``get_as_object`` returns the
    current row, and ``free`` releases the cursor.
    """

    def __init__(self, conn: sqlite3.Connection, sql: str):
        self._conn = conn
        self.sql = sql
        self._params: tuple[Any, ...] = ()
        self._cursor: sqlite3.Cursor | None = None
        self._row: tuple[Any, ...] | None = None
        self._freed = False

    def bind(self, params: Sequence[Any] = ()) -> bool:
        self._check_live()
        self._params = tuple(params)
        self._reset()
        return True

    def step(self) -> bool:
        self._check_live()
        if self._cursor is None:
            self._cursor = self._conn.execute(self.sql, self._params)
        self._row = self._cursor.fetchone()
        return self._row is not None

    def get_as_object(self) -> dict[str, Any]:
        if self._cursor is None or self._row is None:
            raise sqlite3.ProgrammingError("No current row; call step() first")
        columns = [col[0] for col in self._cursor.description or ()]
        return dict(zip(columns, self._row))

    def free(self) -> None:
        self._reset()
        self._freed = True

    def _reset(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
        self._cursor = None
        self._row = None

    def _check_live(self) -> None:
        if self._freed:
            raise sqlite3.ProgrammingError("Statement has been freed")


class EmbeddedDatabase:
    """The runtime's read-only site database.

    Attributes:
        mode: ``deserialize`` or ``scratch``, depending on how it was opened.
    """

    def __init__(self, conn: sqlite3.Connection, mode: str):
        self._conn = conn
        self.mode = mode

    @classmethod
    def open(
        cls,
        source: BlockFile,
        scratch_dir: Path,
        prefer_memory: bool = True,
    ) -> EmbeddedDatabase:
        """Open a database stored in a block file.

        Args:
            source: Block file holding the database.
            scratch_dir: Directory for the scratch copy on the slow path.
            prefer_memory: Use the in-memory image when supported.
        """
        if prefer_memory and supports_deserialize():
            image = bytearray()
            for block in source.blocks():
                image += block
            conn = sqlite3.connect(":memory:")
            conn.deserialize(bytes(image))
            mode = MODE_DESERIALIZE
        else:
            scratch_dir.mkdir(parents=True, exist_ok=True)
            scratch = scratch_dir / f"{source.name}.scratch"
            scratch.write_bytes(source.read_all())
            conn = sqlite3.connect(f"file:{scratch}?mode=ro", uri=True)
            mode = MODE_SCRATCH
        conn.execute("PRAGMA journal_mode=MEMORY")
        LOGGER.info("Opened %s (%d bytes) via %s", source.name, source.size, mode)
        return cls(conn, mode)

    def prepare(self, sql: str) -> Statement:
        return Statement(self._conn, sql)

    def close(self) -> None:
        self._conn.close()
