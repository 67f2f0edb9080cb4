"""Persistent block storage for the runtime host.

The runtime keeps its copy of the site database in a key-value store so the
file survives restarts without being downloaded again. Files are split into
fixed-size numbered blocks; each file also has a size record and an optional
version tag. Only the worker thread touches a BlockStore.

Key classes:
- BlockStore: One ``dbm`` database holding any number of block files.
- BlockFile: Random-access view of one file in the store.
"""

from __future__ import annotations

import dbm
import logging
from collections.abc import Iterator
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 8192

_BLOCK_SIZE_KEY = "__block_size__"


def _block_count(size: int, block_size: int) -> int:
    return -(-size // block_size)


class BlockFile:
    """A file stored as numbered blocks.

    Attributes:
        name: File name within the store.
        block_size: Bytes per block.
    """

    def __init__(self, db, name: str, block_size: int):
        self._db = db
        self.name = name
        self.block_size = block_size

    def _key(self, suffix: object) -> str:
        return f"{self.name}:{suffix}"

    @property
    def exists(self) -> bool:
        return self._key("size") in self._db

    @property
    def size(self) -> int:
        raw = self._db.get(self._key("size"))
        return int(raw) if raw else 0

    def _set_size(self, size: int) -> None:
        self._db[self._key("size")] = str(size)

    @property
    def version(self) -> str | None:
        """Version tag recorded with the file, if any."""
        raw = self._db.get(self._key("version"))
        return raw.decode("utf-8") if raw is not None else None

    @version.setter
    def version(self, value: str | None) -> None:
        key = self._key("version")
        if value is None:
            if key in self._db:
                del self._db[key]
        else:
            self._db[key] = value

    def _block(self, index: int) -> bytes:
        raw = self._db.get(self._key(index))
        if raw is None:
            return bytes(self.block_size)
        return raw.ljust(self.block_size, b"\0")

    def read(self, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes starting at ``offset``.

        Reads past the end of the file are short.
        """
        size = self.size
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        end = min(offset + length, size)
        chunks = []
        pos = offset
        while pos < end:
            index, start = divmod(pos, self.block_size)
            take = min(self.block_size - start, end - pos)
            chunks.append(self._block(index)[start : start + take])
            pos += take
        return b"".join(chunks)

    def write(self, offset: int, data: bytes) -> None:
        """Write ``data`` at ``offset``, growing the file when needed."""
        if offset < 0:
            raise ValueError("offset must be non-negative")
        view = memoryview(data)
        written = 0
        while written < len(view):
            index, start = divmod(offset + written, self.block_size)
            take = min(self.block_size - start, len(view) - written)
            block = bytearray(self._block(index))
            block[start : start + take] = view[written : written + take]
            self._db[self._key(index)] = bytes(block)
            written += take
        if offset + len(view) > self.size:
            self._set_size(offset + len(view))

    def truncate(self, size: int = 0) -> None:
        """Shrink the file to ``size`` bytes, dropping whole blocks past it."""
        old_size = self.size
        if size >= old_size:
            self._set_size(max(size, old_size))
            return
        keep = _block_count(size, self.block_size)
        for index in range(keep, _block_count(old_size, self.block_size)):
            key = self._key(index)
            if key in self._db:
                del self._db[key]
        tail = size % self.block_size
        if tail:
            block = self._block(keep - 1)
            self._db[self._key(keep - 1)] = block[:tail] + bytes(self.block_size - tail)
        self._set_size(size)

    def blocks(self) -> Iterator[bytes]:
        """Yield the file's contents block by block."""
        size = self.size
        for index in range(_block_count(size, self.block_size)):
            block = self._block(index)
            remaining = size - index * self.block_size
            yield block[:remaining] if remaining < self.block_size else block

    def read_all(self) -> bytes:
        return b"".join(self.blocks())

    def write_all(self, data: bytes) -> None:
        """Replace the file's contents."""
        self.truncate(0)
        self.write(0, data)
        self._set_size(len(data))

    def delete(self) -> None:
        self.truncate(0)
        for suffix in ("size", "version"):
            key = self._key(suffix)
            if key in self._db:
                del self._db[key]


class BlockStore:
    """Block files kept in one ``dbm`` database.

    The block size is recorded on first use; reopening a store keeps the
    recorded size.

    Attributes:
        path: Database path (``dbm`` may add a suffix).
        block_size: Bytes per block.
    """

    def __init__(self, path: Path, block_size: int = DEFAULT_BLOCK_SIZE):
        path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._db = dbm.open(str(path), "c")
        stored = self._db.get(_BLOCK_SIZE_KEY)
        if stored:
            self.block_size = int(stored)
        else:
            self.block_size = block_size
            self._db[_BLOCK_SIZE_KEY] = str(block_size)
        LOGGER.debug("Opened block store %s (block size %d)", path, self.block_size)

    def file(self, name: str) -> BlockFile:
        return BlockFile(self._db, name, self.block_size)

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> BlockStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
