"""Content store for Baked.

The content store is a SQLite database with two tables, ``assets`` and
``pages``, plus the site metadata record kept as a well-known asset. It is
rebuilt from scratch on every build and read-only afterwards.

Key definitions:
- AssetType: Closed set of asset kinds.
- Asset / Page: Row types handed out by Baker.
- create_store: Create an empty store with the schema applied.
- insert_asset / insert_page: Row writers used by the loader.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .utils import dump_metadata

LOGGER = logging.getLogger(__name__)

SITE_METADATA_PATH = "site.yaml"

SCHEMA = """
CREATE TABLE IF NOT EXISTS assets (
    path TEXT NOT NULL,
    type TEXT NOT NULL,
    content BLOB,
    PRIMARY KEY (path, type)
);

CREATE TABLE IF NOT EXISTS pages (
    path TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    title TEXT,
    content TEXT,
    template TEXT,
    data TEXT DEFAULT '{}',
    published_date TEXT
);

CREATE INDEX IF NOT EXISTS idx_pages_published_date
ON pages(published_date) WHERE published_date IS NOT NULL;
"""


class StoreError(Exception):
    """Content store errors (schema, duplicate keys, bad rows)."""


class AssetType(str, Enum):
    """Kinds of assets held in the store."""

    IMAGE = "image"
    STYLESHEET = "stylesheet"
    TEMPLATE = "template"
    DATA = "data"
    SCRIPT = "script"
    OTHER = "other"

    @classmethod
    def from_directory(cls, name: str) -> AssetType:
        """Map an asset directory name onto an asset type.

        Unknown directory names map to OTHER.
        """
        return _DIRECTORY_TYPES.get(name.lower(), cls.OTHER)

    @classmethod
    def coerce(cls, value: AssetType | str) -> AssetType:
        """Accept an enum member, an enum value, or a directory alias.

        Raises:
            ValueError: If the value names no asset type.
        """
        if isinstance(value, cls):
            return value
        key = str(value).lower()
        try:
            return cls(key)
        except ValueError:
            pass
        if key in _DIRECTORY_TYPES:
            return _DIRECTORY_TYPES[key]
        raise ValueError(f"Unknown asset type: {value!r}")

    @property
    def prefixes(self) -> tuple[str, ...]:
        """Name prefixes a caller may redundantly put in front of an asset path."""
        names = {self.value}
        names.update(k for k, v in _DIRECTORY_TYPES.items() if v is self)
        return tuple(f"{name}/" for name in sorted(names))


_DIRECTORY_TYPES: dict[str, AssetType] = {
    "images": AssetType.IMAGE,
    "image": AssetType.IMAGE,
    "img": AssetType.IMAGE,
    "css": AssetType.STYLESHEET,
    "styles": AssetType.STYLESHEET,
    "stylesheet": AssetType.STYLESHEET,
    "templates": AssetType.TEMPLATE,
    "template": AssetType.TEMPLATE,
    "json": AssetType.DATA,
    "data": AssetType.DATA,
    "js": AssetType.SCRIPT,
    "scripts": AssetType.SCRIPT,
    "script": AssetType.SCRIPT,
}


@dataclass(frozen=True)
class Asset:
    """A named, typed static artifact.

    Attributes:
        path: Asset path, unique within its type.
        type: Recorded type string (normally an AssetType value).
        content: Raw text or bytes.
    """

    path: str
    type: str
    content: str | bytes


@dataclass
class Page:
    """A renderable unit of content derived from one source file.

    Attributes:
        path: Source path relative to the content root (primary key).
        slug: Path without extension; used for lookup and output naming.
        title: Page title.
        content: Render-ready body (HTML for markdown sources).
        template: Name of the template asset to render with.
        data: Front matter merged over inherited directory metadata.
        published_date: ISO date string, or None for undated pages.
    """

    path: str
    slug: str
    title: str
    content: str
    template: str
    data: dict[str, Any] = field(default_factory=dict)
    published_date: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Page:
        """Build a Page from a ``pages`` row, parsing its metadata.

        Unparsable or non-object metadata degrades to an empty mapping.
        """
        raw = row.get("data")
        data: Any = {}
        if raw:
            try:
                data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            except (TypeError, ValueError):
                LOGGER.warning("Invalid metadata JSON for page %s", row.get("slug"))
                data = {}
        if not isinstance(data, dict):
            LOGGER.warning("Metadata for page %s is not an object", row.get("slug"))
            data = {}
        return cls(
            path=row.get("path") or "",
            slug=row.get("slug") or "",
            title=row.get("title") or "",
            content=row.get("content") or "",
            template=row.get("template") or "",
            data=data,
            published_date=row.get("published_date"),
        )


def create_store(db_path: Path | str = ":memory:") -> sqlite3.Connection:
    """Create a content store with the schema applied.

    Args:
        db_path: Database file, or ``:memory:``.

    Returns:
        An open sqlite3 connection.
    """
    conn = sqlite3.connect(str(db_path))
    conn.executescript(SCHEMA)
    conn.commit()
    return conn


def insert_asset(
    conn: sqlite3.Connection,
    path: str,
    asset_type: AssetType,
    content: str | bytes,
) -> None:
    """Insert one asset row.

    Raises:
        StoreError: If an asset with the same path and type already exists.
    """
    try:
        conn.execute(
            "INSERT INTO assets (path, type, content) VALUES (?, ?, ?)",
            (path, asset_type.value, content),
        )
    except sqlite3.IntegrityError as exc:
        raise StoreError(f"Duplicate asset {asset_type.value}:{path}") from exc


def insert_page(conn: sqlite3.Connection, page: Page) -> None:
    """Insert one page row.

    Raises:
        StoreError: If the path or slug is already taken.
    """
    try:
        conn.execute(
            """
            INSERT INTO pages (path, slug, title, content, template, data, published_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                page.path,
                page.slug,
                page.title,
                page.content,
                page.template,
                dump_metadata(page.data),
                page.published_date,
            ),
        )
    except sqlite3.IntegrityError as exc:
        raise StoreError(f"Duplicate page {page.path} (slug {page.slug})") from exc
