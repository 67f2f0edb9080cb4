"""Utility functions for Baked.

This module contains small helpers used throughout the Baked codebase.
These include slug derivation, date normalization, JSON encoding of
metadata, and directory handling.

Key functions:
    slug_from_path: Convert a content-relative file path to a page slug.
    to_iso_date: Normalize a metadata date value to an ISO string.
    dump_metadata: Serialize page metadata to JSON.
    ensure_clean_dir: Ensure a directory exists and is empty.
    file_digest: SHA-256 hex digest of a file.
"""

from __future__ import annotations

import hashlib
import json
import shutil
from datetime import date, datetime
from pathlib import Path, PurePosixPath
from typing import Any

MARKDOWN_SUFFIXES = (".md", ".markdown")


def slug_from_path(rel_path: str | PurePosixPath) -> str:
    """Convert a content-relative path to a slug by dropping its extension.

    Args:
        rel_path: Path relative to the content root, ``/`` separated.

    Returns:
        The slug, e.g. ``blog/post`` for ``blog/post.md``.

    Examples:
        >>> slug_from_path("blog/2024-01-01-hello.md")
        'blog/2024-01-01-hello'

        >>> slug_from_path("notes/archive.tar.gz")
        'notes/archive.tar'
    """
    path = PurePosixPath(rel_path)
    return path.with_suffix("").as_posix() if path.suffix else path.as_posix()


def to_iso_date(value: Any) -> str | None:
    """Normalize a metadata date to an ISO 8601 string.

    YAML front matter yields ``date`` or ``datetime`` objects for unquoted
    dates; quoted dates arrive as strings and are kept verbatim.

    Args:
        value: Raw metadata value.

    Returns:
        ISO string, or None when the value is empty.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_metadata(data: dict[str, Any]) -> str:
    """Serialize page or site metadata to JSON.

    Dates become ISO strings so they survive the round trip through the
    store and remain comparable as text.
    """
    return json.dumps(data, default=_json_default, ensure_ascii=False)


def is_markdown(path: Path | PurePosixPath) -> bool:
    """Check if a path is a Markdown file (``.md`` or ``.markdown``)."""
    return path.suffix.lower() in MARKDOWN_SUFFIXES


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    If the directory exists, removes all contents. Creates the
    directory if it doesn't exist.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path), ignore_errors=True)
        if path.exists():
            # rmtree can leave read-only files behind
            for item in path.rglob("*"):
                if item.is_file():
                    item.unlink()
            for item in sorted(
                [p for p in path.rglob("*") if p.is_dir()], reverse=True
            ):
                item.rmdir()
            path.rmdir()
    path.mkdir(parents=True, exist_ok=True)


def file_digest(path: Path, chunk_size: int = 65536) -> str:
    """Return the SHA-256 hex digest of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()
