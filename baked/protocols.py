"""Protocol definitions for Baked.

This module defines the structural interfaces shared between components so
that tests can substitute lightweight fakes (a fake channel instead of a
worker thread, a fake fetcher instead of HTTP).
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .mixers import MixResult


@runtime_checkable
class Mixer(Protocol):
    """Turns one source file into processed content and merged metadata."""

    @abstractmethod
    def mix(self, path: Path, raw: bytes, metadata: dict[str, Any]) -> MixResult:
        """Process a file.

        Args:
            path: Path to the source file.
            raw: File contents.
            metadata: Metadata inherited from enclosing directories.

        Returns:
            MixResult with processed content and merged metadata.
        """
        ...


@runtime_checkable
class Fetcher(Protocol):
    """Fetches build artifacts (``manifest.json``, ``site.db``) by name."""

    @abstractmethod
    def fetch(self, name: str) -> bytes:
        """Return the artifact's bytes.

        Raises:
            FetchError: If the artifact cannot be retrieved.
        """
        ...


@runtime_checkable
class Channel(Protocol):
    """One direction of a message-passing boundary.

    Messages are JSON-compatible dictionaries; nothing mutable is shared
    across the boundary.
    """

    @abstractmethod
    def post(self, message: dict[str, Any]) -> None:
        """Deliver a message to the other side."""
        ...
