"""Fetching build artifacts for the runtime host.

The runtime downloads ``manifest.json`` and ``site.db`` (and serves other
static build files) either from a local build directory or over HTTP with
httpx.

Key classes:
- FetchError: An artifact could not be retrieved.
- DirectoryFetcher: Reads artifacts from a build directory.
- HttpFetcher: Downloads artifacts relative to a base URL.

Functions:
    make_fetcher: Pick a fetcher for a directory path or URL.
"""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from ..paths import InvalidPathError, validate_path

LOGGER = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 10.0


class FetchError(Exception):
    """An artifact could not be retrieved.

    Attributes:
        name: Artifact name.
    """

    def __init__(self, name: str, reason: str):
        self.name = name
        super().__init__(f"Could not fetch {name}: {reason}")


class DirectoryFetcher:
    """Reads artifacts from a build directory.

    Attributes:
        root: Build output directory.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def fetch(self, name: str) -> bytes:
        try:
            rel = validate_path(name)
        except InvalidPathError as exc:
            raise FetchError(name, str(exc)) from exc
        path = self.root / rel
        if not path.is_file():
            raise FetchError(name, "not found")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FetchError(name, str(exc)) from exc


class HttpFetcher:
    """Downloads artifacts relative to a base URL.

    Attributes:
        base_url: URL the artifact names are resolved against.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def fetch(self, name: str) -> bytes:
        url = self.base_url + name.lstrip("/")
        LOGGER.debug("GET %s", url)
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchError(name, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(name, str(exc)) from exc
        return response.content

    def close(self) -> None:
        self._client.close()


def make_fetcher(source: str | Path) -> DirectoryFetcher | HttpFetcher:
    """Return an HttpFetcher for ``http(s)://`` sources, else a DirectoryFetcher."""
    text = str(source)
    if text.startswith(("http://", "https://")):
        return HttpFetcher(text)
    return DirectoryFetcher(Path(text))
