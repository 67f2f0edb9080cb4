"""Versioned offline cache in front of the runtime's network.

Works like a service worker: ``install`` fills the current cache with the
precache list, ``activate`` removes caches from older versions, and ``fetch``
answers from the cache first. HTML hits are refreshed in the background
(stale-while-revalidate); other hits are served as they are. When the
network fails and nothing is cached, HTML requests get the offline page and
other requests see the error.

Key classes:
- Request / Response: What goes through the cache.
- CacheStorage: Named caches.
- OfflineCache: The install/activate/fetch lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import PurePosixPath

LOGGER = logging.getLogger(__name__)

HTML_CONTENT_TYPE = "text/html; charset=utf-8"
OFFLINE_URL = "/offline.html"

FALLBACK_OFFLINE_PAGE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>Offline</title></head>
  <body><h1>You are offline</h1></body>
</html>
"""


class NetworkError(Exception):
    """The network function could not produce a response."""


@dataclass(frozen=True)
class Request:
    """A request for a URL path.

    Attributes:
        url: Path, e.g. ``/blog/hello``.
        navigate: True for page navigations.
    """

    url: str
    navigate: bool = True

    @property
    def is_html(self) -> bool:
        suffix = PurePosixPath(self.url.split("?", 1)[0]).suffix.lower()
        return self.navigate and suffix in ("", ".html")


@dataclass(frozen=True)
class Response:
    body: bytes
    status: int = 200
    content_type: str = HTML_CONTENT_TYPE

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_html(self) -> bool:
        return self.content_type.startswith("text/html")

    def text(self) -> str:
        return self.body.decode("utf-8")


Network = Callable[[Request], Awaitable[Response]]


class Cache:
    """One named cache of responses keyed by URL."""

    def __init__(self, name: str):
        self.name = name
        self._entries: dict[str, Response] = {}

    def match(self, url: str) -> Response | None:
        return self._entries.get(url)

    def put(self, url: str, response: Response) -> None:
        self._entries[url] = response

    def delete(self, url: str) -> bool:
        return self._entries.pop(url, None) is not None

    def keys(self) -> list[str]:
        return list(self._entries)


class CacheStorage:
    """Named caches, created on first open."""

    def __init__(self):
        self._caches: dict[str, Cache] = {}

    def open(self, name: str) -> Cache:
        cache = self._caches.get(name)
        if cache is None:
            cache = self._caches[name] = Cache(name)
        return cache

    def has(self, name: str) -> bool:
        return name in self._caches

    def delete(self, name: str) -> bool:
        return self._caches.pop(name, None) is not None

    def keys(self) -> list[str]:
        return list(self._caches)


class OfflineCache:
    """Cache-first request handling for one cache version.

    Attributes:
        name: Current cache name, e.g. ``baked-v3``.
        precache: URLs stored by ``install``.
        development: Bypass the cache and always use the network.
        clients_claimed: Set once ``activate`` has run.
    """

    def __init__(
        self,
        storage: CacheStorage,
        name: str,
        network: Network,
        precache: list[str] | None = None,
        offline_url: str = OFFLINE_URL,
        development: bool = False,
    ):
        self.storage = storage
        self.name = name
        self.precache = list(precache or [])
        self.offline_url = offline_url
        self.development = development
        self.clients_claimed = False
        self._network = network
        self._background: set[asyncio.Task] = set()

    async def install(self) -> None:
        """Store every precache URL in the current cache."""
        cache = self.storage.open(self.name)
        for url in self.precache:
            response = await self._network(Request(url))
            if not response.ok:
                raise NetworkError(f"Precache of {url} failed with status {response.status}")
            cache.put(url, response)
        LOGGER.info("Installed %s with %d entries", self.name, len(self.precache))

    async def activate(self) -> None:
        """Delete every cache but the current one and claim clients."""
        for name in self.storage.keys():
            if name != self.name:
                LOGGER.info("Deleting old cache %s", name)
                self.storage.delete(name)
        self.clients_claimed = True

    async def fetch(self, request: Request) -> Response:
        """Answer a request from the cache, the network, or the offline page.

        Raises:
            NetworkError: For non-HTML requests that miss the cache while
                the network is failing.
        """
        if self.development:
            return await self._network(request)

        cache = self.storage.open(self.name)
        cached = cache.match(request.url)
        if cached is not None:
            if request.is_html:
                task = asyncio.create_task(self._revalidate(request))
                self._background.add(task)
                task.add_done_callback(self._background.discard)
            return cached

        try:
            response = await self._network(request)
        except NetworkError:
            if request.is_html:
                LOGGER.info("Offline; serving %s for %s", self.offline_url, request.url)
                return self._offline_page(cache)
            raise
        if request.is_html and response.ok and response.is_html:
            cache.put(request.url, response)
        return response

    async def _revalidate(self, request: Request) -> None:
        try:
            response = await self._network(request)
        except Exception as exc:
            LOGGER.debug("Revalidation of %s failed: %s", request.url, exc)
            return
        if response.ok:
            self.storage.open(self.name).put(request.url, response)

    async def drain(self) -> None:
        """Wait for background revalidations to finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _offline_page(self, cache: Cache) -> Response:
        cached = cache.match(self.offline_url)
        if cached is not None:
            return cached
        return Response(FALLBACK_OFFLINE_PAGE.encode("utf-8"), status=503)
