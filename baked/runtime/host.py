"""Runtime host: renders pages on demand from the shipped database.

RuntimeHost wires the pieces together. It starts the database worker on its
own thread, initializes it through the RPC client, then installs and
activates the offline cache. Navigations go through the cache; its network
function asks the worker to render the route, and fetches other build files
(images, the offline page) straight from the build source.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any

from .cache import OFFLINE_URL, CacheStorage, NetworkError, OfflineCache, Request, Response
from .fetch import FetchError, make_fetcher
from .rpc import DEFAULT_TIMEOUT, RpcClient, RpcError
from .worker import WorkerThread

LOGGER = logging.getLogger(__name__)

DEFAULT_INIT_TIMEOUT = 60.0


class RuntimeHost:
    """Runs the worker, RPC client and offline cache for one build.

    Attributes:
        source: Build directory or base URL.
        storage_dir: Where the block store and scratch files live.
        development: Bypass the offline cache.
    """

    def __init__(
        self,
        source: str | Path,
        storage_dir: Path,
        development: bool = False,
        storage: CacheStorage | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
    ):
        self.source = source
        self.storage_dir = Path(storage_dir)
        self.development = development
        self.storage = storage or CacheStorage()
        self.client = RpcClient(timeout=timeout)
        self.cache: OfflineCache | None = None
        self._init_timeout = init_timeout
        self._fetcher = make_fetcher(source)
        self._thread: WorkerThread | None = None

    async def start(self) -> dict[str, Any]:
        """Start and initialize the worker, then install the cache.

        Returns:
            The worker's init result.

        Raises:
            RpcError: If the worker fails to initialize.
        """
        loop = asyncio.get_running_loop()
        self._thread = WorkerThread(self.client.receive, loop)
        self.client.channel = self._thread
        self._thread.start()
        response = await self.client.call(
            "init",
            timeout=self._init_timeout,
            source=str(self.source),
            storage_dir=str(self.storage_dir),
        )
        info = response["result"]
        self.cache = OfflineCache(
            self.storage,
            info.get("cache_name") or "baked-v0",
            self._network,
            precache=info.get("precache"),
            development=self.development,
        )
        await self.cache.install()
        await self.cache.activate()
        LOGGER.info("Runtime ready (%s, cache %s)", info.get("mode"), self.cache.name)
        return info

    async def navigate(self, path: str) -> Response:
        """Answer a request for ``path`` through the offline cache."""
        if self.cache is None:
            raise RuntimeError("RuntimeHost.start() has not been called")
        return await self.cache.fetch(Request(path))

    async def stop(self) -> None:
        if self.cache is not None:
            await self.cache.drain()
        if self._thread is not None:
            await asyncio.to_thread(self._thread.stop)

    async def _network(self, request: Request) -> Response:
        if request.is_html and request.url != OFFLINE_URL:
            try:
                response = await self.client.call("handleRoute", path=request.url)
            except RpcError as exc:
                raise NetworkError(str(exc)) from exc
            result = response.get("result") or {}
            return Response(
                str(response.get("html") or "").encode("utf-8"),
                status=int(result.get("status", 200)),
            )
        try:
            body = await asyncio.to_thread(self._fetcher.fetch, request.url)
        except FetchError as exc:
            raise NetworkError(str(exc)) from exc
        content_type = mimetypes.guess_type(request.url)[0] or "application/octet-stream"
        if content_type == "text/html":
            content_type = "text/html; charset=utf-8"
        return Response(body, content_type=content_type)
