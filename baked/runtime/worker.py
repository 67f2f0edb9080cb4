"""Database worker for the runtime host.

The worker owns the runtime's Baker. It receives JSON-compatible request
messages, one at a time, and answers each with exactly one response message
on its outbound channel:

- ``{"id", "action": "init", "source", "storage_dir"}`` fetches the manifest,
  refreshes the stored database when its version changed, opens it and
  creates the Baker.
- ``{"id", "action": "handleRoute", "path"}`` resolves a URL path to a page
  and renders it (or a 404 body).

Responses are ``{"id", "result", "html"?}`` or ``{"id", "error"}``.

Key classes:
- WorkerState: Lifecycle states.
- DatabaseWorker: Message handler and state machine.
- WorkerThread: Runs a DatabaseWorker on its own thread behind a queue.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import queue
import threading
from collections.abc import Callable
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

from ..baker import Baker
from ..protocols import Channel, Fetcher
from .blockstore import BlockStore
from .engine import EmbeddedDatabase
from .fetch import make_fetcher

LOGGER = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
BLOCKS_NAME = "blocks"

NOT_FOUND_PAGE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>Not Found</title></head>
  <body>
    <h1>404</h1>
    <p>Page not found.</p>
  </body>
</html>
"""


class WorkerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    HANDLING = "handling"
    FAILED = "failed"


class WorkerError(Exception):
    """A request the worker cannot serve in its current state."""


def clone_message(message: dict[str, Any]) -> dict[str, Any]:
    """Copy a message through JSON so no mutable object crosses threads."""
    return json.loads(json.dumps(message))


def route_candidates(path: str) -> list[str]:
    """Slugs to try, in order, for a URL path.

    Examples:
        >>> route_candidates("/blog/")
        ['blog', 'blog/index', 'blog.html']

        >>> route_candidates("/")
        ['index']
    """
    path = path.split("?", 1)[0].split("#", 1)[0] or "/"
    if path != "/":
        path = path.rstrip("/") or "/"
    if path.endswith(".html"):
        path = path[: -len(".html")]
    slug = path.lstrip("/")
    if not slug or slug == "index":
        return ["index"]
    candidates = [slug]
    if not PurePosixPath(slug).suffix:
        candidates.append(f"{slug}/index")
    candidates.append(f"{slug}.html")
    return candidates


class DatabaseWorker:
    """Answers runtime requests over one Baker.

    States move ``UNINITIALIZED -> INITIALIZING -> READY``, then
    ``READY -> HANDLING -> READY`` per route. A failed init is terminal.

    Attributes:
        state: Current WorkerState.
        baker: The worker's Baker once ready.
    """

    def __init__(
        self,
        channel: Channel,
        fetcher_factory: Callable[[str], Fetcher] = make_fetcher,
    ):
        self._channel = channel
        self._fetcher_factory = fetcher_factory
        self.state = WorkerState.UNINITIALIZED
        self.baker: Baker | None = None
        self._store: BlockStore | None = None
        self._db: EmbeddedDatabase | None = None
        self._init_result: dict[str, Any] | None = None

    def handle(self, message: dict[str, Any]) -> None:
        """Handle one request and post its response."""
        request_id = message.get("id")
        action = message.get("action")
        try:
            if action == "init":
                response = {"result": self._init(message)}
            elif action == "handleRoute":
                html, result = self._handle_route(str(message.get("path") or "/"))
                response = {"result": result, "html": html}
            else:
                raise WorkerError(f"Unknown action: {action!r}")
        except Exception as exc:
            LOGGER.exception("Worker request %s (%s) failed", request_id, action)
            response = {"error": f"{type(exc).__name__}: {exc}"}
        self._channel.post({"id": request_id, **response})

    def _init(self, message: dict[str, Any]) -> dict[str, Any]:
        if self.state is WorkerState.READY and self._init_result is not None:
            return self._init_result
        if self.state is not WorkerState.UNINITIALIZED:
            raise WorkerError(f"Cannot initialize a worker that is {self.state.value}")
        self.state = WorkerState.INITIALIZING
        try:
            self._init_result = self._open(
                str(message["source"]), Path(str(message["storage_dir"]))
            )
        except Exception:
            self.state = WorkerState.FAILED
            raise
        self.state = WorkerState.READY
        return self._init_result

    def _open(self, source: str, storage_dir: Path) -> dict[str, Any]:
        fetcher = self._fetcher_factory(source)
        manifest = json.loads(fetcher.fetch(MANIFEST_NAME))
        db_name = str(manifest["db"])
        expected = manifest.get("db_sha256")

        self._store = BlockStore(storage_dir / BLOCKS_NAME)
        stored = self._store.file(db_name)
        refreshed = False
        if not stored.exists or expected is None or stored.version != expected:
            data = fetcher.fetch(db_name)
            digest = hashlib.sha256(data).hexdigest()
            if expected is not None and digest != expected:
                raise WorkerError(f"{db_name} does not match its manifest checksum")
            stored.write_all(data)
            stored.version = digest
            refreshed = True
            LOGGER.info("Stored %s (%d bytes)", db_name, len(data))
        else:
            LOGGER.info("Using stored %s (version %s)", db_name, stored.version)

        self._db = EmbeddedDatabase.open(stored, storage_dir)
        self.baker = Baker(self._db, is_client=True)
        return {
            "status": WorkerState.READY.value,
            "mode": self._db.mode,
            "refreshed": refreshed,
            "cache_name": manifest.get("cache_name"),
            "precache": manifest.get("precache") or [],
        }

    def _handle_route(self, path: str) -> tuple[str, dict[str, Any]]:
        if self.state is not WorkerState.READY or self.baker is None:
            raise WorkerError(f"Worker is not ready ({self.state.value})")
        self.state = WorkerState.HANDLING
        try:
            for slug in route_candidates(path):
                page = self.baker.get_page(slug)
                if page is not None:
                    return self.baker.render_page(page), {"status": 200, "slug": page.slug}
            LOGGER.info("No page for %s", path)
            return NOT_FOUND_PAGE, {"status": 404, "slug": None}
        finally:
            self.state = WorkerState.READY

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
        if self._store is not None:
            self._store.close()


class _LoopChannel:
    """Hands worker responses to a callback on an asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, callback: Callable[[dict], None]):
        self._loop = loop
        self._callback = callback

    def post(self, message: dict[str, Any]) -> None:
        try:
            self._loop.call_soon_threadsafe(self._callback, clone_message(message))
        except RuntimeError:
            LOGGER.debug("Event loop closed; dropped response %s", message.get("id"))


class WorkerThread:
    """Runs a DatabaseWorker on a dedicated thread.

    ``post`` is the inbound channel: messages are copied and queued. The
    worker's responses are delivered to ``on_message`` on ``loop``.
    """

    def __init__(
        self,
        on_message: Callable[[dict], None],
        loop: asyncio.AbstractEventLoop,
        worker_factory: Callable[[Channel], DatabaseWorker] = DatabaseWorker,
    ):
        self._inbox: queue.Queue[dict[str, Any] | None] = queue.Queue()
        self.worker = worker_factory(_LoopChannel(loop, on_message))
        self._thread = threading.Thread(target=self._run, name="baked-worker", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def post(self, message: dict[str, Any]) -> None:
        self._inbox.put(clone_message(message))

    def stop(self, timeout: float | None = 5.0) -> None:
        self._inbox.put(None)
        if self._thread.is_alive():
            self._thread.join(timeout)

    def _run(self) -> None:
        try:
            while True:
                message = self._inbox.get()
                if message is None:
                    break
                self.worker.handle(message)
        finally:
            self.worker.close()
