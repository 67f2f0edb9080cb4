"""Local servers for Baked sites.

DevServer serves the build output and keeps the browser in sync with the
sources. RuntimeServer skips the static files and renders each request
through the runtime host, the same path an offline visitor takes.

Key classes:
- DevServer: Build, serve ``<output>``, rebuild and reload on change.
- RuntimeServer: Serve pages rendered on demand by RuntimeHost.
- _ReloadHandler: Static handler with pretty URLs, 404s and the reload hook.
- _ChangeHandler: Watchdog handler that asks the DevServer to rebuild.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import click
import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import CONFIG_FILENAME, BuildError, build_site, load_config
from .runtime.cache import NetworkError
from .runtime.host import RuntimeHost
from .store import SITE_METADATA_PATH

LOGGER = logging.getLogger(__name__)

RUNTIME_STORAGE_DIR = ".baked/runtime"
RELOAD_MESSAGE = json.dumps({"type": "reload"})

RELOAD_SNIPPET = """
<script>
(function () {{
  var socket = new WebSocket("ws://" + window.location.hostname + ":{ws_port}");
  socket.addEventListener("message", function (event) {{
    var message = JSON.parse(event.data || "{{}}");
    if (message.type === "reload") {{ window.location.reload(); }}
  }});
}})();
</script>
"""


def _inject(content: str, script: str) -> str:
    if "</body>" in content:
        return content.replace("</body>", f"{script}</body>")
    return content + script


class _ReloadHandler(SimpleHTTPRequestHandler):
    """Serves the build output.

    ``/blog/post`` is answered from ``blog/post.html`` and ``/blog/`` from
    ``blog/index.html``. Missing files and directories without an index get
    ``404.html`` when the site has one. Every HTML body carries the reload
    snippet.
    """

    reload_script = RELOAD_SNIPPET.format(ws_port=4243)

    def end_headers(self):
        self.send_header("Cache-Control", "no-store")
        super().end_headers()

    def list_directory(self, path):
        return self._serve_404()

    def _send_html(self, status: int, content: str) -> None:
        body = _inject(content, self.reload_script).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _serve_404(self):
        not_found = Path(self.directory) / "404.html"
        if not_found.is_file():
            self._send_html(404, not_found.read_text(encoding="utf-8"))
        else:
            self.send_error(404, "File not found")
        return None

    def _resolve(self, target: Path) -> Path | None:
        if target.is_dir():
            target = target / "index.html"
        elif not target.exists():
            target = target.with_name(f"{target.name}.html")
        return target if target.is_file() else None

    def send_head(self):
        target = self._resolve(Path(self.translate_path(self.path)))
        if target is None:
            return self._serve_404()
        if target.suffix == ".html":
            self._send_html(200, target.read_text(encoding="utf-8"))
            return None
        return super().send_head()


class DevServer:
    """Builds the site, serves it and rebuilds on source changes.

    Attributes:
        project_root: Project directory.
        config: Values from ``baked.yaml``.
        output_dir: Build output being served.
        http_port: HTTP port.
        ws_port: Live reload port (``http_port + 1`` unless given).
    """

    def __init__(self, project_root: Path, http_port: int | None = None, ws_port: int | None = None):
        self.project_root = project_root
        self.config = load_config(project_root)
        self.output_dir = project_root / str(self.config["output_dir"])
        self._work_dir = self.output_dir.with_name(self.output_dir.name + "-tmp")
        self.http_port = int(http_port or self.config["port"])
        self.ws_port = int(ws_port) if ws_port is not None else self.http_port + 1
        self._reload_script = RELOAD_SNIPPET.format(ws_port=self.ws_port)
        self._clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._observer: Observer | None = None
        self._rebuild_lock = threading.Lock()
        self._snapshot: tuple | None = None
        self._last_rebuild_at = 0.0
        self._debounce_seconds = 0.05

    @property
    def watched_dirs(self) -> list[Path]:
        return [
            self.project_root / str(self.config["pages_dir"]),
            self.project_root / str(self.config["assets_dir"]),
        ]

    def start(self, include_drafts: bool = False) -> None:  # pragma: no cover - integration path
        self._build(include_drafts)
        self._snapshot = self._source_snapshot()
        for target in (self._serve_http, self._serve_ws):
            threading.Thread(target=target, daemon=True).start()
        self._start_watcher(include_drafts)
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _build(self, include_drafts: bool) -> None:
        try:
            result = build_site(self.project_root, include_drafts=include_drafts)
        except BuildError as exc:
            click.echo(click.style(f"Build finished with {exc}", fg="red"), err=True)
            for failure in exc.failures:
                click.echo(f"  {failure}", err=True)
            return
        click.echo(f"Built {len(result.pages)} pages into {result.output_dir}")

    def _serve_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type("_SiteHandler", (_ReloadHandler,), {"reload_script": self._reload_script})
        httpd = ThreadingHTTPServer(
            ("", self.http_port), functools.partial(handler_cls, directory=str(self.output_dir))
        )
        click.echo(f"Serving {self.output_dir} at http://localhost:{self.http_port}")
        httpd.serve_forever()

    def _serve_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._ws_main())
        except OSError as exc:
            LOGGER.error("Live reload unavailable on port %s: %s", self.ws_port, exc)

    async def _ws_main(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._register, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _register(self, websocket):
        self._clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._clients.discard(websocket)

    def notify_reload(self) -> None:
        """Tell every connected browser to reload."""
        asyncio.run_coroutine_threadsafe(self._send_all(RELOAD_MESSAGE), self._loop)

    async def _send_all(self, message: str) -> None:
        gone = []
        for client in list(self._clients):
            try:
                await client.send(message)
            except Exception as exc:
                LOGGER.debug("Dropping live reload client: %s", exc)
                gone.append(client)
        self._clients.difference_update(gone)

    def _start_watcher(self, include_drafts: bool) -> None:
        handler = _ChangeHandler(self, include_drafts)
        observer = Observer()
        for directory in self.watched_dirs:
            if directory.exists():
                observer.schedule(handler, str(directory), recursive=True)
        # baked.yaml and site.yaml
        observer.schedule(handler, str(self.project_root), recursive=False)
        observer.start()
        self._observer = observer

    def rebuild(self, include_drafts: bool) -> None:
        """Rebuild and reload unless a rebuild is running or nothing changed."""
        if time.time() - self._last_rebuild_at < self._debounce_seconds:
            return
        if not self._rebuild_lock.acquire(blocking=False):
            return
        try:
            snapshot = self._source_snapshot()
            if snapshot is not None and snapshot == self._snapshot:
                return
            click.echo("Change detected; rebuilding...")
            self._build(include_drafts)
            self._snapshot = snapshot
            self.notify_reload()
            self._last_rebuild_at = time.time()
        finally:
            self._rebuild_lock.release()

    def _source_snapshot(self) -> tuple | None:
        """(path, mtime_ns, size) for every source file, or None if there are none."""
        candidates = [self.project_root / CONFIG_FILENAME, self.project_root / SITE_METADATA_PATH]
        for directory in self.watched_dirs:
            if directory.exists():
                candidates.extend(sorted(p for p in directory.rglob("*") if not p.is_dir()))
        snapshot = []
        for path in candidates:
            try:
                info = path.stat()
            except OSError:
                continue
            snapshot.append(
                (path.relative_to(self.project_root).as_posix(), info.st_mtime_ns, info.st_size)
            )
        return tuple(snapshot) or None


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer, include_drafts: bool):
        super().__init__()
        self.server = server
        self.include_drafts = include_drafts

    def _ignored(self, path: Path) -> bool:
        if ".baked" in path.parts:
            return True
        return any(
            path.is_relative_to(generated)
            for generated in (self.server.output_dir, self.server._work_dir)
        )

    def on_any_event(self, event):
        if event.is_directory or self._ignored(Path(event.src_path)):
            return
        self.server.rebuild(self.include_drafts)


class _RuntimeHandler(BaseHTTPRequestHandler):
    """Answers every GET through the runtime host."""

    host: RuntimeHost
    loop: asyncio.AbstractEventLoop

    def do_GET(self):
        future = asyncio.run_coroutine_threadsafe(self.host.navigate(self.path), self.loop)
        try:
            response = future.result()
        except NetworkError as exc:
            LOGGER.info("%s: %s", self.path, exc)
            self.send_error(404, "File not found")
            return
        self.send_response(response.status)
        self.send_header("Content-type", response.content_type)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        self.wfile.write(response.body)


class RuntimeServer:
    """Serves pages rendered on demand by the runtime host.

    Attributes:
        project_root: Project directory.
        output_dir: Build output the runtime reads ``site.db`` from.
        http_port: HTTP port.
    """

    def __init__(self, project_root: Path, http_port: int | None = None, development: bool = False):
        self.project_root = project_root
        self.config = load_config(project_root)
        self.output_dir = project_root / str(self.config["output_dir"])
        self.http_port = int(http_port or self.config["port"])
        self.host = RuntimeHost(
            self.output_dir,
            project_root / RUNTIME_STORAGE_DIR,
            development=development,
        )
        self._loop = asyncio.new_event_loop()

    def start(self, include_drafts: bool = False) -> None:  # pragma: no cover - integration path
        try:
            build_site(self.project_root, include_drafts=include_drafts)
        except BuildError as exc:
            click.echo(click.style(f"Build finished with {exc}", fg="red"), err=True)
        threading.Thread(target=self._loop.run_forever, daemon=True).start()
        info = asyncio.run_coroutine_threadsafe(self.host.start(), self._loop).result()
        click.echo(f"Runtime ready ({info['mode']}, cache {self.host.cache.name})")

        handler_cls = type(
            "_RuntimeHandlerWithHost",
            (_RuntimeHandler,),
            {"host": self.host, "loop": self._loop},
        )
        httpd = ThreadingHTTPServer(("", self.http_port), handler_cls)
        click.echo(f"Rendering {self.output_dir} on demand at http://localhost:{self.http_port}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            httpd.server_close()
            self.stop()

    def stop(self) -> None:
        asyncio.run_coroutine_threadsafe(self.host.stop(), self._loop).result()
        self._loop.call_soon_threadsafe(self._loop.stop)
