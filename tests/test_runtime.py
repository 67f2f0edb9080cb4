import json
import sqlite3

import httpx
import pytest

from baked.build import build_site
from baked.runtime.blockstore import BlockStore
from baked.runtime.engine import MODE_DESERIALIZE, MODE_SCRATCH, EmbeddedDatabase, supports_deserialize
from baked.runtime.fetch import DirectoryFetcher, FetchError, HttpFetcher, make_fetcher
from baked.runtime.worker import (
    NOT_FOUND_PAGE,
    DatabaseWorker,
    WorkerState,
    clone_message,
    route_candidates,
)


class RecordingChannel:
    def __init__(self):
        self.messages = []

    def post(self, message):
        self.messages.append(clone_message(message))


class FakeFetcher:
    def __init__(self, files):
        self.files = files

    def fetch(self, name):
        if name not in self.files:
            raise FetchError(name, "not found")
        return self.files[name]


@pytest.fixture
def built(project):
    build_site(project)
    return project / "dist"


def init_message(source, storage_dir, request_id="init-1"):
    return {"id": request_id, "action": "init", "source": str(source), "storage_dir": str(storage_dir)}


def stored_database(tmp_path, block_size=64):
    src = tmp_path / "src.db"
    conn = sqlite3.connect(src)
    conn.execute("CREATE TABLE t (n INTEGER, s TEXT)")
    conn.executemany("INSERT INTO t VALUES (?, ?)", [(1, "one"), (2, "two"), (3, "three")])
    conn.commit()
    conn.close()
    store = BlockStore(tmp_path / "blocks", block_size=block_size)
    source = store.file("site.db")
    source.write_all(src.read_bytes())
    return store, source


def test_block_file_reads_and_writes_across_blocks(tmp_path):
    with BlockStore(tmp_path / "store" / "blocks", block_size=16) as store:
        f = store.file("db")
        assert not f.exists
        assert f.size == 0
        data = bytes(range(40))
        f.write_all(data)
        assert f.exists
        assert f.size == 40
        assert f.read(10, 20) == data[10:30]
        assert f.read(35, 100) == data[35:]
        assert f.read(50, 5) == b""
        assert [len(block) for block in f.blocks()] == [16, 16, 8]

        f.write(38, b"xyz")
        assert f.size == 41
        assert f.read_all() == data[:38] + b"xyz"

        with pytest.raises(ValueError):
            f.read(-1, 4)


def test_block_file_truncate_zeroes_the_tail(tmp_path):
    with BlockStore(tmp_path / "blocks", block_size=16) as store:
        f = store.file("db")
        f.write_all(b"\xff" * 41)
        f.truncate(20)
        assert f.size == 20
        assert f.read_all() == b"\xff" * 20
        f.write(30, b"!")
        assert f.size == 31
        assert f.read(20, 10) == bytes(10)
        f.truncate(100)
        assert f.size == 100


def test_block_store_persists_across_reopen(tmp_path):
    path = tmp_path / "blocks"
    with BlockStore(path, block_size=16) as store:
        f = store.file("site.db")
        f.write_all(b"hello block storage")
        f.version = "abc123"
        store.file("other").write_all(b"x")

    with BlockStore(path, block_size=4096) as store:
        assert store.block_size == 16
        f = store.file("site.db")
        assert f.read_all() == b"hello block storage"
        assert f.version == "abc123"
        f.version = None
        assert f.version is None
        f.delete()
        assert not f.exists
        assert store.file("other").read_all() == b"x"


@pytest.mark.parametrize("prefer_memory", [True, False])
def test_statement_lifecycle(tmp_path, prefer_memory):
    store, source = stored_database(tmp_path)
    db = EmbeddedDatabase.open(source, tmp_path / "scratch", prefer_memory=prefer_memory)
    expected = MODE_DESERIALIZE if prefer_memory and supports_deserialize() else MODE_SCRATCH
    assert db.mode == expected
    assert (tmp_path / "scratch" / "site.db.scratch").exists() == (expected == MODE_SCRATCH)

    stmt = db.prepare("SELECT n, s FROM t WHERE n > ? ORDER BY n")
    with pytest.raises(sqlite3.ProgrammingError):
        stmt.get_as_object()
    assert stmt.bind([1]) is True
    rows = []
    while stmt.step():
        rows.append(stmt.get_as_object())
    assert rows == [{"n": 2, "s": "two"}, {"n": 3, "s": "three"}]
    assert not stmt.step()

    stmt.bind([2])
    assert stmt.step()
    assert stmt.get_as_object()["s"] == "three"

    stmt.free()
    with pytest.raises(sqlite3.ProgrammingError):
        stmt.step()
    with pytest.raises(sqlite3.ProgrammingError):
        stmt.bind([0])

    db.close()
    store.close()


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/", ["index"]),
        ("", ["index"]),
        ("/index.html", ["index"]),
        ("/?utm=1", ["index"]),
        ("/blog/hello", ["blog/hello", "blog/hello/index", "blog/hello.html"]),
        ("/blog/", ["blog", "blog/index", "blog.html"]),
        ("/blog/hello.html#top", ["blog/hello", "blog/hello/index", "blog/hello.html"]),
        ("/feed.xml", ["feed.xml", "feed.xml.html"]),
    ],
)
def test_route_candidates(path, expected):
    assert route_candidates(path) == expected


def test_clone_message_detaches_nested_values():
    original = {"id": "1", "result": {"precache": ["/"]}}
    copy = clone_message(original)
    copy["result"]["precache"].append("/blog")
    assert original["result"]["precache"] == ["/"]


def test_directory_fetcher(tmp_path):
    (tmp_path / "manifest.json").write_text("{}", encoding="utf-8")
    fetcher = make_fetcher(tmp_path)
    assert isinstance(fetcher, DirectoryFetcher)
    assert fetcher.fetch("/manifest.json") == b"{}"
    with pytest.raises(FetchError, match="not found"):
        fetcher.fetch("site.db")
    with pytest.raises(FetchError, match="Invalid path"):
        fetcher.fetch("../secrets")


def test_http_fetcher_maps_errors():
    def handler(request):
        if request.url.path == "/site/manifest.json":
            return httpx.Response(200, content=b'{"db": "site.db"}')
        if request.url.path == "/site/down":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(404)

    fetcher = HttpFetcher(
        "https://example.com/site/",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    assert fetcher.fetch("manifest.json") == b'{"db": "site.db"}'
    with pytest.raises(FetchError, match="HTTP 404"):
        fetcher.fetch("site.db")
    with pytest.raises(FetchError, match="refused"):
        fetcher.fetch("down")
    fetcher.close()
    assert isinstance(make_fetcher("https://example.com"), HttpFetcher)


def test_worker_initializes_and_renders_routes(built, tmp_path):
    channel = RecordingChannel()
    worker = DatabaseWorker(channel)
    assert worker.state is WorkerState.UNINITIALIZED

    worker.handle(init_message(built, tmp_path / "rt"))
    response = channel.messages[-1]
    assert response["id"] == "init-1"
    info = response["result"]
    assert info["status"] == "ready"
    assert info["refreshed"] is True
    assert info["cache_name"] == "baked-v1"
    assert info["precache"] == ["/", "/offline.html"]
    assert worker.state is WorkerState.READY

    worker.handle({"id": "r1", "action": "handleRoute", "path": "/blog/first"})
    response = channel.messages[-1]
    assert response["id"] == "r1"
    assert response["result"] == {"status": 200, "slug": "blog/first"}
    assert "<title>Post: First</title>" in response["html"]

    worker.handle({"id": "r2", "action": "handleRoute", "path": "/"})
    assert channel.messages[-1]["result"]["slug"] == "index"

    worker.handle({"id": "r3", "action": "handleRoute", "path": "/blog/wip"})
    response = channel.messages[-1]
    assert response["result"] == {"status": 404, "slug": None}
    assert response["html"] == NOT_FOUND_PAGE
    assert worker.state is WorkerState.READY

    worker.handle({"id": "x", "action": "explode"})
    assert channel.messages[-1] == {"id": "x", "error": "WorkerError: Unknown action: 'explode'"}

    worker.handle(init_message(built, tmp_path / "rt", request_id="init-2"))
    assert channel.messages[-1]["result"] == info
    worker.close()


def test_worker_reuses_stored_database(built, tmp_path):
    first = DatabaseWorker(RecordingChannel())
    first.handle(init_message(built, tmp_path / "rt"))
    first.close()

    channel = RecordingChannel()
    second = DatabaseWorker(channel)
    second.handle(init_message(built, tmp_path / "rt"))
    assert channel.messages[-1]["result"]["refreshed"] is False
    second.handle({"id": "r", "action": "handleRoute", "path": "/blog/second"})
    assert "Second post" in channel.messages[-1]["html"]
    second.close()


def test_worker_rejects_routes_before_init():
    channel = RecordingChannel()
    worker = DatabaseWorker(channel)
    worker.handle({"id": "r", "action": "handleRoute", "path": "/"})
    assert channel.messages[-1] == {"id": "r", "error": "WorkerError: Worker is not ready (uninitialized)"}
    assert worker.state is WorkerState.UNINITIALIZED


def test_failed_init_is_terminal(tmp_path):
    channel = RecordingChannel()
    worker = DatabaseWorker(channel)
    worker.handle(init_message(tmp_path / "missing", tmp_path / "rt"))
    assert "Could not fetch manifest.json" in channel.messages[-1]["error"]
    assert worker.state is WorkerState.FAILED

    worker.handle(init_message(tmp_path / "missing", tmp_path / "rt", request_id="again"))
    assert channel.messages[-1]["error"] == "WorkerError: Cannot initialize a worker that is failed"
    worker.close()


def test_worker_verifies_database_checksum(tmp_path):
    manifest = {"db": "site.db", "db_sha256": "0" * 64, "cache_name": "baked-v1"}
    files = {"manifest.json": json.dumps(manifest).encode(), "site.db": b"not a database"}
    channel = RecordingChannel()
    worker = DatabaseWorker(channel, fetcher_factory=lambda source: FakeFetcher(files))
    worker.handle(init_message("anywhere", tmp_path / "rt"))
    assert channel.messages[-1]["error"] == "WorkerError: site.db does not match its manifest checksum"
    assert worker.state is WorkerState.FAILED
    worker.close()
