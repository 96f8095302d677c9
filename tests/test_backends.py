"""Tests for key-value backends."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import httpx
import pytest

from pollstore.config import AppConfig
from pollstore.errors import StoreUnavailable
from pollstore.index.backends import (
    MemoryBackend,
    RestKVBackend,
    SQLiteBackend,
    create_backend,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(params=["memory", "sqlite"])
def local_backend(request, tmp_path: Path):
    clock = FakeClock()
    if request.param == "memory":
        store = MemoryBackend(clock=clock)
    else:
        store = SQLiteBackend(tmp_path / "kv.db", clock=clock)
    store.clock = clock
    yield store
    store.close()


class TestLocalBackends:
    """Behaviour shared by the memory and SQLite backends."""

    def test_get_missing(self, local_backend) -> None:
        assert local_backend.get("nope") is None

    def test_set_replaces(self, local_backend) -> None:
        local_backend.set("k", "v1")
        local_backend.set("k", "v2")
        assert local_backend.get("k") == "v2"

    def test_set_members(self, local_backend) -> None:
        local_backend.sadd("s", "a")
        local_backend.sadd("s", "b")
        local_backend.sadd("s", "a")
        assert local_backend.smembers("s") == {"a", "b"}

        local_backend.srem("s", "a")
        assert local_backend.smembers("s") == {"b"}
        local_backend.srem("missing", "a")

    def test_set_expires(self, local_backend) -> None:
        local_backend.sadd("s", "a", ttl=60)
        local_backend.clock.now += 59
        assert local_backend.smembers("s") == {"a"}
        local_backend.clock.now += 2
        assert local_backend.smembers("s") == set()

    def test_sadd_refreshes_expiry(self, local_backend) -> None:
        local_backend.sadd("s", "a", ttl=60)
        local_backend.clock.now += 50
        local_backend.sadd("s", "b", ttl=60)
        local_backend.clock.now += 50
        assert local_backend.smembers("s") == {"a", "b"}

    def test_values_never_expire(self, local_backend) -> None:
        local_backend.set("k", "v")
        local_backend.clock.now += 10**9
        assert local_backend.get("k") == "v"


class TestMemoryBackendSnapshot:
    """Test snapshot persistence."""

    def test_snapshot_survives_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "snapshot.json"
        first = MemoryBackend(path)
        first.set("record:A", "{}")
        first.sadd("dateidx:2025-10-10", "A", ttl=3600)
        first.close()

        assert path.exists()
        second = MemoryBackend(path)
        assert second.get("record:A") == "{}"
        assert second.smembers("dateidx:2025-10-10") == {"A"}

    def test_unreadable_snapshot_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "snapshot.json"
        path.write_text("not json")
        store = MemoryBackend(path)
        assert store.get("anything") is None

    def test_no_snapshot_writes_nothing(self, tmp_path: Path) -> None:
        store = MemoryBackend()
        store.set("k", "v")
        assert list(tmp_path.iterdir()) == []


class TestSQLiteBackend:
    """SQLite specific behaviour."""

    def test_schema_creation(self, tmp_path: Path) -> None:
        store = SQLiteBackend(tmp_path / "kv.db")
        names = {
            row["name"]
            for row in store.connection.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"kv", "set_members", "set_expiry"} <= names
        store.close()

    def test_pragma_settings(self, tmp_path: Path) -> None:
        store = SQLiteBackend(tmp_path / "kv.db")
        assert store.connection.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        store.close()

    def test_reopen_keeps_data(self, tmp_path: Path) -> None:
        db_path = tmp_path / "kv.db"
        store = SQLiteBackend(db_path)
        store.set("k", "v")
        store.sadd("s", "m")
        store.close()

        reopened = SQLiteBackend(db_path)
        assert reopened.get("k") == "v"
        assert reopened.smembers("s") == {"m"}
        reopened.close()

    def test_unopenable_path_raises_store_unavailable(self, tmp_path: Path) -> None:
        with pytest.raises(StoreUnavailable):
            SQLiteBackend(tmp_path / "missing-dir" / "kv.db")

    def test_read_errors_raise_store_unavailable(self, tmp_path: Path) -> None:
        """A failing read is reported like a failing write."""
        store = SQLiteBackend(tmp_path / "kv.db")
        store.connection.execute("DROP TABLE kv")
        with pytest.raises(StoreUnavailable):
            store.get("k")
        store.close()

    def test_closed_connection_propagates(self, tmp_path: Path) -> None:
        store = SQLiteBackend(tmp_path / "kv.db")
        store.close()
        with pytest.raises(sqlite3.ProgrammingError):
            store.get("k")


class KVServer:
    """Minimal Redis-over-REST server for MockTransport."""

    def __init__(self) -> None:
        self.values: dict = {}
        self.sets: dict = {}
        self.expiry: dict = {}
        self.requests: list = []

    def run(self, command: list):
        name, *args = command
        if name == "GET":
            return self.values.get(args[0])
        if name == "SET":
            self.values[args[0]] = args[1]
            return "OK"
        if name == "SADD":
            self.sets.setdefault(args[0], set()).add(args[1])
            return 1
        if name == "SREM":
            self.sets.get(args[0], set()).discard(args[1])
            return 1
        if name == "SMEMBERS":
            return sorted(self.sets.get(args[0], set()))
        if name == "EXPIRE":
            self.expiry[args[0]] = args[1]
            return 1
        raise AssertionError(name)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert request.headers["Authorization"] == "Bearer token"
        body = json.loads(request.content)
        if request.url.path.endswith("/pipeline"):
            return httpx.Response(200, json=[{"result": self.run(cmd)} for cmd in body])
        return httpx.Response(200, json={"result": self.run(body)})


class TestRestKVBackend:
    """Test the remote backend against a mock transport."""

    def _backend(self, server: KVServer) -> RestKVBackend:
        return RestKVBackend(
            "https://kv.example", "token", transport=httpx.MockTransport(server.handler)
        )

    def test_values_and_sets(self) -> None:
        server = KVServer()
        kv = self._backend(server)

        assert kv.get("k") is None
        kv.set("k", "v")
        assert kv.get("k") == "v"

        kv.sadd("s", "a")
        kv.sadd("s", "b", ttl=86400)
        assert kv.smembers("s") == {"a", "b"}
        assert server.expiry == {"s": 86400}
        kv.srem("s", "a")
        assert kv.smembers("s") == {"b"}
        kv.close()

    def test_sadd_with_ttl_uses_pipeline(self) -> None:
        server = KVServer()
        kv = self._backend(server)
        kv.sadd("s", "a", ttl=60)
        assert server.requests[-1].url.path == "/pipeline"

    def test_server_error_raises_store_unavailable(self) -> None:
        kv = RestKVBackend(
            "https://kv.example",
            "token",
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down")),
        )
        with pytest.raises(StoreUnavailable):
            kv.get("k")

    def test_command_error_raises_store_unavailable(self) -> None:
        kv = RestKVBackend(
            "https://kv.example",
            "token",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"error": "WRONGTYPE"})
            ),
        )
        with pytest.raises(StoreUnavailable, match="WRONGTYPE"):
            kv.smembers("k")

    def test_connection_error_raises_store_unavailable(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        kv = RestKVBackend("https://kv.example", "token", transport=httpx.MockTransport(refuse))
        with pytest.raises(StoreUnavailable):
            kv.set("k", "v")


class TestCreateBackend:
    """Test backend selection from config."""

    def test_memory(self, tmp_path: Path) -> None:
        config = AppConfig(backend="memory", snapshot_path=tmp_path / "snap.json")
        backend = create_backend(config)
        assert isinstance(backend, MemoryBackend)
        assert backend.snapshot_path == tmp_path / "snap.json"

    def test_sqlite_creates_parent(self, tmp_path: Path) -> None:
        config = AppConfig(backend="sqlite", db_path=Path("data/store.db"))
        backend = create_backend(config, base_dir=tmp_path)
        assert isinstance(backend, SQLiteBackend)
        assert (tmp_path / "data" / "store.db").exists()
        backend.close()

    def test_kv(self) -> None:
        config = AppConfig(backend="kv", kv_url="https://kv.example", kv_token="t")
        backend = create_backend(config)
        assert isinstance(backend, RestKVBackend)
        backend.close()
