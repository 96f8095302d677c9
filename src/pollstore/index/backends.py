"""Key-value backends for records, the date index and the artifact cache.

Three interchangeable implementations share one small interface: string
values under keys, plus string sets with a rolling expiry. The backend is
picked once by :func:`create_backend` from the application config.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Set

import httpx

from pollstore.config import AppConfig
from pollstore.errors import StoreUnavailable

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def smembers(self, key: str) -> Set[str]: ...

    def sadd(self, key: str, member: str, *, ttl: Optional[float] = None) -> None: ...

    def srem(self, key: str, member: str) -> None: ...

    def close(self) -> None: ...


class MemoryBackend:
    """In-process backend with an optional JSON snapshot on disk.

    When ``snapshot_path`` is set the snapshot is loaded on construction and
    rewritten after every write, so a restarted process picks up where the
    previous one stopped.
    """

    def __init__(self, snapshot_path: Path | None = None, *, clock: Clock = time.time) -> None:
        self.snapshot_path = Path(snapshot_path) if snapshot_path is not None else None
        self._clock = clock
        self._lock = threading.RLock()
        self._values: Dict[str, str] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._expiry: Dict[str, float] = {}
        if self.snapshot_path is not None:
            self._load_snapshot()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value
            self._persist()

    def smembers(self, key: str) -> Set[str]:
        with self._lock:
            if self._expired(key):
                self._sets.pop(key, None)
                self._expiry.pop(key, None)
                return set()
            return set(self._sets.get(key, ()))

    def sadd(self, key: str, member: str, *, ttl: Optional[float] = None) -> None:
        with self._lock:
            if self._expired(key):
                self._sets.pop(key, None)
            self._sets.setdefault(key, set()).add(member)
            if ttl is not None:
                self._expiry[key] = self._clock() + ttl
            self._persist()

    def srem(self, key: str, member: str) -> None:
        with self._lock:
            members = self._sets.get(key)
            if members is None:
                return
            members.discard(member)
            if not members:
                del self._sets[key]
                self._expiry.pop(key, None)
            self._persist()

    def close(self) -> None:
        with self._lock:
            self._persist()

    def _expired(self, key: str) -> bool:
        expires_at = self._expiry.get(key)
        return expires_at is not None and expires_at <= self._clock()

    def _persist(self) -> None:
        if self.snapshot_path is None:
            return
        data = {
            "values": self._values,
            "sets": {key: sorted(members) for key, members in self._sets.items()},
            "expiry": self._expiry,
            "timestamp": self._clock(),
        }
        try:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.snapshot_path.with_suffix(self.snapshot_path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(data, ensure_ascii=True), encoding="utf-8")
            os.replace(tmp_path, self.snapshot_path)
        except OSError as exc:
            LOGGER.warning("Failed to write snapshot %s: %s", self.snapshot_path, exc)

    def _load_snapshot(self) -> None:
        assert self.snapshot_path is not None
        if not self.snapshot_path.exists():
            return
        try:
            data = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable snapshot %s: %s", self.snapshot_path, exc)
            return
        self._values = dict(data.get("values") or {})
        self._sets = {key: set(members) for key, members in (data.get("sets") or {}).items()}
        self._expiry = {key: float(value) for key, value in (data.get("expiry") or {}).items()}
        LOGGER.debug("Loaded snapshot %s (%d values)", self.snapshot_path, len(self._values))


class SQLiteBackend:
    """Durable local backend on a single SQLite file."""

    def __init__(self, db_path: Path, *, clock: Clock = time.time) -> None:
        self.db_path = Path(db_path)
        self._clock = clock
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open {self.db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.OperationalError as exc:
                self._conn.rollback()
                raise StoreUnavailable(str(exc)) from exc
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS set_members (
                    key TEXT NOT NULL,
                    member TEXT NOT NULL,
                    PRIMARY KEY (key, member)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS set_expiry (
                    key TEXT PRIMARY KEY,
                    expires_at REAL NOT NULL
                )
                """
            )

    def get(self, key: str) -> Optional[str]:
        with self.transaction() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO kv(key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )

    def smembers(self, key: str) -> Set[str]:
        with self.transaction() as conn:
            self._drop_if_expired(conn, key)
            rows = conn.execute("SELECT member FROM set_members WHERE key = ?", (key,)).fetchall()
        return {row["member"] for row in rows}

    def sadd(self, key: str, member: str, *, ttl: Optional[float] = None) -> None:
        with self.transaction() as conn:
            self._drop_if_expired(conn, key)
            conn.execute(
                "INSERT OR IGNORE INTO set_members(key, member) VALUES (?, ?)", (key, member)
            )
            if ttl is not None:
                conn.execute(
                    """
                    INSERT INTO set_expiry(key, expires_at) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET expires_at = excluded.expires_at
                    """,
                    (key, self._clock() + ttl),
                )

    def srem(self, key: str, member: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM set_members WHERE key = ? AND member = ?", (key, member))

    def _drop_if_expired(self, conn: sqlite3.Connection, key: str) -> None:
        row = conn.execute("SELECT expires_at FROM set_expiry WHERE key = ?", (key,)).fetchone()
        if row and row["expires_at"] <= self._clock():
            conn.execute("DELETE FROM set_members WHERE key = ?", (key,))
            conn.execute("DELETE FROM set_expiry WHERE key = ?", (key,))


class RestKVBackend:
    """Remote backend speaking the Redis-over-REST protocol (Upstash, Vercel KV).

    Each command is posted as a JSON array to the base URL; ``sadd`` with a
    ttl is sent as a two-command pipeline so the member and its bucket
    expiry land together.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def _command(self, *args: Any) -> Any:
        return self._post("/", list(args))

    def _pipeline(self, commands: List[List[Any]]) -> List[Any]:
        results = self._post("/pipeline", commands, unwrap=False)
        out = []
        for item in results:
            if isinstance(item, dict) and item.get("error"):
                raise StoreUnavailable(f"KV command failed: {item['error']}")
            out.append(item.get("result") if isinstance(item, dict) else item)
        return out

    def _post(self, path: str, body: Any, *, unwrap: bool = True) -> Any:
        try:
            resp = self._client.post(path, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise StoreUnavailable(
                f"KV request failed: {exc.response.status_code} {exc.response.text}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise StoreUnavailable(f"KV request failed: {exc}") from exc
        if not unwrap:
            return data
        if isinstance(data, dict) and data.get("error"):
            raise StoreUnavailable(f"KV command failed: {data['error']}")
        return data.get("result") if isinstance(data, dict) else data

    def get(self, key: str) -> Optional[str]:
        return self._command("GET", key)

    def set(self, key: str, value: str) -> None:
        self._command("SET", key, value)

    def smembers(self, key: str) -> Set[str]:
        return set(self._command("SMEMBERS", key) or [])

    def sadd(self, key: str, member: str, *, ttl: Optional[float] = None) -> None:
        if ttl is None:
            self._command("SADD", key, member)
            return
        self._pipeline([["SADD", key, member], ["EXPIRE", key, int(ttl)]])

    def srem(self, key: str, member: str) -> None:
        self._command("SREM", key, member)

    def close(self) -> None:
        self._client.close()


def create_backend(config: AppConfig, base_dir: Path | None = None) -> KeyValueBackend:
    """Instantiate the backend named by ``config.backend``."""
    if config.backend == "kv":
        return RestKVBackend(config.kv_url, config.kv_token, timeout=config.timeout)
    if config.backend == "memory":
        return MemoryBackend(config.snapshot_path)
    db_path = config.resolve_db_path(base_dir)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return SQLiteBackend(db_path)
