"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

DEFAULT_API_BASE = "https://data.stortinget.no/eksport"
DEFAULT_SITE_BASE = "https://www.stortinget.no"
BACKENDS = ("memory", "sqlite", "kv")


@dataclass(slots=True)
class AppConfig:
    backend: str = "sqlite"
    db_path: Path = Path("data/pollstore.db")
    snapshot_path: Path | None = None
    kv_url: str | None = None
    kv_token: str | None = None
    api_base: str = DEFAULT_API_BASE
    site_base: str = DEFAULT_SITE_BASE
    sync_window_days: int = 7
    chunk_chars: int = 1000
    overlap: int = 200
    min_chunk_chars: int = 50
    index_ttl_days: int = 30
    max_workers: int = 8
    timeout: float = 30.0
    relevant_limit: int = 10

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend {self.backend!r}, expected one of {BACKENDS}")
        if self.backend == "kv" and not (self.kv_url and self.kv_token):
            raise ValueError("The kv backend needs both kv_url and kv_token")
        if self.chunk_chars <= 0:
            raise ValueError("chunk_chars must be positive")
        if not 0 <= self.overlap < self.chunk_chars:
            raise ValueError("overlap must be >= 0 and smaller than chunk_chars")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        self.db_path = Path(self.db_path)
        if self.snapshot_path is not None:
            self.snapshot_path = Path(self.snapshot_path)

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "AppConfig":
        """Build a config from ``POLLSTORE_*`` variables, then apply overrides.

        ``KV_REST_API_URL``/``KV_REST_API_TOKEN`` are accepted for the kv
        backend. Overrides whose value is ``None`` are ignored.
        """
        env = os.environ if environ is None else environ
        values: dict = {}
        if "POLLSTORE_BACKEND" in env:
            values["backend"] = env["POLLSTORE_BACKEND"]
        if "POLLSTORE_DB" in env:
            values["db_path"] = Path(env["POLLSTORE_DB"])
        if "POLLSTORE_SNAPSHOT" in env:
            values["snapshot_path"] = Path(env["POLLSTORE_SNAPSHOT"])
        if "POLLSTORE_API_BASE" in env:
            values["api_base"] = env["POLLSTORE_API_BASE"]
        kv_url = env.get("POLLSTORE_KV_URL") or env.get("KV_REST_API_URL")
        kv_token = env.get("POLLSTORE_KV_TOKEN") or env.get("KV_REST_API_TOKEN")
        if kv_url:
            values["kv_url"] = kv_url
        if kv_token:
            values["kv_token"] = kv_token
        for name, cast in (
            ("sync_window_days", int),
            ("chunk_chars", int),
            ("overlap", int),
            ("max_workers", int),
            ("timeout", float),
        ):
            key = f"POLLSTORE_{name.upper()}"
            if key in env:
                values[name] = cast(env[key])
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
