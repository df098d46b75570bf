"""Verdict cache for URL analyses and file scans.

Entries are JSON documents keyed by ``url:<normalized url>`` or
``file:<sha256>:<filename>``. An entry older than ``ttl_seconds`` is treated
as a miss; ``ttl_seconds=None`` keeps entries forever.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def url_cache_key(normalized_url: str) -> str:
    return f"url:{normalized_url}"


def file_cache_key(sha256: str, filename: str) -> str:
    return f"file:{sha256}:{filename}"


def _kind(key: str) -> str:
    return key.split(":", 1)[0]


class CacheBase:
    def __init__(self, ttl_seconds: Optional[float] = None) -> None:
        self.ttl_seconds = ttl_seconds

    def _fresh(self, stored_at: float) -> bool:
        return self.ttl_seconds is None or time.time() - stored_at <= self.ttl_seconds

    def get(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set(self, key: str, value: dict) -> None:
        raise NotImplementedError


class SqliteCache(CacheBase):
    def __init__(self, path: str, ttl_seconds: Optional[float] = None) -> None:
        super().__init__(ttl_seconds)
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS verdicts "
                "(key TEXT PRIMARY KEY, kind TEXT NOT NULL, payload TEXT NOT NULL, stored_at REAL NOT NULL)"
            )

    def get(self, key: str) -> Optional[dict]:
        with sqlite3.connect(self.path) as conn:
            row = conn.execute("SELECT payload, stored_at FROM verdicts WHERE key=?", (key,)).fetchone()
        if row is None:
            return None
        payload, stored_at = row
        if not self._fresh(stored_at):
            logger.debug("cache entry expired", extra={"key": key})
            return None
        return json.loads(payload)

    def set(self, key: str, value: dict) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO verdicts (key, kind, payload, stored_at) VALUES (?, ?, ?, ?)",
                (key, _kind(key), json.dumps(value, default=str), time.time()),
            )

    def purge_expired(self) -> int:
        if self.ttl_seconds is None:
            return 0
        with sqlite3.connect(self.path) as conn:
            cur = conn.execute("DELETE FROM verdicts WHERE stored_at < ?", (time.time() - self.ttl_seconds,))
            return cur.rowcount


class FileCache(CacheBase):
    """One JSON file per entry, sharded by kind and digest prefix."""

    def __init__(self, path: str, ttl_seconds: Optional[float] = None) -> None:
        super().__init__(ttl_seconds)
        self.root = Path(path)
        self.root.mkdir(parents=True, exist_ok=True)

    def _entry_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / _kind(key) / digest[:2] / f"{digest}.json"

    def get(self, key: str) -> Optional[dict]:
        entry = self._entry_path(key)
        if not entry.is_file():
            return None
        if not self._fresh(entry.stat().st_mtime):
            logger.debug("cache entry expired", extra={"key": key})
            return None
        return json.loads(entry.read_text(encoding="utf-8"))

    def set(self, key: str, value: dict) -> None:
        entry = self._entry_path(key)
        entry.parent.mkdir(parents=True, exist_ok=True)
        tmp = entry.with_suffix(".tmp")
        tmp.write_text(json.dumps(value, indent=2, default=str), encoding="utf-8")
        os.replace(tmp, entry)


def build_cache(cache_mode: str, base_path: str, ttl_seconds: Optional[float] = None) -> Optional[CacheBase]:
    if cache_mode == "sqlite":
        return SqliteCache(os.path.join(base_path, "cache.db"), ttl_seconds)
    if cache_mode == "files":
        return FileCache(os.path.join(base_path, "cache"), ttl_seconds)
    return None
