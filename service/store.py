# service/store.py
from __future__ import annotations

import contextlib
import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .errors import StoreCorrupt

LOG = logging.getLogger(__name__)

DEFAULT_STATE_PATH = "/app/local/state/devwatch.db"


class KeyValueStore:
    """
    Namespaced blob store on a single SQLite table.

    get() never raises for a missing key (returns None); set() replaces the blob.
    Every call opens its own connection so scheduler threads can share one store.
    """

    def __init__(self, sqlite_path: str = DEFAULT_STATE_PATH) -> None:
        self.sqlite_path = str(sqlite_path)
        init_db(self.sqlite_path)

    # ---- capability -------------------------------------------------------
    def get(self, namespace: str, key: str) -> bytes | None:
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        if row is None:
            return None
        return bytes(row[0])

    def set(self, namespace: str, key: str, value: bytes) -> None:
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                INSERT INTO kv (namespace, key, value, updated_utc)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                  value = excluded.value,
                  updated_utc = excluded.updated_utc
                """,
                (namespace, key, sqlite3.Binary(value), now_iso()),
            )
            conn.commit()

    def delete(self, namespace: str, key: str) -> None:
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            conn.execute("DELETE FROM kv WHERE namespace = ? AND key = ?", (namespace, key))

    # ---- JSON helpers -----------------------------------------------------
    def get_json(self, namespace: str, key: str, default: Any = None) -> Any:
        """
        Decode a JSON blob. Missing keys and malformed blobs both yield `default`;
        the latter is logged as StoreCorrupt rather than raised.
        """
        raw = self.get(namespace, key)
        if raw is None:
            return default
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            err = StoreCorrupt(f"{namespace}/{key}: {e}")
            LOG.warning("Ignoring corrupt blob %s/%s: %r", namespace, key, err)
            return default

    def set_json(self, namespace: str, key: str, value: Any) -> None:
        data = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        self.set(namespace, key, data)


# ---- Module helpers ---------------------------------------------------------


def init_db(sqlite_path: str) -> None:
    """Create the database file and schema if needed. Safe to call repeatedly."""
    _ensure_dir(sqlite_path)
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _ensure_schema(conn)


def count_rows(sqlite_path: str, namespace: str | None = None) -> int:
    """Number of stored blobs (optionally in one namespace); 0 if the DB is missing."""
    if not os.path.exists(sqlite_path):
        return 0
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _ensure_schema(conn)
        if namespace is None:
            (n,) = conn.execute("SELECT COUNT(*) FROM kv").fetchone()
        else:
            (n,) = conn.execute("SELECT COUNT(*) FROM kv WHERE namespace = ?", (namespace,)).fetchone()
    return int(n or 0)


def reset_db(sqlite_path: str) -> None:
    """Remove the DB file (and WAL side files). Safe if missing."""
    for suffix in ("", "-wal", "-shm"):
        with contextlib.suppress(FileNotFoundError):
            os.remove(sqlite_path + suffix)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ---- Internal ---------------------------------------------------------------


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # Autocommit; writers open explicit transactions.
    conn = sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS kv (
          namespace   TEXT NOT NULL,
          key         TEXT NOT NULL,
          value       BLOB NOT NULL,
          updated_utc TEXT NOT NULL,
          PRIMARY KEY (namespace, key)
        );
        """
    )
