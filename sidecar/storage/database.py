"""SQLite database for settings and JSON collections."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

import platformdirs

from errors import StaleWriteError

logger = logging.getLogger(__name__)


def _now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


_SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    revision INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT
);
"""


def _get_db_path() -> str:
    """Return OS-appropriate path for medicinia.db."""
    override = os.getenv("MEDICINIA_DB_PATH", "")
    if override:
        return override
    data_dir = platformdirs.user_data_dir("Medicinia")
    os.makedirs(data_dir, exist_ok=True)
    return os.path.join(data_dir, "medicinia.db")


class Database:
    """SQLite-backed storage for settings and whole-collection JSON values.

    Collections (patients, cases, vocabulary, profile, consultation log)
    are read and written whole. Every write bumps a per-key revision so
    callers can detect a concurrent writer instead of silently clobbering
    it.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or _get_db_path()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    # --- Settings ---

    def get_setting(self, key: str) -> str | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
            return row["value"] if row else None
        finally:
            conn.close()

    def set_setting(self, key: str, value: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, _now()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_all_settings(self) -> dict[str, str]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT key, value FROM settings").fetchall()
            return {row["key"]: row["value"] for row in rows}
        finally:
            conn.close()

    def delete_setting(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    # --- Key-value collections ---

    def get_versioned(self, key: str) -> tuple[Any | None, int]:
        """Return ``(value, revision)``; ``(None, 0)`` when the key is absent.

        A value that no longer decodes as JSON is reported as absent but
        keeps its revision, so the next write replaces it cleanly.
        """
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT value, revision FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        if not row:
            return None, 0
        try:
            return json.loads(row["value"]), row["revision"]
        except (json.JSONDecodeError, TypeError):
            logger.warning("Corrupted value under key '%s'; treating as absent", key)
            return None, row["revision"]

    def get(self, key: str) -> Any | None:
        value, _ = self.get_versioned(key)
        return value

    def has_key(self, key: str) -> bool:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT 1 FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    def set(self, key: str, value: Any, expected_revision: int | None = None) -> int:
        """Store ``value`` as JSON and return the new revision.

        With ``expected_revision`` the write only succeeds if nobody else
        wrote the key since it was read; otherwise StaleWriteError.
        """
        payload = json.dumps(value, ensure_ascii=False)
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT revision FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
            current = row["revision"] if row else 0
            if expected_revision is not None and expected_revision != current:
                conn.rollback()
                raise StaleWriteError(key, expected_revision, current)
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, revision, updated_at) VALUES (?, ?, ?, ?)",
                (key, payload, current + 1, _now()),
            )
            conn.commit()
            return current + 1
        finally:
            conn.close()


_db_instance: Database | None = None


def get_db() -> Database:
    """Return the module-level Database singleton."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
    return _db_instance
