"""Durable key-value storage for backups and saved sessions."""

import json
import sqlite3
from datetime import datetime
from typing import Optional, Protocol

from .config import CONFIG
from .errors import StorageError, StorageFullError
from .models import PHOTO


class KeyValueStore(Protocol):
    """Whole-value string storage; set() may raise StorageError"""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def items(self) -> list[tuple[str, str]]: ...


def _size(value: str) -> int:
    return len(value.encode("utf-8"))


class MemoryStore:
    """In-process store with the same quota semantics as SQLiteStore"""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes if quota_bytes is not None else CONFIG["storage_quota_bytes"]
        self.data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str):
        others = sum(_size(v) for k, v in self.data.items() if k != key)
        if others + _size(value) > self.quota_bytes:
            raise StorageFullError(f"writing {key!r} would exceed {self.quota_bytes} bytes")
        self.data[key] = value

    def remove(self, key: str):
        self.data.pop(key, None)

    def items(self) -> list[tuple[str, str]]:
        return list(self.data.items())


class SQLiteStore:
    """SQLite-backed key-value store with a total size quota"""

    def __init__(self, db_path: Optional[str] = None, quota_bytes: Optional[int] = None):
        self.db_path = db_path or CONFIG["db_path"]
        self.quota_bytes = quota_bytes if quota_bytes is not None else CONFIG["storage_quota_bytes"]
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._init_schema()
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self.db_path}: {e}") from e

    def _init_schema(self):
        """Create database tables"""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self.conn.commit()

    def get(self, key: str) -> Optional[str]:
        try:
            cursor = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"cannot read {key!r}: {e}") from e
        return row[0] if row else None

    def set(self, key: str, value: str):
        try:
            cursor = self.conn.execute(
                "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) FROM kv WHERE key != ?",
                (key,)
            )
            others = cursor.fetchone()[0]
            if others + _size(value) > self.quota_bytes:
                raise StorageFullError(f"writing {key!r} would exceed {self.quota_bytes} bytes")
            now = datetime.now().isoformat()
            self.conn.execute("""
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = ?, updated_at = ?
            """, (key, value, now, value, now))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"cannot write {key!r}: {e}") from e

    def remove(self, key: str):
        try:
            self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"cannot remove {key!r}: {e}") from e

    def items(self) -> list[tuple[str, str]]:
        try:
            cursor = self.conn.execute("SELECT key, value FROM kv ORDER BY key")
            return [(row[0], row[1]) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"cannot list keys: {e}") from e

    def close(self):
        self.conn.close()


def storage_usage(store: KeyValueStore, quota_bytes: Optional[int] = None) -> dict:
    """Summarize how much of the quota is used, and how much of it is photos"""
    quota = quota_bytes if quota_bytes is not None else CONFIG["storage_quota_bytes"]
    total_size = 0
    photo_count = 0
    photo_size = 0

    for key, value in store.items():
        total_size += _size(value)
        if key != CONFIG["sessions_key"]:
            continue
        try:
            sessions = json.loads(value)
            for session in sessions:
                for entry in session.get("data", []):
                    kind = entry.get("kind", entry.get("type"))
                    if kind == PHOTO and entry.get("content"):
                        photo_count += 1
                        photo_size += _size(str(entry["content"]))
        except (json.JSONDecodeError, AttributeError, TypeError):
            continue

    usage_percent = total_size / quota * 100 if quota else 0.0
    return {
        "total_bytes": total_size,
        "total_kb": round(total_size / 1024, 1),
        "photo_count": photo_count,
        "photo_kb": round(photo_size / 1024, 1),
        "usage_percent": round(usage_percent, 1),
        "near_limit": usage_percent > CONFIG["storage_warning_pct"],
    }
