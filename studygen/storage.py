# ============================================================
# Durable key-value store
# ------------------------------------------------------------
# Recovery snapshots and the API credential live here. The store
# is injected into RecoveryService and ApiKeyManager, never
# reached through module-level state.
#   - MemoryStore: dict-backed, for tests and ephemeral runs
#   - SqliteStore: one `kv` table, one connection per operation
# No locking: concurrent writers to the same key, last one wins.
# ============================================================

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .errors import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class MemoryStore:
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class SqliteStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._schema_ready = False

    def _connect(self) -> sqlite3.Connection:
        try:
            if not self._schema_ready:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
            if not self._schema_ready:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                    """
                )
                conn.commit()
                self._schema_ready = True
            return conn
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open store at {self.db_path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return row[0] if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute("INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write '{key}': {e}") from e
        finally:
            conn.close()

    def remove(self, key: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e
        finally:
            conn.close()

    def keys(self, prefix: str = "") -> List[str]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
            return [r[0] for r in rows]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}") from e
        finally:
            conn.close()


def build_store(kind: str, db_path: str) -> KeyValueStore:
    if kind == "memory":
        return MemoryStore()
    if kind == "sqlite":
        return SqliteStore(db_path)
    raise ValueError(f"Unknown store kind: {kind!r} (expected 'sqlite' or 'memory')")
