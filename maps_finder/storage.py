"""SQLite key/value store for consent, preferences and last results."""
from __future__ import annotations

import json
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

KEY_IP_CONSENT = "ip_location_consent"
KEY_PREFERENCES = "preferences"
KEY_LAST_RESULTS = "last_results"
ALL_KEYS = (KEY_IP_CONSENT, KEY_PREFERENCES, KEY_LAST_RESULTS)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class Store:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        # Consent may be read from a worker thread during location resolution.
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            pass

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value_json TEXT,
                updated_at TEXT
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def get_json(self, key: str) -> Optional[Any]:
        cur = self.conn.cursor()
        cur.execute("SELECT value_json FROM kv_store WHERE key = ?", (key,))
        row = cur.fetchone()
        if not row:
            return None
        return json.loads(row["value_json"])

    def set_json(self, key: str, value: Any) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO kv_store (key, value_json, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=False), utc_now_iso()),
        )
        self.conn.commit()

    def delete(self, *keys: str) -> None:
        cur = self.conn.cursor()
        cur.executemany("DELETE FROM kv_store WHERE key = ?", [(k,) for k in keys])
        self.conn.commit()

    # --- Preferences and cached results ---

    def get_preferences(self) -> Optional[Dict[str, Any]]:
        return self.get_json(KEY_PREFERENCES)

    def save_preferences(self, preferences: Dict[str, Any]) -> None:
        self.set_json(KEY_PREFERENCES, preferences)

    def get_last_results(self) -> Optional[Dict[str, Any]]:
        return self.get_json(KEY_LAST_RESULTS)

    def save_last_results(
        self, results: List[Dict[str, Any]], search_params: Dict[str, Any]
    ) -> None:
        self.set_json(
            KEY_LAST_RESULTS,
            {
                "results": results,
                "searchParams": search_params,
                "timestamp": int(time.time() * 1000),
            },
        )

    def clear_last_results(self) -> None:
        self.delete(KEY_LAST_RESULTS)

    def clear_all(self) -> None:
        self.delete(*ALL_KEYS)


class StoreConsent:
    """ConsentStore backed by :class:`Store`."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def get(self) -> bool:
        return bool(self.store.get_json(KEY_IP_CONSENT))

    def set(self, value: bool) -> None:
        self.store.set_json(KEY_IP_CONSENT, bool(value))
