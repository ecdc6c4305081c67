"""SQLite-backed key-value persistence."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Tuple

from openpyxl import Workbook


SQLITE_PREFIX = "sqlite://"

TRACKED_PRODUCTS_KEY = "trackedProducts"
NOTIFICATION_MAP_KEY = "notificationMap"

EXPORT_COLUMNS = (
    ("productId", "product_id"),
    ("name", "name"),
    ("color", "color"),
    ("size", "size"),
    ("region", "region"),
    ("stockStatus", "stock_status"),
    ("currentPrice", "current_price"),
    ("originalPrice", "original_price"),
    ("onSale", "on_sale"),
    ("url", "url"),
    ("markdownUrl", "markdown_url"),
    ("lastChecked", "last_checked"),
)


def resolve_sqlite_path(database_url: str) -> Path:
    """Translate a DATABASE_URL into a filesystem path."""
    if not database_url:
        raise ValueError("DATABASE_URL must not be empty")

    if database_url.startswith(SQLITE_PREFIX):
        raw_path = database_url[len(SQLITE_PREFIX) :]
        # Allow sqlite:///path/to/file and sqlite://path/to/file styles.
        if raw_path.startswith("/"):
            raw_path = raw_path[1:]
        path = Path(raw_path)
    else:
        path = Path(database_url)

    if not path.is_absolute():
        path = Path.cwd() / path

    return path.expanduser().resolve()


@dataclass
class Database:
    """Thin wrapper around sqlite3 exposing a JSON key-value store and run history."""

    path: Path

    def connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    def initialize(self) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    executed_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    notes TEXT
                )
                """
            )
            conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        with self.connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if not row:
            return default
        return json.loads(row[0])

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, Any]) -> None:
        """Write several keys in one transaction; readers never see half of it."""
        with self.connect() as conn:
            conn.executemany(
                """
                INSERT INTO kv_store (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                [(key, json.dumps(value, ensure_ascii=False)) for key, value in values.items()],
            )
            conn.commit()

    def add_run(self, executed_at: str, status: str, notes: str | None) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO runs (executed_at, status, notes) VALUES (?, ?, ?)",
                (executed_at, status, notes),
            )
            conn.commit()

    def recent_runs(self, limit: int = 10) -> Iterable[Tuple[str, str, str | None]]:
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT executed_at, status, notes FROM runs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            yield from cursor.fetchall()

    def export_items_to_xlsx(self, export_path: Path) -> Path:
        """Write the tracked items to a spreadsheet, one row per variant."""
        items: list[Dict[str, Any]] = self.get(TRACKED_PRODUCTS_KEY, []) or []
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = "tracked_items"
        worksheet.append([header for _, header in EXPORT_COLUMNS])
        for item in items:
            worksheet.append([item.get(key) for key, _ in EXPORT_COLUMNS])

        export_path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(export_path)
        return export_path
