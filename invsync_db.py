from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import closing, contextmanager
from datetime import date, datetime, timezone
from typing import Any

from invsync_models import (
    HistoryAction,
    HistoryEvent,
    Item,
    ItemStatus,
    Product,
    ProductCategory,
    RunStatus,
    SyncRun,
)
from invsync_settings import get_settings

SYNC_RUN_TYPE = "REMOTE_SYNC"

SCHEMA = """
CREATE TABLE IF NOT EXISTS products(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sku TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    unit TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS items(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL REFERENCES products(id),
    serial_number TEXT NOT NULL UNIQUE,
    mac_address TEXT UNIQUE,
    status TEXT NOT NULL,
    purchase_date TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS stocks(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL REFERENCES products(id),
    warehouse_id TEXT NOT NULL,
    quantity INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(product_id, warehouse_id)
);
CREATE TABLE IF NOT EXISTS item_histories(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id INTEGER NOT NULL REFERENCES items(id),
    action TEXT NOT NULL,
    notes TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_item_histories_item_action ON item_histories(item_id, action);
CREATE TABLE IF NOT EXISTS sync_runs(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    details TEXT,
    error_message TEXT
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class _SQLiteBase:
    def __init__(self, db_path: str | None = None):
        self.db_path = db_path or get_settings().DB_PATH
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(self.db_path)) as cx:
            cx.row_factory = sqlite3.Row
            with cx:
                yield cx

    def _init_db(self) -> None:
        with self._connect() as cx:
            cx.executescript(SCHEMA)


class InventoryStore(_SQLiteBase):
    """Products, serialized items, per-warehouse stock and item history."""

    # products

    def find_product_by_name(self, name: str) -> Product | None:
        with self._connect() as cx:
            r = cx.execute("SELECT * FROM products WHERE name=? ORDER BY id LIMIT 1", (name,)).fetchone()
        return Product(**dict(r)) if r else None

    def sku_exists(self, sku: str) -> bool:
        with self._connect() as cx:
            return cx.execute("SELECT 1 FROM products WHERE sku=?", (sku,)).fetchone() is not None

    def create_product(self, sku: str, name: str, category: ProductCategory, unit: str) -> Product:
        with self._connect() as cx:
            cur = cx.execute(
                "INSERT INTO products(sku, name, category, unit, created_at) VALUES(?,?,?,?,?)",
                (sku, name, category.value, unit, _now()),
            )
        return Product(id=cur.lastrowid, sku=sku, name=name, category=category, unit=unit)

    def list_products(self) -> list[Product]:
        with self._connect() as cx:
            rows = cx.execute("SELECT * FROM products ORDER BY id").fetchall()
        return [Product(**dict(r)) for r in rows]

    def count_products(self) -> int:
        with self._connect() as cx:
            return cx.execute("SELECT COUNT(*) FROM products").fetchone()[0]

    # items

    def find_item_by_serial(self, serial_number: str) -> Item | None:
        with self._connect() as cx:
            r = cx.execute("SELECT * FROM items WHERE serial_number=?", (serial_number,)).fetchone()
        return Item(**dict(r)) if r else None

    def create_item(
        self,
        product_id: int,
        serial_number: str,
        mac_address: str | None,
        status: ItemStatus,
        purchase_date: date | None,
        notes: str | None,
    ) -> Item:
        now = _now()
        with self._connect() as cx:
            cur = cx.execute(
                """INSERT INTO items(product_id, serial_number, mac_address, status,
                purchase_date, notes, created_at, updated_at) VALUES(?,?,?,?,?,?,?,?)""",
                (
                    product_id,
                    serial_number,
                    mac_address or None,
                    status.value,
                    _iso(purchase_date),
                    notes,
                    now,
                    now,
                ),
            )
        return Item(
            id=cur.lastrowid,
            product_id=product_id,
            serial_number=serial_number,
            mac_address=mac_address or None,
            status=status,
            purchase_date=purchase_date,
            notes=notes,
        )

    def update_item(
        self,
        item_id: int,
        mac_address: str | None,
        status: ItemStatus,
        purchase_date: date | None,
        notes: str | None,
    ) -> None:
        with self._connect() as cx:
            cx.execute(
                """UPDATE items SET mac_address=?, status=?, purchase_date=?, notes=?, updated_at=?
                WHERE id=?""",
                (mac_address or None, status.value, _iso(purchase_date), notes, _now(), item_id),
            )

    def count_items(
        self, product_id: int | None = None, statuses: Iterable[ItemStatus] | None = None
    ) -> int:
        sql = "SELECT COUNT(*) FROM items WHERE 1=1"
        params: list[Any] = []
        if product_id is not None:
            sql += " AND product_id=?"
            params.append(product_id)
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return 0
            sql += f" AND status IN ({','.join('?' for _ in values)})"
            params.extend(values)
        with self._connect() as cx:
            return cx.execute(sql, params).fetchone()[0]

    # stock

    def get_stock(self, product_id: int, warehouse_id: str) -> int | None:
        with self._connect() as cx:
            r = cx.execute(
                "SELECT quantity FROM stocks WHERE product_id=? AND warehouse_id=?",
                (product_id, warehouse_id),
            ).fetchone()
        return r[0] if r else None

    def set_stock(self, product_id: int, warehouse_id: str, quantity: int) -> None:
        with self._connect() as cx:
            cx.execute(
                """INSERT INTO stocks(product_id, warehouse_id, quantity, updated_at) VALUES(?,?,?,?)
                ON CONFLICT(product_id, warehouse_id)
                DO UPDATE SET quantity=excluded.quantity, updated_at=excluded.updated_at""",
                (product_id, warehouse_id, quantity, _now()),
            )

    def count_stock_rows(self) -> int:
        with self._connect() as cx:
            return cx.execute("SELECT COUNT(*) FROM stocks").fetchone()[0]

    # history

    def find_history(self, item_id: int, action: HistoryAction, notes: str | None = None) -> int | None:
        sql = "SELECT id FROM item_histories WHERE item_id=? AND action=?"
        params: list[Any] = [item_id, action.value]
        if notes:
            sql += " AND notes=?"
            params.append(notes)
        with self._connect() as cx:
            r = cx.execute(sql + " LIMIT 1", params).fetchone()
        return r[0] if r else None

    def add_history(
        self,
        item_id: int,
        action: HistoryAction,
        notes: str | None,
        metadata: dict[str, Any],
        created_at: datetime,
    ) -> int:
        with self._connect() as cx:
            cur = cx.execute(
                "INSERT INTO item_histories(item_id, action, notes, metadata, created_at) VALUES(?,?,?,?,?)",
                (item_id, action.value, notes, json.dumps(metadata, default=str), created_at.isoformat()),
            )
        return cur.lastrowid

    def list_history(self, item_id: int | None = None) -> list[HistoryEvent]:
        sql = "SELECT * FROM item_histories"
        params: tuple[Any, ...] = ()
        if item_id is not None:
            sql += " WHERE item_id=?"
            params = (item_id,)
        with self._connect() as cx:
            rows = cx.execute(sql + " ORDER BY id", params).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["metadata"] = json.loads(d["metadata"]) if d["metadata"] else {}
            out.append(HistoryEvent(**d))
        return out

    def count_history(self) -> int:
        with self._connect() as cx:
            return cx.execute("SELECT COUNT(*) FROM item_histories").fetchone()[0]


class RunLedger(_SQLiteBase):
    """Durable record of sync invocations; each run is closed exactly once."""

    def __init__(self, db_path: str | None = None, run_type: str = SYNC_RUN_TYPE):
        super().__init__(db_path)
        self.run_type = run_type

    def begin_run(self) -> int:
        with self._connect() as cx:
            cur = cx.execute(
                "INSERT INTO sync_runs(type, status, started_at, details) VALUES(?,?,?,?)",
                (
                    self.run_type,
                    RunStatus.IN_PROGRESS.value,
                    _now(),
                    json.dumps({"message": "Sync started"}),
                ),
            )
        return cur.lastrowid

    def _close(self, run_id: int, status: RunStatus, details: dict[str, Any], error: str | None) -> None:
        with self._connect() as cx:
            cur = cx.execute(
                """UPDATE sync_runs SET status=?, finished_at=?, details=?, error_message=?
                WHERE id=? AND status=?""",
                (
                    status.value,
                    _now(),
                    json.dumps(details, default=str),
                    error,
                    run_id,
                    RunStatus.IN_PROGRESS.value,
                ),
            )
            if cur.rowcount != 1:
                raise RuntimeError(f"Sync run {run_id} is not in progress")

    def complete_run(self, run_id: int, details: dict[str, Any]) -> None:
        self._close(run_id, RunStatus.SUCCESS, details, None)

    def fail_run(self, run_id: int, error: str) -> None:
        self._close(run_id, RunStatus.FAILED, {"message": "Sync failed", "error": error}, error)

    def get_run(self, run_id: int) -> SyncRun | None:
        with self._connect() as cx:
            r = cx.execute("SELECT * FROM sync_runs WHERE id=?", (run_id,)).fetchone()
        return self._to_run(r) if r else None

    def latest_run(self) -> SyncRun | None:
        runs = self.list_runs(1)
        return runs[0] if runs else None

    def list_runs(self, limit: int = 10) -> list[SyncRun]:
        with self._connect() as cx:
            rows = cx.execute(
                "SELECT * FROM sync_runs WHERE type=? ORDER BY id DESC LIMIT ?",
                (self.run_type, limit),
            ).fetchall()
        return [self._to_run(r) for r in rows]

    @staticmethod
    def _to_run(r: sqlite3.Row) -> SyncRun:
        d = dict(r)
        d["details"] = json.loads(d["details"]) if d["details"] else {}
        return SyncRun(**d)
