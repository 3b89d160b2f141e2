from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import structlog

from invsync_db import InventoryStore
from invsync_models import (
    WAREHOUSE_STATUSES,
    CanonicalItem,
    HistorySyncResult,
    ItemStatus,
    Product,
    ReconcileResult,
)
from invsync_normalize import first_value, parse_date
from invsync_rules import classify_history_action, infer_category, status_from_notes

logger = structlog.get_logger()

HISTORY_SERIAL_KEYS = ("serial_number", "sn", "Serial Number")
HISTORY_TIME_KEYS = ("timestamp", "created_at", "date", "waktu")
HISTORY_ACTION_KEYS = ("action", "aksi")
HISTORY_USER_KEYS = ("user", "oleh")
DEFAULT_HISTORY_ACTION = "Imported"


def resolve_status(item: CanonicalItem) -> ItemStatus:
    """Notes override the direct status field whenever they name a status."""
    if item.notes:
        derived = status_from_notes(item.notes)
        if derived is not None:
            return derived
    return item.status


class Reconciler:
    def __init__(
        self,
        store: InventoryStore,
        sku_prefix: str = "ARTA",
        default_unit: str = "Pcs",
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.sku_prefix = sku_prefix
        self.default_unit = default_unit
        self.clock = clock

    def _new_sku(self, type_name: str) -> str:
        stamp = int(self.clock() * 1000)
        type_prefix = type_name[:3].upper()
        sku = f"{self.sku_prefix}-{type_prefix}-{stamp}"
        while self.store.sku_exists(sku):
            stamp += 1
            sku = f"{self.sku_prefix}-{type_prefix}-{stamp}"
        return sku

    def ensure_product(self, type_name: str) -> Product:
        product = self.store.find_product_by_name(type_name)
        if product is not None:
            return product
        product = self.store.create_product(
            sku=self._new_sku(type_name),
            name=type_name,
            category=infer_category(type_name),
            unit=self.default_unit,
        )
        logger.info("Created product", name=product.name, sku=product.sku, category=product.category.value)
        return product

    def apply(self, item: CanonicalItem) -> bool:
        """Upsert one canonical item; returns True when a new item was created."""
        product = self.ensure_product(item.product_type_name)
        final_status = resolve_status(item)

        existing = self.store.find_item_by_serial(item.serial_number)
        if existing is not None:
            self.store.update_item(
                existing.id,
                mac_address=item.mac_address,
                status=final_status,
                purchase_date=item.purchase_date,
                notes=item.notes or existing.notes,
            )
            return False

        self.store.create_item(
            product_id=product.id,
            serial_number=item.serial_number,
            mac_address=item.mac_address,
            status=final_status,
            purchase_date=item.purchase_date,
            notes=item.notes,
        )
        return True

    def reconcile(self, items: Iterable[CanonicalItem]) -> ReconcileResult:
        result = ReconcileResult()
        for item in items:
            try:
                created = self.apply(item)
            except Exception as e:
                logger.error("Failed to sync item", serial_number=item.serial_number, error=str(e))
                result.errors += 1
                result.error_messages.append(f"{item.serial_number}: {e}")
                continue
            if created:
                result.created += 1
            else:
                result.updated += 1

        logger.info(
            "Reconciliation finished",
            created=result.created,
            updated=result.updated,
            errors=result.errors,
        )
        return result


def recalculate_stock(
    store: InventoryStore,
    warehouse_id: str,
    statuses: Iterable[ItemStatus] = WAREHOUSE_STATUSES,
) -> dict[int, int]:
    """Overwrite each product's warehouse stock with its count of in-warehouse items."""
    statuses = list(statuses)
    quantities: dict[int, int] = {}
    for product in store.list_products():
        qty = store.count_items(product_id=product.id, statuses=statuses)
        store.set_stock(product.id, warehouse_id, qty)
        quantities[product.id] = qty
    logger.info("Stock recalculated", warehouse_id=warehouse_id, products=len(quantities))
    return quantities


def _remote_user(record: dict[str, Any]) -> str:
    user = first_value(record, HISTORY_USER_KEYS)
    if isinstance(user, dict):
        user = user.get("name")
    return str(user) if user else "Automated"


class HistorySynchronizer:
    """Import remote history events, skipping ones already imported."""

    def __init__(
        self,
        store: InventoryStore,
        fetch: Callable[[], list[Any]],
        miss_log_limit: int = 5,
    ):
        self.store = store
        self.fetch = fetch
        self.miss_log_limit = miss_log_limit

    def sync_histories(self) -> HistorySyncResult:
        result = HistorySyncResult()
        try:
            records = self.fetch()
            result.fetched = len(records)
            if not records:
                logger.info("No histories found to sync")
                return result

            misses = 0
            for record in records:
                if not isinstance(record, dict):
                    continue
                sn = first_value(record, HISTORY_SERIAL_KEYS)
                if sn is None:
                    continue
                sn = str(sn).strip()
                item = self.store.find_item_by_serial(sn)
                if item is None:
                    misses += 1
                    if misses <= self.miss_log_limit:
                        logger.info("No local item for history record", serial_number=sn)
                    continue
                result.matched += 1
                if self._import(item.id, record):
                    result.created += 1
                else:
                    result.duplicates += 1
        except Exception as e:
            logger.error("Failed to sync histories", error=str(e))
            result.failed = True
            return result

        logger.info(
            "History sync completed",
            fetched=result.fetched,
            matched=result.matched,
            created=result.created,
            duplicates=result.duplicates,
        )
        return result

    def _import(self, item_id: int, record: dict[str, Any]) -> bool:
        action_text = str(first_value(record, HISTORY_ACTION_KEYS, DEFAULT_HISTORY_ACTION))
        action = classify_history_action(action_text)
        # Remote events carry no id; (item, action, notes) stands in for one
        if self.store.find_history(item_id, action, action_text) is not None:
            return False
        created_at = parse_date(first_value(record, HISTORY_TIME_KEYS))
        self.store.add_history(
            item_id,
            action,
            notes=action_text,
            metadata={"remote_user": _remote_user(record), "remote_record": record},
            created_at=created_at or datetime.now(timezone.utc).replace(tzinfo=None),
        )
        return True
