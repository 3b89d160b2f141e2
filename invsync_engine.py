from __future__ import annotations

from functools import partial
from typing import Any

import httpx
import structlog

from invsync_auth import SessionCache, SessionManager
from invsync_config import ConfigModel
from invsync_db import InventoryStore, RunLedger
from invsync_http import (
    InventoryProber,
    build_candidates,
    build_url,
    fetch_histories,
    fetch_item_history,
)
from invsync_models import CanonicalItem, SyncResult, SyncRun, SyncStatus
from invsync_normalize import normalize, records_of
from invsync_reconcile import HistorySynchronizer, Reconciler, recalculate_stock
from invsync_settings import SettingsStrict

logger = structlog.get_logger()

MAX_ERROR_MESSAGES = 20


class SyncEngine:
    """One pull-and-reconcile run against the remote system, wrapped in a ledger row."""

    def __init__(
        self,
        session: SessionManager,
        prober: InventoryProber,
        store: InventoryStore,
        ledger: RunLedger,
        reconciler: Reconciler,
        histories: HistorySynchronizer,
        warehouse_id: str = "WH-001",
        api_endpoint: str | None = None,
    ):
        self.session = session
        self.prober = prober
        self.store = store
        self.ledger = ledger
        self.reconciler = reconciler
        self.histories = histories
        self.warehouse_id = warehouse_id
        self.api_endpoint = api_endpoint

    def run_sync(self) -> SyncResult:
        run_id = self.ledger.begin_run()
        logger.info("Starting sync", run_id=run_id)
        try:
            raw = self.prober.fetch_inventory()
            items = normalize(raw)
            received = len(records_of(raw))

            result = self.reconciler.reconcile(items)
            recalculate_stock(self.store, self.warehouse_id)
            history = self.histories.sync_histories()

            message = (
                f"Sync completed: {result.created} created, "
                f"{result.updated} updated, {result.errors} errors"
            )
            details: dict[str, Any] = {
                "message": message,
                "created": result.created,
                "updated": result.updated,
                "errors": result.errors,
                "total_processed": len(items),
                "dropped": received - len(items),
                "history": history.model_dump(),
                "error_messages": result.error_messages[:MAX_ERROR_MESSAGES],
            }
            self.ledger.complete_run(run_id, details)
        except Exception as e:
            logger.exception("Sync failed", run_id=run_id)
            self.ledger.fail_run(run_id, str(e))
            return SyncResult(success=False, message=f"Sync failed: {e}", error=str(e))

        logger.info(message, run_id=run_id)
        return SyncResult(
            success=True,
            created=result.created,
            updated=result.updated,
            errors=result.errors,
            message=message,
        )

    def preview_inventory(self) -> tuple[Any, list[CanonicalItem]]:
        """Fetch and normalize remote inventory without touching the store."""
        raw = self.prober.fetch_inventory()
        return raw, normalize(raw)

    def get_sync_status(self) -> SyncStatus:
        return sync_status(self.ledger, self.session.connected, self.api_endpoint)

    def get_sync_history(self, limit: int = 10) -> list[SyncRun]:
        return self.ledger.list_runs(limit)


def sync_status(ledger: RunLedger, connected: bool, api_endpoint: str | None = None) -> SyncStatus:
    latest = ledger.latest_run()
    return SyncStatus(
        connected=connected,
        last_sync_at=latest.started_at if latest else None,
        last_sync_status=latest.status if latest else None,
        api_endpoint=api_endpoint,
    )


def build_session(
    settings: SettingsStrict,
    config: ConfigModel,
    client: httpx.Client | None = None,
    cache: SessionCache | None = None,
) -> SessionManager:
    return SessionManager(
        auth_url=build_url(settings.API_BASE, config.auth_path),
        username=settings.USERNAME,
        password=settings.PASSWORD,
        cache=cache,
        client=client or httpx.Client(timeout=settings.HTTP_TIMEOUT),
        timeout=settings.AUTH_TIMEOUT,
        retry_wait=settings.AUTH_RETRY_WAIT,
    )


def build_engine(
    settings: SettingsStrict,
    config: ConfigModel,
    client: httpx.Client | None = None,
    cache: SessionCache | None = None,
) -> SyncEngine:
    """Wire every component from settings and the endpoint config."""
    session = build_session(settings, config, client, cache)
    store = InventoryStore(settings.DB_PATH)
    prober = InventoryProber(
        session,
        build_candidates(settings.API_BASE, config.inventory_endpoints),
        timeout=settings.HTTP_TIMEOUT,
    )
    histories = HistorySynchronizer(
        store,
        partial(
            fetch_histories,
            session,
            build_url(settings.API_BASE, config.history_path),
            timeout=settings.HISTORY_TIMEOUT,
        ),
        miss_log_limit=settings.HISTORY_MISS_LOG_LIMIT,
    )
    return SyncEngine(
        session=session,
        prober=prober,
        store=store,
        ledger=RunLedger(settings.DB_PATH),
        reconciler=Reconciler(store, settings.SKU_PREFIX, settings.DEFAULT_UNIT),
        histories=histories,
        warehouse_id=settings.WAREHOUSE_ID,
        api_endpoint=settings.API_BASE,
    )


def item_history(
    settings: SettingsStrict,
    config: ConfigModel,
    remote_item_id: str,
    client: httpx.Client | None = None,
) -> list[Any]:
    session = build_session(settings, config, client)
    return fetch_item_history(
        session,
        settings.API_BASE,
        config.item_history_path,
        remote_item_id,
        timeout=settings.HTTP_TIMEOUT,
    )
