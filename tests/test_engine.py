from conftest import AUTH_PATH, BASE, HISTORY_PATH, INVENTORY_PATH
from invsync_auth import SessionCache
from invsync_config import default_config
from invsync_engine import build_engine
from invsync_models import ItemStatus, RunStatus
from invsync_settings import SettingsStrict


def test_end_to_end_first_sync(remote, make_engine, store, ledger):
    remote.route(
        "GET",
        INVENTORY_PATH,
        {"json": [{"Serial Number": "SN001", "Status": "Gudang", "Nama Perangkat": "ONT X"}]},
    )

    result = make_engine().run_sync()

    assert result.success
    assert (result.created, result.updated, result.errors) == (1, 0, 0)
    assert result.message == "Sync completed: 1 created, 0 updated, 0 errors"
    product = store.find_product_by_name("ONT X")
    assert store.count_products() == 1
    item = store.find_item_by_serial("SN001")
    assert item.status is ItemStatus.GUDANG
    assert item.product_id == product.id
    assert store.get_stock(product.id, "WH-001") == 1
    run = ledger.latest_run()
    assert run.status is RunStatus.SUCCESS
    assert run.details["total_processed"] == 1


def test_second_run_updates_instead_of_creating(remote, make_engine, store):
    remote.route("GET", INVENTORY_PATH, {"json": {"data": [{"sn": "SN001", "model": "ONT X"}]}})
    engine = make_engine()

    engine.run_sync()
    result = engine.run_sync()

    assert (result.created, result.updated) == (0, 1)
    assert store.count_items() == 1
    assert store.get_stock(store.find_product_by_name("ONT X").id, "WH-001") == 1


def test_record_errors_do_not_fail_the_run(remote, make_engine, ledger, store):
    remote.route(
        "GET",
        INVENTORY_PATH,
        {
            "json": [
                {"sn": "SN1", "mac": "MAC-1"},
                {"sn": "SN2", "mac": "MAC-2"},
                {"sn": "SN3", "mac": "MAC-1"},
                {"sn": "SN4"},
                {"sn": "SN5"},
                {"Status": "no serial here"},
            ]
        },
    )

    result = make_engine().run_sync()

    assert result.success
    assert (result.created, result.updated, result.errors) == (4, 0, 1)
    run = ledger.latest_run()
    assert run.status is RunStatus.SUCCESS
    assert run.details["dropped"] == 1
    assert run.details["error_messages"][0].startswith("SN3:")


def test_no_working_endpoint_fails_the_run(remote, make_engine, ledger, store):
    result = make_engine().run_sync()

    assert not result.success
    assert result.message.startswith("Sync failed: No valid inventory endpoint")
    run = ledger.latest_run()
    assert run.status is RunStatus.FAILED
    assert "No valid inventory endpoint" in run.error_message
    assert store.count_products() == 0


def test_authentication_failure_fails_the_run(remote, make_engine, ledger):
    remote.route("POST", AUTH_PATH, {"status": 401, "json": {"error": "invalid"}})

    result = make_engine().run_sync()

    assert not result.success
    assert ledger.latest_run().status is RunStatus.FAILED
    assert remote.calls_excluding_auth() == []


def test_history_failure_is_not_fatal(remote, make_engine, ledger):
    remote.route("GET", INVENTORY_PATH, {"json": [{"sn": "SN1"}]})
    remote.route("GET", HISTORY_PATH, {"status": 500, "content": b"boom"})

    result = make_engine().run_sync()

    assert result.success
    run = ledger.latest_run()
    assert run.status is RunStatus.SUCCESS
    assert run.details["history"]["failed"] is True


def test_history_is_imported_during_run(remote, make_engine, store):
    remote.route("GET", INVENTORY_PATH, {"json": [{"sn": "SN1"}]})
    remote.route("GET", HISTORY_PATH, {"json": [{"sn": "SN1", "action": "Update Status"}]})
    engine = make_engine()

    engine.run_sync()
    engine.run_sync()

    assert store.count_history() == 1


def test_status_and_history_queries(remote, make_engine):
    engine = make_engine()
    status = engine.get_sync_status()
    assert not status.connected
    assert status.last_sync_status is None

    engine.run_sync()  # fails, nothing routed
    remote.route("GET", INVENTORY_PATH, {"json": []})
    engine.run_sync()

    status = engine.get_sync_status()
    assert status.connected
    assert status.last_sync_status is RunStatus.SUCCESS
    assert status.last_sync_at is not None
    assert status.api_endpoint == BASE
    runs = engine.get_sync_history(limit=5)
    assert [r.status for r in runs] == [RunStatus.SUCCESS, RunStatus.FAILED]


def test_preview_does_not_write(remote, make_engine, store, ledger):
    remote.route("GET", INVENTORY_PATH, {"json": [{"sn": "SN1"}]})

    raw, items = make_engine().preview_inventory()

    assert raw == [{"sn": "SN1"}]
    assert [i.serial_number for i in items] == ["SN1"]
    assert store.count_items() == 0
    assert ledger.latest_run() is None


def test_build_engine_wires_settings_and_config(remote, db_path, store):
    remote.route("GET", "/api/devices", {"json": [{"sn": "SN1", "model": "ZTE F660"}]})
    settings = SettingsStrict(
        API_BASE=BASE,
        USERNAME="ops",
        PASSWORD="secret",
        DB_PATH=db_path,
        AUTH_RETRY_WAIT=0,
        WAREHOUSE_ID="WH-009",
        SKU_PREFIX="RMT",
    )

    engine = build_engine(settings, default_config(), client=remote.client(), cache=SessionCache())
    result = engine.run_sync()

    assert result.success
    product = store.find_product_by_name("ZTE F660")
    assert product.sku.startswith("RMT-ZTE-")
    assert store.get_stock(product.id, "WH-009") == 1
    # /api/inventory/inventory and /api/inventory (x3 methods) fail before /api/devices GET
    inventory_calls = [c for c in remote.calls_excluding_auth() if c[1] != HISTORY_PATH]
    assert len(inventory_calls) == 7
