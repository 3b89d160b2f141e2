from invsync_models import CanonicalItem, HistoryAction
from invsync_reconcile import HistorySynchronizer, Reconciler

REMOTE_HISTORY = [
    {"serial_number": "SN1", "action": "Update Status", "timestamp": "2024-03-01T08:00:00Z", "user": {"name": "budi"}},
    {"sn": "SN1", "aksi": "Pindah lokasi", "waktu": "02/03/2024", "oleh": "sari"},
    {"Serial Number": "SN2", "action": "Input barang"},
    {"serial_number": "UNKNOWN", "action": "Update Status"},
    {"action": "no serial"},
]


def _seed(store):
    Reconciler(store).reconcile(
        [
            CanonicalItem(serial_number="SN1", product_type_name="ONT X"),
            CanonicalItem(serial_number="SN2", product_type_name="ONT X"),
        ]
    )


def test_imports_and_classifies_history(store):
    _seed(store)
    result = HistorySynchronizer(store, lambda: REMOTE_HISTORY).sync_histories()

    assert (result.fetched, result.matched, result.created, result.duplicates) == (5, 3, 3, 0)
    sn1 = store.find_item_by_serial("SN1")
    events = store.list_history(sn1.id)
    assert [e.action for e in events] == [HistoryAction.UPDATE_STATUS, HistoryAction.MOVE]
    assert events[0].notes == "Update Status"
    assert events[0].metadata["remote_user"] == "budi"
    assert events[0].metadata["remote_record"]["timestamp"] == "2024-03-01T08:00:00Z"
    assert events[0].created_at.isoformat() == "2024-03-01T08:00:00"
    assert events[1].metadata["remote_user"] == "sari"
    assert events[1].created_at.date().isoformat() == "2024-03-02"

    sn2_events = store.list_history(store.find_item_by_serial("SN2").id)
    assert sn2_events[0].action is HistoryAction.CREATE
    assert sn2_events[0].metadata["remote_user"] == "Automated"


def test_reimport_does_not_duplicate(store):
    _seed(store)
    sync = HistorySynchronizer(store, lambda: REMOTE_HISTORY)

    sync.sync_histories()
    count = store.count_history()
    again = sync.sync_histories()

    assert store.count_history() == count
    assert (again.created, again.duplicates) == (0, 3)


def test_same_action_with_different_text_is_kept(store):
    _seed(store)
    records = [
        {"sn": "SN1", "action": "Update status ke gudang"},
        {"sn": "SN1", "action": "Update status ke teknisi"},
    ]
    HistorySynchronizer(store, lambda: records).sync_histories()
    assert store.count_history() == 2


def test_fetch_failure_is_not_raised(store):
    def boom():
        raise RuntimeError("GET history -> 502")

    result = HistorySynchronizer(store, boom).sync_histories()

    assert result.failed
    assert store.count_history() == 0


def test_empty_history_is_a_no_op(store):
    result = HistorySynchronizer(store, lambda: []).sync_histories()
    assert result.fetched == 0
    assert not result.failed
