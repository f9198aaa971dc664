import json
import logging

import pytest

from sessync.errors import LedgerSaveError
from sessync.ledger import DeliveryLedger


def test_load_missing_file_returns_empty_ledger(tmp_path):
    ledger = DeliveryLedger.load(tmp_path / "nonexistent" / "state.json")
    assert len(ledger) == 0
    assert ledger.total_delivered == 0
    assert ledger.last_batch_label is None
    assert ledger.last_delivered_at is None


def test_load_valid_state(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "last_upload_timestamp": "2024-12-25T10:00:00Z",
                "uploaded_uuids": ["uuid-1", "uuid-2", "uuid-3"],
                "last_upload_batch_id": "batch-001",
                "total_uploaded": 100,
            }
        ),
        encoding="utf-8",
    )

    ledger = DeliveryLedger.load(path)

    assert ledger.contains("uuid-1")
    assert "uuid-3" in ledger
    assert not ledger.contains("uuid-4")
    assert ledger.last_batch_label == "batch-001"
    assert ledger.last_delivered_at == "2024-12-25T10:00:00Z"
    assert ledger.total_delivered == 100


@pytest.mark.parametrize(
    "content",
    [
        "{ invalid json }",
        "[1, 2, 3]",
        '{"uploaded_uuids": "uuid-1"}',
        '{"uploaded_uuids": [1, 2]}',
        '{"uploaded_uuids": [], "total_uploaded": "many"}',
        '{"uploaded_uuids": [], "total_uploaded": -1}',
        '{"uploaded_uuids": [], "last_upload_batch_id": 7}',
        "[" * 200000,
    ],
)
def test_corrupt_state_is_discarded_and_logged(tmp_path, caplog, content):
    path = tmp_path / "state.json"
    path.write_text(content, encoding="utf-8")

    with caplog.at_level(logging.ERROR):
        ledger = DeliveryLedger.load(path)

    assert len(ledger) == 0
    assert ledger.total_delivered == 0
    assert any("corrupt" in r.message for r in caplog.records)


def test_invalid_utf8_is_treated_as_corrupt(tmp_path):
    path = tmp_path / "state.json"
    path.write_bytes(b"\xff\xfe\x00garbage")
    assert len(DeliveryLedger.load(path)) == 0


def test_merge_counts_only_new_ids():
    ledger = DeliveryLedger(delivered=["a"], total_delivered=1)

    added = ledger.merge(["a", "b", "c", "c"], "batch-2", "2024-12-25T12:00:00+00:00")

    assert added == 2
    assert ledger.total_delivered == 3
    assert ledger.last_batch_label == "batch-2"
    assert ledger.last_delivered_at == "2024-12-25T12:00:00+00:00"
    assert all(ledger.contains(i) for i in ("a", "b", "c"))


def test_merge_of_known_ids_is_a_noop_for_the_counter():
    ledger = DeliveryLedger(delivered=["a", "b"], total_delivered=2)
    assert ledger.merge(["a", "b"], "batch-3", "t") == 0
    assert ledger.total_delivered == 2
    assert len(ledger) == 2


def test_contains_with_large_ledger():
    ids = [f"uuid-{i}" for i in range(150_000)]
    ledger = DeliveryLedger(delivered=ids, total_delivered=len(ids))

    assert isinstance(ledger.delivered, set)
    assert ledger.contains("uuid-0")
    assert ledger.contains("uuid-149999")
    assert not ledger.contains("uuid-150000")
    assert sum(ledger.contains(f"uuid-{i}") for i in range(0, 150_000, 7)) == len(range(0, 150_000, 7))


def test_save_creates_parent_dirs_and_round_trips(tmp_path):
    path = tmp_path / ".sessync" / "nested" / "upload-state.json"
    ledger = DeliveryLedger()
    ledger.merge(["uuid-b", "uuid-a"], "batch-test", "2024-12-25T12:00:00+00:00")

    ledger.save(path)

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk == {
        "last_upload_timestamp": "2024-12-25T12:00:00+00:00",
        "uploaded_uuids": ["uuid-a", "uuid-b"],
        "last_upload_batch_id": "batch-test",
        "total_uploaded": 2,
    }
    assert not path.with_name(path.name + ".tmp").exists()

    reloaded = DeliveryLedger.load(path)
    assert reloaded.delivered == {"uuid-a", "uuid-b"}
    assert reloaded.last_batch_label == "batch-test"
    assert reloaded.total_delivered == 2


def test_save_failure_raises_ledger_save_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(LedgerSaveError):
        DeliveryLedger(delivered=["a"]).save(blocker / "state.json")


def test_independent_instances_do_not_share_state(tmp_path):
    first, second = DeliveryLedger(), DeliveryLedger()
    first.merge(["a"], "b1", "t")
    assert not second.contains("a")
