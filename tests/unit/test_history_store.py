"""Tests for HistoryStore persistence."""
import json
import os
import tempfile

from orderfiller.exceptions import OrderAlreadySettled
from orderfiller.executor import FillResult, FillStatus
from orderfiller.history_store import HistoryStore

ORDER_HASH = "0x" + "ab" * 32


def filled(making, taking, tx_hash="0x" + "01" * 32):
    return FillResult(
        order_hash=ORDER_HASH,
        status=FillStatus.FILLED,
        created_at=1700000000,
        updated_at=1700000010,
        tx_hash=tx_hash,
        block_number=123,
        gas_used=90000,
        filled_making_amount=making,
        filled_taking_amount=taking,
    )


def test_history_store_creates_new_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = HistoryStore(base_dir=tmpdir, filename="test_history.json")

        assert store.get(ORDER_HASH) == []
        assert store.summary(ORDER_HASH)["fillCount"] == 0


def test_history_store_record_and_summary():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = HistoryStore(base_dir=tmpdir, filename="test_history.json")

        store.record(filled(100, 300))
        store.record(filled(50, 150, tx_hash="0x" + "02" * 32))
        failed = FillResult(
            order_hash=ORDER_HASH,
            status=FillStatus.FAILED,
            created_at=1700000020,
            updated_at=1700000020,
            error=OrderAlreadySettled("settled"),
        )
        store.record(failed)

        summary = store.summary(ORDER_HASH.upper().replace("0X", "0x"))
        assert summary["fillCount"] == 2
        assert summary["totalFilledMaking"] == "150"
        assert summary["totalFilledTaking"] == "450"
        assert len(store.get(ORDER_HASH)) == 3
        assert store.get(ORDER_HASH)[2]["error"]["kind"] == "order_already_settled"


def test_history_store_persistence_across_restarts():
    with tempfile.TemporaryDirectory() as tmpdir:
        store1 = HistoryStore(base_dir=tmpdir, filename="test_history.json")
        store1.record(filled(100, 300))

        store2 = HistoryStore(base_dir=tmpdir, filename="test_history.json")

        assert store2.summary(ORDER_HASH)["totalFilledMaking"] == "100"
        assert store2.get(ORDER_HASH)[0]["txHash"] == "0x" + "01" * 32


def test_history_store_keeps_backup():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = HistoryStore(base_dir=tmpdir, filename="test_history.json")
        store.record(filled(1, 3))
        store.record(filled(2, 6))

        backup = os.path.join(tmpdir, "test_history.json.backup")
        assert os.path.exists(backup)
        with open(backup, "r", encoding="utf-8") as f:
            assert len(json.load(f)["orders"][ORDER_HASH]) == 1


def test_history_store_ignores_corrupt_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "test_history.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write("{not json")

        store = HistoryStore(base_dir=tmpdir, filename="test_history.json")

        assert store.get(ORDER_HASH) == []
