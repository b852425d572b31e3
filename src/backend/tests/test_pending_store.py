"""
Test suite for PendingReceiptStore: put/take semantics, expiry sweep and
write-through persistence.
"""

import sys
import os
import threading
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo
from unittest.mock import Mock

from megaledger.exceptions import PersistenceError
from megaledger.models.receipt import PendingReceipt, ReferenceType
from megaledger.services.pending import PendingReceiptStore
from megaledger.services.storage import JsonFileBlobStore, LEDGER_BLOB, PENDING_BLOB
import pytest


START = datetime(2025, 9, 18, 10, 0, tzinfo=ZoneInfo("Africa/Maputo"))


class BlockingBlobStore:
    """Records saves; once armed, the next save waits until released."""

    def __init__(self):
        self.saved = {}
        self.armed = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def load(self, key):
        return {}

    def save(self, key, data):
        if self.armed:
            self.armed = False
            self.entered.set()
            self.release.wait(timeout=5)
        self.saved[key] = data


class FakeClock:
    def __init__(self, current=START):
        self.current = current

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


def make_receipt(reference, captured_at=START, sender='841234567', group_id='G@g.us'):
    return PendingReceipt(
        normalized_reference=reference,
        raw_reference=reference,
        reference_type=ReferenceType.MPESA,
        sender_id=sender,
        display_name='Ana',
        group_id=group_id,
        captured_at=captured_at,
    )


class TestPutAndTake:
    """Map semantics."""

    def test_take_exact_removes_entry(self):
        store = PendingReceiptStore()
        store.put(make_receipt('ABC12345'))

        receipt = store.take_exact('ABC12345')

        assert receipt.sender_id == '841234567'
        assert 'ABC12345' not in store
        assert store.take_exact('ABC12345') is None

    def test_keys_are_case_sensitive(self):
        store = PendingReceiptStore()
        store.put(make_receipt('aBc12345'))

        assert store.take_exact('ABC12345') is None
        assert store.take_exact('aBc12345') is not None

    def test_last_put_wins(self):
        store = PendingReceiptStore()
        store.put(make_receipt('ABC12345', sender='841111111'))
        store.put(make_receipt('ABC12345', sender='842222222'))

        assert len(store) == 1
        assert store.get('ABC12345').sender_id == '842222222'

    def test_key_space_is_shared_across_groups(self):
        store = PendingReceiptStore()
        store.put(make_receipt('ABC12345', group_id='G1@g.us'))
        store.put(make_receipt('ABC12345', group_id='G2@g.us'))

        assert len(store) == 1
        assert store.get('ABC12345').group_id == 'G2@g.us'

    def test_all_is_oldest_first(self):
        store = PendingReceiptStore()
        store.put(make_receipt('NEWER123', captured_at=START + timedelta(minutes=5)))
        store.put(make_receipt('OLDER123', captured_at=START))

        assert [receipt.normalized_reference for receipt in store.all()] == ['OLDER123', 'NEWER123']

    def test_remove(self):
        store = PendingReceiptStore()
        store.put(make_receipt('ABC12345'))

        assert store.remove('ABC12345') is True
        assert store.remove('ABC12345') is False


class TestSweepExpired:
    """30-minute retention."""

    def test_removes_only_expired_entries(self):
        clock = FakeClock()
        store = PendingReceiptStore(now=clock)
        store.put(make_receipt('OLD12345', captured_at=START))
        store.put(make_receipt('NEW12345', captured_at=START + timedelta(minutes=20)))

        clock.advance(minutes=31)
        removed = store.sweep_expired(30 * 60)

        assert removed == 1
        assert store.keys() == ['NEW12345']

    def test_entry_at_exact_age_is_kept(self):
        clock = FakeClock()
        store = PendingReceiptStore(now=clock)
        store.put(make_receipt('ABC12345'))

        clock.advance(minutes=30)

        assert store.sweep_expired(30 * 60) == 0
        assert 'ABC12345' in store

    def test_default_ttl_from_settings(self):
        clock = FakeClock()
        store = PendingReceiptStore(now=clock)
        store.put(make_receipt('ABC12345'))

        clock.advance(hours=1)

        assert store.sweep_expired() == 1


class TestPersistence:
    """Write-through to the blob store."""

    def test_every_mutation_is_flushed(self, tmp_path):
        blob_store = JsonFileBlobStore({PENDING_BLOB: 'pending.json', LEDGER_BLOB: 'ledger.json'}, base_dir=str(tmp_path))
        store = PendingReceiptStore(blob_store)
        store.put(make_receipt('ABC12345'))
        store.put(make_receipt('PP250918.1532'))
        store.take_exact('ABC12345')

        reloaded = PendingReceiptStore(blob_store)
        assert reloaded.load() == 1
        receipt = reloaded.get('PP250918.1532')
        assert receipt.captured_at == START
        assert receipt.display_name == 'Ana'

    def test_load_skips_malformed_entries(self):
        blob_store = Mock()
        blob_store.load.return_value = {
            'ABC12345': make_receipt('ABC12345').model_dump(mode='json'),
            'BROKEN': {'normalized_reference': 'BROKEN'},
        }
        store = PendingReceiptStore(blob_store)

        assert store.load() == 1
        assert store.keys() == ['ABC12345']

    def test_save_failure_keeps_memory_state(self):
        blob_store = Mock()
        blob_store.save.side_effect = PersistenceError("disk full")
        store = PendingReceiptStore(blob_store)

        store.put(make_receipt('ABC12345'))

        assert 'ABC12345' in store
        assert store.flush() is False

    def test_load_failure_starts_empty(self):
        blob_store = Mock()
        blob_store.load.side_effect = PersistenceError("corrupt")
        store = PendingReceiptStore(blob_store)

        assert store.load() == 0
        assert len(store) == 0

    def test_concurrent_flush_keeps_newest_state(self):
        clock = FakeClock()
        blob_store = BlockingBlobStore()
        store = PendingReceiptStore(blob_store, now=clock)
        store.put(make_receipt('OLD12345'))
        clock.advance(minutes=31)

        blob_store.armed = True
        sweeper = threading.Thread(target=store.sweep_expired)
        sweeper.start()
        assert blob_store.entered.wait(timeout=5)

        writer = threading.Thread(target=store.put, args=(make_receipt('NEW12345', captured_at=clock()),))
        writer.start()
        writer.join(timeout=0.2)

        blob_store.release.set()
        sweeper.join(timeout=5)
        writer.join(timeout=5)

        assert store.keys() == ['NEW12345']
        assert list(blob_store.saved[PENDING_BLOB].keys()) == ['NEW12345']
