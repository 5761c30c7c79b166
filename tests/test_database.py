"""
Database Unit Tests
"""
import pytest
import sys
import os
import threading
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from pulito.core.database import Database
from pulito.core.models import TrashItem


T0 = datetime(2026, 1, 10, 8, 30, tzinfo=timezone.utc)


def trash_row(item_id, deleted_at=T0, size=10, retention_days=3):
    return TrashItem(
        id=item_id,
        original_path=f'/home/u/{item_id}',
        trash_path=f'/trash/files/{item_id}',
        deleted_at=deleted_at,
        retention_days=retention_days,
        size=size,
    ).to_dict()


# ============================================================================
# Trash ledger
# ============================================================================

def test_insert_and_get_trash_item(db):
    """Test a ledger row round-trips"""
    db.insert_trash_item(trash_row('a'))
    row = db.get_trash_item('a')
    assert row['original_path'] == '/home/u/a'
    assert row['expires_at'] > row['deleted_at']
    assert db.get_trash_item('missing') is None


def test_trash_items_ordered_by_deletion(db):
    """Test rows are listed oldest deletion first"""
    db.insert_trash_item(trash_row('late', T0 + timedelta(hours=2)))
    db.insert_trash_item(trash_row('early', T0))
    db.insert_trash_item(trash_row('middle', T0 + timedelta(hours=1)))
    assert [r['id'] for r in db.get_trash_items()] == ['early', 'middle', 'late']


def test_expiring_before(db):
    """Test the expiry range query is inclusive"""
    db.insert_trash_item(trash_row('short', retention_days=1))
    db.insert_trash_item(trash_row('long', retention_days=5))
    rows = db.get_trash_items_expiring_before(T0 + timedelta(days=1))
    assert [r['id'] for r in rows] == ['short']


def test_update_and_delete_trash_item(db):
    """Test updating selected columns and deleting rows"""
    db.insert_trash_item(trash_row('a'))
    assert db.update_trash_item('a', reason='manual')
    assert db.get_trash_item('a')['reason'] == 'manual'
    with pytest.raises(ValueError):
        db.update_trash_item('a', bogus=1)
    assert db.delete_trash_item('a')
    assert not db.delete_trash_item('a')


def test_total_size(db):
    """Test the ledger size aggregate"""
    assert db.get_trash_total_size() == 0
    db.insert_trash_item(trash_row('a', size=10))
    db.insert_trash_item(trash_row('b', size=32))
    assert db.get_trash_total_size() == 42
    assert db.delete_all_trash_items() == 2


def test_transaction_rolls_back(db):
    """Test a failing transaction leaves no partial writes"""
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute(
                'INSERT INTO growth_samples (category, timestamp, size) VALUES (?, ?, ?)',
                ('cache', '2026-01-01T00:00:00.000000+00:00', 1)
            )
            raise RuntimeError("abort")
    assert db.get_growth_samples('cache') == []


# ============================================================================
# Growth samples and scan history
# ============================================================================

def test_growth_sample_range_query(db):
    """Test samples are filtered by timestamp range"""
    for day in range(5):
        db.insert_growth_sample('cache', T0 + timedelta(days=day), day)
    rows = db.get_growth_samples('cache', since=T0 + timedelta(days=1), until=T0 + timedelta(days=3))
    assert [r['size'] for r in rows] == [1, 2, 3]
    assert db.get_growth_categories() == ['cache']


def test_delete_growth_samples_before(db):
    """Test pruning by cutoff"""
    db.insert_growth_sample('logs', T0, 1)
    db.insert_growth_sample('logs', T0 + timedelta(days=2), 2)
    assert db.delete_growth_samples_before(T0 + timedelta(days=1)) == 1
    assert [r['size'] for r in db.get_growth_samples('logs')] == [2]


def test_scan_history(db):
    """Test scan history is listed newest first"""
    db.add_scan_history(3, 300, [], 12, T0)
    db.add_scan_history(1, 100, ['logs'], 8, T0 + timedelta(minutes=5))
    history = db.get_scan_history()
    assert [h['total_items'] for h in history] == [1, 3]
    assert history[0]['failed_categories'] == ['logs']


def test_connections_per_thread(tmp_path):
    """Test writes from another thread are visible"""
    database = Database(str(tmp_path / 'threads.db'))
    try:
        worker = threading.Thread(target=lambda: database.insert_growth_sample('cache', T0, 7))
        worker.start()
        worker.join()
        assert [r['size'] for r in database.get_growth_samples('cache')] == [7]
    finally:
        database.close()
