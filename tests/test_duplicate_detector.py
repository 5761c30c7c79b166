"""
Duplicate Detector / Storage Analyzer Unit Tests
"""
import pytest
import sys
import os
import time
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from pulito.core.duplicate_detector import (
    DuplicateDetector,
    StorageAnalyzer,
    collect_file_entries,
)
from pulito.core.exceptions import ScanCancelledError
from pulito.core.models import DuplicateGroup, FileEntry
from pulito.core.walker import CancellationToken
from conftest import write_file


# ============================================================================
# Duplicate grouping
# ============================================================================

def test_identical_files_grouped(home):
    """Test identical files form one group, oldest kept"""
    content = os.urandom(4096)
    now = time.time()
    older = write_file(os.path.join(home, 'a', 'photo.jpg'), content=content, mtime=now - 1000)
    newer = write_file(os.path.join(home, 'b', 'photo-copy.jpg'), content=content, mtime=now)
    write_file(os.path.join(home, 'c', 'other.jpg'), content=os.urandom(4096))

    groups = DuplicateDetector().find_duplicates(home, min_size=1024)

    assert len(groups) == 1
    group = groups[0]
    assert group.keep.path == older
    assert [f.path for f in group.removal_set] == [newer]
    assert group.reclaimable_size == 4096


def test_small_files_ignored(home):
    """Test files below the minimum size are not compared"""
    write_file(os.path.join(home, 'x1'), content=b'same')
    write_file(os.path.join(home, 'x2'), content=b'same')
    assert DuplicateDetector().find_duplicates(home, min_size=1024) == []


def test_partial_hash_collision_resolved_by_full_hash(home):
    """Test files sharing a prefix but differing later are not duplicates"""
    prefix = b'p' * 64
    write_file(os.path.join(home, 'one.bin'), content=prefix + b'A' * 64)
    write_file(os.path.join(home, 'two.bin'), content=prefix + b'B' * 64)

    detector = DuplicateDetector(partial_bytes=64)
    assert detector.find_duplicates(home, min_size=1) == []


def test_three_copies_reclaim_two(home):
    """Test a group of three reclaims the size of two copies"""
    content = os.urandom(2048)
    for name in ('one', 'two', 'three'):
        write_file(os.path.join(home, name), content=content)

    groups = DuplicateDetector().find_duplicates(home, min_size=1024)
    assert len(groups) == 1
    assert len(groups[0].files) == 3
    assert groups[0].reclaimable_size == 4096


def test_hardlinks_are_not_duplicates(home):
    """Test hardlinks to one inode are collapsed during collection"""
    original = write_file(os.path.join(home, 'data.bin'), content=os.urandom(2048))
    os.link(original, os.path.join(home, 'data-link.bin'))

    entries = collect_file_entries([home])
    assert len(entries) == 1
    assert DuplicateDetector().group_entries(entries, min_size=1024) == []


def test_hidden_files_skipped_by_default(home):
    """Test hidden directories are excluded unless requested"""
    content = os.urandom(2048)
    write_file(os.path.join(home, 'visible.bin'), content=content)
    write_file(os.path.join(home, '.hidden', 'copy.bin'), content=content)

    assert DuplicateDetector().find_duplicates(home) == []
    assert len(DuplicateDetector().find_duplicates(home, include_hidden=True)) == 1


def test_cancelled_token_stops_grouping(home):
    """Test hashing checks the cancellation token"""
    content = os.urandom(2048)
    write_file(os.path.join(home, 'one'), content=content)
    write_file(os.path.join(home, 'two'), content=content)
    entries = collect_file_entries([home])

    token = CancellationToken()
    token.cancel()
    with pytest.raises(ScanCancelledError):
        DuplicateDetector(token=token).group_entries(entries)


def test_duplicate_group_needs_two_files():
    """Test a group with one member is invalid"""
    entry = FileEntry(path='/h/a', size=10, mtime=0.0, device=1, inode=1)
    with pytest.raises(ValueError):
        DuplicateGroup(hash='abc', files=[entry])


# ============================================================================
# Storage analyzer
# ============================================================================

def _entry(path, size, mtime=0.0, inode=1):
    return FileEntry(path=path, size=size, mtime=mtime, device=1, inode=inode)


def test_large_files_threshold_and_order():
    """Test large files are filtered by threshold and sorted by size"""
    entries = [
        _entry('/h/small', 10),
        _entry('/h/big', 300, inode=2),
        _entry('/h/bigger', 500, inode=3),
    ]
    result = StorageAnalyzer.large_files(entries, threshold_bytes=100)
    assert [e.path for e in result] == ['/h/bigger', '/h/big']
    assert len(StorageAnalyzer.large_files(entries, 100, limit=1)) == 1


def test_old_downloads():
    """Test old downloads respect age and depth"""
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    old = (now - timedelta(days=200)).timestamp()
    fresh = (now - timedelta(days=5)).timestamp()
    entries = [
        _entry('/h/Downloads/old.zip', 1, mtime=old),
        _entry('/h/Downloads/new.zip', 1, mtime=fresh, inode=2),
        _entry('/h/Downloads/a/b/c/deep.zip', 1, mtime=old, inode=3),
        _entry('/h/Documents/old.pdf', 1, mtime=old, inode=4),
    ]
    result = StorageAnalyzer.old_downloads(entries, '/h/Downloads', days=90, now=now, max_depth=2)
    assert [e.path for e in result] == ['/h/Downloads/old.zip']
