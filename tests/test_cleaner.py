"""
Remediation Executor Unit Tests
"""
import pytest
import sys
import os
import time

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from pulito.core.cache import CacheManager
from pulito.core.cleaner import RemediationExecutor
from pulito.core.models import (
    ItemCategory,
    OutcomeStatus,
    RiskTier,
    ScanCategory,
    ScanItem,
    ScanResult,
    make_item_id,
)
from pulito.core.risk_classifier import RiskClassifier
from pulito.core.scan_options import ScanOptions
from pulito.core.scanner import ScanEngine
from conftest import write_file


def scan_item(path, category=ItemCategory.LARGE_FILE, size=None, tier=RiskTier.LOW,
              source=ScanCategory.STORAGE_RECOVERY):
    if size is None:
        size = os.lstat(path).st_size
    return ScanItem(
        id=make_item_id(source, category, path),
        name=os.path.basename(path),
        path=path,
        category=category,
        source=source,
        size=size,
        risk_tier=tier,
    )


@pytest.fixture
def executor(store):
    return RemediationExecutor(store)


def register(executor, *items):
    executor.register_scan(ScanResult(items=list(items)))
    return items


# ============================================================================
# Trash-backed cleaning
# ============================================================================

def test_second_of_three_deleted_mid_flight(home, executor, store):
    """Test one vanished path fails while the other two are cleaned"""
    paths = [
        write_file(os.path.join(home, 'one.bin'), size=100),
        write_file(os.path.join(home, 'two.bin'), size=200),
        write_file(os.path.join(home, 'three.bin'), size=300),
    ]
    items = register(executor, *[scan_item(p) for p in paths])
    os.unlink(paths[1])

    result = executor.clean([i.id for i in items], [i.path for i in items])

    assert result.cleaned == 2
    assert result.failed == 1
    assert result.total_size == 400
    assert result.outcomes[1].status is OutcomeStatus.FAILED
    assert result.outcomes[1].reason
    assert store.list_items().total_items == 2


def test_outcomes_carry_trash_ids(home, executor, store):
    """Test successful trash moves can be restored from their outcome"""
    path = write_file(os.path.join(home, 'data.bin'), content=b'payload')
    item, = register(executor, scan_item(path))

    result = executor.clean([item.id], [path])
    outcome = result.outcomes[0]
    assert outcome.status is OutcomeStatus.SUCCEEDED
    assert outcome.trash_id

    store.restore(outcome.trash_id)
    assert os.path.exists(path)


def test_retention_days_passed_to_trash(home, executor, store):
    """Test the requested retention period reaches the ledger"""
    path = write_file(os.path.join(home, 'r.bin'), size=1)
    item, = register(executor, scan_item(path))

    result = executor.clean([item.id], [path], retention_days=7)
    assert store.get_item(result.outcomes[0].trash_id).retention_days == 7


def test_out_of_range_retention_does_not_abort_batch(home, executor, store):
    """Test a negative or oversized retention is clamped and every item still gets an outcome"""
    paths = [write_file(os.path.join(home, name), size=1) for name in ('a.bin', 'b.bin')]
    items = register(executor, *[scan_item(p) for p in paths])

    result = executor.clean([i.id for i in items], paths, retention_days=-1)

    assert result.cleaned == 2
    assert [store.get_item(o.trash_id).retention_days for o in result.outcomes] == [1, 1]

    late = write_file(os.path.join(home, 'c.bin'), size=1)
    item, = register(executor, scan_item(late))
    result = executor.clean([item.id], [late], retention_days=365)
    assert store.get_item(result.outcomes[0].trash_id).retention_days == 30


# ============================================================================
# Direct deletion of always-safe items
# ============================================================================

def test_direct_delete_empty_directory(home, executor, store):
    """Test empty directories may bypass the trash"""
    empty = os.path.join(home, 'empty')
    os.mkdir(empty)
    item, = register(executor, scan_item(empty, ItemCategory.EMPTY_DIRECTORY, size=0, tier=RiskTier.SAFE,
                                         source=ScanCategory.FILESYSTEM_HEALTH))

    result = executor.clean([item.id], [empty], use_trash=False)

    assert result.cleaned == 1
    assert not os.path.exists(empty)
    assert store.list_items().total_items == 0


def test_direct_delete_refuses_non_empty_directory(home, executor):
    """Test rmdir fails once the directory gained content"""
    folder = os.path.join(home, 'was-empty')
    os.mkdir(folder)
    item, = register(executor, scan_item(folder, ItemCategory.EMPTY_DIRECTORY, size=0, tier=RiskTier.SAFE,
                                         source=ScanCategory.FILESYSTEM_HEALTH))
    write_file(os.path.join(folder, 'new.txt'), size=1)

    result = executor.clean([item.id], [folder], use_trash=False)

    assert result.failed == 1
    assert os.path.exists(os.path.join(folder, 'new.txt'))


def test_direct_delete_rechecks_broken_symlink(home, executor):
    """Test a symlink whose target reappeared is not unlinked"""
    target = os.path.join(home, 'target.txt')
    link = os.path.join(home, 'link')
    os.symlink(target, link)
    item, = register(executor, scan_item(link, ItemCategory.BROKEN_SYMLINK, tier=RiskTier.SAFE,
                                         source=ScanCategory.FILESYSTEM_HEALTH))
    write_file(target, size=1)

    result = executor.clean([item.id], [link], use_trash=False)

    assert result.failed == 1
    assert os.path.islink(link)


def test_non_safe_category_skipped_without_trash(home, executor):
    """Test only always-safe categories bypass the trash"""
    path = write_file(os.path.join(home, 'big.iso'), size=10)
    item, = register(executor, scan_item(path))

    result = executor.clean([item.id], [path], use_trash=False)

    assert result.skipped == 1
    assert result.cleaned == 0
    assert os.path.exists(path)


# ============================================================================
# Every request resolves to one outcome
# ============================================================================

def test_unknown_item_skipped(home, executor):
    """Test ids not in the latest scan are skipped"""
    path = write_file(os.path.join(home, 'x'), size=1)
    result = executor.clean(['not-registered'], [path])
    assert result.skipped == 1
    assert os.path.exists(path)


def test_mismatched_lengths(home, executor):
    """Test extra ids or paths are skipped rather than dropped"""
    path = write_file(os.path.join(home, 'x'), size=1)
    item, = register(executor, scan_item(path))

    result = executor.clean([item.id, 'extra-id'], [path])

    assert result.requested == 2
    assert result.cleaned == 1
    assert result.skipped == 1


def test_path_must_match_scan_item(home, executor):
    """Test a path that differs from the registered item fails"""
    path = write_file(os.path.join(home, 'real'), size=1)
    other = write_file(os.path.join(home, 'other'), size=1)
    item, = register(executor, scan_item(path))

    result = executor.clean([item.id], [other])

    assert result.failed == 1
    assert os.path.exists(other)


def test_critical_items_never_cleaned(home, executor):
    """Test deny-listed items are skipped"""
    path = write_file(os.path.join(home, 'keys', 'server.pem'), size=1)
    item, = register(executor, scan_item(path, tier=RiskTier.CRITICAL))

    result = executor.clean([item.id], [path])
    assert result.skipped == 1
    assert os.path.exists(path)


def test_orphan_packages_left_to_package_manager(home, executor):
    """Test orphan package items are skipped with a reason instead of failing"""
    path = write_file(os.path.join(home, 'doc', 'libfoo', 'README'), size=1)
    item, = register(executor, scan_item(os.path.dirname(path), category=ItemCategory.ORPHAN_PACKAGE,
                                         size=1, source=ScanCategory.PACKAGES))

    result = executor.clean([item.id], [item.path])

    assert result.skipped == 1
    assert result.failed == 0
    assert '包管理器' in result.outcomes[0].reason
    assert os.path.exists(path)


def test_signals(home, executor):
    """Test per-item and completion signals"""
    good = write_file(os.path.join(home, 'good'), size=1)
    bad = write_file(os.path.join(home, 'bad'), size=1)
    items = register(executor, scan_item(good), scan_item(bad))
    os.unlink(bad)

    cleaned, failed, completed = [], [], []
    executor.item_cleaned.connect(cleaned.append)
    executor.item_failed.connect(failed.append)
    executor.complete.connect(completed.append)

    executor.clean([i.id for i in items], [i.path for i in items])

    assert [o.path for o in cleaned] == [good]
    assert len(failed) == 1
    assert len(completed) == 1


# ============================================================================
# End to end
# ============================================================================

def test_scan_then_clean_filesystem_health(home, validator, store):
    """Test cleaning a filesystem-health scan without the trash"""
    os.makedirs(os.path.join(home, 'p', 'empty'))
    os.symlink(os.path.join(home, 'p', 'gone'), os.path.join(home, 'p', 'dangling'))
    write_file(os.path.join(home, 'p', 'old.tmp'), size=10, mtime=time.time() - 400 * 86400)

    engine = ScanEngine(validator=validator, classifier=RiskClassifier(home=home),
                        cache=CacheManager(), probes=[])
    executor = RemediationExecutor(store)
    executor.follow(engine)
    try:
        scan = engine.scan(ScanOptions(use_cache=False).only(ScanCategory.FILESYSTEM_HEALTH))
    finally:
        engine.shutdown()

    result = executor.clean([i.id for i in scan.items], [i.path for i in scan.items], use_trash=False)

    assert result.cleaned == 2
    assert result.skipped == 1
    assert os.path.exists(os.path.join(home, 'p', 'old.tmp'))
