"""
Growth Analytics Unit Tests
"""
import pytest
import sys
import os
import math
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from pulito.core.growth import GrowthAnalytics, linear_rate
from pulito.core.models import (
    FailedCategory,
    ItemCategory,
    RiskTier,
    ScanCategory,
    ScanItem,
    ScanResult,
)


MB = 1024 * 1024
T0 = datetime(2026, 5, 1, tzinfo=timezone.utc)


@pytest.fixture
def growth(db, home):
    return GrowthAnalytics(database=db, mount_point=home, clock=lambda: T0 + timedelta(days=10))


# ============================================================================
# Regression
# ============================================================================

def test_linear_rate_needs_two_points():
    """Test fewer than two points or zero spread yields zero"""
    assert linear_rate([]) == 0.0
    assert linear_rate([(0.0, 5.0)]) == 0.0
    assert linear_rate([(1.0, 5.0), (1.0, 9.0)]) == 0.0


def test_ten_mb_per_day(growth):
    """Test 100/110/120 MB on consecutive days projects 10 MB/day"""
    for day, size in enumerate((100, 110, 120)):
        growth.record('cache', size * MB, T0 + timedelta(days=day))

    projection = growth.project('cache', remaining_capacity=1000 * MB)

    assert projection.rate_per_day == pytest.approx(10 * MB)
    assert projection.days_until_exhaustion == pytest.approx(100.0)
    assert projection.sample_count == 3
    assert projection.is_growing


def test_shrinking_category_never_exhausts(growth):
    """Test a non-positive rate yields the infinity sentinel"""
    growth.record('logs', 50 * MB, T0)
    growth.record('logs', 40 * MB, T0 + timedelta(days=1))

    projection = growth.project('logs', remaining_capacity=100 * MB)

    assert projection.rate_per_day < 0
    assert math.isinf(projection.days_until_exhaustion)
    assert projection.never_exhausts
    assert projection.to_dict()['days_until_exhaustion'] is None


def test_single_sample_is_flat(growth):
    """Test one sample gives zero rate"""
    growth.record('packages', 10 * MB, T0)
    projection = growth.project('packages', remaining_capacity=1)
    assert projection.rate_per_day == 0
    assert projection.never_exhausts


def test_default_capacity_from_disk(growth):
    """Test remaining capacity defaults to the free space of the mount point"""
    growth.record('cache', 1, T0)
    growth.record('cache', 2, T0 + timedelta(days=1))
    projection = growth.project('cache')
    assert projection.remaining_capacity > 0


# ============================================================================
# Window and persistence
# ============================================================================

def test_samples_older_than_window_pruned(growth):
    """Test recording prunes samples outside the 30-day window"""
    growth.record('cache', 1, T0)
    growth.record('cache', 2, T0 + timedelta(days=40))

    history = growth.history('cache')
    assert [s.size for s in history] == [2]


def test_prune_uses_clock(growth):
    """Test prune() without arguments uses the injected clock"""
    growth.record('cache', 1, T0 - timedelta(days=25))
    assert growth.prune() == 1
    assert growth.history('cache') == []


def test_history_survives_new_instance(db, home):
    """Test samples are persisted through the database"""
    GrowthAnalytics(database=db, mount_point=home).record('logs', 5, T0)
    again = GrowthAnalytics(database=db, mount_point=home)
    assert [s.size for s in again.history('logs')] == [5]
    assert again.history('logs')[0].timestamp == T0


def test_record_scan_skips_failed_categories(growth):
    """Test per-category sizes of a scan are recorded except failures"""
    item = ScanItem(id='1', name='c', path='/h/.cache', category=ItemCategory.CACHE,
                    source=ScanCategory.CACHE, size=300, risk_tier=RiskTier.SAFE)
    log = ScanItem(id='2', name='l', path='/h/a.log', category=ItemCategory.LOG,
                   source=ScanCategory.LOGS, size=20, risk_tier=RiskTier.LOW)
    result = ScanResult(items=[item, log], timestamp=T0,
                        failed_categories=[FailedCategory(ScanCategory.LOGS, 'boom')])

    samples = growth.record_scan(result)

    assert [(s.category, s.size) for s in samples] == [('cache', 300)]


def test_project_all(growth):
    """Test projections for every recorded category"""
    growth.record('cache', 1, T0)
    growth.record('logs', 1, T0)
    categories = [p.category for p in growth.project_all(remaining_capacity=10)]
    assert categories == ['cache', 'logs']
