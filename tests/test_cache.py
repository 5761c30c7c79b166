"""
Scan Cache Unit Tests
"""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from pulito.core.cache import CacheManager, TTLCache


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


def test_entry_expires_after_ttl():
    """Test entries are served until the TTL elapses"""
    clock = FakeMonotonic()
    cache = TTLCache(300, clock)
    cache.set('/home/u/.cache', 4096)

    clock.value += 299
    assert cache.get('/home/u/.cache') == 4096
    clock.value += 1
    assert cache.get('/home/u/.cache') is None
    assert cache.hits == 1
    assert cache.misses == 1


def test_set_replaces_entry():
    """Test a second set replaces value and timestamp"""
    clock = FakeMonotonic()
    cache = TTLCache(10, clock)
    cache.set('k', 1)
    clock.value += 8
    cache.set('k', 2)
    clock.value += 8
    assert cache.get('k') == 2


def test_cleanup_expired():
    """Test cleanup removes only stale entries"""
    clock = FakeMonotonic()
    cache = TTLCache(10, clock)
    cache.set('old', 1)
    clock.value += 6
    cache.set('new', 2)
    clock.value += 5

    assert cache.cleanup_expired() == 1
    assert len(cache) == 1
    assert cache.invalidate('new')
    assert not cache.invalidate('new')


def test_cache_manager_ttls_and_stats():
    """Test directory sizes and scan results use separate TTLs"""
    clock = FakeMonotonic()
    manager = CacheManager(clock=clock)
    manager.set_dir_size('/home/u/a', 10)
    manager.set_scan_result('fp', 'result')

    clock.value += 301
    assert manager.get_dir_size('/home/u/a') is None
    assert manager.get_scan_result('fp') == 'result'

    stats = manager.stats()
    assert stats.dir_size_misses == 1
    assert stats.scan_result_hits == 1
    assert stats.to_dict()['scan_result_entries'] == 1

    manager.clear_all()
    assert manager.stats().scan_result_entries == 0
