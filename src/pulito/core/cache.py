"""
TTL 缓存管理

- 目录大小缓存：按规范路径，TTL 300 秒
- 扫描结果缓存：按扫描选项指纹，TTL 600 秒

只按 TTL 失效，不监听文件系统变化。
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

from ..utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

DIR_SIZE_TTL = 300
SCAN_RESULT_TTL = 600


class TTLCache(Generic[T]):
    """线程安全的 TTL 缓存

    读取并发安全；写入整体替换条目，不会出现读取到一半的值。
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[T, float]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            value, stored_at = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: str, value: T):
        with self._lock:
            self._entries[key] = (value, self._clock())

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def cleanup_expired(self) -> int:
        """移除过期条目，返回移除数量"""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, t) in self._entries.items() if now - t >= self.ttl_seconds]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass
class CacheStats:
    """缓存统计"""
    dir_size_entries: int
    scan_result_entries: int
    dir_size_hits: int
    dir_size_misses: int
    scan_result_hits: int
    scan_result_misses: int

    def to_dict(self) -> dict:
        return {
            'dir_size_entries': self.dir_size_entries,
            'scan_result_entries': self.scan_result_entries,
            'dir_size_hits': self.dir_size_hits,
            'dir_size_misses': self.dir_size_misses,
            'scan_result_hits': self.scan_result_hits,
            'scan_result_misses': self.scan_result_misses,
        }


class CacheManager:
    """扫描缓存管理器"""

    def __init__(self, dir_size_ttl: float = DIR_SIZE_TTL,
                 scan_result_ttl: float = SCAN_RESULT_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.dir_sizes: TTLCache[int] = TTLCache(dir_size_ttl, clock)
        self.scan_results: TTLCache = TTLCache(scan_result_ttl, clock)

    def get_dir_size(self, path: str) -> Optional[int]:
        return self.dir_sizes.get(path)

    def set_dir_size(self, path: str, size: int):
        self.dir_sizes.set(path, size)

    def get_scan_result(self, fingerprint: str):
        return self.scan_results.get(fingerprint)

    def set_scan_result(self, fingerprint: str, result):
        self.scan_results.set(fingerprint, result)

    def cleanup_expired(self) -> int:
        removed = self.dir_sizes.cleanup_expired() + self.scan_results.cleanup_expired()
        if removed:
            logger.debug(f"[CACHE] 清理过期缓存 {removed} 条")
        return removed

    def clear_all(self):
        self.dir_sizes.clear()
        self.scan_results.clear()
        logger.info("[CACHE] 已清空所有缓存")

    def stats(self) -> CacheStats:
        return CacheStats(
            dir_size_entries=len(self.dir_sizes),
            scan_result_entries=len(self.scan_results),
            dir_size_hits=self.dir_sizes.hits,
            dir_size_misses=self.dir_sizes.misses,
            scan_result_hits=self.scan_results.hits,
            scan_result_misses=self.scan_results.misses,
        )
