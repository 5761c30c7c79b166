"""
目录大小计算

大目录（或网络挂载目录）可能阻塞数秒，因此在独立线程池中执行并设置单独超时，
驱动进度事件和取消检查的线程不会被阻塞。结果按规范路径缓存。
"""
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional

from .cache import CacheManager
from .exceptions import ScanCancelledError, ScanTimeoutError
from .walker import CancellationToken
from ..utils.logger import get_logger, log_performance

logger = get_logger(__name__)

DEFAULT_SIZE_TIMEOUT = 30


def get_directory_size(path: str, should_stop: Optional[Callable[[], bool]] = None,
                       deadline: Optional[float] = None) -> int:
    """Get directory size without following symlinks

    Args:
        path: Directory path
        should_stop: Optional function that returns True when the walk must stop
        deadline: time.monotonic() value after which the walk times out

    Returns:
        Total size in bytes

    Raises:
        ScanCancelledError: should_stop returned True
        ScanTimeoutError: deadline passed
    """
    try:
        st = os.lstat(path)
    except OSError:
        return 0
    if not os.path.isdir(path) or os.path.islink(path):
        return st.st_size

    total = 0
    stack = [path]
    while stack:
        # 每个目录检查一次停止条件
        if should_stop is not None and should_stop():
            raise ScanCancelledError(f"目录大小计算已取消: {path}", path=path)
        if deadline is not None and time.monotonic() > deadline:
            raise ScanTimeoutError(f"计算目录大小超时: {path}", path=path)

        current = stack.pop()
        try:
            with os.scandir(current) as it:
                for entry in it:
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            stack.append(entry.path)
                        else:
                            total += entry.stat(follow_symlinks=False).st_size
                    except OSError:
                        continue
        except OSError as e:
            logger.debug(f"[扫描:SIZE] 无法访问目录: {current}, 错误: {e}")
    return total


class DirectorySizer:
    """带超时与缓存的目录大小计算器"""

    def __init__(self, cache: Optional[CacheManager] = None,
                 timeout_seconds: float = DEFAULT_SIZE_TIMEOUT,
                 max_workers: int = 2):
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix='dir-size')

    def size_of(self, path: str, token: Optional[CancellationToken] = None,
                timeout_seconds: Optional[float] = None) -> int:
        """计算目录大小

        Args:
            path: 规范化路径
            token: 取消令牌
            timeout_seconds: 覆盖默认超时

        Raises:
            ScanTimeoutError: 超时（只代表本次计算失败）
            ScanCancelledError: 扫描被取消
        """
        if self.cache is not None:
            cached = self.cache.get_dir_size(path)
            if cached is not None:
                return cached

        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        stop_event = threading.Event()

        def should_stop() -> bool:
            return stop_event.is_set() or (token is not None and token.is_cancelled)

        start = time.monotonic()
        future = self._executor.submit(get_directory_size, path, should_stop, start + timeout)
        try:
            size = future.result(timeout=timeout)
        except FutureTimeout:
            stop_event.set()
            logger.warning(f"[扫描:SIZE] 计算目录大小超时: {path} (已过 {timeout}秒)")
            raise ScanTimeoutError(f"计算目录大小超时: {path}", path=path,
                                   timeout_seconds=timeout) from None

        duration_ms = int((time.monotonic() - start) * 1000)
        if duration_ms >= 1000:
            log_performance(logger, f'DIR_SIZE {path}', duration_ms)

        if self.cache is not None:
            self.cache.set_dir_size(path, size)
        return size

    def shutdown(self):
        self._executor.shutdown(wait=False)
