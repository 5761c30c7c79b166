"""
重复文件检测与存储分析 (Duplicate Detector / Storage Analyzer)

重复检测分两阶段，避免对每个文件的全部内容求哈希：
1. 按 (大小, 前 64KB 部分哈希) 分组
2. 只在仍有多个成员的分组内计算完整内容哈希

大文件与旧下载检测是作用于同一次遍历结果的简单过滤，不再重复遍历目录树。
"""
import hashlib
import os
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .models import DuplicateGroup, FileEntry
from .path_validator import is_under
from .walker import CancellationToken, walk_tree
from ..utils.logger import get_logger, log_performance

logger = get_logger(__name__)

PARTIAL_HASH_BYTES = 64 * 1024
HASH_CHUNK_SIZE = 1024 * 1024
DEFAULT_MIN_SIZE = 1024


def collect_file_entries(
    roots: Iterable[str],
    token: Optional[CancellationToken] = None,
    include_hidden: bool = False,
    max_depth: int = 10,
    max_files: int = 50000,
    exclude: Iterable[str] = (),
) -> List[FileEntry]:
    """遍历目录树收集普通文件（不跟随符号链接）

    硬链接只保留第一个路径，达到 max_files 后停止遍历。
    """
    entries: List[FileEntry] = []
    seen_inodes: Set[Tuple[int, int]] = set()

    for root in roots:
        if not os.path.isdir(root):
            continue
        for step in walk_tree(root, token, include_hidden=include_hidden, max_depth=max_depth,
                              exclude=exclude):
            for entry in step.files:
                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError:
                    continue
                key = (st.st_dev, st.st_ino)
                if key in seen_inodes:
                    continue
                seen_inodes.add(key)
                entries.append(FileEntry(
                    path=entry.path,
                    size=st.st_size,
                    mtime=st.st_mtime,
                    device=st.st_dev,
                    inode=st.st_ino,
                ))
                if len(entries) >= max_files:
                    logger.warning(f"[扫描:WALK] 已达到最大文件数限制: {max_files}")
                    return entries
    return entries


class DuplicateDetector:
    """重复文件检测器"""

    def __init__(self, partial_bytes: int = PARTIAL_HASH_BYTES,
                 token: Optional[CancellationToken] = None):
        self.partial_bytes = partial_bytes
        self.token = token

    def find_duplicates(self, root: str, min_size: int = DEFAULT_MIN_SIZE,
                        include_hidden: bool = False) -> List[DuplicateGroup]:
        """在目录树中查找重复文件

        Args:
            root: 根目录
            min_size: 最小文件大小（字节），更小的文件不参与比较
            include_hidden: 是否包含隐藏文件

        Returns:
            重复组列表，按可回收大小降序
        """
        entries = collect_file_entries([root], self.token, include_hidden=include_hidden)
        return self.group_entries(entries, min_size)

    def group_entries(self, entries: Iterable[FileEntry],
                      min_size: int = DEFAULT_MIN_SIZE) -> List[DuplicateGroup]:
        """对已遍历的文件集合分组"""
        start = time.monotonic()

        by_size: Dict[int, List[FileEntry]] = defaultdict(list)
        for entry in entries:
            if entry.size >= max(min_size, 1):
                by_size[entry.size].append(entry)

        groups: List[DuplicateGroup] = []
        hashed = 0
        for size, candidates in by_size.items():
            if len(candidates) < 2:
                continue

            by_partial: Dict[str, List[FileEntry]] = defaultdict(list)
            for entry in candidates:
                self._check_cancel()
                digest = self._hash_file(entry.path, limit=self.partial_bytes)
                hashed += 1
                if digest is not None:
                    by_partial[digest].append(entry)

            for partial, members in by_partial.items():
                if len(members) < 2:
                    continue
                if size <= self.partial_bytes:
                    # 部分哈希已覆盖全部内容
                    groups.append(DuplicateGroup(hash=partial, files=members))
                    continue

                by_full: Dict[str, List[FileEntry]] = defaultdict(list)
                for entry in members:
                    self._check_cancel()
                    digest = self._hash_file(entry.path)
                    hashed += 1
                    if digest is not None:
                        by_full[digest].append(entry)
                for full, confirmed in by_full.items():
                    if len(confirmed) >= 2:
                        groups.append(DuplicateGroup(hash=full, files=confirmed))

        groups.sort(key=lambda g: (-g.reclaimable_size, g.hash))
        log_performance(logger, 'FIND_DUPLICATES', int((time.monotonic() - start) * 1000),
                        groups=len(groups), hashed=hashed)
        return groups

    def _check_cancel(self):
        if self.token is not None:
            self.token.raise_if_cancelled()

    @staticmethod
    def _hash_file(path: str, limit: Optional[int] = None) -> Optional[str]:
        """计算文件 SHA-256，limit 指定时只读取前 limit 字节"""
        hasher = hashlib.sha256()
        remaining = limit
        try:
            with open(path, 'rb') as f:
                while True:
                    chunk_size = HASH_CHUNK_SIZE if remaining is None else min(HASH_CHUNK_SIZE, remaining)
                    if chunk_size <= 0:
                        break
                    chunk = f.read(chunk_size)
                    if not chunk:
                        break
                    hasher.update(chunk)
                    if remaining is not None:
                        remaining -= len(chunk)
        except OSError as e:
            logger.debug(f"[DUPLICATE] 无法读取文件: {path}, 错误: {e}")
            return None
        return hasher.hexdigest()


class StorageAnalyzer:
    """存储分析：大文件与旧下载"""

    @staticmethod
    def large_files(entries: Iterable[FileEntry], threshold_bytes: int,
                    limit: Optional[int] = None) -> List[FileEntry]:
        """大小不低于阈值的文件，按大小降序"""
        result = sorted(
            (e for e in entries if e.size >= threshold_bytes),
            key=lambda e: (-e.size, e.path)
        )
        return result[:limit] if limit else result

    @staticmethod
    def old_downloads(entries: Iterable[FileEntry], downloads_dir: str, days: int,
                      now: Optional[datetime] = None, max_depth: int = 2) -> List[FileEntry]:
        """下载目录中超过 days 天未修改的文件

        Args:
            entries: 已遍历文件
            downloads_dir: 下载目录（规范化路径）
            days: 天数阈值
            now: 当前时间（测试注入）
            max_depth: 相对下载目录的最大深度
        """
        now = now or datetime.now().astimezone()
        cutoff = (now - timedelta(days=days)).timestamp()
        base_depth = downloads_dir.rstrip(os.sep).count(os.sep)

        result = []
        for entry in entries:
            if not is_under(entry.path, downloads_dir) or entry.path == downloads_dir:
                continue
            depth = entry.path.count(os.sep) - base_depth - 1
            if depth > max_depth:
                continue
            if entry.mtime < cutoff:
                result.append(entry)
        result.sort(key=lambda e: (e.mtime, e.path))
        return result
