"""
分类扫描器 (策略表)

每个扫描分类实现统一的 produce() 能力，由 SCANNER_REGISTRY 静态选择。
所有候选在成为 ScanItem 之前都经过 PathValidator 校验和 RiskClassifier 分级。
"""
import fnmatch
import os
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Type

from .dir_size import DirectorySizer
from .duplicate_detector import DuplicateDetector, StorageAnalyzer, collect_file_entries
from .exceptions import CleanerError, ScanTimeoutError
from .models import (
    DuplicateGroup, ItemCategory, ScanCategory, ScanItem, make_item_id
)
from .packages import PackageProbe, default_probes
from .path_validator import PathValidator, SecurityContext
from .risk_classifier import RiskCandidate, RiskClassifier
from .scan_options import ScanOptions
from .walker import CancellationToken, walk_tree
from ..utils.format_utils import format_size
from ..utils.logger import get_logger, log_file_operation

logger = get_logger(__name__)

CACHE_CHILD_LIMIT = 10
LARGE_FILE_LIMIT = 50
TEMP_SCAN_DEPTH = 3
DOWNLOADS_MAX_DEPTH = 2

TEMP_FILE_PATTERNS = ('*.tmp', '*.temp', '*.swp', '*.bak', '*.orig', '*.old', '~*', '*~')
TEMP_DIR_NAMES = frozenset({'tmp', '.tmp', 'temp', 'Temp', 'TEMP'})
LOG_NAME_RE = re.compile(r'\.log(\.\d+)?(\.gz|\.xz|\.old)?$')

ProgressReporter = Callable[[float, str, int, int], None]


@dataclass
class ScanContext:
    """分类扫描任务的运行环境"""
    options: ScanOptions
    validator: PathValidator
    classifier: RiskClassifier
    sizer: DirectorySizer
    token: CancellationToken
    report: ProgressReporter = lambda percent, message, items, size: None
    probes: Optional[Sequence[PackageProbe]] = None
    now: datetime = field(default_factory=lambda: datetime.now().astimezone())
    warnings: List[str] = field(default_factory=list)
    duplicate_groups: List[DuplicateGroup] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def home(self) -> str:
        return self.validator.home

    def home_path(self, *parts: str) -> str:
        return os.path.join(self.home, *parts)

    @property
    def excluded(self) -> Tuple[str, ...]:
        """遍历时跳过的应用保留路径"""
        return self.validator.policy.protected_paths

    def add_warning(self, message: str):
        with self._lock:
            self.warnings.append(message)


class CategoryScanner(ABC):
    """分类扫描器基类"""

    category: ScanCategory
    security_context = SecurityContext.SCAN
    # 深度遍历类扫描器共享同一个遍历槽位
    deep_walk = False

    def __init__(self, ctx: ScanContext):
        self.ctx = ctx
        self.items: List[ScanItem] = []
        self.current_size = 0

    @abstractmethod
    def produce(self) -> List[ScanItem]:
        """产生候选条目"""

    # ------------------------------------------------------------------

    def scan_roots(self) -> List[str]:
        roots = self.ctx.options.roots or (self.ctx.home,)
        return [os.path.realpath(root) for root in roots]

    def report(self, percent: float, message: str):
        self.ctx.report(percent, message, len(self.items), self.current_size)

    def make_item(self, path: str, category: ItemCategory, size: int, description: str,
                  children: Tuple[ScanItem, ...] = (), dependents: Tuple[str, ...] = (),
                  name: Optional[str] = None) -> Optional[ScanItem]:
        """校验并分级候选，未通过校验时返回 None"""
        try:
            canonical = self.ctx.validator.validate(path, self.security_context)
        except CleanerError as e:
            log_file_operation(logger, 'REJECT', path, error=str(e))
            return None

        tier = self.ctx.classifier.classify(RiskCandidate(
            path=canonical,
            category=category,
            dependents=len(dependents),
            is_directory=os.path.isdir(canonical) and not os.path.islink(canonical),
        ))
        return ScanItem(
            id=make_item_id(self.category, category, canonical),
            name=name or os.path.basename(canonical) or canonical,
            path=canonical,
            category=category,
            source=self.category,
            size=size,
            risk_tier=tier,
            description=description,
            children=tuple(children),
            discovered_at=self.ctx.now,
            dependents=tuple(dependents),
        )

    def add(self, item: Optional[ScanItem]):
        if item is not None:
            self.items.append(item)
            self.current_size += item.size

    def dir_size(self, path: str) -> Optional[int]:
        """目录大小；子任务超时记为警告并返回 None"""
        try:
            return self.ctx.sizer.size_of(path, self.ctx.token)
        except ScanTimeoutError as e:
            self.ctx.add_warning(f"{self.category.value}: {e.message}")
            return None


class CacheScanner(CategoryScanner):
    """用户缓存目录"""

    category = ScanCategory.CACHE

    TARGETS = (
        (('.cache',), "用户应用缓存"),
        (('.thumbnails',), "缩略图缓存"),
        (('.local', 'share', 'Trash'), "桌面回收站内容"),
    )

    def produce(self) -> List[ScanItem]:
        total = len(self.TARGETS)
        for index, (parts, description) in enumerate(self.TARGETS):
            self.ctx.token.raise_if_cancelled()
            path = self.ctx.home_path(*parts)
            self.report(index * 100 / total, f"检查 {path}")
            if not os.path.isdir(path) or os.path.islink(path):
                continue

            size = self.dir_size(path)
            if not size:
                continue

            children = self._largest_children(path)
            self.add(self.make_item(path, ItemCategory.CACHE, size,
                                    f"{description} ({format_size(size)})", children))

        self.report(100, f"缓存扫描完成，发现 {len(self.items)} 项")
        return self.items

    def _largest_children(self, path: str) -> Tuple[ScanItem, ...]:
        children = []
        try:
            with os.scandir(path) as it:
                subdirs = sorted(e.path for e in it if e.is_dir(follow_symlinks=False))
        except OSError as e:
            log_file_operation(logger, 'SKIP', path, error=str(e))
            return ()

        for sub in subdirs:
            self.ctx.token.raise_if_cancelled()
            size = self.dir_size(sub)
            if not size:
                continue
            child = self.make_item(sub, ItemCategory.CACHE, size, f"缓存目录 ({format_size(size)})")
            if child is not None:
                children.append(child)

        children.sort(key=lambda c: (-c.size, c.path))
        return tuple(children[:CACHE_CHILD_LIMIT])


class PackageScanner(CategoryScanner):
    """软件包缓存与孤立软件包"""

    category = ScanCategory.PACKAGES
    security_context = SecurityContext.INSPECT

    def produce(self) -> List[ScanItem]:
        probes = self.ctx.probes
        if probes is None:
            probes = default_probes(self.ctx.home)

        total = max(len(probes), 1)
        for index, probe in enumerate(probes):
            self.ctx.token.raise_if_cancelled()
            self.report(index * 100 / total, f"探测 {probe.manager} 软件包")
            for candidate in probe.discover():
                self.ctx.token.raise_if_cancelled()
                if not candidate.path:
                    continue
                if candidate.kind == 'cache':
                    size = self.dir_size(candidate.path)
                    if not size:
                        continue
                    self.add(self.make_item(
                        candidate.path, ItemCategory.PACKAGE_CACHE, size,
                        f"{candidate.description} ({format_size(size)})",
                        name=candidate.name,
                    ))
                else:
                    self.add(self.make_item(
                        candidate.path, ItemCategory.ORPHAN_PACKAGE, candidate.size,
                        f"孤立软件包 {candidate.name} {candidate.version}".strip(),
                        dependents=tuple(candidate.dependents),
                        name=candidate.name,
                    ))

        self.report(100, f"软件包扫描完成，发现 {len(self.items)} 项")
        return self.items


class LogScanner(CategoryScanner):
    """应用日志文件"""

    category = ScanCategory.LOGS

    LOG_ROOTS = (('.local', 'share'), ('.cache',))

    def produce(self) -> List[ScanItem]:
        options = self.ctx.options
        roots = [self.ctx.home_path(*parts) for parts in self.LOG_ROOTS]
        total = len(roots)
        for index, root in enumerate(roots):
            self.report(index * 100 / total, f"扫描日志 {root}")
            if not os.path.isdir(root):
                continue
            # 日志目录本身位于隐藏目录中，这里总是包含隐藏条目
            for step in walk_tree(root, self.ctx.token, include_hidden=True,
                                  max_depth=options.max_depth, exclude=self.ctx.excluded):
                for entry in step.files:
                    if not LOG_NAME_RE.search(entry.name):
                        continue
                    try:
                        size = entry.stat(follow_symlinks=False).st_size
                    except OSError:
                        continue
                    if size < options.log_min_size:
                        continue
                    self.add(self.make_item(entry.path, ItemCategory.LOG, size,
                                            f"日志文件 ({format_size(size)})"))

        self.report(100, f"日志扫描完成，发现 {len(self.items)} 项")
        return self.items


class FilesystemHealthScanner(CategoryScanner):
    """文件系统异常：空目录、断开的符号链接、孤立临时文件"""

    category = ScanCategory.FILESYSTEM_HEALTH
    deep_walk = True

    def produce(self) -> List[ScanItem]:
        options = self.ctx.options
        cutoff = (self.ctx.now - timedelta(days=options.temp_file_age_days)).timestamp()
        roots = self.scan_roots()

        for index, root in enumerate(roots):
            dirs_seen = 0
            for step in walk_tree(root, self.ctx.token, include_hidden=options.include_hidden,
                                  max_depth=options.max_depth, exclude=self.ctx.excluded):
                dirs_seen += 1
                if dirs_seen % 200 == 0:
                    self.report(index * 100 / len(roots), f"已检查 {dirs_seen} 个目录")

                if step.path != root and step.is_empty:
                    self.add(self.make_item(step.path, ItemCategory.EMPTY_DIRECTORY, 0, "空目录"))

                for link in step.symlinks:
                    if not os.path.exists(link.path):
                        self._add_broken_link(link)

                if step.depth <= TEMP_SCAN_DEPTH:
                    in_temp_dir = os.path.basename(step.path) in TEMP_DIR_NAMES
                    for entry in step.files:
                        self._check_temp(entry, in_temp_dir, cutoff)

        self.report(100, f"文件系统检查完成，发现 {len(self.items)} 项")
        return self.items

    def _add_broken_link(self, link: os.DirEntry):
        try:
            target = os.readlink(link.path)
            size = os.lstat(link.path).st_size
        except OSError:
            return
        self.add(self.make_item(link.path, ItemCategory.BROKEN_SYMLINK, size,
                                f"断开的符号链接 -> {target}"))

    def _check_temp(self, entry: os.DirEntry, in_temp_dir: bool, cutoff: float):
        if not in_temp_dir and not any(fnmatch.fnmatchcase(entry.name, p) for p in TEMP_FILE_PATTERNS):
            return
        try:
            st = entry.stat(follow_symlinks=False)
        except OSError:
            return
        if st.st_mtime >= cutoff:
            return
        age_days = int((self.ctx.now.timestamp() - st.st_mtime) // 86400)
        self.add(self.make_item(entry.path, ItemCategory.ORPHANED_TEMP, st.st_size,
                                f"孤立临时文件（{age_days} 天未修改）"))


class StorageRecoveryScanner(CategoryScanner):
    """存储回收：重复文件、大文件、旧下载

    三类检测共用一次目录遍历。
    """

    category = ScanCategory.STORAGE_RECOVERY
    deep_walk = True

    def produce(self) -> List[ScanItem]:
        options = self.ctx.options
        self.report(0, "遍历文件")
        entries = collect_file_entries(
            self.scan_roots(), self.ctx.token,
            include_hidden=options.include_hidden,
            max_depth=options.max_depth,
            max_files=options.max_files,
            exclude=self.ctx.excluded,
        )

        self.report(40, f"已遍历 {len(entries)} 个文件，检测重复文件")
        groups = DuplicateDetector(token=self.ctx.token).group_entries(
            entries, options.duplicate_min_size
        )
        for group in groups:
            for duplicate in group.removal_set:
                self.add(self.make_item(
                    duplicate.path, ItemCategory.DUPLICATE, duplicate.size,
                    f"与 {group.keep.path} 内容相同"
                ))
        self.ctx.duplicate_groups.extend(groups)

        self.report(80, "检测大文件与旧下载")
        threshold = options.large_file_threshold_bytes
        for entry in StorageAnalyzer.large_files(entries, threshold, limit=LARGE_FILE_LIMIT):
            self.add(self.make_item(entry.path, ItemCategory.LARGE_FILE, entry.size,
                                    f"大文件 ({format_size(entry.size)})"))

        downloads = os.path.realpath(self.ctx.home_path('Downloads'))
        for entry in StorageAnalyzer.old_downloads(entries, downloads, options.old_download_days,
                                                   now=self.ctx.now, max_depth=DOWNLOADS_MAX_DEPTH):
            self.add(self.make_item(entry.path, ItemCategory.OLD_DOWNLOAD, entry.size,
                                    f"超过 {options.old_download_days} 天的下载文件"))

        self.report(100, f"存储分析完成，发现 {len(self.items)} 项")
        return self.items


SCANNER_REGISTRY: Dict[ScanCategory, Type[CategoryScanner]] = {
    ScanCategory.CACHE: CacheScanner,
    ScanCategory.PACKAGES: PackageScanner,
    ScanCategory.LOGS: LogScanner,
    ScanCategory.FILESYSTEM_HEALTH: FilesystemHealthScanner,
    ScanCategory.STORAGE_RECOVERY: StorageRecoveryScanner,
}
