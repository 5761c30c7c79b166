"""
清理核心数据模型

扫描条目、扫描结果、回收站条目、清理结果与增长分析样本
"""
import hashlib
import math
import os
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Dict, Any, List, Optional, Tuple

from ..utils.time_utils import utc_now, format_iso, parse_iso_timestamp


class RiskTier(IntEnum):
    """风险等级 0 (Safe) - 5 (Critical)"""
    SAFE = 0
    LOW = 1
    MODERATE = 2
    ELEVATED = 3
    HIGH = 4
    CRITICAL = 5

    @property
    def auto_selectable(self) -> bool:
        """是否可以被默认选中"""
        return self <= RiskTier.LOW

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def from_value(cls, value) -> 'RiskTier':
        """从整数或名称创建，越界值夹到合法范围"""
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                value = int(value) if value.isdigit() else cls.CRITICAL
        return cls(max(cls.SAFE, min(cls.CRITICAL, int(value))))


class ScanCategory(Enum):
    """扫描分类（每个分类对应一个扫描任务）"""
    CACHE = "cache"
    PACKAGES = "packages"
    LOGS = "logs"
    FILESYSTEM_HEALTH = "filesystem_health"
    STORAGE_RECOVERY = "storage_recovery"

    @property
    def order(self) -> int:
        return list(ScanCategory).index(self)


class ItemCategory(Enum):
    """单个扫描条目的类别"""
    CACHE = "cache"
    PACKAGE_CACHE = "package_cache"
    ORPHAN_PACKAGE = "orphan_package"
    LOG = "log"
    EMPTY_DIRECTORY = "empty_directory"
    BROKEN_SYMLINK = "broken_symlink"
    ORPHANED_TEMP = "orphaned_temp"
    DUPLICATE = "duplicate"
    LARGE_FILE = "large_file"
    OLD_DOWNLOAD = "old_download"


# 只有这些类别允许不经回收站直接删除
ALWAYS_SAFE_CATEGORIES = frozenset({
    ItemCategory.EMPTY_DIRECTORY,
    ItemCategory.BROKEN_SYMLINK,
})


def make_item_id(source: ScanCategory, category: ItemCategory, path: str) -> str:
    """生成稳定的条目 ID（同一路径在多次扫描间保持不变）"""
    key = f"{source.value}:{category.value}:{path}"
    return hashlib.sha1(key.encode('utf-8', 'surrogateescape')).hexdigest()[:16]


@dataclass(frozen=True)
class ScanItem:
    """扫描条目

    Attributes:
        id: 条目 ID
        name: 显示名称
        path: 规范化路径
        category: 条目类别
        source: 产生该条目的扫描分类
        size: 大小（字节），目录为子项合计
        risk_tier: 风险等级
        description: 描述
        children: 聚合目录的子项（不单独计入总大小）
        discovered_at: 发现时间
        dependents: 反向依赖（软件包）
    """
    id: str
    name: str
    path: str
    category: ItemCategory
    source: ScanCategory
    size: int
    risk_tier: RiskTier
    description: str = ""
    children: Tuple['ScanItem', ...] = ()
    discovered_at: datetime = field(default_factory=utc_now)
    dependents: Tuple[str, ...] = ()

    @property
    def auto_selectable(self) -> bool:
        return self.risk_tier.auto_selectable

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'id': self.id,
            'name': self.name,
            'path': self.path,
            'category': self.category.value,
            'source': self.source.value,
            'size': self.size,
            'risk_tier': int(self.risk_tier),
            'description': self.description,
            'children': [child.to_dict() for child in self.children],
            'discovered_at': format_iso(self.discovered_at),
            'dependents': list(self.dependents),
        }


@dataclass
class FailedCategory:
    """失败的扫描分类"""
    category: ScanCategory
    reason: str
    state: str = "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category.value,
            'reason': self.reason,
            'state': self.state,
        }


@dataclass(frozen=True)
class ScanProgress:
    """扫描进度事件"""
    category: str
    percent: float
    message: str
    items_found: int = 0
    current_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'percent': round(self.percent, 1),
            'message': self.message,
            'items_found': self.items_found,
            'current_size': self.current_size,
        }


@dataclass(frozen=True)
class FileEntry:
    """已遍历的文件描述"""
    path: str
    size: int
    mtime: float
    device: int = 0
    inode: int = 0

    @property
    def modified_at(self) -> datetime:
        return datetime.fromtimestamp(self.mtime).astimezone()


@dataclass
class DuplicateGroup:
    """内容完全相同的文件组

    keep 为修改时间最早的文件（相同时按路径排序），其余构成删除集合
    """
    hash: str
    files: List[FileEntry]

    def __post_init__(self):
        if len(self.files) < 2:
            raise ValueError("duplicate group needs at least two files")
        self.files = sorted(self.files, key=lambda f: (f.mtime, f.path))

    @property
    def keep(self) -> FileEntry:
        return self.files[0]

    @property
    def removal_set(self) -> List[FileEntry]:
        return self.files[1:]

    @property
    def file_size(self) -> int:
        return self.files[0].size

    @property
    def reclaimable_size(self) -> int:
        return self.file_size * len(self.removal_set)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hash': self.hash,
            'keep': self.keep.path,
            'removal_set': [f.path for f in self.removal_set],
            'file_size': self.file_size,
            'reclaimable_size': self.reclaimable_size,
        }


@dataclass
class ScanResult:
    """扫描结果

    items 按扫描分类顺序排列，分类内按大小降序
    """
    items: List[ScanItem] = field(default_factory=list)
    failed_categories: List[FailedCategory] = field(default_factory=list)
    duplicate_groups: List[DuplicateGroup] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cancelled: bool = False
    scan_time_ms: int = 0
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.items = sorted(
            self.items,
            key=lambda i: (i.source.order, -i.size, i.path, i.category.value)
        )

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def total_size(self) -> int:
        """可回收总大小

        同一路径只计一次，位于其他已列出目录内部的条目不重复计算
        """
        by_path: Dict[str, int] = {}
        for item in self.items:
            by_path[item.path] = max(by_path.get(item.path, 0), item.size)

        directories = sorted(
            item.path for item in self.items
            if item.children or item.category in (ItemCategory.CACHE, ItemCategory.PACKAGE_CACHE)
        )

        total = 0
        for path, size in by_path.items():
            if any(path != d and path.startswith(d.rstrip(os.sep) + os.sep) for d in directories):
                continue
            total += size
        return total

    def grouped(self) -> 'OrderedDict[ScanCategory, List[ScanItem]]':
        """按扫描分类分组"""
        groups: 'OrderedDict[ScanCategory, List[ScanItem]]' = OrderedDict()
        for item in self.items:
            groups.setdefault(item.source, []).append(item)
        return groups

    def category_sizes(self) -> Dict[ScanCategory, int]:
        """每个扫描分类的大小合计，同一路径在分类内只计一次"""
        sizes: Dict[ScanCategory, int] = {}
        for source, items in self.grouped().items():
            by_path: Dict[str, int] = {}
            for item in items:
                by_path[item.path] = max(by_path.get(item.path, 0), item.size)
            sizes[source] = sum(by_path.values())
        return sizes

    def find(self, item_id: str) -> Optional[ScanItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    @property
    def is_complete(self) -> bool:
        return not self.cancelled and not self.failed_categories

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': [item.to_dict() for item in self.items],
            'total_items': self.total_items,
            'total_size': self.total_size,
            'failed_categories': [f.to_dict() for f in self.failed_categories],
            'duplicate_groups': [g.to_dict() for g in self.duplicate_groups],
            'warnings': list(self.warnings),
            'cancelled': self.cancelled,
            'scan_time_ms': self.scan_time_ms,
            'timestamp': format_iso(self.timestamp),
        }


# ========== 回收站 ==========

class TrashState(Enum):
    """回收站条目状态"""
    ACTIVE = "active"
    IN_TRASH = "in_trash"
    RESTORED = "restored"
    PURGED = "purged"


@dataclass
class TrashItem:
    """回收站条目

    trash_path 位于回收站根目录内，文件名为 UUID，元数据只保存在账本中
    """
    id: str
    original_path: str
    trash_path: str
    deleted_at: datetime
    retention_days: int
    size: int
    item_type: str = "file"
    source_category: str = ""
    risk_level_at_deletion: int = 0
    reason: str = ""
    state: TrashState = TrashState.IN_TRASH

    @property
    def expires_at(self) -> datetime:
        return self.deleted_at + timedelta(days=self.retention_days)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（同时作为账本行）"""
        return {
            'id': self.id,
            'original_path': self.original_path,
            'trash_path': self.trash_path,
            'deleted_at': format_iso(self.deleted_at),
            'expires_at': format_iso(self.expires_at),
            'retention_days': self.retention_days,
            'size': self.size,
            'item_type': self.item_type,
            'source_category': self.source_category,
            'risk_level_at_deletion': self.risk_level_at_deletion,
            'reason': self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrashItem':
        """从字典（账本行）创建"""
        return cls(
            id=data['id'],
            original_path=data['original_path'],
            trash_path=data['trash_path'],
            deleted_at=parse_iso_timestamp(data['deleted_at']),
            retention_days=int(data['retention_days']),
            size=int(data.get('size') or 0),
            item_type=data.get('item_type') or 'file',
            source_category=data.get('source_category') or '',
            risk_level_at_deletion=int(data.get('risk_level_at_deletion') or 0),
            reason=data.get('reason') or '',
        )


@dataclass
class TrashSnapshot:
    """回收站快照"""
    items: List[TrashItem] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(item.size for item in self.items)

    @property
    def total_items(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': [item.to_dict() for item in self.items],
            'total_size': self.total_size,
            'total_items': self.total_items,
        }


@dataclass
class SweepReport:
    """回收站清扫报告"""
    expired: List[str] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)
    freed_bytes: int = 0
    over_capacity: bool = False

    @property
    def purged_count(self) -> int:
        return len(self.expired) + len(self.evicted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'expired': list(self.expired),
            'evicted': list(self.evicted),
            'freed_bytes': self.freed_bytes,
            'over_capacity': self.over_capacity,
        }


# ========== 清理结果 ==========

class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ItemOutcome:
    """单个请求条目的处理结果"""
    item_id: str
    path: str
    status: OutcomeStatus
    reason: str = ""
    size: int = 0
    trash_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'item_id': self.item_id,
            'path': self.path,
            'status': self.status.value,
            'reason': self.reason,
            'size': self.size,
            'trash_id': self.trash_id,
        }


@dataclass
class CleanResult:
    """清理结果汇总"""
    outcomes: List[ItemOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def requested(self) -> int:
        return len(self.outcomes)

    @property
    def cleaned(self) -> int:
        return self._count(OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def total_size(self) -> int:
        return sum(o.size for o in self.outcomes if o.status == OutcomeStatus.SUCCEEDED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'requested': self.requested,
            'cleaned': self.cleaned,
            'failed': self.failed,
            'skipped': self.skipped,
            'total_size': self.total_size,
            'outcomes': [o.to_dict() for o in self.outcomes],
            'warnings': list(self.warnings),
        }


# ========== 增长分析 ==========

@dataclass(frozen=True)
class GrowthSample:
    """分类大小样本"""
    category: str
    timestamp: datetime
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'timestamp': format_iso(self.timestamp),
            'size': self.size,
        }


@dataclass
class GrowthProjection:
    """增长预测

    days_until_exhaustion 在增长率 <= 0 时为 math.inf
    """
    category: str
    rate_per_day: float
    days_until_exhaustion: float
    sample_count: int
    remaining_capacity: int

    @property
    def is_growing(self) -> bool:
        return self.rate_per_day > 0

    @property
    def never_exhausts(self) -> bool:
        return math.isinf(self.days_until_exhaustion)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'rate_per_day': self.rate_per_day,
            'days_until_exhaustion': None if self.never_exhausts else self.days_until_exhaustion,
            'sample_count': self.sample_count,
            'remaining_capacity': self.remaining_capacity,
        }
