"""
扫描选项
"""
import hashlib
import json
from dataclasses import dataclass, asdict, replace
from typing import List, Tuple

from .models import ScanCategory

MB = 1024 * 1024

LARGE_FILE_THRESHOLDS_MB = (50, 100, 250, 500, 1000)
DEFAULT_LARGE_FILE_THRESHOLD_MB = 100

BASE_SCAN_TIMEOUT = 600
EXTENDED_SCAN_TIMEOUT = 900


def snap_large_file_threshold(value) -> int:
    """将阈值吸附到最接近的允许值（相同距离取较大值）"""
    value = float(value)
    return min(LARGE_FILE_THRESHOLDS_MB, key=lambda allowed: (abs(allowed - value), -allowed))


@dataclass(frozen=True)
class ScanOptions:
    """扫描选项

    roots 为空时以用户主目录为扫描根目录
    """
    include_caches: bool = True
    include_packages: bool = True
    include_logs: bool = True
    include_filesystem_health: bool = True
    include_storage_recovery: bool = True
    include_hidden: bool = False
    large_file_threshold_mb: int = DEFAULT_LARGE_FILE_THRESHOLD_MB
    old_download_days: int = 90
    temp_file_age_days: int = 30
    duplicate_min_size: int = 1024
    log_min_size: int = 10 * MB
    max_files: int = 50000
    max_depth: int = 10
    roots: Tuple[str, ...] = ()
    use_cache: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'large_file_threshold_mb',
                           snap_large_file_threshold(self.large_file_threshold_mb))
        object.__setattr__(self, 'roots', tuple(self.roots))
        object.__setattr__(self, 'max_depth', max(0, int(self.max_depth)))
        object.__setattr__(self, 'max_files', max(1, int(self.max_files)))

    @property
    def large_file_threshold_bytes(self) -> int:
        return self.large_file_threshold_mb * MB

    def enabled_categories(self) -> List[ScanCategory]:
        toggles = {
            ScanCategory.CACHE: self.include_caches,
            ScanCategory.PACKAGES: self.include_packages,
            ScanCategory.LOGS: self.include_logs,
            ScanCategory.FILESYSTEM_HEALTH: self.include_filesystem_health,
            ScanCategory.STORAGE_RECOVERY: self.include_storage_recovery,
        }
        return [category for category in ScanCategory if toggles[category]]

    def only(self, *categories: ScanCategory) -> 'ScanOptions':
        """返回只启用指定分类的副本"""
        return replace(
            self,
            include_caches=ScanCategory.CACHE in categories,
            include_packages=ScanCategory.PACKAGES in categories,
            include_logs=ScanCategory.LOGS in categories,
            include_filesystem_health=ScanCategory.FILESYSTEM_HEALTH in categories,
            include_storage_recovery=ScanCategory.STORAGE_RECOVERY in categories,
        )

    def scan_timeout(self) -> int:
        """整体扫描超时（秒）：同时分析缓存和软件包时延长"""
        if self.include_caches and self.include_packages:
            return EXTENDED_SCAN_TIMEOUT
        return BASE_SCAN_TIMEOUT

    def fingerprint(self) -> str:
        data = asdict(self)
        data.pop('use_cache', None)
        data['roots'] = list(self.roots)
        encoded = json.dumps(data, sort_keys=True).encode('utf-8')
        return hashlib.sha1(encoded).hexdigest()

    @classmethod
    def from_settings(cls, settings, **overrides) -> 'ScanOptions':
        """从 CleanerSettings 构建"""
        values = dict(
            include_caches=settings.include_caches,
            include_packages=settings.include_packages,
            include_logs=settings.include_logs,
            include_filesystem_health=settings.include_filesystem_health,
            include_storage_recovery=settings.include_storage_recovery,
            include_hidden=settings.include_hidden,
            large_file_threshold_mb=settings.large_file_threshold_mb,
        )
        values.update(overrides)
        return cls(**values)
