"""
增长分析 (Growth Analytics)

每次扫描后记录各分类的大小，按最近 30 天的样本做最小二乘线性回归，
估算增长速率（字节/天）与磁盘耗尽前的天数。
"""
import math
import os
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

import psutil

from .database import Database, get_database
from .models import GrowthProjection, GrowthSample, ScanResult
from ..utils.format_utils import format_days, format_size
from ..utils.logger import get_logger
from ..utils.time_utils import parse_iso_timestamp, utc_now

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30
SECONDS_PER_DAY = 86400.0


def linear_rate(points: List[Tuple[float, float]]) -> float:
    """最小二乘斜率；少于两个点或横坐标无跨度时为 0"""
    n = len(points)
    if n < 2:
        return 0.0
    mean_x = sum(x for x, _ in points) / n
    mean_y = sum(y for _, y in points) / n
    var_x = sum((x - mean_x) ** 2 for x, _ in points)
    if var_x == 0:
        return 0.0
    cov = sum((x - mean_x) * (y - mean_y) for x, y in points)
    return cov / var_x


class GrowthAnalytics:
    """分类大小增长分析"""

    def __init__(self, database: Optional[Database] = None,
                 window_days: int = DEFAULT_WINDOW_DAYS,
                 mount_point: Optional[str] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """初始化

        Args:
            database: 样本持久化
            window_days: 保留窗口（天）
            mount_point: 计算剩余空间所用的挂载点，默认用户主目录
            clock: 返回当前 UTC 时间的函数
        """
        self.db = database or get_database()
        self.window = timedelta(days=window_days)
        self.mount_point = mount_point or os.path.expanduser('~')
        self._clock = clock or utc_now

    def record(self, category: str, size: int, timestamp: Optional[datetime] = None) -> GrowthSample:
        """追加一个样本并清除窗口外的旧样本"""
        sample = GrowthSample(category=category, timestamp=timestamp or self._clock(), size=int(size))
        self.db.insert_growth_sample(sample.category, sample.timestamp, sample.size)
        self.prune(sample.timestamp)
        logger.debug(f"[增长] 记录样本: {category} = {sample.size} 字节")
        return sample

    def record_scan(self, result: ScanResult) -> List[GrowthSample]:
        """记录一次扫描结果中各分类的大小"""
        samples = []
        failed = {failure.category for failure in result.failed_categories}
        for category, size in result.category_sizes().items():
            if category in failed:
                continue
            samples.append(self.record(category.value, size, result.timestamp))
        return samples

    def history(self, category: str) -> List[GrowthSample]:
        return [
            GrowthSample(category=row['category'],
                         timestamp=parse_iso_timestamp(row['timestamp']),
                         size=int(row['size']))
            for row in self.db.get_growth_samples(category)
        ]

    def prune(self, now: Optional[datetime] = None) -> int:
        """删除早于 now - window 的样本"""
        cutoff = (now or self._clock()) - self.window
        return self.db.delete_growth_samples_before(cutoff)

    def project(self, category: str, remaining_capacity: Optional[int] = None) -> GrowthProjection:
        """预测分类增长

        Args:
            category: 分类名
            remaining_capacity: 剩余容量（字节），默认取挂载点的可用空间

        Returns:
            GrowthProjection，增长率 <= 0 时 days_until_exhaustion 为 math.inf
        """
        samples = self.history(category)
        if samples:
            newest = samples[-1].timestamp
            samples = [s for s in samples if s.timestamp >= newest - self.window]

        origin = samples[0].timestamp if samples else None
        points = [((s.timestamp - origin).total_seconds() / SECONDS_PER_DAY, float(s.size))
                  for s in samples]
        rate = linear_rate(points)

        if remaining_capacity is None:
            remaining_capacity = self.free_space()

        if rate <= 0:
            days = math.inf
        else:
            days = remaining_capacity / rate

        logger.debug(f"[增长] 预测 {category}: {format_size(rate)}/天, 耗尽: {format_days(days)}, 样本 {len(samples)} 个")
        return GrowthProjection(
            category=category,
            rate_per_day=rate,
            days_until_exhaustion=days,
            sample_count=len(samples),
            remaining_capacity=int(remaining_capacity),
        )

    def project_all(self, remaining_capacity: Optional[int] = None) -> List[GrowthProjection]:
        if remaining_capacity is None:
            remaining_capacity = self.free_space()
        return [self.project(category, remaining_capacity) for category in self.db.get_growth_categories()]

    def free_space(self) -> int:
        """挂载点的可用空间（字节）"""
        try:
            return int(psutil.disk_usage(self.mount_point).free)
        except OSError as e:
            logger.warning(f"[增长] 无法获取磁盘空间 {self.mount_point}: {e}")
            return 0
