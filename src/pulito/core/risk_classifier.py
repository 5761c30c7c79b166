"""
风险分级模块 (Risk Classifier)

纯函数：候选条目 -> 风险等级 0..5

评估因素：
1. 类别基础等级（cache < logs < filesystem-health < packages < large-file）
2. 位置（主目录之外、配置/应用数据目录提高等级）
3. 依赖扇入（存在反向依赖的软件包提高等级）
4. 禁止列表（直接判定为 CRITICAL，永不自动选中）

多条规则命中时取最高等级。
"""
import fnmatch
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .models import ItemCategory, RiskTier
from .path_validator import is_under


CATEGORY_BASE_TIERS: Dict[ItemCategory, RiskTier] = {
    ItemCategory.CACHE: RiskTier.SAFE,
    ItemCategory.PACKAGE_CACHE: RiskTier.SAFE,
    ItemCategory.EMPTY_DIRECTORY: RiskTier.SAFE,
    ItemCategory.BROKEN_SYMLINK: RiskTier.SAFE,
    ItemCategory.ORPHANED_TEMP: RiskTier.SAFE,
    ItemCategory.LOG: RiskTier.LOW,
    ItemCategory.OLD_DOWNLOAD: RiskTier.LOW,
    ItemCategory.ORPHAN_PACKAGE: RiskTier.MODERATE,
    ItemCategory.DUPLICATE: RiskTier.MODERATE,
    ItemCategory.LARGE_FILE: RiskTier.ELEVATED,
}

# 这些类别的基础等级不受位置因素影响
LOCATION_EXEMPT = frozenset({
    ItemCategory.EMPTY_DIRECTORY,
    ItemCategory.BROKEN_SYMLINK,
    ItemCategory.ORPHANED_TEMP,
    ItemCategory.CACHE,
    ItemCategory.PACKAGE_CACHE,
})

# 主目录下的配置 / 应用数据区域（相对路径）
SENSITIVE_HOME_AREAS = ('.config', '.local/share', '.mozilla', '.thunderbird')

DEFAULT_DENY_PATTERNS = (
    '~/.ssh', '~/.ssh/*',
    '~/.gnupg', '~/.gnupg/*',
    '~/.password-store', '~/.password-store/*',
    '~/.local/share/keyrings', '~/.local/share/keyrings/*',
    '*.kdbx',
    '*/id_rsa', '*/id_ed25519', '*/id_ecdsa',
    '*.pem', '*.key',
)


@dataclass(frozen=True)
class RiskCandidate:
    """待分级的候选条目"""
    path: str
    category: ItemCategory
    dependents: int = 0
    is_directory: bool = False


@dataclass
class RiskAssessment:
    """分级结果（含命中原因）"""
    tier: RiskTier
    reasons: List[str] = field(default_factory=list)
    denied: bool = False


class RiskClassifier:
    """风险分级器

    相同输入始终得到相同输出。
    """

    def __init__(self, home: Optional[str] = None,
                 deny_patterns: Iterable[str] = DEFAULT_DENY_PATTERNS):
        """
        Args:
            home: 用户主目录（用于位置判断和 ~ 展开）
            deny_patterns: 禁止列表（fnmatch 模式，支持 ~）
        """
        self.home = os.path.realpath(home or os.path.expanduser('~'))
        self.deny_patterns: Tuple[str, ...] = tuple(self._expand(p) for p in deny_patterns)

    def _expand(self, pattern: str) -> str:
        if pattern == '~' or pattern.startswith('~/'):
            return self.home + pattern[1:]
        return pattern

    def is_denied(self, path: str) -> bool:
        return any(fnmatch.fnmatchcase(path, pattern) for pattern in self.deny_patterns)

    def classify(self, candidate: RiskCandidate) -> RiskTier:
        return self.assess(candidate).tier

    def assess(self, candidate: RiskCandidate) -> RiskAssessment:
        """评估候选条目

        Args:
            candidate: 候选条目

        Returns:
            RiskAssessment
        """
        if self.is_denied(candidate.path):
            return RiskAssessment(RiskTier.CRITICAL, ["命中禁止列表"], denied=True)

        base = CATEGORY_BASE_TIERS.get(candidate.category, RiskTier.ELEVATED)
        tiers = [int(base)]
        reasons = [f"类别 {candidate.category.value} 基础等级 {int(base)}"]

        if candidate.category not in LOCATION_EXEMPT:
            bump = self._location_bump(candidate.path)
            if bump:
                tiers.append(int(base) + bump)
                reasons.append("位于系统相邻或配置数据目录")

        if candidate.dependents > 0:
            bump = 2 if candidate.dependents >= 5 else 1
            tiers.append(int(base) + bump)
            reasons.append(f"存在 {candidate.dependents} 个反向依赖")

        # 取最高等级；非禁止列表条目最高为 HIGH
        tier = min(max(tiers), int(RiskTier.HIGH))
        return RiskAssessment(RiskTier(tier), reasons)

    def _location_bump(self, path: str) -> int:
        if not is_under(path, self.home):
            return 1
        for area in SENSITIVE_HOME_AREAS:
            if is_under(path, os.path.join(self.home, area)):
                return 1
        return 0

    @staticmethod
    def describe(tier: RiskTier) -> str:
        """风险等级的可读说明"""
        return {
            RiskTier.SAFE: "安全 - 可直接清理",
            RiskTier.LOW: "低风险 - 默认选中",
            RiskTier.MODERATE: "中等风险 - 需要确认",
            RiskTier.ELEVATED: "较高风险 - 建议检查内容",
            RiskTier.HIGH: "高风险 - 需要明确确认",
            RiskTier.CRITICAL: "关键 - 禁止自动清理",
        }[RiskTier(tier)]
