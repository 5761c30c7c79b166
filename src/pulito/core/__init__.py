"""
Core 模块初始化
"""

# 异常
from .exceptions import (
    ErrorCode, CleanerError, PathValidationError, OutsideSanctionedRoot,
    SystemPathProtected, TraversalDetected, FileOperationError, NotFound,
    PermissionDenied, CrossDevice, ScanTimeoutError, ScanCancelledError,
    CapacityError, TrashError, TrashItemNotFound, RestoreConflict,
    InvalidSettingError
)

# 数据模型
from .models import (
    RiskTier, ScanCategory, ItemCategory, ScanItem, ScanResult, ScanProgress,
    DuplicateGroup, TrashItem, TrashSnapshot, SweepReport, CleanResult,
    ItemOutcome, OutcomeStatus, GrowthSample, GrowthProjection
)

# 路径校验与风险分级
from .path_validator import PathValidator, SanctionPolicy, SecurityContext, get_path_validator
from .risk_classifier import RiskClassifier, RiskCandidate

# 扫描
from .walker import CancellationToken
from .scan_options import ScanOptions
from .scanner import ScanEngine
from .duplicate_detector import DuplicateDetector, StorageAnalyzer

# 回收站与清理
from .trash import TrashStore
from .cleaner import RemediationExecutor
from .scheduler import TrashSweepScheduler

# 增长分析
from .growth import GrowthAnalytics

# 数据库与配置
from .database import Database, get_database
from .config_manager import CleanerSettings, ConfigManager, get_config_manager
