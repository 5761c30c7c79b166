"""
应用配置管理 - 使用 JSON 文件存储

写入先落到临时文件再原子替换，避免中断时留下半个配置文件。
"""
import json
import os
import threading
from dataclasses import dataclass, asdict, fields, replace
from typing import Any, Dict, Optional

from .exceptions import InvalidSettingError
from .scan_options import snap_large_file_threshold
from ..utils.logger import get_logger, log_config_event

logger = get_logger(__name__)

MB = 1024 * 1024

RETENTION_DAYS_RANGE = (1, 30)
MAX_SIZE_MB_RANGE = (500, 5000)
SWEEP_INTERVAL_RANGE = (1, 24 * 60)


def get_default_config_path() -> str:
    config_home = os.getenv('XDG_CONFIG_HOME') or os.path.join(os.path.expanduser('~'), '.config')
    return os.path.join(config_home, 'pulito', 'config.json')


def _clamp(value: int, bounds) -> int:
    low, high = bounds
    return max(low, min(high, int(value)))


def clamp_retention_days(value: int) -> int:
    """回收站保留天数限制在 1-30 天"""
    return _clamp(value, RETENTION_DAYS_RANGE)


@dataclass
class CleanerSettings:
    """清理设置"""
    include_hidden: bool = False
    large_file_threshold_mb: int = 100
    retention_days: int = 3
    max_size_mb: int = 1000
    include_caches: bool = True
    include_packages: bool = True
    include_logs: bool = True
    include_filesystem_health: bool = True
    include_storage_recovery: bool = True
    sweep_interval_minutes: int = 60

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * MB

    def normalized(self) -> 'CleanerSettings':
        """返回吸附/夹紧到合法范围后的副本"""
        return replace(
            self,
            large_file_threshold_mb=snap_large_file_threshold(self.large_file_threshold_mb),
            retention_days=_clamp(self.retention_days, RETENTION_DAYS_RANGE),
            max_size_mb=_clamp(self.max_size_mb, MAX_SIZE_MB_RANGE),
            sweep_interval_minutes=_clamp(self.sweep_interval_minutes, SWEEP_INTERVAL_RANGE),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def field_types(cls) -> Dict[str, type]:
        defaults = cls()
        return {f.name: type(getattr(defaults, f.name)) for f in fields(cls)}

    @classmethod
    def check_value(cls, key: str, value: Any) -> Any:
        """检查单个设置值的类型

        Raises:
            InvalidSettingError: 类型不匹配
        """
        expected = cls.field_types()[key]
        if expected is bool:
            if not isinstance(value, bool):
                raise InvalidSettingError(key, value, "需要布尔值")
            return value
        # bool 是 int 的子类，需要单独排除
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidSettingError(key, value, "需要数值")
        return int(round(value))


class ConfigManager:
    """配置管理器"""

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or get_default_config_path()
        self._lock = threading.Lock()
        self._settings = CleanerSettings()
        self._load_config()

    def _load_config(self):
        """加载配置文件，无效值回退为默认值"""
        settings = CleanerSettings()
        if not os.path.exists(self.config_file):
            self._settings = settings
            return

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"[配置] 加载配置失败，使用默认值: {self.config_file}: {e}")
            self._settings = settings
            return

        if not isinstance(data, dict):
            logger.warning(f"[配置] 配置文件格式无效，使用默认值: {self.config_file}")
            self._settings = settings
            return

        known = CleanerSettings.field_types()
        values = {}
        for key, value in data.items():
            if key not in known:
                log_config_event(logger, 'REJECT', key, value, reason='未知配置项')
                continue
            try:
                values[key] = CleanerSettings.check_value(key, value)
            except InvalidSettingError as e:
                log_config_event(logger, 'REJECT', key, value, reason=e.reason, fallback='default')

        self._settings = self._normalize(replace(settings, **values))
        log_config_event(logger, 'READ', self.config_file)

    def _save_config(self):
        """原子写入配置文件"""
        directory = os.path.dirname(self.config_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.config_file}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._settings.to_dict(), f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.config_file)
        log_config_event(logger, 'WRITE', self.config_file)

    @staticmethod
    def _normalize(settings: CleanerSettings) -> CleanerSettings:
        normalized = settings.normalized()
        for key, value in normalized.to_dict().items():
            original = getattr(settings, key)
            if value != original:
                log_config_event(logger, 'CLAMP', key, original, adjusted=value)
        return normalized

    def reload_config(self):
        """强制重新加载配置文件"""
        with self._lock:
            self._load_config()

    def get_settings(self) -> CleanerSettings:
        with self._lock:
            return replace(self._settings)

    def update_settings(self, **changes) -> CleanerSettings:
        """更新并保存设置

        未知键记录警告后忽略；任一值类型错误时整体不写入。

        Raises:
            InvalidSettingError: 值类型错误
        """
        known = CleanerSettings.field_types()
        values = {}
        for key, value in changes.items():
            if key not in known:
                log_config_event(logger, 'REJECT', key, value, reason='未知配置项')
                continue
            values[key] = CleanerSettings.check_value(key, value)

        with self._lock:
            self._settings = self._normalize(replace(self._settings, **values))
            self._save_config()
            return replace(self._settings)

    def get(self, key: str, default: Any = None) -> Any:
        """获取配置值"""
        with self._lock:
            return getattr(self._settings, key, default)

    def set(self, key: str, value: Any):
        """设置配置值"""
        self.update_settings(**{key: value})


# 全局实例
_config_manager = None


def get_config_manager() -> ConfigManager:
    """获取默认配置管理器"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
