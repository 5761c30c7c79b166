"""
清理核心异常处理模块

统一的错误代码与异常层次：
- PathValidationError: 路径校验失败，仅影响单个条目，不重试
- FileOperationError: 文件 I/O 失败（不存在、无权限、跨设备），按条目报告
- ScanTimeoutError / ScanCancelledError: 仅影响所属子任务或分类
- CapacityError: 回收站淘汰后仍超出容量，只作为警告
"""
import errno
from enum import Enum
from typing import Dict, Any, Optional


class ErrorCode(Enum):
    """错误代码枚举"""
    UNKNOWN_ERROR = "E0000"

    # 路径校验
    OUTSIDE_SANCTIONED_ROOT = "E1001"
    SYSTEM_PATH_PROTECTED = "E1002"
    TRAVERSAL_DETECTED = "E1003"

    # 文件操作
    NOT_FOUND = "E2001"
    PERMISSION_DENIED = "E2002"
    CROSS_DEVICE = "E2003"
    IO_ERROR = "E2004"

    # 扫描
    TIMEOUT = "E3001"
    CANCELLED = "E3002"

    # 回收站
    CAPACITY_EXCEEDED = "E4001"
    TRASH_ITEM_NOT_FOUND = "E4002"
    RESTORE_CONFLICT = "E4003"

    # 配置
    INVALID_SETTING = "E5001"


class ErrorSeverity(Enum):
    """错误严重程度"""
    WARNING = "warning"
    ERROR = "error"


class CleanerError(Exception):
    """清理核心基础异常类"""

    code = ErrorCode.UNKNOWN_ERROR
    severity = ErrorSeverity.ERROR
    retryable = False

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式（用于日志记录和结果上报）"""
        return {
            "code": self.code.value,
            "type": type(self).__name__,
            "message": self.message,
            "path": self.path,
            "severity": self.severity.value,
            "retryable": self.retryable,
        }


# ========== 路径校验 ==========

class PathValidationError(CleanerError):
    """路径校验失败"""


class OutsideSanctionedRoot(PathValidationError):
    code = ErrorCode.OUTSIDE_SANCTIONED_ROOT


class SystemPathProtected(PathValidationError):
    code = ErrorCode.SYSTEM_PATH_PROTECTED


class TraversalDetected(PathValidationError):
    code = ErrorCode.TRAVERSAL_DETECTED


# ========== 文件操作 ==========

class FileOperationError(CleanerError):
    """文件 I/O 失败"""
    code = ErrorCode.IO_ERROR

    @classmethod
    def from_os_error(cls, exc: OSError, path: Optional[str] = None) -> 'FileOperationError':
        """将 OSError 映射为对应的文件操作异常"""
        target = path or exc.filename
        reason = exc.strerror or str(exc)
        if isinstance(exc, FileNotFoundError) or exc.errno == errno.ENOENT:
            return NotFound(f"路径不存在: {target}", path=target)
        if isinstance(exc, PermissionError) or exc.errno in (errno.EACCES, errno.EPERM):
            return PermissionDenied(f"无权限访问: {target} ({reason})", path=target)
        if exc.errno == errno.EXDEV:
            return CrossDevice(f"跨设备移动失败: {target} ({reason})", path=target)
        return FileOperationError(f"文件操作失败: {target} ({reason})", path=target)


class NotFound(FileOperationError):
    code = ErrorCode.NOT_FOUND


class PermissionDenied(FileOperationError):
    code = ErrorCode.PERMISSION_DENIED


class CrossDevice(FileOperationError):
    code = ErrorCode.CROSS_DEVICE


# ========== 扫描 ==========

class ScanTimeoutError(CleanerError):
    """子任务或分类任务超时"""
    code = ErrorCode.TIMEOUT

    def __init__(self, message: str, path: Optional[str] = None,
                 timeout_seconds: Optional[float] = None):
        super().__init__(message, path=path)
        self.timeout_seconds = timeout_seconds


class ScanCancelledError(CleanerError):
    """扫描被取消"""
    code = ErrorCode.CANCELLED


# ========== 回收站 ==========

class CapacityError(CleanerError):
    """回收站淘汰后仍超出容量上限（仅警告）"""
    code = ErrorCode.CAPACITY_EXCEEDED
    severity = ErrorSeverity.WARNING

    def __init__(self, message: str, total_size: int = 0, max_size: int = 0):
        super().__init__(message)
        self.total_size = total_size
        self.max_size = max_size


class TrashError(CleanerError):
    """回收站操作失败"""


class TrashItemNotFound(TrashError):
    code = ErrorCode.TRASH_ITEM_NOT_FOUND


class RestoreConflict(TrashError):
    code = ErrorCode.RESTORE_CONFLICT


# ========== 配置 ==========

class InvalidSettingError(CleanerError):
    code = ErrorCode.INVALID_SETTING

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(f"无效配置 {key}={value!r}: {reason}")
        self.key = key
        self.value = value
        self.reason = reason
