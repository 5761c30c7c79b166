"""
路径校验模块 (Path Validator)

将候选路径规范化并按上下文授权：
- SCAN: 只允许用户主目录
- INSPECT: 只读检查，允许主目录及 /var/cache、/var/log、/tmp、/usr/share/doc
- DELETION: 主目录与 /tmp，且根目录本身不可删除，父目录必须可写

系统关键目录在任何上下文下都拒绝。所有破坏性操作执行前必须重新校验。
"""
import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple

from .database import get_app_data_dir
from .exceptions import (
    CleanerError,
    FileOperationError,
    OutsideSanctionedRoot,
    PermissionDenied,
    SystemPathProtected,
    TraversalDetected,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class SecurityContext(Enum):
    """路径授权上下文"""
    SCAN = "scan"
    INSPECT = "inspect"
    DELETION = "deletion"


SYSTEM_CRITICAL_PREFIXES = (
    '/bin', '/boot', '/dev', '/etc', '/lib', '/lib64', '/proc', '/run',
    '/sbin', '/sys', '/usr/bin', '/usr/sbin', '/usr/lib', '/usr/local/bin',
    '/var/lib', '/var/run', '/var/lock', '/var/spool', '/root',
)

INSPECT_EXTRA_ROOTS = ('/var/cache', '/var/log', '/tmp', '/usr/share/doc')
DELETION_EXTRA_ROOTS = ('/tmp',)

# 编码形式的 '..' 也视为路径穿越
_ENCODED_TRAVERSALS = ('%2e%2e/', '%2e%2e%2f', '%2e%2e\\', '..%2f')


def is_under(path: str, root: str) -> bool:
    """按路径分量判断 path 是否位于 root 之内（含 root 本身）"""
    if root == os.sep:
        return path.startswith(os.sep)
    root = root.rstrip(os.sep)
    return path == root or path.startswith(root + os.sep)


def _canonical_roots(roots: Iterable[str]) -> Tuple[str, ...]:
    result = []
    for root in roots:
        if not root:
            continue
        for candidate in (os.path.normpath(root), os.path.realpath(root)):
            if candidate not in result:
                result.append(candidate)
    return tuple(result)


@dataclass(frozen=True)
class SanctionPolicy:
    """授权根目录策略"""
    home: str
    scan_roots: Tuple[str, ...]
    inspect_roots: Tuple[str, ...]
    deletion_roots: Tuple[str, ...]
    critical_prefixes: Tuple[str, ...] = field(default=())
    protected_paths: Tuple[str, ...] = field(default=())

    @classmethod
    def for_home(
        cls,
        home: Optional[str] = None,
        inspect_extra: Iterable[str] = INSPECT_EXTRA_ROOTS,
        deletion_extra: Iterable[str] = DELETION_EXTRA_ROOTS,
        protected_paths: Optional[Iterable[str]] = None,
        critical_prefixes: Iterable[str] = SYSTEM_CRITICAL_PREFIXES,
    ) -> 'SanctionPolicy':
        """以用户主目录为中心构建策略

        Args:
            home: 用户主目录，默认 ~
            inspect_extra: 只读检查额外允许的根目录
            deletion_extra: 删除操作额外允许的根目录
            protected_paths: 保护路径，默认为应用数据目录（回收站、数据库、日志）
            critical_prefixes: 系统关键目录前缀
        """
        home = os.path.realpath(home or os.path.expanduser('~'))
        if protected_paths is None:
            protected_paths = (get_app_data_dir(),)
        return cls(
            home=home,
            scan_roots=_canonical_roots([home]),
            inspect_roots=_canonical_roots([home, *inspect_extra]),
            deletion_roots=_canonical_roots([home, *deletion_extra]),
            critical_prefixes=_canonical_roots(critical_prefixes),
            protected_paths=_canonical_roots(protected_paths),
        )

    def roots_for(self, context: SecurityContext) -> Tuple[str, ...]:
        if context is SecurityContext.SCAN:
            return self.scan_roots
        if context is SecurityContext.INSPECT:
            return self.inspect_roots
        return self.deletion_roots

    def with_protected(self, *paths: str) -> 'SanctionPolicy':
        """返回追加保护路径后的新策略"""
        return SanctionPolicy(
            home=self.home,
            scan_roots=self.scan_roots,
            inspect_roots=self.inspect_roots,
            deletion_roots=self.deletion_roots,
            critical_prefixes=self.critical_prefixes,
            protected_paths=self.protected_paths + _canonical_roots(paths),
        )


class PathValidator:
    """路径校验器

    无副作用，可并发调用；同一路径在文件系统未变化时结果幂等。
    """

    def __init__(self, policy: Optional[SanctionPolicy] = None):
        self.policy = policy or SanctionPolicy.for_home()

    @property
    def home(self) -> str:
        return self.policy.home

    def validate(self, path, context: SecurityContext = SecurityContext.SCAN) -> str:
        """校验并返回规范化路径

        Args:
            path: 候选路径（不可信）
            context: 授权上下文

        Returns:
            规范化后的绝对路径

        Raises:
            TraversalDetected, OutsideSanctionedRoot, SystemPathProtected,
            NotFound, PermissionDenied
        """
        raw = self._coerce(path)
        self._check_traversal(raw)

        if not os.path.isabs(raw):
            raise OutsideSanctionedRoot(f"不是绝对路径: {raw}", path=raw)

        try:
            st = os.lstat(raw)
        except OSError as e:
            raise FileOperationError.from_os_error(e, raw) from e

        canonical = self.canonicalize(raw, st)
        self._check_protected(canonical)
        self._check_boundary(canonical, context)

        if context is SecurityContext.DELETION:
            parent = os.path.dirname(canonical)
            if not os.access(parent, os.W_OK | os.X_OK):
                raise PermissionDenied(f"父目录不可写: {parent}", path=canonical)

        return canonical

    def validate_destination(self, path) -> str:
        """校验一个尚不存在的写入目标（用于恢复）

        以最近的已存在祖先目录为准做 DELETION 授权检查，
        祖先可以是授权根目录本身。

        Returns:
            规范化后的目标路径
        """
        raw = self._coerce(path)
        self._check_traversal(raw)
        if not os.path.isabs(raw):
            raise OutsideSanctionedRoot(f"不是绝对路径: {raw}", path=raw)

        normalized = os.path.normpath(raw)
        ancestor, missing = normalized, []
        while not os.path.lexists(ancestor):
            ancestor, name = os.path.split(ancestor)
            missing.insert(0, name)

        canonical_ancestor = os.path.realpath(ancestor)
        canonical = os.path.join(canonical_ancestor, *missing) if missing else canonical_ancestor
        self._check_protected(canonical)
        if not self.is_within_roots(canonical, SecurityContext.DELETION) or \
                canonical in self.policy.deletion_roots:
            raise OutsideSanctionedRoot(f"恢复目标不在允许范围内: {canonical}", path=canonical)
        if not os.path.isdir(canonical_ancestor) or \
                not os.access(canonical_ancestor, os.W_OK | os.X_OK):
            raise PermissionDenied(f"目标目录不可写: {canonical_ancestor}", path=canonical)
        return canonical

    def is_valid(self, path, context: SecurityContext = SecurityContext.SCAN) -> bool:
        return self.check(path, context) is None

    def check(self, path, context: SecurityContext = SecurityContext.SCAN) -> Optional[CleanerError]:
        """校验路径，返回错误对象而不是抛出"""
        try:
            self.validate(path, context)
        except CleanerError as e:
            return e
        return None

    def is_within_roots(self, canonical: str, context: SecurityContext) -> bool:
        return any(is_under(canonical, root) for root in self.policy.roots_for(context))

    @staticmethod
    def canonicalize(raw: str, st: Optional[os.stat_result] = None) -> str:
        """解析所有祖先符号链接

        叶子为符号链接时校验链接本身（父目录解析、名称保留），
        这样断开的符号链接仍可被定位。
        """
        normalized = os.path.normpath(raw)
        if st is None:
            st = os.lstat(normalized)
        parent, name = os.path.split(normalized)
        if name and stat.S_ISLNK(st.st_mode):
            return os.path.join(os.path.realpath(parent), name)
        return os.path.realpath(normalized)

    # ------------------------------------------------------------------

    @staticmethod
    def _coerce(path) -> str:
        try:
            raw = os.fspath(path)
        except TypeError:
            raise TraversalDetected(f"无效路径类型: {type(path).__name__}") from None
        if isinstance(raw, bytes):
            raw = os.fsdecode(raw)
        if not raw or '\x00' in raw:
            raise TraversalDetected("空路径或包含 NUL 字符", path=raw or None)
        return raw

    @staticmethod
    def _check_traversal(raw: str):
        lowered = raw.lower()
        if any(token in lowered for token in _ENCODED_TRAVERSALS):
            raise TraversalDetected(f"检测到编码路径穿越: {raw}", path=raw)
        if '..' in raw.replace('\\', '/').split('/'):
            raise TraversalDetected(f"检测到路径穿越: {raw}", path=raw)

    def _check_protected(self, canonical: str):
        for prefix in self.policy.critical_prefixes:
            if is_under(canonical, prefix):
                raise SystemPathProtected(f"系统关键路径受保护: {canonical}", path=canonical)
        for protected in self.policy.protected_paths:
            if is_under(canonical, protected):
                raise SystemPathProtected(f"应用保留路径受保护: {canonical}", path=canonical)

    def _check_boundary(self, canonical: str, context: SecurityContext):
        roots = self.policy.roots_for(context)
        if not any(is_under(canonical, root) for root in roots):
            raise OutsideSanctionedRoot(
                f"路径不在允许范围内 ({context.value}): {canonical}", path=canonical
            )
        if context is SecurityContext.DELETION and canonical in roots:
            raise SystemPathProtected(f"授权根目录本身不可删除: {canonical}", path=canonical)


# 全局实例
_path_validator = None


def get_path_validator() -> PathValidator:
    """获取默认路径校验器（以当前用户主目录为准）"""
    global _path_validator
    if _path_validator is None:
        _path_validator = PathValidator()
    return _path_validator
