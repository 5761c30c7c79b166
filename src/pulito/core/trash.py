"""
回收站 (Trash Store)

可恢复删除：
- 条目移入 <root>/files/<uuid>，文件名不包含任何原始信息
- 元数据只保存在数据库账本 (trash_items) 中
- 到期（deleted_at + retention_days）或超出容量时按从旧到新清除
- 账本写入由同一个 QMutex 串行化

状态流转: ACTIVE -> IN_TRASH -> RESTORED | PURGED
"""
import errno
import os
import shutil
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from PyQt5.QtCore import QObject, QMutex, QMutexLocker, pyqtSignal

from .config_manager import clamp_retention_days
from .database import Database, get_app_data_dir, get_database
from .dir_size import get_directory_size
from .exceptions import (
    CapacityError,
    CrossDevice,
    FileOperationError,
    RestoreConflict,
    TrashItemNotFound,
)
from .models import ItemCategory, RiskTier, SweepReport, TrashItem, TrashSnapshot, TrashState
from .path_validator import PathValidator, SecurityContext, get_path_validator
from ..utils.logger import get_logger, log_trash_event
from ..utils.time_utils import utc_now

logger = get_logger(__name__)

MB = 1024 * 1024
DEFAULT_RETENTION_DAYS = 3
DEFAULT_MAX_SIZE_BYTES = 1000 * MB


def get_default_trash_root() -> str:
    return os.path.join(get_app_data_dir(), 'trash')


def _item_type(path: str) -> str:
    if os.path.islink(path):
        return 'symlink'
    if os.path.isdir(path):
        return 'directory'
    return 'file'


def _move(src: str, dst: str):
    """重命名移动，跨设备时回退为复制后删除"""
    try:
        os.rename(src, dst)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise FileOperationError.from_os_error(e, src) from e

    try:
        shutil.move(src, dst)
    except (OSError, shutil.Error) as e:
        raise CrossDevice(f"跨设备移动失败: {src} -> {dst}: {e}", path=src) from e


def _remove_payload(path: str):
    """删除回收站中的实体，不跟随符号链接"""
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


class TrashStore(QObject):
    """回收站

    Signals:
        item_trashed: TrashItem - 条目已移入回收站
        item_restored: TrashItem - 条目已恢复
        item_purged: (str, str) - (item_id, reason) reason 为 expired/evicted/deleted
        sweep_completed: SweepReport - 清扫完成
        capacity_warning: CapacityError - 单个条目超过容量上限
    """

    item_trashed = pyqtSignal(object)
    item_restored = pyqtSignal(object)
    item_purged = pyqtSignal(str, str)
    sweep_completed = pyqtSignal(object)
    capacity_warning = pyqtSignal(object)

    def __init__(self,
                 trash_root: Optional[str] = None,
                 database: Optional[Database] = None,
                 validator: Optional[PathValidator] = None,
                 max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
                 retention_days: int = DEFAULT_RETENTION_DAYS,
                 clock: Optional[Callable[[], datetime]] = None,
                 parent: Optional[QObject] = None):
        """初始化回收站

        Args:
            trash_root: 回收站根目录，默认 ~/.local/share/pulito/trash
            database: 账本所在数据库
            validator: 路径校验器（回收站根目录会被追加为保护路径）
            max_size_bytes: 容量上限
            retention_days: 默认保留天数（限制在 1-30 天）
            clock: 返回当前 UTC 时间的函数
        """
        super().__init__(parent)
        self.trash_root = os.path.realpath(trash_root or get_default_trash_root())
        self.files_dir = os.path.join(self.trash_root, 'files')
        os.makedirs(self.files_dir, mode=0o700, exist_ok=True)

        self.db = database or get_database()
        base = validator or get_path_validator()
        self.validator = PathValidator(base.policy.with_protected(self.trash_root, self.db.db_path))

        self.max_size_bytes = int(max_size_bytes)
        self.retention_days = clamp_retention_days(retention_days)
        self._clock = clock or utc_now
        self._mutex = QMutex(QMutex.Recursive)
        self._warnings: List[str] = []

        logger.info(f"[TRASH] 回收站初始化完成: {self.trash_root} "
                    f"(上限 {self.max_size_bytes} 字节, 保留 {self.retention_days} 天)")

    @property
    def protected_paths(self) -> Tuple[str, ...]:
        """回收站自身的存储路径，扫描时应跳过"""
        return (self.trash_root, self.db.db_path)

    # ------------------------------------------------------------------
    # 写操作
    # ------------------------------------------------------------------

    def move_to_trash(self, path: str,
                      category: Optional[ItemCategory] = None,
                      risk_tier: RiskTier = RiskTier.SAFE,
                      reason: str = "",
                      retention_days: Optional[int] = None) -> TrashItem:
        """将路径移入回收站

        Raises:
            PathValidationError: 路径未通过 DELETION 校验
            FileOperationError: 移动失败（跨设备失败时为 CrossDevice）
        """
        retention = self.retention_days
        if retention_days is not None:
            retention = clamp_retention_days(retention_days)
            if retention != retention_days:
                logger.warning(f"[TRASH] 保留天数 {retention_days} 超出范围，已调整为 {retention}")

        with QMutexLocker(self._mutex):
            canonical = self.validator.validate(path, SecurityContext.DELETION)
            size = get_directory_size(canonical)
            item_type = _item_type(canonical)

            item = TrashItem(
                id=uuid.uuid4().hex,
                original_path=canonical,
                trash_path='',
                deleted_at=self._clock(),
                retention_days=retention,
                size=size,
                item_type=item_type,
                source_category=category.value if category else '',
                risk_level_at_deletion=int(risk_tier),
                reason=reason,
            )
            item.trash_path = os.path.join(self.files_dir, item.id)

            _move(canonical, item.trash_path)
            try:
                self.db.insert_trash_item(item.to_dict())
            except Exception:
                # 账本写入失败时把实体放回原处
                _move(item.trash_path, canonical)
                raise

            log_trash_event(logger, 'MOVE', item.id, canonical, size,
                            category=item.source_category or None, retention=retention)
            self.item_trashed.emit(item)

            self._evict_over_capacity(SweepReport(), exclude_id=item.id)
            total = self.db.get_trash_total_size()
            if total > self.max_size_bytes:
                error = CapacityError(
                    f"回收站超出容量上限: {total} > {self.max_size_bytes}",
                    total_size=total, max_size=self.max_size_bytes
                )
                self._warnings.append(str(error))
                log_trash_event(logger, 'CAPACITY', item.id, canonical, size,
                                total=total, max=self.max_size_bytes)
                self.capacity_warning.emit(error)

            return item

    def restore(self, item_id: str) -> TrashItem:
        """恢复条目到原始路径

        Raises:
            TrashItemNotFound: 条目或实体不存在
            RestoreConflict: 原始路径已存在
            PathValidationError: 原始路径不再允许写入
        """
        with QMutexLocker(self._mutex):
            item = self._require(item_id)

            if os.path.lexists(item.original_path):
                raise RestoreConflict(f"原始路径已存在: {item.original_path}", path=item.original_path)

            if not os.path.lexists(item.trash_path):
                self.db.delete_trash_item(item.id)
                log_trash_event(logger, 'ERROR', item.id, item.original_path, item.size,
                                error='回收站实体丢失')
                raise TrashItemNotFound(f"回收站实体已丢失: {item.id}", path=item.original_path)

            destination = self.validator.validate_destination(item.original_path)
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            _move(item.trash_path, destination)
            self.db.delete_trash_item(item.id)

            item.state = TrashState.RESTORED
            log_trash_event(logger, 'RESTORE', item.id, destination, item.size)
            self.item_restored.emit(item)
            return item

    def delete_forever(self, item_id: str) -> TrashItem:
        """永久删除单个条目"""
        with QMutexLocker(self._mutex):
            item = self._require(item_id)
            self._purge(item, 'deleted')
            return item

    def empty(self) -> int:
        """清空回收站，返回清除数量"""
        with QMutexLocker(self._mutex):
            count = 0
            for item in self._load_items():
                if self._purge(item, 'deleted'):
                    count += 1
            log_trash_event(logger, 'EMPTY', '*', count=count)
            return count

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """清除到期条目，然后按从旧到新清除直至不超过容量上限

        同一时刻重复调用且没有新增条目时，第二次不会清除任何内容。
        """
        now = now or self._clock()
        report = SweepReport()

        with QMutexLocker(self._mutex):
            for row in self.db.get_trash_items_expiring_before(now):
                item = TrashItem.from_dict(row)
                if self._purge(item, 'expired'):
                    report.expired.append(item.id)
                    report.freed_bytes += item.size

            self._evict_over_capacity(report)
            report.over_capacity = self.db.get_trash_total_size() > self.max_size_bytes

        log_trash_event(logger, 'SWEEP', '*', expired=len(report.expired),
                        evicted=len(report.evicted), freed=report.freed_bytes)
        self.sweep_completed.emit(report)
        return report

    # ------------------------------------------------------------------
    # 读操作
    # ------------------------------------------------------------------

    def list_items(self) -> TrashSnapshot:
        with QMutexLocker(self._mutex):
            return TrashSnapshot(items=self._load_items())

    def get_item(self, item_id: str) -> Optional[TrashItem]:
        with QMutexLocker(self._mutex):
            row = self.db.get_trash_item(item_id)
            return TrashItem.from_dict(row) if row else None

    def total_size(self) -> int:
        with QMutexLocker(self._mutex):
            return self.db.get_trash_total_size()

    def drain_warnings(self) -> List[str]:
        """取出并清空累积的容量警告"""
        with QMutexLocker(self._mutex):
            warnings, self._warnings = self._warnings, []
            return warnings

    # ------------------------------------------------------------------
    # 内部方法（调用方必须持有锁）
    # ------------------------------------------------------------------

    def _load_items(self) -> List[TrashItem]:
        return [TrashItem.from_dict(row) for row in self.db.get_trash_items()]

    def _require(self, item_id: str) -> TrashItem:
        row = self.db.get_trash_item(item_id)
        if row is None:
            raise TrashItemNotFound(f"回收站条目不存在: {item_id}")
        return TrashItem.from_dict(row)

    def _evict_over_capacity(self, report: SweepReport, exclude_id: Optional[str] = None):
        """从最旧的条目开始清除，直至不超过容量上限"""
        total = self.db.get_trash_total_size()
        if total <= self.max_size_bytes:
            return
        for item in self._load_items():
            if total <= self.max_size_bytes:
                break
            if item.id == exclude_id:
                continue
            if self._purge(item, 'evicted'):
                report.evicted.append(item.id)
                report.freed_bytes += item.size
                total -= item.size
            else:
                # 更旧的条目无法清除时不越过它清除更新的条目
                break

    def _purge(self, item: TrashItem, reason: str) -> bool:
        """删除实体与账本行，实体删除失败时保留账本行"""
        try:
            if os.path.lexists(item.trash_path):
                _remove_payload(item.trash_path)
        except OSError as e:
            log_trash_event(logger, 'ERROR', item.id, item.original_path, item.size,
                            error=str(e), reason=reason)
            return False

        self.db.delete_trash_item(item.id)
        item.state = TrashState.PURGED
        log_trash_event(logger, 'EVICT' if reason == 'evicted' else 'PURGE',
                        item.id, item.original_path, item.size, reason=reason)
        self.item_purged.emit(item.id, reason)
        return True
