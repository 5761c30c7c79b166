"""
清理执行器 (Remediation Executor)

对用户选中的扫描条目逐个重新校验后执行：
- use_trash=True: 移入回收站（可恢复）
- use_trash=False: 仅允许总是安全的类别直接删除（空目录、断开的符号链接），其他条目跳过

每个请求条目都得到且只得到一个结果，单个失败不会中断整批清理。
"""
import os
import time
from typing import Dict, Iterable, List, Optional

from PyQt5.QtCore import QObject, pyqtSignal

from .exceptions import CleanerError, FileOperationError
from .models import (
    ALWAYS_SAFE_CATEGORIES,
    CleanResult,
    ItemCategory,
    ItemOutcome,
    OutcomeStatus,
    RiskTier,
    ScanItem,
    ScanResult,
)
from .path_validator import PathValidator, SecurityContext
from .trash import TrashStore
from ..utils.logger import get_logger, log_clean_event, log_performance

logger = get_logger(__name__)


class RemediationExecutor(QObject):
    """清理执行器

    Signals:
        progress: (int, int, str) - (已处理, 总数, 当前路径)
        item_cleaned: ItemOutcome - 条目清理成功
        item_failed: ItemOutcome - 条目清理失败
        complete: CleanResult - 整批完成
    """

    progress = pyqtSignal(int, int, str)
    item_cleaned = pyqtSignal(object)
    item_failed = pyqtSignal(object)
    complete = pyqtSignal(object)

    def __init__(self, store: TrashStore,
                 validator: Optional[PathValidator] = None,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self.store = store
        self.validator = validator or store.validator
        self._catalog: Dict[str, ScanItem] = {}
        self._cancelled = False

    def register_scan(self, result: ScanResult):
        """登记最近一次扫描的条目（取代之前的登记）"""
        catalog = {}
        for item in result.items:
            catalog[item.id] = item
            for child in item.children:
                catalog.setdefault(child.id, child)
        self._catalog = catalog
        logger.debug(f"[清理] 已登记扫描条目 {len(catalog)} 个")

    def follow(self, engine):
        """每次扫描完成后自动登记结果"""
        engine.scan_completed.connect(self.register_scan)

    def lookup(self, item_id: str) -> Optional[ScanItem]:
        return self._catalog.get(item_id)

    def cancel(self):
        """取消后剩余条目记为跳过"""
        self._cancelled = True

    def clean(self, item_ids: Iterable[str], paths: Iterable[str],
              use_trash: bool = True, retention_days: Optional[int] = None) -> CleanResult:
        """清理选中的条目

        Args:
            item_ids: 条目 ID 列表
            paths: 与 item_ids 一一对应的路径
            use_trash: 是否移入回收站
            retention_days: 回收站保留天数，None 使用回收站默认值

        Returns:
            CleanResult
        """
        item_ids, paths = list(item_ids), list(paths)
        total = max(len(item_ids), len(paths))
        result = CleanResult()
        self._cancelled = False
        start = time.monotonic()

        log_clean_event(logger, 'START', f"{total} 个条目", use_trash=use_trash)

        for index in range(total):
            item_id = item_ids[index] if index < len(item_ids) else ''
            path = paths[index] if index < len(paths) else ''
            self.progress.emit(index, total, path)

            if self._cancelled:
                outcome = ItemOutcome(item_id, path, OutcomeStatus.SKIPPED, "清理已取消")
            elif not item_id or not path:
                outcome = ItemOutcome(item_id, path, OutcomeStatus.SKIPPED, "条目 ID 与路径数量不匹配")
            else:
                outcome = self._clean_one(item_id, path, use_trash, retention_days)
            result.outcomes.append(outcome)

            if outcome.status is OutcomeStatus.SUCCEEDED:
                log_clean_event(logger, 'ITEM_DONE', outcome.path, size=outcome.size,
                                trash_id=outcome.trash_id)
                self.item_cleaned.emit(outcome)
            elif outcome.status is OutcomeStatus.FAILED:
                log_clean_event(logger, 'ITEM_FAILED', outcome.path, reason=outcome.reason)
                self.item_failed.emit(outcome)
            else:
                log_clean_event(logger, 'ITEM_SKIPPED', outcome.path, reason=outcome.reason)

        result.warnings.extend(self.store.drain_warnings())
        self.progress.emit(total, total, '')

        duration_ms = int((time.monotonic() - start) * 1000)
        log_performance(logger, 'clean', duration_ms, items=total)
        log_clean_event(logger, 'COMPLETE', f"{total} 个条目",
                        cleaned=result.cleaned, failed=result.failed,
                        skipped=result.skipped, size=result.total_size)
        self.complete.emit(result)
        return result

    # ------------------------------------------------------------------

    def _clean_one(self, item_id: str, path: str, use_trash: bool,
                   retention_days: Optional[int]) -> ItemOutcome:
        item = self._catalog.get(item_id)
        if item is None:
            return ItemOutcome(item_id, path, OutcomeStatus.SKIPPED, "条目不在最近一次扫描结果中")
        if item.risk_tier >= RiskTier.CRITICAL:
            return ItemOutcome(item_id, path, OutcomeStatus.SKIPPED, "受保护的敏感路径")
        if item.category is ItemCategory.ORPHAN_PACKAGE:
            return ItemOutcome(item_id, path, OutcomeStatus.SKIPPED, "软件包需通过包管理器卸载")
        if not use_trash and item.category not in ALWAYS_SAFE_CATEGORIES:
            return ItemOutcome(item_id, path, OutcomeStatus.SKIPPED,
                               f"类别 {item.category.value} 必须经过回收站删除")

        try:
            canonical = self.validator.validate(path, SecurityContext.DELETION)
            if canonical != item.path:
                return ItemOutcome(item_id, path, OutcomeStatus.FAILED,
                                   f"路径与扫描条目不一致: {canonical}")

            if use_trash:
                trashed = self.store.move_to_trash(
                    canonical, item.category, item.risk_tier,
                    reason=item.description, retention_days=retention_days
                )
                return ItemOutcome(item_id, canonical, OutcomeStatus.SUCCEEDED,
                                   size=trashed.size, trash_id=trashed.id)

            self._unlink_safe(canonical, item.category)
            return ItemOutcome(item_id, canonical, OutcomeStatus.SUCCEEDED, size=item.size)
        except CleanerError as e:
            return ItemOutcome(item_id, path, OutcomeStatus.FAILED, str(e))

    @staticmethod
    def _unlink_safe(path: str, category: ItemCategory):
        """直接删除总是安全的条目，删除前重新确认其状态"""
        try:
            if category is ItemCategory.EMPTY_DIRECTORY:
                # rmdir 对非空目录失败
                os.rmdir(path)
            elif category is ItemCategory.BROKEN_SYMLINK:
                if not os.path.islink(path) or os.path.exists(path):
                    raise FileOperationError(f"符号链接已不再断开: {path}", path=path)
                os.unlink(path)
        except OSError as e:
            raise FileOperationError.from_os_error(e, path) from e
