"""
扫描引擎 (Scan Engine)

按分类并行执行扫描任务：
- 每个启用的分类一个任务，在有上限的线程池中运行
- 深度遍历类分类（文件系统检查、存储回收）共享一个遍历槽位
- 三级超时：目录大小子任务 / 分类任务 / 整体扫描，内层超时只算该单元失败
- 分类失败记录在 failed_categories 中，不影响其他分类，总是返回已有的部分结果
- 进度事件由工作线程放入队列，由调用 scan() 的线程取出并发射信号
"""
import queue
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Type

from PyQt5.QtCore import QObject, pyqtSignal

from .cache import CacheManager
from .category_scanners import SCANNER_REGISTRY, CategoryScanner, ScanContext
from .dir_size import DEFAULT_SIZE_TIMEOUT, DirectorySizer
from .exceptions import CleanerError, ScanCancelledError, ScanTimeoutError
from .models import FailedCategory, ScanCategory, ScanItem, ScanProgress, ScanResult
from .packages import PackageProbe
from .path_validator import PathValidator, get_path_validator
from .risk_classifier import RiskClassifier
from .scan_options import ScanOptions
from .walker import CancellationToken
from ..utils.format_utils import format_size
from ..utils.logger import get_logger, log_performance, log_scan_event

logger = get_logger(__name__)

MAX_CONCURRENT_CATEGORIES = 3
CATEGORY_TIMEOUT = 300
POLL_INTERVAL = 0.1

CANCEL_REASON_USER = "cancelled"
CANCEL_REASON_SCAN_TIMEOUT = "scan timeout"
CANCEL_REASON_CATEGORY_TIMEOUT = "category timeout"


class CategoryState(Enum):
    """分类任务状态: Pending -> Running -> {Completed | Failed | TimedOut}"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (CategoryState.COMPLETED, CategoryState.FAILED, CategoryState.TIMED_OUT)


@dataclass
class CategoryTask:
    """单个分类扫描任务"""
    category: ScanCategory
    token: CancellationToken
    state: CategoryState = CategoryState.PENDING
    scanner: Optional[CategoryScanner] = None
    started_at: Optional[float] = None
    percent: float = 0.0
    items_found: int = 0
    current_size: int = 0
    reason: str = ""
    items: List[ScanItem] = field(default_factory=list)

    def partial_items(self) -> List[ScanItem]:
        if self.items:
            return self.items
        if self.scanner is not None:
            return list(self.scanner.items)
        return []


@dataclass(frozen=True)
class _ProgressUpdate:
    category: ScanCategory
    percent: float
    message: str
    items_found: int
    current_size: int


class ScanEngine(QObject):
    """扫描引擎

    Signals:
        progress: ScanProgress - 进度事件（percent 为整体进度）
        category_finished: str, str - 分类, 终止状态
        scan_completed: ScanResult - 扫描完成（含部分结果）
    """

    progress = pyqtSignal(object)
    category_finished = pyqtSignal(str, str)
    scan_completed = pyqtSignal(object)

    def __init__(
        self,
        validator: Optional[PathValidator] = None,
        classifier: Optional[RiskClassifier] = None,
        cache: Optional[CacheManager] = None,
        growth=None,
        database=None,
        probes: Optional[Sequence[PackageProbe]] = None,
        registry: Optional[Dict[ScanCategory, Type[CategoryScanner]]] = None,
        max_workers: int = MAX_CONCURRENT_CATEGORIES,
        category_timeout: float = CATEGORY_TIMEOUT,
        size_timeout: float = DEFAULT_SIZE_TIMEOUT,
        protected_paths: Sequence[str] = (),
        parent=None,
    ):
        """
        Args:
            validator: 路径校验器
            classifier: 风险分级器
            cache: 缓存管理器
            growth: GrowthAnalytics，扫描后记录分类大小
            database: Database，记录扫描历史
            probes: 软件包探测器（None 使用默认 apt/pip/npm）
            registry: 分类扫描器表
            max_workers: 并发分类数上限
            category_timeout: 单个分类超时（秒）
            size_timeout: 目录大小计算超时（秒）
            protected_paths: 扫描时跳过的路径，通常为 TrashStore.protected_paths
        """
        super().__init__(parent)
        validator = validator or get_path_validator()
        protected = list(protected_paths)
        if database is not None:
            protected.append(database.db_path)
        if protected:
            validator = PathValidator(validator.policy.with_protected(*protected))
        self.validator = validator
        self.classifier = classifier or RiskClassifier(home=self.validator.home)
        self.cache = cache or CacheManager()
        self.growth = growth
        self.database = database
        self.probes = probes
        self.registry = dict(registry or SCANNER_REGISTRY)
        self.max_workers = max(1, max_workers)
        self.category_timeout = category_timeout
        self.sizer = DirectorySizer(self.cache, timeout_seconds=size_timeout)

        self._deep_walk_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._token: Optional[CancellationToken] = None
        self.last_result: Optional[ScanResult] = None

    # ------------------------------------------------------------------
    # 公共接口
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._token is not None

    def cancel(self):
        """取消正在进行的扫描"""
        with self._state_lock:
            token = self._token
        if token is not None:
            token.cancel(CANCEL_REASON_USER)
            log_scan_event(logger, 'CANCEL', 'all')

    def shutdown(self):
        self.cancel()
        self.sizer.shutdown()

    def scan(
        self,
        options: Optional[ScanOptions] = None,
        progress_callback: Optional[Callable[[ScanProgress], None]] = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> ScanResult:
        """执行扫描

        Args:
            options: 扫描选项
            progress_callback: 进度回调（在调用线程中执行）
            token: 外部取消令牌
            timeout: 覆盖整体超时（秒）

        Returns:
            ScanResult，失败或超时的分类记录在 failed_categories 中
        """
        options = options or ScanOptions()
        fingerprint = options.fingerprint()

        if options.use_cache:
            cached = self.cache.get_scan_result(fingerprint)
            if cached is not None:
                log_scan_event(logger, 'CACHE_HIT', fingerprint[:12], count=cached.total_items)
                self._emit(ScanProgress('complete', 100.0, "使用缓存的扫描结果",
                                        cached.total_items, cached.total_size), progress_callback)
                self.last_result = cached
                self.scan_completed.emit(cached)
                return cached

        token = token or CancellationToken()
        with self._state_lock:
            self._token = token

        try:
            result = self._run_scan(options, token, timeout, progress_callback)
        finally:
            with self._state_lock:
                self._token = None

        if result.is_complete:
            self.cache.set_scan_result(fingerprint, result)
        self._record_history(result, options)

        self.last_result = result
        self.scan_completed.emit(result)
        return result

    # ------------------------------------------------------------------
    # 调度
    # ------------------------------------------------------------------

    def _run_scan(self, options: ScanOptions, token: CancellationToken,
                  timeout: Optional[float], progress_callback) -> ScanResult:
        start = time.monotonic()
        scan_timeout = options.scan_timeout() if timeout is None else timeout
        deadline = start + scan_timeout

        categories = [c for c in options.enabled_categories() if c in self.registry]
        tasks = {c: CategoryTask(category=c, token=token.child()) for c in categories}
        events: "queue.Queue[_ProgressUpdate]" = queue.Queue()
        warnings: List[str] = []
        duplicate_groups: list = []

        log_scan_event(logger, 'START', ', '.join(c.value for c in categories),
                       timeout=f"{scan_timeout}s")

        if not tasks:
            return ScanResult(scan_time_ms=0)

        executor = ThreadPoolExecutor(max_workers=min(len(tasks), self.max_workers),
                                      thread_name_prefix='scan-category')
        try:
            futures: Dict[Future, CategoryTask] = {}
            for task in tasks.values():
                ctx = ScanContext(
                    options=options,
                    validator=self.validator,
                    classifier=self.classifier,
                    sizer=self.sizer,
                    token=task.token,
                    report=self._make_reporter(task.category, events),
                    probes=self.probes,
                    warnings=warnings,
                    duplicate_groups=duplicate_groups,
                )
                futures[executor.submit(self._run_category, task, ctx)] = task

            pending = set(futures)
            while pending:
                self._drain(events, tasks, progress_callback)
                done, pending = wait(pending, timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    self._collect(future, futures[future], tasks, progress_callback)

                now = time.monotonic()
                if now >= deadline and not token.is_cancelled:
                    token.cancel(CANCEL_REASON_SCAN_TIMEOUT)
                    log_scan_event(logger, 'TIMEOUT', 'all', timeout=f"{scan_timeout}s")

                if token.is_cancelled:
                    timed_out = token.cancel_reason == CANCEL_REASON_SCAN_TIMEOUT
                    for future in pending:
                        future.cancel()
                        if timed_out:
                            self._finish(futures[future], CategoryState.TIMED_OUT,
                                         f"整体扫描超时 ({scan_timeout}秒)", tasks, progress_callback)
                        else:
                            self._finish(futures[future], CategoryState.FAILED,
                                         CANCEL_REASON_USER, tasks, progress_callback)
                    break

                for future in list(pending):
                    task = futures[future]
                    if task.started_at is not None and now - task.started_at > self.category_timeout:
                        task.token.cancel(CANCEL_REASON_CATEGORY_TIMEOUT)
                        self._finish(task, CategoryState.TIMED_OUT,
                                     f"分类超时 ({self.category_timeout}秒)", tasks, progress_callback)
                        pending.discard(future)

            self._drain(events, tasks, progress_callback)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        items: List[ScanItem] = []
        failed: List[FailedCategory] = []
        for task in tasks.values():
            items.extend(task.partial_items())
            if task.state is not CategoryState.COMPLETED:
                failed.append(FailedCategory(task.category, task.reason or task.state.value,
                                             state=task.state.value))

        elapsed_ms = int((time.monotonic() - start) * 1000)
        result = ScanResult(
            items=items,
            failed_categories=failed,
            duplicate_groups=list(duplicate_groups),
            warnings=list(warnings),
            cancelled=token.is_cancelled and token.cancel_reason == CANCEL_REASON_USER,
            scan_time_ms=elapsed_ms,
        )

        self._emit(ScanProgress('complete', 100.0, "扫描完成", result.total_items, result.total_size),
                   progress_callback)
        log_scan_event(logger, 'COMPLETE', 'all', count=result.total_items,
                       size=format_size(result.total_size), failed=len(failed))
        log_performance(logger, 'SCAN', elapsed_ms, categories=len(tasks))
        return result

    def _run_category(self, task: CategoryTask, ctx: ScanContext) -> List[ScanItem]:
        """在工作线程中执行分类扫描"""
        scanner_cls = self.registry[task.category]
        slot = self._deep_walk_lock if scanner_cls.deep_walk else None

        if slot is not None:
            # 等待遍历槽位期间仍处于 Pending，可被取消
            while not slot.acquire(timeout=POLL_INTERVAL):
                task.token.raise_if_cancelled()
        try:
            task.token.raise_if_cancelled()
            task.scanner = scanner_cls(ctx)
            task.started_at = time.monotonic()
            if not task.state.is_terminal:
                task.state = CategoryState.RUNNING
            log_scan_event(logger, 'CATEGORY', task.category.value, state='running')
            return task.scanner.produce()
        finally:
            if slot is not None:
                slot.release()

    def _collect(self, future: Future, task: CategoryTask, tasks, progress_callback):
        if task.state.is_terminal:
            return
        try:
            items = future.result()
        except ScanCancelledError:
            if task.token.cancel_reason == CANCEL_REASON_CATEGORY_TIMEOUT:
                self._finish(task, CategoryState.TIMED_OUT, "分类超时", tasks, progress_callback)
            else:
                self._finish(task, CategoryState.FAILED, CANCEL_REASON_USER, tasks, progress_callback)
        except ScanTimeoutError as e:
            self._finish(task, CategoryState.TIMED_OUT, e.message, tasks, progress_callback)
        except CleanerError as e:
            self._finish(task, CategoryState.FAILED, e.message, tasks, progress_callback)
        except OSError as e:
            self._finish(task, CategoryState.FAILED, f"文件系统错误: {e}", tasks, progress_callback)
        except Exception as e:
            # 单个分类的意外错误只记为该分类失败
            logger.error(f"[扫描:FAILED] 分类 {task.category.value} 异常: {e}", exc_info=True)
            self._finish(task, CategoryState.FAILED, f"内部错误: {e}", tasks, progress_callback)
        else:
            task.items = list(items)
            self._finish(task, CategoryState.COMPLETED, "", tasks, progress_callback)

    def _finish(self, task: CategoryTask, state: CategoryState, reason: str, tasks, progress_callback):
        task.state = state
        task.reason = reason
        task.percent = 100.0
        items = task.partial_items()
        task.items_found = len(items)
        task.current_size = sum(i.size for i in items)

        if state is CategoryState.COMPLETED:
            log_scan_event(logger, 'CATEGORY', task.category.value, count=task.items_found,
                           size=format_size(task.current_size), state=state.value)
        else:
            log_scan_event(logger, 'FAILED', task.category.value, state=state.value, reason=reason)

        self.category_finished.emit(task.category.value, state.value)
        message = f"{task.category.value}: {state.value}" + (f" ({reason})" if reason else "")
        self._emit(self._aggregate(task.category, message, tasks), progress_callback)

    # ------------------------------------------------------------------
    # 进度
    # ------------------------------------------------------------------

    @staticmethod
    def _make_reporter(category: ScanCategory, events: "queue.Queue[_ProgressUpdate]"):
        def report(percent: float, message: str, items_found: int, current_size: int):
            events.put(_ProgressUpdate(category, max(0.0, min(100.0, percent)), message,
                                       items_found, current_size))
        return report

    def _drain(self, events, tasks: Dict[ScanCategory, CategoryTask], progress_callback):
        while True:
            try:
                update = events.get_nowait()
            except queue.Empty:
                return
            task = tasks.get(update.category)
            if task is None or task.state.is_terminal:
                continue
            task.percent = max(task.percent, update.percent)
            task.items_found = update.items_found
            task.current_size = update.current_size
            self._emit(self._aggregate(update.category, update.message, tasks), progress_callback)

    @staticmethod
    def _aggregate(category: ScanCategory, message: str,
                   tasks: Dict[ScanCategory, CategoryTask]) -> ScanProgress:
        overall = sum(t.percent for t in tasks.values()) / max(len(tasks), 1)
        return ScanProgress(
            category=category.value,
            percent=overall,
            message=message,
            items_found=sum(t.items_found for t in tasks.values()),
            current_size=sum(t.current_size for t in tasks.values()),
        )

    def _emit(self, event: ScanProgress, progress_callback):
        self.progress.emit(event)
        if progress_callback is not None:
            progress_callback(event)

    # ------------------------------------------------------------------
    # 扫描后记录
    # ------------------------------------------------------------------

    def _record_history(self, result: ScanResult, options: ScanOptions):
        failed = {f.category for f in result.failed_categories}
        if self.growth is not None and not result.cancelled:
            sizes = result.category_sizes()
            for category in options.enabled_categories():
                if category not in failed:
                    self.growth.record(category.value, sizes.get(category, 0), result.timestamp)

        if self.database is not None:
            self.database.add_scan_history(
                total_items=result.total_items,
                total_size=result.total_size,
                failed_categories=[f.category.value for f in result.failed_categories],
                duration_ms=result.scan_time_ms,
                timestamp=result.timestamp,
            )
