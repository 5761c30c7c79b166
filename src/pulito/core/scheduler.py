"""
回收站清扫调度器
使用 QTimer 实现后台调度：启动时清扫一次，之后按固定间隔清扫
"""
from datetime import timedelta
from typing import Optional

from PyQt5.QtCore import QObject, pyqtSignal, QTimer

from .exceptions import CleanerError
from .models import SweepReport
from .trash import TrashStore
from ..utils.logger import get_logger, log_scheduler_event
from ..utils.time_utils import format_iso, utc_now

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_MINUTES = 60


class TrashSweepScheduler(QObject):
    """回收站清扫调度器

    清扫本身是普通函数调用，调度器只负责驱动；
    run_now() 供测试和手动触发使用。
    """
    # Signals
    scheduler_started = pyqtSignal()
    scheduler_stopped = pyqtSignal()
    sweep_finished = pyqtSignal(object)  # SweepReport
    next_run_time = pyqtSignal(str)

    def __init__(self, store: TrashStore,
                 interval_minutes: int = DEFAULT_SWEEP_INTERVAL_MINUTES,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self.store = store
        self.interval_minutes = max(1, int(interval_minutes))
        self.last_report: Optional[SweepReport] = None

        self.sweep_timer = QTimer(self)
        self.sweep_timer.timeout.connect(self._on_sweep_timer)

    def start(self):
        """启动调度器并立即清扫一次"""
        self.sweep_timer.start(self.interval_minutes * 60 * 1000)
        log_scheduler_event(logger, 'STARTED', 'trash_sweep',
                            next_run=self.get_next_run_time(),
                            interval=f"{self.interval_minutes}min")
        self.scheduler_started.emit()
        self.run_now()

    def stop(self):
        """停止调度器"""
        self.sweep_timer.stop()
        log_scheduler_event(logger, 'STOPPED', 'trash_sweep')
        self.scheduler_stopped.emit()

    def is_running(self) -> bool:
        return self.sweep_timer.isActive()

    def set_interval(self, interval_minutes: int):
        self.interval_minutes = max(1, int(interval_minutes))
        if self.is_running():
            self.sweep_timer.start(self.interval_minutes * 60 * 1000)
        self.next_run_time.emit(self.get_next_run_time())

    def run_now(self) -> Optional[SweepReport]:
        """立即执行一次清扫"""
        log_scheduler_event(logger, 'TRIGGERED', 'trash_sweep')
        try:
            report = self.store.sweep()
        except CleanerError as e:
            logger.error(f"[调度器:ERROR] 回收站清扫失败: {e}")
            return None

        self.last_report = report
        self.sweep_finished.emit(report)
        self.next_run_time.emit(self.get_next_run_time())
        return report

    def get_next_run_time(self) -> str:
        if not self.is_running():
            return '未启用'
        next_run = utc_now() + timedelta(milliseconds=self.sweep_timer.remainingTime())
        return format_iso(next_run)

    def get_status(self) -> dict:
        return {
            'running': self.is_running(),
            'interval_minutes': self.interval_minutes,
            'next_run': self.get_next_run_time(),
            'last_report': self.last_report.to_dict() if self.last_report else None,
        }

    def _on_sweep_timer(self):
        self.run_now()
