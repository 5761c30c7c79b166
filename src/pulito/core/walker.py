"""
目录遍历与取消令牌

所有扫描器共用的遍历逻辑：每进入一个目录检查一次取消令牌，
因此取消延迟不超过单个目录的处理时间。
"""
import os
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Optional

from .exceptions import ScanCancelledError
from .path_validator import is_under
from ..utils.logger import get_logger, log_file_operation

logger = get_logger(__name__)


class CancellationToken:
    """取消令牌

    子令牌在父令牌取消时同样视为已取消，用于单个分类任务的超时拆除。
    """

    def __init__(self, parent: Optional['CancellationToken'] = None):
        self._event = threading.Event()
        self._parent = parent
        self.reason = ""

    def cancel(self, reason: str = "cancelled"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.is_cancelled

    @property
    def cancel_reason(self) -> str:
        if self._event.is_set():
            return self.reason
        if self._parent is not None:
            return self._parent.cancel_reason
        return ""

    def child(self) -> 'CancellationToken':
        return CancellationToken(parent=self)

    def raise_if_cancelled(self):
        if self.is_cancelled:
            raise ScanCancelledError(f"扫描已取消: {self.cancel_reason}")


@dataclass
class WalkStep:
    """一次目录访问

    调用方可以修改 subdirs 来剪枝（与 os.walk 的 dirs 用法一致）。
    """
    path: str
    depth: int
    subdirs: List[os.DirEntry] = field(default_factory=list)
    files: List[os.DirEntry] = field(default_factory=list)
    symlinks: List[os.DirEntry] = field(default_factory=list)
    entry_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.entry_count == 0


def is_hidden(name: str) -> bool:
    return name.startswith('.')


def walk_tree(
    root: str,
    token: Optional[CancellationToken] = None,
    include_hidden: bool = False,
    max_depth: int = 10,
    on_error: Optional[Callable[[str, OSError], None]] = None,
    exclude: Iterable[str] = (),
) -> Iterator[WalkStep]:
    """自顶向下遍历目录树，不跟随符号链接

    Args:
        root: 起始目录
        token: 取消令牌，每个目录检查一次
        include_hidden: 是否包含隐藏条目
        max_depth: 最大深度（root 为 0）
        on_error: 目录无法读取时的回调
        exclude: 跳过的路径（及其子树），如回收站和数据库

    Yields:
        WalkStep，条目按名称排序以保证结果确定
    """
    excluded = tuple(exclude)
    if any(is_under(root, protected) for protected in excluded):
        return
    stack = [(root, 0)]
    while stack:
        if token is not None:
            token.raise_if_cancelled()

        path, depth = stack.pop()
        step = WalkStep(path=path, depth=depth)
        try:
            with os.scandir(path) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            log_file_operation(logger, 'SKIP', path, error=str(e))
            if on_error is not None:
                on_error(path, e)
            continue

        step.entry_count = len(entries)
        for entry in entries:
            if not include_hidden and is_hidden(entry.name):
                continue
            if excluded and any(is_under(entry.path, protected) for protected in excluded):
                continue
            try:
                if entry.is_symlink():
                    step.symlinks.append(entry)
                elif entry.is_dir(follow_symlinks=False):
                    step.subdirs.append(entry)
                elif entry.is_file(follow_symlinks=False):
                    step.files.append(entry)
            except OSError as e:
                log_file_operation(logger, 'SKIP', entry.path, error=str(e))

        yield step

        if depth < max_depth:
            # 逆序压栈，使子目录按名称顺序出栈
            for sub in reversed(step.subdirs):
                stack.append((sub.path, depth + 1))
