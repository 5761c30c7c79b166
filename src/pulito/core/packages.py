"""
软件包管理器探测 (apt/dpkg, pip, npm)

探测结果（包名、路径）均视为不可信数据：
包名必须符合包名语法，路径在成为扫描条目之前必须通过 PathValidator。
"""
import os
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..utils.logger import get_logger

logger = get_logger(__name__)

COMMAND_TIMEOUT = 30

# Debian 包名语法，可带 :arch 后缀
DEB_NAME_RE = re.compile(r'^[a-z0-9][a-z0-9+.\-]+(:[a-z0-9\-]+)?$')

APT_ARCHIVES_DIR = '/var/cache/apt/archives'
DOC_ROOT = '/usr/share/doc'

CommandRunner = Callable[[List[str], float], Optional[str]]


def run_command(args: List[str], timeout: float = COMMAND_TIMEOUT) -> Optional[str]:
    """运行外部命令并返回 stdout，命令不存在或失败时返回 None"""
    if shutil.which(args[0]) is None:
        logger.debug(f"[PACKAGES] 命令不存在: {args[0]}")
        return None
    env = dict(os.environ, LC_ALL='C', LANG='C')
    try:
        completed = subprocess.run(
            args, capture_output=True, text=True, timeout=timeout, check=False, env=env
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"[PACKAGES] 命令超时 ({timeout}秒): {' '.join(args)}")
        return None
    except OSError as e:
        logger.warning(f"[PACKAGES] 命令执行失败: {' '.join(args)}: {e}")
        return None

    if completed.returncode != 0:
        logger.debug(f"[PACKAGES] 命令返回 {completed.returncode}: {' '.join(args)}")
        return None
    return completed.stdout


@dataclass
class PackageCandidate:
    """软件包探测候选（不可信）"""
    manager: str
    kind: str  # 'orphan' 或 'cache'
    name: str
    path: Optional[str] = None
    size: int = 0
    version: str = ""
    description: str = ""
    dependents: List[str] = field(default_factory=list)


class PackageProbe(ABC):
    """软件包管理器探测基类"""

    manager = ""

    def __init__(self, home: Optional[str] = None, runner: CommandRunner = run_command):
        self.home = home or os.path.expanduser('~')
        self.runner = runner

    @abstractmethod
    def discover(self) -> List[PackageCandidate]:
        """返回原始候选列表"""

    def _run(self, *args: str) -> Optional[str]:
        return self.runner(list(args), COMMAND_TIMEOUT)


class AptProbe(PackageProbe):
    """apt/dpkg: 软件包缓存与孤立软件包"""

    manager = "apt"

    def __init__(self, home: Optional[str] = None, runner: CommandRunner = run_command,
                 archives_dir: str = APT_ARCHIVES_DIR, doc_root: str = DOC_ROOT):
        super().__init__(home, runner)
        self.archives_dir = archives_dir
        self.doc_root = doc_root

    def discover(self) -> List[PackageCandidate]:
        candidates = []
        if os.path.isdir(self.archives_dir):
            candidates.append(PackageCandidate(
                manager=self.manager, kind='cache', name='apt-archives',
                path=self.archives_dir, description='APT 软件包下载缓存'
            ))
        candidates.extend(self.find_orphans())
        return candidates

    def find_orphans(self) -> List[PackageCandidate]:
        output = self._run('apt-get', '--dry-run', 'autoremove')
        if not output:
            return []

        orphans = []
        for name in self.parse_autoremove(output):
            info = self._run('dpkg-query', '-W', '-f',
                             '${Package}|${Version}|${Installed-Size}|${Description}\n', name)
            candidate = self.parse_dpkg_query(info or '', name)
            rdepends = self._run('apt-cache', 'rdepends', '--installed', name)
            candidate.dependents = self.parse_rdepends(rdepends or '', name)
            candidate.path = os.path.join(self.doc_root, name.split(':', 1)[0])
            orphans.append(candidate)
        logger.info(f"[PACKAGES] 发现孤立软件包 {len(orphans)} 个")
        return orphans

    @staticmethod
    def parse_autoremove(output: str) -> List[str]:
        """解析 'Remv <name> [...]' 行，丢弃不符合包名语法的条目"""
        names = []
        for line in output.splitlines():
            if not line.startswith('Remv '):
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            name = parts[1]
            if DEB_NAME_RE.match(name):
                names.append(name)
            else:
                logger.warning(f"[PACKAGES] 丢弃非法包名: {name!r}")
        return names

    def parse_dpkg_query(self, output: str, name: str) -> PackageCandidate:
        candidate = PackageCandidate(manager=self.manager, kind='orphan', name=name)
        line = output.splitlines()[0] if output.strip() else ''
        parts = line.split('|')
        if len(parts) >= 3:
            candidate.version = parts[1]
            try:
                # Installed-Size 单位为 KiB
                candidate.size = int(parts[2]) * 1024
            except ValueError:
                candidate.size = 0
            candidate.description = parts[3] if len(parts) > 3 else ''
        return candidate

    @staticmethod
    def parse_rdepends(output: str, name: str) -> List[str]:
        dependents = []
        in_section = False
        for line in output.splitlines():
            if not in_section:
                if line.startswith('Reverse Depends:'):
                    in_section = True
                continue
            dep = line.strip().lstrip('|').strip()
            if dep and dep != name and DEB_NAME_RE.match(dep) and dep not in dependents:
                dependents.append(dep)
        return dependents


class PipProbe(PackageProbe):
    """pip 下载缓存"""

    manager = "pip"

    def discover(self) -> List[PackageCandidate]:
        output = self._run('pip', 'cache', 'dir') or self._run('pip3', 'cache', 'dir')
        path = output.strip().splitlines()[0].strip() if output and output.strip() else ''
        if not path:
            path = os.path.join(self.home, '.cache', 'pip')
        if not os.path.isdir(path):
            return []
        return [PackageCandidate(manager=self.manager, kind='cache', name='pip-cache',
                                 path=path, description='pip 下载与构建缓存')]


class NpmProbe(PackageProbe):
    """npm 内容缓存"""

    manager = "npm"

    def discover(self) -> List[PackageCandidate]:
        output = self._run('npm', 'config', 'get', 'cache')
        base = output.strip().splitlines()[0].strip() if output and output.strip() else ''
        if not base:
            base = os.path.join(self.home, '.npm')
        path = os.path.join(base, '_cacache')
        if not os.path.isdir(path):
            return []
        return [PackageCandidate(manager=self.manager, kind='cache', name='npm-cache',
                                 path=path, description='npm 内容缓存')]


def default_probes(home: Optional[str] = None) -> List[PackageProbe]:
    return [AptProbe(home), PipProbe(home), NpmProbe(home)]
