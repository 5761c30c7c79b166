"""
Package Probe Unit Tests
"""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from pulito.core.packages import AptProbe, NpmProbe, PipProbe, run_command


AUTOREMOVE_OUTPUT = """NOTE: This is only a simulation!
Reading package lists...
Remv libfoo1 [1.2-3]
Remv python3-bar [0.9]
Remv ../../etc/passwd [1]
Conf something
"""

RDEPENDS_OUTPUT = """libfoo1
Reverse Depends:
  foo-utils
 |foo-gui
  libfoo1
"""


class FakeRunner:
    """Returns canned output keyed by the command prefix"""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, args, timeout):
        self.calls.append(args)
        for prefix, output in self.responses.items():
            if tuple(args[:len(prefix)]) == prefix:
                return output
        return None


def test_parse_autoremove_rejects_bad_names():
    """Test only well-formed package names are accepted"""
    assert AptProbe.parse_autoremove(AUTOREMOVE_OUTPUT) == ['libfoo1', 'python3-bar']


def test_parse_dpkg_query_size_in_kib():
    """Test Installed-Size is converted from KiB"""
    probe = AptProbe(runner=FakeRunner({}))
    candidate = probe.parse_dpkg_query('libfoo1|1.2-3|250|Foo library\n', 'libfoo1')
    assert candidate.size == 250 * 1024
    assert candidate.version == '1.2-3'
    assert candidate.description == 'Foo library'

    assert probe.parse_dpkg_query('', 'libfoo1').size == 0


def test_parse_rdepends():
    """Test reverse dependencies exclude the package itself"""
    assert AptProbe.parse_rdepends(RDEPENDS_OUTPUT, 'libfoo1') == ['foo-utils', 'foo-gui']


def test_apt_probe_discover(tmp_path):
    """Test the APT probe reports the archive cache and orphans"""
    archives = tmp_path / 'archives'
    archives.mkdir()
    runner = FakeRunner({
        ('apt-get',): AUTOREMOVE_OUTPUT,
        ('dpkg-query',): 'libfoo1|1.2-3|4|Foo\n',
        ('apt-cache',): RDEPENDS_OUTPUT,
    })
    probe = AptProbe(home=str(tmp_path), runner=runner, archives_dir=str(archives),
                     doc_root=str(tmp_path / 'doc'))

    candidates = probe.discover()

    assert candidates[0].kind == 'cache'
    assert candidates[0].path == str(archives)
    orphans = [c for c in candidates if c.kind == 'orphan']
    assert [c.name for c in orphans] == ['libfoo1', 'python3-bar']
    assert orphans[0].path == str(tmp_path / 'doc' / 'libfoo1')
    assert orphans[0].dependents == ['foo-utils', 'foo-gui']


def test_apt_probe_without_apt(tmp_path):
    """Test a missing package manager yields no candidates"""
    probe = AptProbe(runner=FakeRunner({}), archives_dir=str(tmp_path / 'none'))
    assert probe.discover() == []


def test_pip_probe_falls_back_to_home(tmp_path):
    """Test pip cache defaults to ~/.cache/pip when pip is unavailable"""
    (tmp_path / '.cache' / 'pip').mkdir(parents=True)
    candidates = PipProbe(home=str(tmp_path), runner=FakeRunner({})).discover()
    assert [c.path for c in candidates] == [str(tmp_path / '.cache' / 'pip')]


def test_npm_probe_uses_reported_cache(tmp_path):
    """Test npm's configured cache directory is honoured"""
    base = tmp_path / 'npm-cache'
    (base / '_cacache').mkdir(parents=True)
    runner = FakeRunner({('npm', 'config', 'get', 'cache'): f'{base}\n'})
    candidates = NpmProbe(home=str(tmp_path), runner=runner).discover()
    assert [c.path for c in candidates] == [str(base / '_cacache')]


def test_run_command_missing_binary():
    """Test an absent executable yields None"""
    assert run_command(['pulito-no-such-binary', '--version']) is None
