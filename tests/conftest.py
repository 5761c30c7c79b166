"""
Pytest configuration

Provides a QCoreApplication for signal handling and isolated
home / database / trash fixtures built on tmp_path.
"""
import sys
import os
import pytest

# Add src to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from pulito.core.database import Database
from pulito.core.path_validator import PathValidator, SanctionPolicy
from pulito.core.trash import TrashStore


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    """Fixture to provide QCoreApplication for all tests"""
    from PyQt5.QtCore import QCoreApplication
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication(sys.argv)
    yield app


@pytest.fixture
def home(tmp_path):
    """Isolated home directory"""
    path = tmp_path / 'home'
    path.mkdir()
    return os.path.realpath(str(path))


@pytest.fixture
def policy(home):
    """Sanction policy rooted at the isolated home only"""
    return SanctionPolicy.for_home(home, inspect_extra=(), deletion_extra=())


@pytest.fixture
def validator(policy):
    return PathValidator(policy)


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / 'pulito.db'))
    yield database
    database.close()


@pytest.fixture
def store(tmp_path, db, validator):
    return TrashStore(
        trash_root=str(tmp_path / 'trash'),
        database=db,
        validator=validator,
    )


def write_file(path, size=0, content=None, mtime=None):
    """Create a file (and its parents) with the given size or content"""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    data = content if content is not None else b'x' * size
    with open(path, 'wb') as f:
        f.write(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path

