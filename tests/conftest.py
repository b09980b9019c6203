import pytest

from upm.core.config import build_default_config
from upm.core.pathsafety import PathStore
from upm.core.task import Session


class FakePathStore(PathStore):
    """In-memory stand-in for the registry-backed PATH store."""

    def __init__(self, user="", machine=""):
        self.values = {"user": user, "machine": machine}
        self.writes = []

    def get(self, scope):
        return self.values[scope]

    def set(self, scope, value):
        self.writes.append((scope, value))
        self.values[scope] = value


@pytest.fixture
def session(tmp_path):
    return Session(log_dir=tmp_path / "logs", backup_dir=tmp_path / "backups")


@pytest.fixture
def make_ctx(session):
    def _make(dry_run=False, config=None):
        return {
            "config": config if config is not None else build_default_config(),
            "dry_run": dry_run,
            "verbose": False,
            "session": session,
        }

    return _make


@pytest.fixture
def fake_store():
    return FakePathStore(
        user=r"C:\Users\me\bin;C:\Tools",
        machine=r"%SystemRoot%\system32;%SystemRoot%;%SystemRoot%\System32\Wbem;"
        r"%SystemRoot%\System32\WindowsPowerShell\v1.0\;C:\Program Files\Git\cmd",
    )


@pytest.fixture
def store_cls():
    return FakePathStore
