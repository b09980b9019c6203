import json
import os
from pathlib import Path

import pytest

from upm.core import pathsafety
from upm.core.errors import PathBackupError, PathChangeError
from upm.core.pathsafety import (
    MAX_PATH_LENGTH,
    PathSafetyManager,
    contains_segment,
    list_backups,
    validate_path,
)

MACHINE_OK = (
    r"%SystemRoot%\system32;%SystemRoot%;%SystemRoot%\System32\Wbem;"
    r"%SYSTEMROOT%\System32\WindowsPowerShell\v1.0\;C:\Program Files\Git\cmd"
)
MACHINE_WITHOUT_SYSTEM32 = (
    r"%SystemRoot%;%SystemRoot%\System32\Wbem;%SYSTEMROOT%\System32\WindowsPowerShell\v1.0\;C:\Tools"
)


@pytest.fixture
def manager(fake_store, session):
    return PathSafetyManager(fake_store, session.backup_dir, session.path_backups)


def test_machine_path_without_system32_is_rejected():
    result = validate_path(MACHINE_WITHOUT_SYSTEM32, "machine")
    assert result.passed is False
    assert "system32" in result.failure_reason


def test_same_path_is_fine_for_user_scope():
    assert validate_path(MACHINE_WITHOUT_SYSTEM32, "user").passed is True


def test_machine_path_with_critical_entries_passes():
    assert validate_path(MACHINE_OK, "machine").passed is True


def test_expanded_system_root_counts_as_present(monkeypatch):
    monkeypatch.setenv("SystemRoot", r"C:\Windows")
    expanded = (
        r"C:\WINDOWS\system32;C:\Windows;C:\Windows\System32\Wbem;"
        r"C:\Windows\System32\WindowsPowerShell\v1.0"
    )
    assert validate_path(expanded, "machine").passed is True


@pytest.mark.parametrize("scope", ["user", "machine"])
def test_overlong_path_is_rejected_for_every_scope(scope):
    candidate = MACHINE_OK + ";" + "C:\\" + "x" * (9000 - len(MACHINE_OK) - 4)
    assert len(candidate) == 9000
    result = validate_path(candidate, scope)
    assert result.passed is False
    assert str(MAX_PATH_LENGTH) in result.failure_reason


def test_suspicious_fragments_only_warn():
    result = validate_path(r"C:\a;;C:\b\..\c", "user")
    assert result.passed is True
    assert len(result.warnings) == 2


def test_contains_segment_is_exact_and_case_insensitive():
    assert contains_segment(r"C:\Tools;C:\Other", r"c:\tools")
    assert contains_segment(r"C:\Tools\;C:\Other", r"C:\Tools")
    assert not contains_segment(r"C:\Tools2;C:\Other", r"C:\Tools")


def test_backup_and_restore_round_trip_is_exact(manager, fake_store, monkeypatch):
    monkeypatch.setenv("PATH", "/usr/bin:/bin:/opt/ünïcode dir")
    original_user = fake_store.values["user"]
    original_session = os.environ["PATH"]

    backup = manager.backup("before-change")

    fake_store.values["user"] = r"C:\broken"
    monkeypatch.setenv("PATH", "/nowhere")

    assert manager.restore("before-change") is True
    assert fake_store.values["user"] == original_user
    assert os.environ["PATH"] == original_session

    on_disk = json.loads(open(backup.file_path, encoding="utf-8").read())
    assert on_disk["userPath"] == original_user
    assert on_disk["sessionPath"] == original_session
    assert on_disk["machinePath"] == fake_store.values["machine"]


def test_backups_are_never_overwritten(manager):
    first = manager.backup("same-id")
    second = manager.backup("same-id")
    assert first.file_path != second.file_path
    assert len(list_backups(manager.backup_dir)) == 2


def test_restore_unknown_id_fails(manager, fake_store):
    assert manager.restore("nope") is False
    assert fake_store.writes == []


def test_backup_write_failure_aborts(manager, monkeypatch, fake_store):
    def _fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(pathsafety, "atomic_write_json", _fail)
    with pytest.raises(PathBackupError):
        manager.add_to_path(r"C:\New", "user", "b1")
    assert fake_store.writes == []


def test_add_existing_directory_is_a_noop(manager, fake_store):
    assert manager.add_to_path(r"c:\tools\\", "user", "b1") is True
    assert fake_store.writes == []


def test_add_to_user_path_appends_and_updates_session(manager, fake_store, monkeypatch):
    monkeypatch.setenv("PATH", "/usr/bin")
    assert manager.add_to_path(r"C:\New", "user", "b1") is True
    assert fake_store.values["user"] == r"C:\Users\me\bin;C:\Tools;C:\New"
    assert os.environ["PATH"] == os.pathsep.join([r"C:\New", "/usr/bin"])
    assert "b1" in manager.registry


def test_add_refuses_when_result_fails_validation(manager, fake_store):
    fake_store.values["user"] = "C:\\" + "y" * 8185
    assert manager.add_to_path(r"C:\New", "user", "b1") is False
    assert fake_store.writes == []


def test_machine_add_refused_when_critical_entries_missing(manager, fake_store):
    fake_store.values["machine"] = MACHINE_WITHOUT_SYSTEM32
    assert manager.add_to_path(r"C:\New", "machine", "b1") is False
    assert fake_store.writes == []


def test_failed_verification_restores_backup(store_cls, session, monkeypatch):
    class DroppingStore(store_cls):
        def set(self, scope, value):
            # Accepts the write but persists something else
            self.writes.append((scope, value))
            self.values[scope] = r"C:\garbage"

    store = DroppingStore(user=r"C:\Tools", machine=MACHINE_OK)
    monkeypatch.setenv("PATH", "/usr/bin")
    manager = PathSafetyManager(store, session.backup_dir, session.path_backups)

    assert manager.add_to_path(r"C:\New", "user", "b1") is False
    # Last write is the rollback to the backed-up value
    assert store.writes[-1] == ("user", r"C:\Tools")
    assert os.environ["PATH"] == "/usr/bin"


def test_exception_during_write_rolls_back_then_raises(store_cls, session, monkeypatch):
    class ExplodingStore(store_cls):
        def set(self, scope, value):
            self.writes.append((scope, value))
            if value.endswith(r"C:\New"):
                raise PermissionError("registry locked")
            self.values[scope] = value

    store = ExplodingStore(user=r"C:\Tools", machine=MACHINE_OK)
    monkeypatch.setenv("PATH", "/usr/bin")
    manager = PathSafetyManager(store, session.backup_dir, session.path_backups)

    with pytest.raises(PathChangeError):
        manager.add_to_path(r"C:\New", "user", "b1")
    assert store.writes[-1] == ("user", r"C:\Tools")


def test_restore_from_file_registers_backup(manager, fake_store, session):
    backup = manager.backup("saved")
    fake_store.values["user"] = r"C:\changed"

    fresh = PathSafetyManager(fake_store, session.backup_dir, {})
    assert fresh.restore_from_file(Path(backup.file_path)) is True
    assert fake_store.values["user"] == r"C:\Users\me\bin;C:\Tools"
    assert "saved" in fresh.registry


def test_emergency_backup_uses_emergency_prefix(manager):
    backup = manager.emergency_backup()
    assert backup.backup_id.startswith("emergency_")


def test_list_backups_skips_garbage(manager):
    manager.backup("good")
    (manager.backup_dir / "path_backup_bad_1.json").write_text("{not json")
    assert [b.backup_id for b in list_backups(manager.backup_dir)] == ["good"]


def test_registry_store_refuses_non_windows(monkeypatch):
    monkeypatch.setattr(pathsafety.sys, "platform", "linux")
    from upm.core.errors import UnsupportedPlatformError

    with pytest.raises(UnsupportedPlatformError):
        pathsafety.WindowsRegistryPathStore()
