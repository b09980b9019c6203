# upm/core/pathsafety.py
"""
PATH safety manager.

Every change to the persistent PATH goes through backup -> validate ->
apply -> verify, with an automatic restore when any step after the backup
fails. Backups are JSON files that are never overwritten or pruned; the
`upm path` commands list and restore them by hand.
"""

from __future__ import annotations

import os
import re
import sys
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from upm.core.errors import (
    PathBackupError,
    PathChangeError,
    UnsupportedPlatformError,
)
from upm.core.io import atomic_write_json, read_json
from upm.core.logger import LoggerProxy
from upm.core.types import PathBackup, PathScope, PathValidation

log = LoggerProxy(__name__)

PATH_SEPARATOR = ";"
MAX_PATH_LENGTH = 8191

# A machine PATH without these leaves Windows unable to find its own tools
CRITICAL_MACHINE_ENTRIES = (
    r"%SystemRoot%\system32",
    r"%SystemRoot%",
    r"%SystemRoot%\System32\Wbem",
    r"%SystemRoot%\System32\WindowsPowerShell\v1.0",
)

SUSPICIOUS_PATTERNS = {
    ";;": "contains an empty entry (';;')",
    "..": "contains a relative parent reference ('..')",
}

BACKUP_FILE_PREFIX = "path_backup_"

_WINDOWS_VAR_DEFAULTS = {
    "systemroot": r"C:\Windows",
    "windir": r"C:\Windows",
}
_VAR_PATTERN = re.compile(r"%([^%;]+)%")


def expand_windows_vars(value: str) -> str:
    """Expand %VAR% references on every platform."""

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        found = os.environ.get(name)
        if found is None:
            found = _WINDOWS_VAR_DEFAULTS.get(name.lower())
        return found if found is not None else match.group(0)

    return _VAR_PATTERN.sub(_sub, value)


def _normalize_segment(segment: str) -> str:
    return segment.strip().strip('"').rstrip("\\/").lower()


def split_path(value: str, separator: str = PATH_SEPARATOR) -> list[str]:
    return [s for s in value.split(separator) if s.strip()]


def contains_segment(value: str, directory: str, separator: str = PATH_SEPARATOR) -> bool:
    """Case-insensitive exact segment match; %VAR% forms match their expansion."""
    wanted = {_normalize_segment(directory), _normalize_segment(expand_windows_vars(directory))}
    for segment in split_path(value, separator):
        if _normalize_segment(segment) in wanted:
            return True
        if _normalize_segment(expand_windows_vars(segment)) in wanted:
            return True
    return False


class PathStore(ABC):
    """Persistent PATH storage for the user and machine scopes."""

    @abstractmethod
    def get(self, scope: PathScope) -> str: ...

    @abstractmethod
    def set(self, scope: PathScope, value: str) -> None: ...


class WindowsRegistryPathStore(PathStore):
    """Reads and writes the Path value under HKCU / HKLM Environment keys."""

    USER_KEY = r"Environment"
    MACHINE_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"

    def __init__(self) -> None:
        if sys.platform != "win32":
            raise UnsupportedPlatformError("Persistent PATH changes are only supported on Windows.")
        import winreg

        self._winreg = winreg

    def _location(self, scope: PathScope) -> tuple[int, str]:
        if scope == "machine":
            return self._winreg.HKEY_LOCAL_MACHINE, self.MACHINE_KEY
        return self._winreg.HKEY_CURRENT_USER, self.USER_KEY

    def get(self, scope: PathScope) -> str:
        hive, key_path = self._location(scope)
        try:
            with self._winreg.OpenKey(hive, key_path, 0, self._winreg.KEY_READ) as key:
                value, _ = self._winreg.QueryValueEx(key, "Path")
                return str(value)
        except FileNotFoundError:
            return ""

    def set(self, scope: PathScope, value: str) -> None:
        hive, key_path = self._location(scope)
        with self._winreg.OpenKey(hive, key_path, 0, self._winreg.KEY_SET_VALUE) as key:
            self._winreg.SetValueEx(key, "Path", 0, self._winreg.REG_EXPAND_SZ, value)
        self._broadcast_change()

    @staticmethod
    def _broadcast_change() -> None:
        # Tell running Explorer / shells that the environment changed
        import ctypes

        HWND_BROADCAST = 0xFFFF
        WM_SETTINGCHANGE = 0x001A
        SMTO_ABORTIFHUNG = 0x0002
        result = ctypes.c_ulong()
        ctypes.windll.user32.SendMessageTimeoutW(  # type: ignore[attr-defined]
            HWND_BROADCAST,
            WM_SETTINGCHANGE,
            0,
            "Environment",
            SMTO_ABORTIFHUNG,
            5000,
            ctypes.byref(result),
        )


def validate_path(candidate: str, scope: PathScope) -> PathValidation:
    """
    Integrity check for a PATH value about to be written to ``scope``.

    Fails when a machine PATH lacks any critical system directory or when
    the value exceeds the 8191 character ceiling. Suspicious fragments are
    only reported as warnings.
    """
    warnings = [
        f"PATH {description}" for pattern, description in SUSPICIOUS_PATTERNS.items() if pattern in candidate
    ]
    for warning in warnings:
        log.warning(warning)

    if scope == "machine":
        missing = [entry for entry in CRITICAL_MACHINE_ENTRIES if not contains_segment(candidate, entry)]
        if missing:
            reason = f"Machine PATH is missing critical entries: {', '.join(missing)}"
            log.error(reason)
            return PathValidation(passed=False, failure_reason=reason, warnings=warnings)

    if len(candidate) > MAX_PATH_LENGTH:
        reason = f"PATH length {len(candidate)} exceeds the {MAX_PATH_LENGTH} character limit"
        log.error(reason)
        return PathValidation(passed=False, failure_reason=reason, warnings=warnings)

    return PathValidation(passed=True, warnings=warnings)


def backup_file_name(backup_id: str, when: datetime) -> str:
    safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", backup_id)
    return f"{BACKUP_FILE_PREFIX}{safe_id}_{when.strftime('%Y%m%d_%H%M%S_%f')}.json"


def load_backup(path: Path) -> PathBackup:
    return PathBackup.from_dict(read_json(path), file_path=str(path))


def list_backups(backup_dir: Path) -> list[PathBackup]:
    """All readable backups in ``backup_dir``, oldest first."""
    if not backup_dir.is_dir():
        return []
    backups = []
    for file_path in sorted(backup_dir.glob(f"{BACKUP_FILE_PREFIX}*.json")):
        try:
            backups.append(load_backup(file_path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning(f"Skipping unreadable backup {file_path.name}: {e}")
    backups.sort(key=lambda b: b.timestamp)
    return backups


class PathSafetyManager:
    def __init__(
        self,
        store: PathStore,
        backup_dir: Path,
        registry: dict[str, PathBackup] | None = None,
    ):
        self.store = store
        self.backup_dir = backup_dir
        self.registry: dict[str, PathBackup] = registry if registry is not None else {}

    # -- backup / restore ---------------------------------------------------

    def backup(self, backup_id: str) -> PathBackup:
        """
        Snapshot user, machine and session PATH and persist it.

        Raises:
            PathBackupError: the snapshot could not be read or written.
        """
        now = datetime.now()
        try:
            snapshot = PathBackup(
                backup_id=backup_id,
                user_path=self.store.get("user"),
                machine_path=self.store.get("machine"),
                session_path=os.environ.get("PATH", ""),
                timestamp=now.isoformat(),
            )
            file_path = self.backup_dir / backup_file_name(backup_id, now)
            counter = 1
            while file_path.exists():
                file_path = file_path.with_name(f"{Path(backup_file_name(backup_id, now)).stem}_{counter}.json")
                counter += 1
            atomic_write_json(file_path, snapshot.as_dict(), exclusive=True)
        except Exception as e:
            log.error(f"PATH backup '{backup_id}' failed: {e}")
            raise PathBackupError(f"Could not back up PATH as '{backup_id}': {e}") from e

        snapshot.file_path = str(file_path)
        self.registry[backup_id] = snapshot
        log.info(f"PATH backup '{backup_id}' written to {file_path}")
        return snapshot

    def restore(self, backup_id: str, include_machine: bool = False) -> bool:
        """Write the backed-up user (and optionally machine) PATH and session PATH back."""
        snapshot = self.registry.get(backup_id)
        if snapshot is None:
            log.error(f"No PATH backup registered under '{backup_id}'; nothing restored.")
            return False

        try:
            self.store.set("user", snapshot.user_path)
            if include_machine:
                self.store.set("machine", snapshot.machine_path)
            os.environ["PATH"] = snapshot.session_path
        except Exception as e:
            log.error(f"Restoring PATH from '{backup_id}' failed: {e}")
            return False

        log.warning(f"PATH restored from backup '{backup_id}' ({snapshot.timestamp}).")
        return True

    def restore_from_file(self, file_path: Path, include_machine: bool = False) -> bool:
        try:
            snapshot = load_backup(file_path)
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.error(f"Cannot read PATH backup {file_path}: {e}")
            return False
        self.registry[snapshot.backup_id] = snapshot
        return self.restore(snapshot.backup_id, include_machine=include_machine)

    def emergency_backup(self) -> PathBackup:
        return self.backup(f"emergency_{datetime.now().strftime('%Y%m%d_%H%M%S')}")

    # -- validation / mutation ---------------------------------------------

    def validate(self, candidate: str, scope: PathScope) -> PathValidation:
        return validate_path(candidate, scope)

    def add_to_path(self, directory: str, scope: PathScope, backup_id: str) -> bool:
        """
        Append ``directory`` to the ``scope`` PATH.

        Returns True when the directory is (now) present, False when the
        change was refused or rolled back.

        Raises:
            PathBackupError: no backup could be taken; PATH untouched.
            PathChangeError: an unexpected failure; PATH restored first.
        """
        try:
            return self._add_to_path(directory, scope, backup_id)
        except PathBackupError:
            raise
        except Exception as e:
            log.error(f"Adding {directory} to {scope} PATH failed: {e}; rolling back.")
            self.restore(backup_id, include_machine=scope == "machine")
            raise PathChangeError(f"Could not add {directory} to {scope} PATH: {e}") from e

    def _add_to_path(self, directory: str, scope: PathScope, backup_id: str) -> bool:
        current = self.store.get(scope)
        if contains_segment(current, directory):
            log.info(f"{directory} is already on the {scope} PATH.")
            return True

        if backup_id not in self.registry:
            self.backup(backup_id)

        base = current.rstrip(PATH_SEPARATOR)
        candidate = f"{base}{PATH_SEPARATOR}{directory}" if base else directory

        validation = self.validate(candidate, scope)
        if not validation:
            log.error(f"Refusing to write {scope} PATH: {validation.failure_reason}")
            return False

        self.store.set(scope, candidate)

        if scope == "user":
            session_path = os.environ.get("PATH", "")
            if not contains_segment(session_path, directory, os.pathsep):
                os.environ["PATH"] = f"{directory}{os.pathsep}{session_path}" if session_path else directory

        if not contains_segment(self.store.get(scope), directory):
            log.error(f"Verification failed: {directory} missing from {scope} PATH after write.")
            self.restore(backup_id, include_machine=scope == "machine")
            return False

        log.success(f"Added {directory} to the {scope} PATH.")
        return True
