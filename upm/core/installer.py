# upm/core/installer.py
"""
Finds package managers that are installed but missing from PATH and puts
their directory on the user PATH through the PATH safety manager.
"""

from __future__ import annotations

import glob
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from upm.adapters.conda import discover_conda
from upm.core.logger import LoggerProxy
from upm.core.pathsafety import PathSafetyManager, expand_windows_vars
from upm.core.registry import PackageManager, get_adapter
from upm.core.task import TaskContext

log = LoggerProxy(__name__)

# %VAR% placeholders are expanded from the environment; globs are allowed.
# Forward slashes keep the patterns usable by glob on every platform.
KNOWN_LOCATIONS: dict[PackageManager, tuple[str, ...]] = {
    PackageManager.WINGET: ("%LOCALAPPDATA%/Microsoft/WindowsApps/winget.exe",),
    PackageManager.CHOCOLATEY: (
        "%ChocolateyInstall%/bin/choco.exe",
        "%ProgramData%/chocolatey/bin/choco.exe",
    ),
    PackageManager.SCOOP: (
        "%SCOOP%/shims/scoop.cmd",
        "%USERPROFILE%/scoop/shims/scoop.cmd",
    ),
    PackageManager.NPM: (
        "%ProgramFiles%/nodejs/npm.cmd",
        "%APPDATA%/npm/npm.cmd",
    ),
    PackageManager.PIP: (
        "%LOCALAPPDATA%/Programs/Python/Python3*/Scripts/pip.exe",
        "%ProgramFiles%/Python3*/Scripts/pip.exe",
    ),
}


@dataclass
class RepairOutcome:
    package_manager: str
    status: str  # available, added, declined, failed, not-found
    directory: str | None = None
    message: str = ""


def _expand(pattern: str) -> str | None:
    expanded = expand_windows_vars(pattern)
    # An unset variable leaves its %VAR% token behind
    return None if "%" in expanded else expanded


def discover_executable(manager: PackageManager) -> str | None:
    """Look in the default install locations of ``manager``."""
    if manager is PackageManager.CONDA:
        return discover_conda()
    for pattern in KNOWN_LOCATIONS.get(manager, ()):
        expanded = _expand(pattern)
        if not expanded:
            continue
        # Newest Python first when several match
        for match in sorted(glob.glob(expanded), reverse=True):
            if Path(match).is_file():
                return str(Path(match))
    return None


def repair_paths(
    ctx: TaskContext,
    managers: list[PackageManager],
    path_manager: PathSafetyManager,
    confirm: Callable[[str], bool] | None = None,
) -> list[RepairOutcome]:
    """
    For every manager that does not answer on PATH, look for it on disk and
    add its directory to the user PATH. Without ``PackageManagerInstaller.autoAccept``
    each change is put to ``confirm`` first.
    """
    installer_cfg = ctx["config"].get("PackageManagerInstaller", {})
    auto_accept = installer_cfg.get("autoAccept", False)
    force = installer_cfg.get("forceReinstall", False)
    methods = installer_cfg.get("preferredInstallMethods", {})
    outcomes: list[RepairOutcome] = []

    for manager in managers:
        adapter = get_adapter(manager)
        if not force and adapter.test(ctx).available:
            outcomes.append(RepairOutcome(manager.value, "available"))
            continue

        executable = discover_executable(manager)
        if executable is None:
            method = methods.get(manager.value)
            hint = f" Install it first (preferred method: {method})." if method else ""
            log.warning(f"{manager.value} not found on disk.{hint}")
            outcomes.append(RepairOutcome(manager.value, "not-found", message=hint.strip()))
            continue

        directory = str(Path(executable).parent)
        if not auto_accept and not (confirm and confirm(f"Add {directory} to your user PATH for {manager.value}?")):
            outcomes.append(RepairOutcome(manager.value, "declined", directory))
            continue

        # One backup per change: a rollback only reverts this manager
        backup_id = f"repair_{ctx['session'].session_id}_{manager.value}"
        try:
            added = path_manager.add_to_path(directory, "user", backup_id)
        except Exception as e:
            log.error(f"PATH repair for {manager.value} failed: {e}")
            outcomes.append(RepairOutcome(manager.value, "failed", directory, str(e)))
            continue
        outcomes.append(RepairOutcome(manager.value, "added" if added else "failed", directory))

    return outcomes
