#!/usr/bin/env python3
"""
UPM - unified package manager updater
=====================================

CLI entry point that wires up:
* Logging & configuration
* Adapter discovery/registration
* Update orchestration, status, PATH safety and scheduling
"""

from __future__ import annotations

import json
from enum import Enum

# ── Standard library ────────────────────────────────────────────────────────
from pathlib import Path
from typing import Annotated, Optional

# ── Third-party ─────────────────────────────────────────────────────────────
import typer
from rich.console import Console
from rich.table import Table

# ── Local imports ───────────────────────────────────────────────────────────
from upm import __version__
from upm.core import config as config_loader
from upm.core import state as state_tracker
from upm.core.errors import UpmError
from upm.core.installer import repair_paths
from upm.core.logger import LoggerProxy, setup_logging
from upm.core.maintenance import prune_old_logs
from upm.core.orchestrator import collect_status, parse_selection, run_update
from upm.core.pathsafety import PathSafetyManager, PathStore, WindowsRegistryPathStore, list_backups
from upm.core.registry import PackageManager, get_adapter
from upm.core.scheduler import register_task, remove_task
from upm.core.task import Session, TaskContext

# ── Constants & default paths ───────────────────────────────────────────────
DEFAULT_CONFIG_PATH = config_loader.DEFAULT_CONFIG_PATH
DEFAULT_STATE_DIR = config_loader.DEFAULT_STATE_DIR
DEFAULT_STATE_PATH = DEFAULT_STATE_DIR / state_tracker.STATE_FILE_NAME

console = Console()


class LogLevel(str, Enum):
    Debug = "Debug"
    Info = "Info"
    Warning = "Warning"
    Error = "Error"


class Scope(str, Enum):
    user = "user"
    machine = "machine"


# ── Typer CLI app ───────────────────────────────────────────────────────────
app = typer.Typer(
    help="UPM - keeps winget, Chocolatey, Scoop, npm, pip and conda up to date.",
    add_completion=False,
)
path_app = typer.Typer(help="Back up, restore and extend PATH with automatic rollback.")
app.add_typer(path_app, name="path")

# ── Shared options ──────────────────────────────────────────────────────────
ConfigPathOpt = Annotated[
    Path,
    typer.Option("--config-path", help="Path to JSON configuration file.", envvar="UPM_CONFIG_FILE"),
]
LogLevelOpt = Annotated[LogLevel, typer.Option("--log-level", case_sensitive=False, help="Minimum level to log.")]
SilentOpt = Annotated[bool, typer.Option("--silent", help="Only show errors on the console.")]
LogDirOpt = Annotated[
    Optional[Path],
    typer.Option("--log-dir", help="Directory for run logs.", envvar="UPM_LOG_DIR"),
]
StateFileOpt = Annotated[
    Path,
    typer.Option("--state-file", help="Path to the last-run state file.", envvar="UPM_STATE_FILE"),
]
ManagersOpt = Annotated[
    Optional[list[str]],
    typer.Option(
        "--package-manager",
        "-p",
        help="Restrict to these package managers. May be repeated or comma separated - e.g. -p winget -p npm",
    ),
]


def _path_store() -> PathStore:
    return WindowsRegistryPathStore()


def _bootstrap(
    config_path: Path,
    log_level: LogLevel = LogLevel.Info,
    silent: bool = False,
    log_dir: Path | None = None,
    dry_run: bool = False,
    log_to_file: bool = True,
) -> TaskContext:
    """Load config, start the session and its logs, prune old logs."""
    config = config_loader.load_config(config_path)
    session = Session(
        log_dir=log_dir or config_loader.resolve_directory(config, "logDirectory", DEFAULT_STATE_DIR / "logs"),
        backup_dir=config_loader.resolve_directory(config, "backupDirectory", DEFAULT_STATE_DIR / "path-backups"),
    )
    setup_logging(session, level=log_level.value, silent=silent, log_to_file=log_to_file)
    if log_to_file:
        prune_old_logs(session.log_dir, config_loader.advanced_settings(config).get("logRetentionDays", 30))

    return {
        "config": config,
        "dry_run": dry_run,
        "verbose": log_level is LogLevel.Debug,
        "session": session,
    }


def _selection(names: list[str] | None) -> list[PackageManager] | None:
    try:
        return parse_selection(names)
    except ValueError as e:
        typer.echo(f"ERROR: {e}. Supported: {', '.join(m.value for m in PackageManager)}", err=True)
        raise typer.Exit(code=1) from None


def _path_manager(ctx: TaskContext) -> PathSafetyManager:
    session = ctx["session"]
    try:
        store = _path_store()
    except UpmError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1) from None
    return PathSafetyManager(store, session.backup_dir, session.path_backups)


# ── CLI commands ────────────────────────────────────────────────────────────
@app.command()
def update(
    package_managers: ManagersOpt = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Only list available updates; change nothing.")
    ] = False,
    config_path: ConfigPathOpt = DEFAULT_CONFIG_PATH,
    log_level: LogLevelOpt = LogLevel.Info,
    silent: SilentOpt = False,
    log_dir: LogDirOpt = None,
    state_file: StateFileOpt = DEFAULT_STATE_PATH,
) -> None:
    """
    Check for and apply updates with every enabled package manager.

    Managers that are not installed are skipped, not failed. Exit code is 1
    when any manager failed.
    """
    selected = _selection(package_managers)
    log = LoggerProxy(__name__)
    try:
        ctx = _bootstrap(config_path, log_level, silent, log_dir, dry_run=dry_run)
        log.info(f"UPM {__version__} - session {ctx['session'].session_id}{' (dry run)' if dry_run else ''}")
        summary = run_update(ctx, selected)

        if not dry_run:
            state = state_tracker.load_state(state_file)
            state_tracker.record_run(state, summary, ctx["session"].session_id)
            state_tracker.save_state(state, state_file)
        else:
            log.info("Skipping state file write because this is a dry run.")
    except Exception as exc:
        log.exception(f"Update run aborted: {exc}")
        raise typer.Exit(code=1) from None

    raise typer.Exit(code=summary.exit_code)


@app.command()
def status(
    package_managers: ManagersOpt = None,
    config_path: ConfigPathOpt = DEFAULT_CONFIG_PATH,
    log_level: LogLevelOpt = LogLevel.Warning,
    state_file: StateFileOpt = DEFAULT_STATE_PATH,
) -> None:
    """
    Show which package managers are installed and how the last run went.
    """
    selected = _selection(package_managers)
    ctx = _bootstrap(config_path, log_level, log_to_file=False)
    last_run = state_tracker.load_state(state_file)
    last_results = last_run.get("package_managers", {})

    table = Table(title="Package managers")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("Available")
    table.add_column("Version")
    table.add_column("Last run")

    for name, probe in collect_status(ctx, selected).items():
        enabled = config_loader.package_manager_settings(ctx["config"], name).get("enabled", True)
        last = last_results.get(name) or {}
        if last.get("skipped"):
            last_str = "skipped"
        elif last:
            last_str = "ok" if last.get("success") else f"failed (rc={last.get('exitCode')})"
        else:
            last_str = "-"
        table.add_row(
            name,
            "yes" if enabled else "no",
            "yes" if probe.available else f"no ({probe.error})",
            probe.version or "-",
            last_str,
        )

    console.print(table)
    console.print(f"Last run: {last_run.get('last_run_status')} at {last_run.get('last_run_at') or '-'}")


@app.command()
def configure(
    config_path: ConfigPathOpt = DEFAULT_CONFIG_PATH,
    force: Annotated[bool, typer.Option("--force", help="Overwrite the file with defaults.")] = False,
) -> None:
    """
    Create the configuration file if missing (or reset it with --force) and print the merged result.
    """
    log = LoggerProxy(__name__)
    if force and config_path.is_file():
        log.warning(f"Overwriting existing config file at {config_path}")
    if not config_loader.generate_default_config(config_path, force=force):
        typer.echo("Failed to create default config", err=True)
        raise typer.Exit(code=1)

    merged = config_loader.load_config(config_path, create_if_missing=False)
    typer.echo(f"Configuration file: {config_path}")
    typer.echo(json.dumps(merged, indent=2))


@app.command()
def info(
    name: Annotated[str, typer.Argument(help="Package manager name, e.g. winget")],
    config_path: ConfigPathOpt = DEFAULT_CONFIG_PATH,
) -> None:
    """
    Describe one package manager and whether it is installed.
    """
    try:
        manager = PackageManager.parse(name)
    except ValueError:
        typer.echo(f"ERROR: Unknown package manager: {name}", err=True)
        raise typer.Exit(code=1) from None
    ctx = _bootstrap(config_path, LogLevel.Warning, log_to_file=False)
    typer.echo(json.dumps(get_adapter(manager).info(ctx), indent=2))


@app.command(name="repair-path")
def repair_path(
    package_managers: ManagersOpt = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask before changing PATH.")] = False,
    config_path: ConfigPathOpt = DEFAULT_CONFIG_PATH,
    log_level: LogLevelOpt = LogLevel.Info,
    log_dir: LogDirOpt = None,
) -> None:
    """
    Find installed package managers missing from PATH and add them to the user PATH.
    """
    selected = _selection(package_managers)
    ctx = _bootstrap(config_path, log_level, log_dir=log_dir)
    if yes:
        ctx["config"].setdefault("PackageManagerInstaller", {})["autoAccept"] = True
    if selected is None:
        defaults = ctx["config"].get("PackageManagerInstaller", {}).get("defaultPackageManagers", [])
        selected = _selection(defaults) or list(PackageManager)

    outcomes = repair_paths(ctx, selected, _path_manager(ctx), confirm=typer.confirm)
    for outcome in outcomes:
        suffix = f" ({outcome.directory})" if outcome.directory else ""
        message = f" - {outcome.message}" if outcome.message else ""
        typer.echo(f"{outcome.package_manager:<12}: {outcome.status}{suffix}{message}")

    raise typer.Exit(code=1 if any(o.status == "failed" for o in outcomes) else 0)


@app.command()
def schedule(
    start_time: Annotated[str, typer.Option("--time", help="Daily start time, HH:MM (24h).")] = "03:00",
    frequency: Annotated[str, typer.Option("--frequency", help="DAILY or WEEKLY.")] = "DAILY",
    remove: Annotated[bool, typer.Option("--remove", help="Delete the scheduled task instead.")] = False,
    log_level: LogLevelOpt = LogLevel.Info,
) -> None:
    """
    Register (or remove) the scheduled task that runs `upm update --silent` as SYSTEM.
    """
    session = Session(log_dir=DEFAULT_STATE_DIR / "logs", backup_dir=DEFAULT_STATE_DIR / "path-backups")
    setup_logging(session, level=log_level.value, log_to_file=False)
    try:
        result = remove_task() if remove else register_task(start_time, frequency)
    except ValueError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1) from None
    except UpmError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1) from None
    raise typer.Exit(code=0 if result.success else 1)


# ── PATH commands ───────────────────────────────────────────────────────────
@path_app.command("backups")
def path_backups(config_path: ConfigPathOpt = DEFAULT_CONFIG_PATH) -> None:
    """
    List PATH backups, oldest first.
    """
    ctx = _bootstrap(config_path, LogLevel.Warning, log_to_file=False)
    backups = list_backups(ctx["session"].backup_dir)
    if not backups:
        typer.echo(f"No PATH backups in {ctx['session'].backup_dir}")
        return

    table = Table(title=f"PATH backups in {ctx['session'].backup_dir}")
    table.add_column("Backup id")
    table.add_column("Taken")
    table.add_column("User PATH entries", justify="right")
    table.add_column("File")
    for backup in backups:
        table.add_row(
            backup.backup_id,
            backup.timestamp,
            str(len([s for s in backup.user_path.split(";") if s])),
            Path(backup.file_path or "").name,
        )
    console.print(table)


@path_app.command("restore")
def path_restore(
    backup_id: Annotated[Optional[str], typer.Option("--backup-id", help="Restore the newest backup with this id.")] = None,
    file: Annotated[Optional[Path], typer.Option("--file", help="Restore from this backup file.")] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the confirmation prompt.")] = False,
    config_path: ConfigPathOpt = DEFAULT_CONFIG_PATH,
    log_dir: LogDirOpt = None,
) -> None:
    """
    Restore the user PATH from a backup. The current PATH is backed up first.
    """
    if bool(backup_id) == bool(file):
        typer.echo("ERROR: Pass exactly one of --backup-id or --file.", err=True)
        raise typer.Exit(code=1)

    ctx = _bootstrap(config_path, LogLevel.Info, log_dir=log_dir)
    log = LoggerProxy(__name__)
    manager = _path_manager(ctx)

    if file is None:
        matches = [b for b in list_backups(manager.backup_dir) if b.backup_id == backup_id]
        if not matches:
            typer.echo(f"ERROR: No PATH backup with id '{backup_id}' in {manager.backup_dir}", err=True)
            raise typer.Exit(code=1)
        file = Path(matches[-1].file_path or "")

    if not file.is_file():
        typer.echo(f"ERROR: Backup file not found: {file}", err=True)
        raise typer.Exit(code=1)

    if not yes and not typer.confirm(f"Replace the current user PATH with the contents of {file.name}?"):
        typer.echo("Aborted; PATH unchanged.")
        raise typer.Exit(code=1)

    try:
        emergency = manager.emergency_backup()
    except UpmError as e:
        log.error(f"Emergency backup failed, not restoring: {e}")
        raise typer.Exit(code=1) from None
    typer.echo(f"Current PATH saved as '{emergency.backup_id}' ({emergency.file_path})")

    if not manager.restore_from_file(file):
        raise typer.Exit(code=1)
    typer.echo(f"PATH restored from {file}")


@path_app.command("add")
def path_add(
    directory: Annotated[Path, typer.Argument(help="Directory to append to PATH.")],
    scope: Annotated[Scope, typer.Option("--scope", help="user or machine PATH.")] = Scope.user,
    backup_id: Annotated[Optional[str], typer.Option("--backup-id", help="Id for the backup taken first.")] = None,
    config_path: ConfigPathOpt = DEFAULT_CONFIG_PATH,
    log_dir: LogDirOpt = None,
) -> None:
    """
    Append a directory to PATH after backing it up; rolled back if the change does not verify.
    """
    ctx = _bootstrap(config_path, LogLevel.Info, log_dir=log_dir)
    log = LoggerProxy(__name__)
    manager = _path_manager(ctx)
    backup_id = backup_id or f"add_{ctx['session'].session_id}"

    try:
        ok = manager.add_to_path(str(directory), scope.value, backup_id)
    except UpmError as e:
        log.error(str(e))
        raise typer.Exit(code=1) from None
    raise typer.Exit(code=0 if ok else 1)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[bool, typer.Option("--version", help="Show the version and exit.")] = False,
) -> None:
    """
    UPM - keeps winget, Chocolatey, Scoop, npm, pip and conda up to date.
    """
    if version:
        typer.echo(f"upm {__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


# ── Main guard ──────────────────────────────────────────────────────────────
if __name__ == "__main__":
    app()
