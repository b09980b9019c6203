# upm/core/orchestrator.py
from __future__ import annotations

from collections.abc import Iterable

from upm.core.config import package_manager_settings
from upm.core.logger import LoggerProxy, log_event
from upm.core.registry import PackageManager, get_adapter_registry
from upm.core.task import Operation, PackageManagerResult, TaskContext, UpdateSummary
from upm.core.types import CommandProbe

log = LoggerProxy(__name__)


def parse_selection(names: Iterable[str] | None) -> list[PackageManager] | None:
    """
    Turn CLI names into PackageManager members.

    Raises:
        ValueError: listing every name that is not a supported manager.
    """
    if not names:
        return None
    selected: list[PackageManager] = []
    unknown: list[str] = []
    for raw in names:
        for name in raw.split(","):
            if not name.strip():
                continue
            try:
                manager = PackageManager.parse(name)
            except ValueError:
                unknown.append(name.strip())
                continue
            if manager not in selected:
                selected.append(manager)
    if unknown:
        raise ValueError(f"Unknown package manager(s): {', '.join(sorted(unknown))}")
    return selected


def enabled_managers(ctx: TaskContext, selected: list[PackageManager] | None = None) -> list[PackageManager]:
    """Registered managers that are enabled in config, in registry order, filtered to ``selected``."""
    managers = []
    for manager in get_adapter_registry():
        if selected is not None and manager not in selected:
            continue
        if not package_manager_settings(ctx["config"], manager.value).get("enabled", True):
            log.info(f"Skipping {manager.value} - disabled in configuration.")
            continue
        managers.append(manager)
    return managers


def run_update(ctx: TaskContext, selected: list[PackageManager] | None = None) -> UpdateSummary:
    """
    Test then update every enabled manager, one after another.

    A manager that is not installed is skipped with a warning. A manager that
    fails never stops the ones after it.
    """
    dry_run = ctx["dry_run"]
    summary = UpdateSummary(dry_run=dry_run)
    registry = get_adapter_registry()
    session = ctx["session"]
    session.start_timer("run")

    for manager in enabled_managers(ctx, selected):
        adapter = registry[manager]()
        log.info(f"--- {adapter.DISPLAY_NAME} ---")

        probe = adapter.test(ctx)
        if not probe.available:
            log.warning(f"{manager.value} is not available ({probe.error}); skipping.")
            summary.skipped.append(manager.value)
            continue
        log.debug(f"{manager.value} found at {probe.path} ({probe.version})")

        try:
            result = adapter.update(ctx, dry_run=dry_run)
        except KeyboardInterrupt:
            raise
        except Exception as exc:
            log.exception(f"{manager.value} crashed: {exc}")
            result = PackageManagerResult(
                package_manager=manager.value,
                operation=Operation.DRY_RUN_CHECK if dry_run else Operation.UPDATE,
                success=False,
                error=str(exc),
            )
        summary.results.append(result)

    elapsed = session.stop_timer("run")
    log_summary(summary, elapsed)
    return summary


def log_summary(summary: UpdateSummary, elapsed: float = 0.0) -> None:
    log.info("================================================================")
    for res in summary.results:
        status = "OK  " if res.success else "FAIL"
        detail = f" - {res.error}" if res.error else ""
        log.info(f"* {res.package_manager:<12}: {status} ({res.duration:.1f}s){detail}")
    for name in summary.skipped:
        log.info(f"* {name:<12}: SKIPPED (not available)")
    log.info("================================================================")
    log_event(
        log,
        "SUCCESS" if summary.exit_code == 0 else "ERROR",
        f"Summary: {summary.succeeded} succeeded, {summary.failed} failed, "
        f"{summary.skipped_count} skipped in {elapsed:.1f}s",
        component="summary",
        **summary.as_dict(),
    )


def collect_status(ctx: TaskContext, selected: list[PackageManager] | None = None) -> dict[str, CommandProbe]:
    """Availability of every configured manager, enabled or not."""
    statuses: dict[str, CommandProbe] = {}
    for manager, adapter_cls in get_adapter_registry().items():
        if selected is not None and manager not in selected:
            continue
        statuses[manager.value] = adapter_cls().test(ctx)
    return statuses
