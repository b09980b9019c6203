# upm/adapters/base.py

import shlex
from typing import Any

from upm.core import command
from upm.core.command import probe_command
from upm.core.config import advanced_settings, package_manager_settings
from upm.core.logger import LoggerProxy, log_event
from upm.core.registry import PackageManager
from upm.core.task import Operation, PackageManagerResult, TaskContext
from upm.core.types import CommandProbe, ProcessResult

log = LoggerProxy(__name__)


class PackageManagerAdapter:
    """
    Uniform Test / Update / Info surface over one package manager CLI.

    Subclasses set the class attributes and override the hooks for their
    tool's quirks; they are registered with ``@adapter(PackageManager.X)``.
    """

    # Set by the @adapter decorator
    MANAGER: PackageManager
    COMMAND: str = ""
    DISPLAY_NAME: str = ""
    DESCRIPTION: str = ""
    VERSION_ARGS: tuple[str, ...] = ("--version",)
    # Used when the configuration carries no args for this manager
    UPDATE_ARGS: str = ""
    DRY_RUN_ARGS: str = ""

    @property
    def name(self) -> str:
        return self.MANAGER.value

    # -- hooks ----------------------------------------------------------------

    def resolve_executable(self) -> str | None:
        """Where the tool lives, or None if it cannot be found."""
        return command.find_command(self.COMMAND)

    def is_acceptable(self, result: ProcessResult, dry_run: bool) -> bool:
        """Whether an exit status counts as success for this tool."""
        return result.success

    def before_update(self, ctx: TaskContext, executable: str, dry_run: bool) -> None:
        """Runs ahead of the update command; failures here abort the update."""

    # -- operations -----------------------------------------------------------

    def settings(self, ctx: TaskContext) -> dict[str, Any]:
        return package_manager_settings(ctx["config"], self.name)

    def build_arguments(self, ctx: TaskContext, dry_run: bool) -> list[str]:
        settings = self.settings(ctx)
        if dry_run:
            raw = settings.get("dryRunArgs") or self.DRY_RUN_ARGS
        else:
            raw = settings.get("args") or self.UPDATE_ARGS
        return shlex.split(raw)

    def test(self, ctx: TaskContext | None = None) -> CommandProbe:
        """Availability probe. Never raises."""
        try:
            path = self.resolve_executable()
            if path is None:
                return CommandProbe(name=self.name, available=False, error=f"Command not found: {self.COMMAND}")
            probe = probe_command(self.COMMAND, self.VERSION_ARGS, path=path)
            probe.name = self.name
            return probe
        except Exception as e:
            log.debug(f"{self.name}: availability test failed: {e}")
            return CommandProbe(name=self.name, available=False, error=str(e))

    def update(self, ctx: TaskContext, dry_run: bool | None = None) -> PackageManagerResult:
        """
        Run the update (or, in dry-run mode, the listing) command with retries.

        Failures of any kind come back as a failed PackageManagerResult so the
        orchestrator can carry on with the next manager.
        """
        if dry_run is None:
            dry_run = ctx["dry_run"]
        operation = Operation.DRY_RUN_CHECK if dry_run else Operation.UPDATE
        session = ctx["session"]
        timer = f"update:{self.name}"
        session.start_timer(timer)

        settings = self.settings(ctx)
        advanced = advanced_settings(ctx["config"])

        try:
            executable = self.resolve_executable() or self.COMMAND
            self.before_update(ctx, executable, dry_run)
            arguments = self.build_arguments(ctx, dry_run)
            log.info(f"{self.DISPLAY_NAME}: running {operation.value} ({shlex.join(arguments)})")
            result = command.run_with_retry(
                executable,
                arguments,
                max_retries=advanced.get("maxRetries", 2),
                retry_delay_seconds=advanced.get("retryDelaySeconds", 5),
                timeout_seconds=settings.get("timeout", command.DEFAULT_TIMEOUT_SECONDS),
                accept=lambda r: self.is_acceptable(r, dry_run),
            )
        except Exception as e:
            duration = session.stop_timer(timer)
            log.error(f"{self.DISPLAY_NAME}: {operation.value} failed: {e}")
            return PackageManagerResult(
                package_manager=self.name,
                operation=operation,
                success=False,
                duration=duration,
                error=str(e),
            )

        # Covers every attempt and the sleeps between them
        total_duration = session.stop_timer(timer)
        success = self.is_acceptable(result, dry_run)
        error = None
        if not success:
            if result.timed_out:
                error = f"Timed out after {result.duration:.0f}s"
            else:
                error = f"Exited with code {result.exit_code}"
                first_err = next((ln for ln in result.stderr.splitlines() if ln.strip()), "")
                if first_err:
                    error += f": {first_err.strip()[:200]}"

        pm_result = PackageManagerResult(
            package_manager=self.name,
            operation=operation,
            success=success,
            exit_code=result.exit_code,
            duration=total_duration,
            timed_out=result.timed_out,
            error=error,
            output=result.stdout,
        )
        log_event(
            log,
            "SUCCESS" if success else "ERROR",
            f"{self.DISPLAY_NAME}: {operation.value} {'completed' if success else 'failed'}"
            f" (rc={result.exit_code}, {total_duration:.1f}s)",
            component=self.name,
            **pm_result.as_dict(),
        )
        return pm_result

    def info(self, ctx: TaskContext | None = None) -> dict[str, Any]:
        probe = self.test(ctx)
        return {
            "name": self.name,
            "displayName": self.DISPLAY_NAME,
            "description": self.DESCRIPTION,
            **{k: v for k, v in probe.as_dict().items() if k != "name"},
        }
