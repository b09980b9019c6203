# upm/core/task.py
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from typing_extensions import TypedDict

if TYPE_CHECKING:
    from upm.core.types import PathBackup


@dataclass
class Session:
    """
    State scoped to one invocation, built by the CLI and passed down
    through TaskContext.
    """

    log_dir: Path
    backup_dir: Path
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    started_at: datetime = field(default_factory=datetime.now)
    path_backups: dict[str, PathBackup] = field(default_factory=dict)
    _timers: dict[str, float] = field(default_factory=dict, repr=False)

    def start_timer(self, name: str) -> None:
        self._timers[name] = time.monotonic()

    def stop_timer(self, name: str) -> float:
        """Seconds since start_timer(name); 0.0 if the timer was never started."""
        started = self._timers.pop(name, None)
        if started is None:
            return 0.0
        return time.monotonic() - started


class TaskContext(TypedDict):
    """Runtime context passed to every adapter and orchestration call."""

    config: dict[str, Any]
    dry_run: bool
    verbose: bool
    session: Session


class Operation(Enum):
    UPDATE = "update"
    DRY_RUN_CHECK = "dry-run-check"


@dataclass
class PackageManagerResult:
    package_manager: str
    operation: Operation
    success: bool
    exit_code: int = -1
    duration: float = 0.0
    timed_out: bool = False
    error: str | None = None
    output: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "packageManager": self.package_manager,
            "operation": self.operation.value,
            "success": self.success,
            "exitCode": self.exit_code,
            "duration": round(self.duration, 3),
            "timedOut": self.timed_out,
            "error": self.error,
        }

    def __str__(self) -> str:
        status = "OK" if self.success else "FAIL"
        detail = f" - {self.error}" if self.error else ""
        return f"[{status}] {self.package_manager} ({self.operation.value}, rc={self.exit_code}){detail}"


@dataclass
class UpdateSummary:
    dry_run: bool = False
    results: list[PackageManagerResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def exit_code(self) -> int:
        # Unavailable managers are skipped, not failed
        return 1 if self.failed else 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "dryRun": self.dry_run,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped_count,
            "skippedPackageManagers": list(self.skipped),
            "results": [r.as_dict() for r in self.results],
        }
