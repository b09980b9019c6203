# upm/adapters/conda.py

import os
from pathlib import Path

from upm.adapters.base import PackageManagerAdapter
from upm.core import command
from upm.core.logger import LoggerProxy
from upm.core.registry import PackageManager, adapter
from upm.core.task import TaskContext

log = LoggerProxy(__name__)

# Channels whose terms of service block non-interactive updates until accepted
TOS_CHANNELS = (
    "https://repo.anaconda.com/pkgs/main",
    "https://repo.anaconda.com/pkgs/r",
    "https://repo.anaconda.com/pkgs/msys2",
)
PREPARE_TIMEOUT_SECONDS = 120

DISTRIBUTIONS = ("miniconda3", "anaconda3", "Miniconda3", "Anaconda3", "miniforge3", "mambaforge")
# Relative to a distribution root, most specific first
EXECUTABLE_LOCATIONS = (
    Path("Scripts") / "conda.exe",
    Path("condabin") / "conda.bat",
    Path("Library") / "bin" / "conda.bat",
    Path("bin") / "conda",
)


def candidate_roots() -> list[Path]:
    """Directories Anaconda / Miniconda installers use by default."""
    bases = [Path.home()]
    for var in ("LOCALAPPDATA", "ProgramData", "ProgramFiles"):
        value = os.environ.get(var)
        if value:
            bases.append(Path(value))
    bases.append(Path("C:/"))
    return [base / dist for base in bases for dist in DISTRIBUTIONS]


def discover_conda() -> str | None:
    """Look for conda outside PATH."""
    for root in candidate_roots():
        for location in EXECUTABLE_LOCATIONS:
            candidate = root / location
            if candidate.is_file():
                log.debug(f"Found conda at {candidate}")
                return str(candidate)
    return None


@adapter(PackageManager.CONDA)
class CondaAdapter(PackageManagerAdapter):
    COMMAND = "conda"
    DISPLAY_NAME = "Conda"
    DESCRIPTION = "Anaconda / Miniconda package and environment manager; updates the base environment."
    UPDATE_ARGS = "update --all -y"
    DRY_RUN_ARGS = "update --all --dry-run"

    def resolve_executable(self) -> str | None:
        return command.find_command(self.COMMAND) or discover_conda()

    def before_update(self, ctx: TaskContext, executable: str, dry_run: bool) -> None:
        if dry_run:
            return
        for channel in TOS_CHANNELS:
            try:
                result = command.run_process(
                    executable,
                    ["tos", "accept", "--override-channels", "--channel", channel],
                    timeout_seconds=PREPARE_TIMEOUT_SECONDS,
                )
            except Exception as e:
                log.debug(f"Conda ToS acceptance for {channel} raised: {e}")
                continue
            if not result.success:
                log.debug(f"Conda ToS acceptance for {channel} exited with code {result.exit_code}")

        result = command.run_process(
            executable,
            ["config", "--set", "always_yes", "true"],
            timeout_seconds=PREPARE_TIMEOUT_SECONDS,
        )
        if not result.success:
            log.warning(f"Could not set conda always_yes (exit code {result.exit_code}).")
