# upm/core/scheduler.py
"""Registers the recurring Windows scheduled task that runs `upm update`."""

import re
import subprocess
import sys

from upm.core import command
from upm.core.logger import LoggerProxy
from upm.core.types import ProcessResult

log = LoggerProxy(__name__)

TASK_NAME = r"UPM\AutoUpdate"
SCHTASKS = "schtasks"
FREQUENCIES = ("DAILY", "WEEKLY")
SCHEDULER_TIMEOUT_SECONDS = 60

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def task_command(python: str | None = None) -> str:
    """Command line the scheduled task runs."""
    return subprocess.list2cmdline([python or sys.executable, "-m", "upm", "update", "--silent"])


def build_create_arguments(
    start_time: str = "03:00",
    frequency: str = "DAILY",
    python: str | None = None,
    run_as: str = "SYSTEM",
) -> list[str]:
    """
    Arguments for `schtasks /Create`.

    Raises:
        ValueError: the time is not HH:MM or the frequency is unsupported.
    """
    frequency = frequency.upper()
    if frequency not in FREQUENCIES:
        raise ValueError(f"Unsupported frequency '{frequency}'. Allowed: {', '.join(FREQUENCIES)}.")
    if not _TIME_PATTERN.match(start_time):
        raise ValueError(f"Start time must be HH:MM (24h), got '{start_time}'.")

    return [
        "/Create",
        "/TN",
        TASK_NAME,
        "/TR",
        task_command(python),
        "/SC",
        frequency,
        "/ST",
        start_time,
        "/RU",
        run_as,
        "/RL",
        "HIGHEST",
        "/F",
    ]


def register_task(start_time: str = "03:00", frequency: str = "DAILY", python: str | None = None) -> ProcessResult:
    arguments = build_create_arguments(start_time, frequency, python)
    log.info(f"Registering scheduled task {TASK_NAME} ({frequency.upper()} at {start_time})")
    result = command.run_process(SCHTASKS, arguments, timeout_seconds=SCHEDULER_TIMEOUT_SECONDS)
    if result.success:
        log.success(f"Scheduled task {TASK_NAME} registered.")
    else:
        log.error(f"schtasks /Create failed with exit code {result.exit_code}: {result.stderr}")
    return result


def remove_task() -> ProcessResult:
    log.info(f"Removing scheduled task {TASK_NAME}")
    result = command.run_process(SCHTASKS, ["/Delete", "/TN", TASK_NAME, "/F"], timeout_seconds=SCHEDULER_TIMEOUT_SECONDS)
    if result.success:
        log.success(f"Scheduled task {TASK_NAME} removed.")
    else:
        log.error(f"schtasks /Delete failed with exit code {result.exit_code}: {result.stderr}")
    return result
