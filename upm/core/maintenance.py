"""
Maintenance utilities for upm.
Deletes run logs older than the configured retention window.
"""

from datetime import datetime, timedelta
from pathlib import Path

from upm.core.logger import LOG_FILE_PREFIX, LoggerProxy

log = LoggerProxy(__name__)

LOG_SUFFIXES = (".log", ".jsonl")


def prune_old_logs(log_dir: Path, retention_days: int, now: datetime | None = None) -> list[Path]:
    """
    Remove upm log files whose modification time is older than
    ``retention_days``. Other files in the directory are left alone.

    Returns the files that were deleted.
    """
    if not log_dir.is_dir():
        return []

    cutoff = (now or datetime.now()) - timedelta(days=retention_days)
    removed: list[Path] = []

    for file_path in log_dir.glob(f"{LOG_FILE_PREFIX}*"):
        if not file_path.is_file() or file_path.suffix not in LOG_SUFFIXES:
            continue
        try:
            if datetime.fromtimestamp(file_path.stat().st_mtime) < cutoff:
                file_path.unlink()
                removed.append(file_path)
        except OSError as e:
            log.warning(f"Could not prune {file_path.name}: {e}")

    if removed:
        log.info(f"Pruned {len(removed)} log file(s) older than {retention_days} days.")
    return removed
