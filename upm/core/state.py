# upm/core/state.py
from datetime import datetime
from pathlib import Path
from typing import Any

from upm.core.io import atomic_write_json, read_json
from upm.core.logger import LoggerProxy
from upm.core.task import UpdateSummary

log = LoggerProxy(__name__)

STATE_SCHEMA_VERSION = "1.0"
STATE_FILE_NAME = "state.json"

DEFAULT_STATE: dict[str, Any] = {
    "version": STATE_SCHEMA_VERSION,
    "last_run_status": "UNKNOWN",  # SUCCESS, FAILED, UNKNOWN
    "last_run_at": None,
    "last_session_id": None,
    "package_managers": {},  # e.g. { "npm": {"success": true, "exitCode": 0, ...} }
}


def load_state(path: Path) -> dict[str, Any]:
    merged = {**DEFAULT_STATE, "package_managers": {}}
    if not path.exists():
        return merged
    try:
        data = read_json(path)
    except (OSError, ValueError) as e:
        log.warning(f"Ignoring unreadable state file {path}: {e}")
        return merged
    if isinstance(data, dict):
        merged.update(data)
    return merged


def record_run(state: dict[str, Any], summary: UpdateSummary, session_id: str) -> dict[str, Any]:
    now = datetime.now().isoformat(timespec="seconds")
    state["last_run_status"] = "SUCCESS" if summary.exit_code == 0 else "FAILED"
    state["last_run_at"] = now
    state["last_session_id"] = session_id
    managers = state.setdefault("package_managers", {})
    for result in summary.results:
        managers[result.package_manager] = {**result.as_dict(), "at": now}
    for name in summary.skipped:
        managers[name] = {"packageManager": name, "skipped": True, "at": now}
    return state


def save_state(data: dict[str, Any], path: Path) -> bool:
    try:
        atomic_write_json(path, data)
        return True
    except OSError as e:
        log.error(f"Failed to write state: {e}")
        return False
