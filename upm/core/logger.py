# upm/core/logger.py
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.logging import RichHandler

if TYPE_CHECKING:
    from upm.core.task import Session

# Between INFO and WARNING so it is shown at the default level
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] [%(session_id)s] %(component)-18s: %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_PREFIX = "upm_"


class LoggerProxy:
    """
    Lazy logger accessor to avoid boilerplate logger setup in each module.
    Usage: log = LoggerProxy(__name__)
    """

    def __init__(self, name: str):
        self._name = name
        self._logger: logging.Logger | None = None

    def _get_logger(self) -> logging.Logger:
        if self._logger is None:
            self._logger = logging.getLogger(self._name)
        assert self._logger is not None
        return self._logger

    def success(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().log(SUCCESS, msg, *args, **kwargs)

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get_logger(), item)


class SessionFilter(logging.Filter):
    """Stamps every record with the run's session id and a component tag."""

    def __init__(self, session_id: str):
        super().__init__()
        self.session_id = session_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id
        if not getattr(record, "component", None):
            record.component = record.name.rsplit(".", 1)[-1]
        if not hasattr(record, "data"):
            record.data = {}
        return True


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per line; the structured sink."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "message": record.getMessage(),
            "component": getattr(record, "component", record.name),
            "sessionId": getattr(record, "session_id", None),
            "data": getattr(record, "data", None) or {},
        }
        if record.exc_info:
            entry["data"] = {**entry["data"], "exception": self.formatException(record.exc_info)}
        return json.dumps(entry, default=str, ensure_ascii=False)


def resolve_level(level: str | None) -> int:
    if not level:
        return logging.INFO
    return LOG_LEVELS.get(level.strip().lower(), logging.INFO)


def log_file_paths(log_dir: Path, started_at: datetime) -> tuple[Path, Path]:
    stamp = started_at.strftime("%Y%m%d_%H%M%S")
    return (
        log_dir / f"{LOG_FILE_PREFIX}{stamp}.log",
        log_dir / f"{LOG_FILE_PREFIX}{stamp}.jsonl",
    )


def setup_logging(
    session: Session,
    level: str | None = "Info",
    silent: bool = False,
    log_to_file: bool = True,
) -> list[Path]:
    """
    Sets up rich console output plus a text log and a JSON-lines log per run.

    Args:
        session: The run session; supplies the session id and log directory.
        level: One of Debug, Info, Warning, Error (case-insensitive).
        silent: Only errors reach the console. Files are unaffected.
        log_to_file: Disable to keep everything on the console (tests, `info`).

    Returns:
        The log files that were opened.
    """
    numeric_level = resolve_level(level)
    session_filter = SessionFilter(session.session_id)

    # Log writes are best effort; a broken sink must never abort the run
    logging.raiseExceptions = False

    console = RichHandler(rich_tracebacks=True, markup=False, show_time=False, show_path=False)
    console.setLevel(logging.ERROR if silent else numeric_level)
    console.addFilter(session_filter)
    handlers: list[logging.Handler] = [console]
    opened: list[Path] = []

    if log_to_file:
        text_path, json_path = log_file_paths(session.log_dir, session.started_at)
        try:
            session.log_dir.mkdir(parents=True, exist_ok=True)
            text_handler = logging.FileHandler(text_path, encoding="utf-8")
            text_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT, DEFAULT_DATE_FORMAT))
            json_handler = logging.FileHandler(json_path, encoding="utf-8")
            json_handler.setFormatter(JsonLinesFormatter())
            for handler in (text_handler, json_handler):
                handler.setLevel(numeric_level)
                handler.addFilter(session_filter)
                handlers.append(handler)
            opened = [text_path, json_path]
        except OSError as e:
            print(f"ERROR: Could not set up file logging at {session.log_dir}: {e}", file=sys.stderr)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()

    root_logger.setLevel(numeric_level)
    for handler in handlers:
        root_logger.addHandler(handler)

    LoggerProxy(__name__).debug(
        "Logging initialized. Level: %s. Session: %s. Files: %s",
        logging.getLevelName(numeric_level),
        session.session_id,
        ", ".join(str(p) for p in opened) or "none",
    )
    return opened


def log_event(
    log: LoggerProxy | logging.Logger,
    level: int | str,
    message: str,
    component: str | None = None,
    **data: Any,
) -> bool:
    """
    Emit a structured entry. Returns False instead of raising when the
    logging machinery fails, so callers never have to handle log errors.
    """
    try:
        numeric = level if isinstance(level, int) else logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            numeric = logging.INFO
        extra: dict[str, Any] = {"data": data}
        if component:
            extra["component"] = component
        log.log(numeric, message, extra=extra)
        return True
    except Exception:
        return False
