import json
import logging

from upm.core.logger import LoggerProxy, log_event, setup_logging


def _read_jsonl(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_setup_creates_text_and_json_logs(session):
    opened = setup_logging(session, level="Debug")
    assert [p.suffix for p in opened] == [".log", ".jsonl"]

    log = LoggerProxy("upm.adapters.npm")
    log.info("hello from npm")
    log.success("all good")
    for handler in logging.getLogger().handlers:
        handler.flush()

    text_path, json_path = opened
    assert "hello from npm" in text_path.read_text(encoding="utf-8")
    assert session.session_id in text_path.read_text(encoding="utf-8")

    entries = _read_jsonl(json_path)
    hello = next(e for e in entries if e["message"] == "hello from npm")
    assert hello["level"] == "INFO"
    assert hello["component"] == "npm"
    assert hello["sessionId"] == session.session_id
    assert any(e["level"] == "SUCCESS" for e in entries)


def test_log_event_carries_structured_data(session):
    _, json_path = setup_logging(session, level="Info")
    assert log_event(LoggerProxy("upm.test"), "WARNING", "structured", component="winget", exitCode=3) is True
    for handler in logging.getLogger().handlers:
        handler.flush()

    entry = next(e for e in _read_jsonl(json_path) if e["message"] == "structured")
    assert entry["component"] == "winget"
    assert entry["data"] == {"exitCode": 3}


def test_level_filters_debug(session):
    _, json_path = setup_logging(session, level="Warning")
    LoggerProxy("upm.test").info("quiet")
    LoggerProxy("upm.test").error("loud")
    for handler in logging.getLogger().handlers:
        handler.flush()
    messages = [e["message"] for e in _read_jsonl(json_path)]
    assert "quiet" not in messages
    assert "loud" in messages


def test_log_event_never_raises():
    class Broken:
        def log(self, *args, **kwargs):
            raise RuntimeError("sink gone")

    assert log_event(Broken(), "INFO", "x") is False


def test_timers(session):
    session.start_timer("t")
    assert session.stop_timer("t") >= 0.0
    assert session.stop_timer("never-started") == 0.0
