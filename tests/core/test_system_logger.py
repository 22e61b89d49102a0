import json
import logging
import logging.handlers
from unittest.mock import patch

import pytest
from somnus.core.system_logger import SystemLogger, JSONLFormatter, log_event
from somnus.core.config import SomnusConfig, LoggingConfig


@pytest.fixture(autouse=True)
def reset_singleton():
    SystemLogger._instance = None
    yield
    SystemLogger._instance = None


@pytest.fixture
def enabled_config(tmp_path):
    return SomnusConfig(logging=LoggingConfig(
        enabled=True, log_dir=str(tmp_path / "logs"), max_size_mb=10, backup_count=5
    ))


def test_system_logger_singleton(enabled_config):
    sl1 = SystemLogger.get_instance(enabled_config)
    sl2 = SystemLogger.get_instance(enabled_config)
    assert sl1 is sl2


def test_system_logger_initialization_disabled():
    sl = SystemLogger(SomnusConfig(logging=LoggingConfig(enabled=False)))
    assert any(isinstance(h, logging.NullHandler) for h in sl.logger.handlers)


def test_system_logger_initialization_enabled(enabled_config, tmp_path):
    sl = SystemLogger(enabled_config)

    assert (tmp_path / "logs").exists()
    handler = next(h for h in sl.logger.handlers if isinstance(h, logging.handlers.RotatingFileHandler))
    assert handler.maxBytes == 10 * 1024 * 1024
    assert handler.backupCount == 5


def test_system_logger_get_instance_no_config():
    loaded = SomnusConfig(logging=LoggingConfig(enabled=False))
    with patch("somnus.core.config.load_config", return_value=loaded):
        sl = SystemLogger.get_instance()
        assert sl.config is loaded


def test_system_logger_log_structured(enabled_config, tmp_path):
    sl = SystemLogger(enabled_config)

    sl.log("LLM_ATTEMPT", {"key": "...abcde", "status": 429}, user_id="user-1", level="WARNING")

    entry = json.loads((tmp_path / "logs" / "events.jsonl").read_text(encoding="utf-8").strip())
    assert entry["event"] == "LLM_ATTEMPT"
    assert entry["data"] == {"key": "...abcde", "status": 429}
    assert entry["user_id"] == "user-1"
    assert entry["level"] == "WARNING"


def test_log_event_uses_singleton(enabled_config, tmp_path):
    SystemLogger.get_instance(enabled_config)
    log_event("AUTH_LOGIN", {"username": "alice", "ok": True})

    lines = (tmp_path / "logs" / "events.jsonl").read_text(encoding="utf-8").strip().splitlines()
    assert json.loads(lines[-1])["event"] == "AUTH_LOGIN"


def test_log_event_never_raises():
    with patch.object(SystemLogger, "get_instance", side_effect=RuntimeError("boom")):
        log_event("AUTH_LOGIN", {})


def test_jsonl_formatter_plain_message():
    record = logging.LogRecord("somnus", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    entry = json.loads(JSONLFormatter().format(record))
    assert entry["event"] == "SYSTEM_MSG"
    assert entry["data"]["message"] == "hello world"
