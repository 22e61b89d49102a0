import logging
import json
from logging.handlers import RotatingFileHandler
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from somnus.core.config import SomnusConfig

class SystemLogger:
    """
    Handles system-wide JSONL event logging with rotation.
    Singleton-ish access pattern via class method.
    """
    _instance = None

    def __init__(self, config: SomnusConfig):
        self.config = config
        self.logger = logging.getLogger("somnus.system")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False # Do not propagate to root logger (console)

        # Ensure we don't add multiple handlers if re-initialized
        if self.logger.hasHandlers():
            self.logger.handlers.clear()

        if not config.logging.enabled:
            self.logger.addHandler(logging.NullHandler())
            return

        log_dir = Path(config.logging.log_dir).expanduser()
        if not log_dir.is_absolute():
            log_dir = Path.cwd() / log_dir
        log_dir.mkdir(parents=True, exist_ok=True)

        handler = RotatingFileHandler(
            log_dir / "events.jsonl",
            maxBytes=config.logging.max_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(JSONLFormatter())
        self.logger.addHandler(handler)

    @classmethod
    def get_instance(cls, config: Optional[SomnusConfig] = None) -> "SystemLogger":
        if cls._instance is None:
            if config is None:
                from somnus.core.config import load_config
                config = load_config()
            cls._instance = cls(config)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def log(self, event_type: str, data: Dict[str, Any], user_id: Optional[str] = None, level: str = "INFO"):
        """
        Logs a structured event.

        Args:
            event_type: A distinct category for the event (e.g., 'LLM_ATTEMPT', 'AUTH_LOGIN').
            data: Key-value data payload. Never put raw API keys or passwords here.
            user_id: The acting user, if any.
            level: Log level (INFO, WARNING, ERROR).
        """
        if not self.config.logging.enabled:
            return

        payload = {
            "timestamp": datetime.now().isoformat(),
            "event": event_type,
            "user_id": user_id,
            "level": level,
            "data": data,
        }
        log_method = getattr(self.logger, level.lower(), self.logger.info)
        log_method(payload)


def log_event(event_type: str, data: Dict[str, Any], user_id: Optional[str] = None, level: str = "INFO") -> None:
    """Module-level shortcut. Event logging must never break a request."""
    try:
        SystemLogger.get_instance().log(event_type, data, user_id=user_id, level=level)
    except Exception as e:
        logging.getLogger("somnus.system").debug(f"Event log unavailable: {e}")


class JSONLFormatter(logging.Formatter):
    """
    Format standard logging records as JSONL.
    Expects `msg` to be a dict or string.
    """
    def format(self, record):
        if isinstance(record.msg, dict):
            return json.dumps(record.msg, default=str, ensure_ascii=False)
        return json.dumps({
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "event": "SYSTEM_MSG",
            "level": record.levelname,
            "data": {"message": record.getMessage()}
        }, default=str, ensure_ascii=False)
