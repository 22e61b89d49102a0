"""
Configuration and Secrets Management for Somnus.

This module handles loading configuration from disk (~/.somnus/somnus.json),
enforcing file permissions, and layering the deployment environment
variables (GEMINI_API_KEY, ADMIN_USERNAME, ...) on top of the file.
"""

import os
import sys
import stat
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List

import json5
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger("somnus.config")

SOMNUS_ROOT = Path.home() / ".somnus"

DEFAULT_SESSION_SECRET = "super-secret-key-change-this"

# Deployment variable -> dotted config path
ENV_OVERRIDES = {
    "GEMINI_API_KEY": "llm.api_keys",
    "ADMIN_USERNAME": "admin.username",
    "ADMIN_PASSWORD": "admin.password",
    "JWT_SECRET": "session.secret",
    "DATABASE_URL": "database.url",
}

# ==============================================================================
# Pydantic Models
# ==============================================================================

class LLMConfig(BaseModel):
    """Text-generation provider settings. Keys are tried in order."""
    model: str = "gemini/gemini-2.0-flash"
    api_keys: List[str] = Field(default_factory=list)
    timeout: Optional[float] = None

    @field_validator("api_keys", mode="before")
    @classmethod
    def split_keys(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(k).strip() for k in value if str(k).strip()]

class AdminConfig(BaseModel):
    """Environment-defined admin principal. Needs no row in the user table."""
    username: Optional[str] = None
    password: Optional[str] = None
    fallback_username: Optional[str] = None

class SessionConfig(BaseModel):
    secret: str = DEFAULT_SESSION_SECRET
    cookie_name: str = "auth_token"
    max_age_days: int = 7
    secure_cookie: bool = False

class DatabaseConfig(BaseModel):
    url: Optional[str] = None

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8068

class LoggingConfig(BaseModel):
    """Structured JSONL event log settings."""
    enabled: bool = True
    log_dir: str = str(SOMNUS_ROOT / "logs")
    max_size_mb: int = 5
    backup_count: int = 3

class SomnusConfig(BaseSettings):
    """
    Root configuration object for Somnus.
    """
    debug: bool = False
    llm: LLMConfig = Field(default_factory=LLMConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    class Config:
        env_prefix = "SOMNUS_"
        populate_by_name = True

# ==============================================================================
# Configuration Loader
# ==============================================================================

class ConfigLoader:
    """
    Responsible for locating, validating, and loading the configuration file.
    Enforces strict file permissions (0600) because the file holds API keys.
    """

    DEFAULT_CONFIG_DIR = SOMNUS_ROOT
    CONFIG_FILENAME = "somnus.json"

    @classmethod
    def get_config_path(cls) -> Path:
        """Returns the full path to the configuration file."""
        return cls.DEFAULT_CONFIG_DIR / cls.CONFIG_FILENAME

    @classmethod
    def _ensure_permissions(cls, path: Path) -> None:
        """
        Enforce 0600 permissions (Owner Read/Write only).
        Windows only supports the read-only attribute, so the check is skipped there.
        """
        if not path.parent.exists():
            try:
                path.parent.mkdir(parents=True, mode=0o700)
            except Exception as e:
                logger.error(f"Failed to create config directory {path.parent}: {e}")
                raise

        if not path.exists():
            return

        try:
            current_mode = stat.S_IMODE(path.stat().st_mode)
            if (current_mode & 0o077) != 0 and sys.platform != "win32":
                logger.warning(f"Insecure config file permissions detected: {oct(current_mode)}. Enforcing 0600.")
                os.chmod(path, 0o600)
        except Exception as e:
            logger.warning(f"Could not enforce permissions on {path}: {e}")

    @staticmethod
    def _apply_env_overrides(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Layers the deployment environment variables over the file contents."""
        environ = os.environ if environ is None else environ
        for env_name, dotted in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if not value:
                continue
            section, key = dotted.split(".")
            data.setdefault(section, {})[key] = value
        return data

    @classmethod
    def load(cls) -> SomnusConfig:
        """
        Loads the configuration from ~/.somnus/somnus.json.
        If the file doesn't exist, a default one is written first.
        """
        config_path = cls.get_config_path()
        cls._ensure_permissions(config_path)

        if not config_path.exists():
            logger.info(f"No config found at {config_path}. Creating default.")
            cls.save(SomnusConfig())
            data: Dict[str, Any] = {}
        else:
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    data = json5.load(f)
            except Exception as e:
                logger.error(f"Failed to load configuration from {config_path}: {e}")
                raise ValueError(f"Invalid configuration file: {e}")

        config = SomnusConfig(**cls._apply_env_overrides(data))
        if config.session.secret == DEFAULT_SESSION_SECRET:
            logger.warning("JWT_SECRET is not set; sessions are signed with the development secret.")
        return config

    @classmethod
    def save(cls, config: SomnusConfig) -> None:
        """Saves current configuration to disk with 0600 permissions."""
        config_path = cls.get_config_path()
        try:
            if not config_path.parent.exists():
                config_path.parent.mkdir(parents=True, mode=0o700)

            data = config.model_dump(by_alias=True, mode="json")
            content = json5.dumps(data, indent=2)

            if not config_path.exists():
                fd = os.open(config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "w") as f:
                    f.write(content)
            else:
                os.chmod(config_path, 0o600)
                with open(config_path, "w", encoding="utf-8") as f:
                    f.write(content)
        except Exception as e:
            logger.error(f"Failed to save configuration to {config_path}: {e}")
            raise


def mask_secret(value: Optional[str]) -> str:
    """Renders a secret as its last five characters, as the provider logs do."""
    if not value:
        return "<unset>"
    return f"...{value[-5:]}"

# ==============================================================================
# Facade / Singleton Access
# ==============================================================================

_params: Optional[SomnusConfig] = None

def load_config() -> SomnusConfig:
    """Global entry point to get the configuration."""
    global _params
    if _params is None:
        _params = ConfigLoader.load()
    return _params
