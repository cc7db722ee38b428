"""
Application configuration.

Values are resolved in three layers, later layers winning:

1. Defaults declared on ``AppConfig``.
2. ``config/wagate.json`` under PROJECT_DIR (optional).
3. ``WAGATE_<FIELD>`` environment variables (``.env`` is loaded first).

The module exposes a process-wide ``CONFIG`` instance. Components receive the
values they need at construction time, so tests build their own.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from wagate.logger import get_logger

logger = get_logger(__name__)

PROJECT_DIR = Path(os.getenv("WAGATE_PROJECT_DIR", Path.cwd())).resolve()
CONFIG_FILE = PROJECT_DIR / "config" / "wagate.json"

ENV_PREFIX = "WAGATE_"

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--no-first-run",
    "--no-zygote",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--mute-audio",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class AppConfig(BaseModel):
    """All runtime settings for the gateway."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False

    # Sessions
    sessions_root: str = "./sessions"
    destroy_timeout_seconds: float = 5.0
    qr_wait_attempts: int = 60
    qr_wait_interval_seconds: float = 0.5

    # Recovery
    recover_on_startup: bool = True
    recovery_delay_seconds: float = 1.0

    # Shutdown
    shutdown_timeout_seconds: float = 8.0

    # Resource limits
    max_messages_per_session: int = 1000
    max_total_sessions: int = 50
    memory_warning_mb: int = 512
    memory_critical_mb: int = 1024
    session_timeout_hours: float = 24
    cleanup_interval_minutes: float = 30
    governor_enabled: bool = True

    # Daily access key
    access_key_required: bool = True
    access_key_api_url: str = "https://apisbotman.unatecla.com/api/loterias"
    access_key_field: str = "lot_unatecla"
    access_key_ttl_hours: float = 24
    access_key_timeout_seconds: float = 15.0
    expose_expected_key: bool = False

    # Browser client
    browser_headless: bool = True
    browser_args: List[str] = Field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))
    browser_user_agent: str = DEFAULT_USER_AGENT
    browser_navigation_timeout_ms: int = 60000

    @property
    def sessions_path(self) -> Path:
        path = Path(self.sessions_root)
        if not path.is_absolute():
            path = PROJECT_DIR / path
        return path

    def resource_limits(self) -> Dict[str, Any]:
        """Subset of settings consumed by the resource governor."""
        return {
            "max_messages_per_session": self.max_messages_per_session,
            "max_total_sessions": self.max_total_sessions,
            "memory_warning_mb": self.memory_warning_mb,
            "memory_critical_mb": self.memory_critical_mb,
            "session_timeout_hours": self.session_timeout_hours,
            "cleanup_interval_minutes": self.cleanup_interval_minutes,
        }

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "AppConfig":
        """Build a config from defaults, the JSON file and the environment."""
        values: Dict[str, Any] = {}

        path = config_file or CONFIG_FILE
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    values.update(json.load(f))
                logger.info(f"Loaded config from {path}")
            except Exception as e:
                logger.error(f"Failed to load config file {path}: {e}")

        values.update(_env_overrides())
        return cls.model_validate(values)

    def reload(self) -> None:
        """Re-read file and environment, updating this instance in place."""
        fresh = type(self).load()
        for name in type(self).model_fields:
            setattr(self, name, getattr(fresh, name))


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name, field in AppConfig.model_fields.items():
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        if field.annotation == List[str]:
            overrides[name] = [part.strip() for part in raw.split(",") if part.strip()]
        else:
            overrides[name] = raw
    return overrides


load_dotenv(PROJECT_DIR / ".env")

CONFIG = AppConfig.load()
