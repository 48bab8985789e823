"""
Auto-Mode Configuration
=======================

Environment variable configuration for the orchestration core.

Values are read once into an AutoModeSettings instance. Invalid values are
logged and replaced with the default, the same way AUTOBUILDR_EXECUTOR used
to be handled.

Environment variables:
- AUTOMODE_DEFAULT_MODEL: model used when a feature does not pin one (default: sonnet)
- AUTOMODE_MAX_CONCURRENCY: default concurrency limit for the auto loop (1-10, default: 3)
- AUTOMODE_POLL_INTERVAL: seconds between scheduling passes (default: 2.0)
- AUTOMODE_PROCESS_TIMEOUT: seconds of provider silence before the CLI is killed (default: unset)
- ALLOWED_ROOT_DIRECTORY: restrict file access to this directory tree (default: unrestricted)
- DATA_DIR: server data directory, always readable (default: ./data)
- AUTOMODE_ALLOW_REMOTE: accept non-localhost HTTP clients (default: false)
- LOG_LEVEL: root log level for the server (default: INFO)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

_logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_MODEL = "sonnet"
DEFAULT_MAX_CONCURRENCY = 3
MAX_CONCURRENCY_LIMIT = 10
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_DATA_DIR = "data"
DEFAULT_LOG_LEVEL = "INFO"

TRUTHY_VALUES = ("1", "true", "yes", "on")


# =============================================================================
# Environment Variable Reading
# =============================================================================

def _read_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        _logger.warning(
            "Invalid integer for %s: '%s'. Defaulting to %d", name, raw, default
        )
        return default
    return min(max(value, minimum), maximum)


def _read_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        _logger.warning(
            "Invalid number for %s: '%s'. Defaulting to %s", name, raw, default
        )
        return default
    if value <= 0:
        _logger.warning("%s must be positive, got %s. Defaulting to %s", name, value, default)
        return default
    return value


def _read_bool(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in TRUTHY_VALUES


@dataclass(frozen=True)
class AutoModeSettings:
    """Resolved runtime settings for the orchestration core and server."""

    default_model: str = DEFAULT_MODEL
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    poll_interval: float = DEFAULT_POLL_INTERVAL
    process_timeout: Optional[float] = None
    allowed_root_directory: Optional[Path] = None
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    allow_remote: bool = False
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> "AutoModeSettings":
        """Build settings from the current process environment."""
        allowed_root = os.environ.get("ALLOWED_ROOT_DIRECTORY", "").strip()
        data_dir = os.environ.get("DATA_DIR", "").strip() or DEFAULT_DATA_DIR

        log_level = os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
        if log_level not in logging.getLevelNamesMapping():
            _logger.warning(
                "Unknown LOG_LEVEL '%s'. Defaulting to %s", log_level, DEFAULT_LOG_LEVEL
            )
            log_level = DEFAULT_LOG_LEVEL

        return cls(
            default_model=os.environ.get("AUTOMODE_DEFAULT_MODEL", "").strip() or DEFAULT_MODEL,
            max_concurrency=_read_int(
                "AUTOMODE_MAX_CONCURRENCY",
                DEFAULT_MAX_CONCURRENCY,
                1,
                MAX_CONCURRENCY_LIMIT,
            ),
            poll_interval=_read_float("AUTOMODE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            process_timeout=_read_float("AUTOMODE_PROCESS_TIMEOUT", None),
            allowed_root_directory=Path(allowed_root).resolve() if allowed_root else None,
            data_dir=Path(data_dir).resolve(),
            allow_remote=_read_bool("AUTOMODE_ALLOW_REMOTE"),
            log_level=log_level,
        )


# Settings are resolved lazily so tests can patch the environment first
_settings: Optional[AutoModeSettings] = None


def get_settings() -> AutoModeSettings:
    """Return the process-wide settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = AutoModeSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (for testing)."""
    global _settings
    _settings = None
