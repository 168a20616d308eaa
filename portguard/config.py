"""
Configuration for the port supervisor.

Loads settings from environment variables (and a local .env file) with
sensible defaults. Command-line flags override anything set here.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()

DEFAULT_PORT = 8787
DEFAULT_SETTLE_DELAY = 2.0


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _env_path(name: str) -> Optional[Path]:
    value = os.environ.get(name, "").strip()
    return Path(value).expanduser() if value else None


@dataclass
class Config:
    """Supervisor configuration."""

    # Port reclamation
    port: int = field(default_factory=lambda: _env_int("PORTGUARD_PORT", DEFAULT_PORT))
    settle_delay: float = field(
        default_factory=lambda: _env_float("PORTGUARD_SETTLE_DELAY", DEFAULT_SETTLE_DELAY)
    )
    discovery_timeout: float = field(
        default_factory=lambda: _env_float("PORTGUARD_DISCOVERY_TIMEOUT", 10.0)
    )
    kill_timeout: float = field(
        default_factory=lambda: _env_float("PORTGUARD_KILL_TIMEOUT", 5.0)
    )

    # Child shutdown; None waits for the child forever after relaying a signal
    shutdown_timeout: Optional[float] = field(
        default_factory=lambda: _env_float("PORTGUARD_SHUTDOWN_TIMEOUT", None)
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: os.environ.get("PORTGUARD_LOG_LEVEL", "INFO").upper()
    )
    log_file: Optional[Path] = field(default_factory=lambda: _env_path("PORTGUARD_LOG_FILE"))
    log_max_bytes: int = field(
        default_factory=lambda: _env_int("LOG_MAX_BYTES", 10 * 1024 * 1024)  # 10MB
    )
    log_backup_count: int = field(default_factory=lambda: _env_int("LOG_BACKUP_COUNT", 5))

    def validate(self) -> "Config":
        """Check value ranges. Returns self so calls can be chained."""
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"port must be in [1, 65535], got {self.port}")
        for name in ("settle_delay", "discovery_timeout", "kill_timeout"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if self.shutdown_timeout is not None and self.shutdown_timeout < 0:
            raise ConfigError("shutdown_timeout must not be negative")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"unknown log level {self.log_level!r}")
        return self

    def with_overrides(self, **overrides) -> "Config":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)
