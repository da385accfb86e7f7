"""
cronfire configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (CRONFIRE_*)
3. Project config (./cronfire.toml)
4. User config (~/.cronfire/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    CRONFIRE_INTERVAL → scheduler.interval
    CRONFIRE_OPERATION_TIMEOUT → scheduler.operation_timeout
    CRONFIRE_STORE_BACKEND → store.backend
    CRONFIRE_DB_PATH → store.db_path
    CRONFIRE_LOG_LEVEL → logging.level
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from cronfire.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SchedulerConfig(BaseModel):
    """Trigger evaluation configuration."""

    interval: int = Field(default=60, ge=1)  # seconds between ticks
    operation_timeout: float | None = Field(default=30.0, gt=0)  # per store call; None = unbounded
    idempotency_keys: bool = True


class StoreConfig(BaseModel):
    """Persistence configuration."""

    backend: Literal["sqlite", "memory"] = "sqlite"
    db_path: str = "~/.cronfire/cronfire.db"


class LoggingConfig(BaseModel):
    """Process log and event log configuration."""

    dir: str = "~/.cronfire/logs"
    level: str = "WARNING"
    events: bool = True


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CronfireConfig(BaseModel):
    """Root configuration for cronfire."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> CronfireConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config (~/.cronfire/config.toml)
        user_config_path = user_path or Path.home() / ".cronfire" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./cronfire.toml)
        project_config_path = project_path or Path.cwd() / "cronfire.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return CronfireConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_db_path(self) -> Path:
        """Get the resolved SQLite database path."""
        return Path(self.store.db_path).expanduser()

    def get_log_dir(self) -> Path:
        """Get the resolved log directory."""
        return Path(self.logging.dir).expanduser()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from CRONFIRE_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "CRONFIRE_INTERVAL": ("scheduler", "interval"),
        "CRONFIRE_OPERATION_TIMEOUT": ("scheduler", "operation_timeout"),
        "CRONFIRE_IDEMPOTENCY_KEYS": ("scheduler", "idempotency_keys"),
        "CRONFIRE_STORE_BACKEND": ("store", "backend"),
        "CRONFIRE_DB_PATH": ("store", "db_path"),
        "CRONFIRE_LOG_DIR": ("logging", "dir"),
        "CRONFIRE_LOG_LEVEL": ("logging", "level"),
    }

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            result.setdefault(section, {})[key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            for var_name in pattern.findall(value):
                value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
            data[key] = value
