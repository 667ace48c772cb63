"""
Cadence Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (CADENCE_*)
3. Project config (./cadence.toml)
4. User config (~/.cadence/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    CADENCE_DB_PATH → scheduler.db_path
    CADENCE_POLL_INTERVAL → scheduler.poll_interval
    CADENCE_TARGET_BASE_URL → target.base_url
    CADENCE_TARGET_API_KEY → target.api_key
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from cadence.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SchedulerConfig(BaseModel):
    """Scheduler configuration."""

    enabled: bool = True
    db_path: str = "~/.cadence/cadence.db"
    poll_interval: int = 30  # seconds
    instance_id: str = ""  # empty = generated per process


class ExecutorConfig(BaseModel):
    """Firing, retry and claim-recovery policy."""

    activation_timeout: float = 30.0  # seconds per port call
    max_attempts: int = 3
    backoff_base: float = 5.0  # seconds, doubled per retry
    backoff_max: float = 60.0
    claim_ttl: int = 600  # seconds before an abandoned claim can be taken over

    @model_validator(mode="after")
    def _claim_outlives_attempt(self) -> "ExecutorConfig":
        # Every attempt and every backoff sleep must end before the claim goes stale
        if self.claim_ttl <= self.activation_timeout + self.backoff_max:
            raise ConfigError(
                f"executor.claim_ttl ({self.claim_ttl}s) must exceed activation_timeout "
                f"+ backoff_max ({self.activation_timeout + self.backoff_max:g}s)"
            )
        return self


class TargetConfig(BaseModel):
    """Campaign/list subsystem connection."""

    provider: str = "http"
    base_url: str = "http://localhost:3001/api"
    api_key: str = ""
    timeout: float = 10.0


class TelegramConfig(BaseModel):
    """Telegram bot notification configuration."""

    token: str = ""
    chat_id: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.token and self.chat_id)


class LoggingConfig(BaseModel):
    """Log file location and console verbosity."""

    dir: str = "~/.cadence/logs"
    console_level: str = "WARNING"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CadenceConfig(BaseModel):
    """Root configuration for Cadence."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    target: TargetConfig = Field(default_factory=TargetConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> CadenceConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config (~/.cadence/config.toml)
        user_config_path = user_path or Path.home() / ".cadence" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./cadence.toml)
        project_config_path = project_path or Path.cwd() / "cadence.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return CadenceConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_home(self) -> Path:
        """Get the Cadence home directory (~/.cadence)."""
        return Path(self.scheduler.db_path).expanduser().parent

    def get_db_path(self) -> Path:
        return Path(self.scheduler.db_path).expanduser()

    def get_log_dir(self) -> Path:
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


# Values kept as text even when they look numeric (chat ids, tokens)
_RAW_KEYS = {"instance_id", "api_key", "token", "chat_id"}


def _load_from_env() -> dict[str, Any]:
    """Load configuration from CADENCE_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "CADENCE_DB_PATH": ("scheduler", "db_path"),
        "CADENCE_POLL_INTERVAL": ("scheduler", "poll_interval"),
        "CADENCE_INSTANCE_ID": ("scheduler", "instance_id"),
        "CADENCE_ACTIVATION_TIMEOUT": ("executor", "activation_timeout"),
        "CADENCE_MAX_ATTEMPTS": ("executor", "max_attempts"),
        "CADENCE_CLAIM_TTL": ("executor", "claim_ttl"),
        "CADENCE_TARGET_PROVIDER": ("target", "provider"),
        "CADENCE_TARGET_BASE_URL": ("target", "base_url"),
        "CADENCE_TARGET_API_KEY": ("target", "api_key"),
        "CADENCE_TELEGRAM_TOKEN": ("telegram", "token"),
        "CADENCE_TELEGRAM_CHAT_ID": ("telegram", "chat_id"),
        "CADENCE_LOG_LEVEL": ("logging", "console_level"),
    }

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            if section not in result:
                result[section] = {}
            result[section][key] = value if key in _RAW_KEYS else _convert_value(value)

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
