"""Configuration loader with Pydantic validation and environment variable interpolation."""

from __future__ import annotations

import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables at module level
load_dotenv(find_dotenv(usecwd=True))

from autobiz.constants import (
    CEO_APPROVAL_THRESHOLD,
    DEFAULT_DCA_INTERVAL_HOURS,
    DEFAULT_DISPATCH_CONCURRENCY,
    DEFAULT_LOOP_INTERVAL_SECONDS,
    DEFAULT_MAX_DRAWDOWN_PCT,
    DEFAULT_PROJECT_CONCURRENCY,
    TOTAL_PHASES,
    BrokerMode,
    LogLevel,
    StoreBackend,
)


def interpolate_env_vars(value: Any) -> Any:
    """
    Interpolate environment variables in string values.

    Supports formats:
    - ${VAR_NAME} - replaced by the variable, empty string if unset
    - ${VAR_NAME:default} - optional with default value
    """
    if not isinstance(value, str):
        return value

    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default is not None:
            return default
        else:
            return ""

    return re.sub(pattern, replacer, value)


def process_config_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively process config dict to interpolate env vars."""
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = process_config_dict(value)
        elif isinstance(value, list):
            result[key] = [
                process_config_dict(item) if isinstance(item, dict) else interpolate_env_vars(item)
                for item in value
            ]
        else:
            result[key] = interpolate_env_vars(value)
    return result


# ============================================
# Pydantic Configuration Models
# ============================================


class EnvironmentConfig(BaseModel):
    """Environment and runtime settings."""

    dry_run: bool = True
    store_backend: StoreBackend = StoreBackend.MEMORY
    log_level: LogLevel = LogLevel.INFO


class SupabaseConfig(BaseModel):
    """Managed Postgres (Supabase) connection settings."""

    url: str = ""
    key: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.url) and bool(self.key)


class CollaboratorsConfig(BaseModel):
    """Hosted function endpoints this package calls out to."""

    functions_url: str = ""
    service_key: str = ""
    timeout_seconds: float = 30.0
    broker_mode: BrokerMode = BrokerMode.SIM
    executor_function: str = "agent-work-executor"
    order_gateway_function: str = "trading-order-gateway"

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Timeout must be positive, got: {v}")
        return v

    def function_url(self, name: str) -> str:
        """Build the URL of a hosted function."""
        return f"{self.functions_url.rstrip('/')}/{name}"


class PhasesConfig(BaseModel):
    """Phase progression settings."""

    total_phases: int = TOTAL_PHASES
    dispatch_concurrency: int = DEFAULT_DISPATCH_CONCURRENCY
    auto_advance_on_approval: bool = True

    @field_validator("total_phases", "dispatch_concurrency")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v


class TradingConfig(BaseModel):
    """Autonomous trading loop settings."""

    broker_exchanges: list[str] = Field(default_factory=lambda: ["alpaca"])
    default_dca_interval_hours: float = DEFAULT_DCA_INTERVAL_HOURS
    default_max_drawdown_pct: Decimal = DEFAULT_MAX_DRAWDOWN_PCT
    project_concurrency: int = DEFAULT_PROJECT_CONCURRENCY
    loop_interval_seconds: float = DEFAULT_LOOP_INTERVAL_SECONDS
    live_exchanges: list[str] = Field(default_factory=lambda: ["alpaca"])

    @field_validator("default_max_drawdown_pct", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal."""
        if isinstance(v, Decimal):
            return v
        return Decimal(str(v))

    @field_validator("project_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Concurrency must be positive, got: {v}")
        return v

    @field_validator("default_dca_interval_hours", "loop_interval_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Value must be non-negative, got: {v}")
        return v


class OpenAIConfig(BaseModel):
    """OpenAI CEO reviewer configuration."""

    enabled: bool = False
    api_key: str = ""
    model: str = "gpt-4o-mini"
    approval_threshold: int = CEO_APPROVAL_THRESHOLD
    timeout_seconds: float = 30.0


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8000


class AppConfig(BaseModel):
    """Root application configuration."""

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    supabase: SupabaseConfig = Field(default_factory=SupabaseConfig)
    collaborators: CollaboratorsConfig = Field(default_factory=CollaboratorsConfig)
    phases: PhasesConfig = Field(default_factory=PhasesConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @property
    def is_dry_run(self) -> bool:
        """Check if running in dry run mode."""
        return self.environment.dry_run

    @property
    def is_sim_broker(self) -> bool:
        """Check if using the simulated broker adapter."""
        return self.collaborators.broker_mode == BrokerMode.SIM

    @property
    def uses_memory_store(self) -> bool:
        return self.environment.store_backend == StoreBackend.MEMORY


# ============================================
# Configuration Loader
# ============================================


class ConfigLoader:
    """Load and validate configuration from YAML files with env var interpolation."""

    def __init__(self, config_path: str | Path) -> None:
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """
        Load and validate configuration.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            yaml.YAMLError: If YAML is invalid.
            pydantic.ValidationError: If config validation fails.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            raw_config = {}

        processed_config = process_config_dict(raw_config)
        self._config = AppConfig.model_validate(processed_config)

        return self._config

    @property
    def config(self) -> AppConfig:
        """Get loaded config, loading if necessary."""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Force reload configuration from disk."""
        self._config = None
        return self.load()


def load_config(config_path: str | Path) -> AppConfig:
    """Convenience function to load configuration."""
    loader = ConfigLoader(config_path)
    return loader.load()


def load_config_with_overrides(
    config_path: str | Path,
    *,
    dry_run: bool | None = None,
    store_backend: str | None = None,
    broker_mode: str | None = None,
) -> AppConfig:
    """
    Load configuration with CLI overrides.

    Args:
        config_path: Path to the YAML configuration file.
        dry_run: Override dry_run setting.
        store_backend: Override the work item store backend.
        broker_mode: Override the broker adapter mode.
    """
    config = load_config(config_path)

    updates: dict[str, Any] = {}
    env_updates: dict[str, Any] = {}

    if dry_run is not None:
        env_updates["dry_run"] = dry_run

    if store_backend is not None:
        env_updates["store_backend"] = StoreBackend(store_backend.lower())

    if env_updates:
        updates["environment"] = config.environment.model_copy(update=env_updates)

    if broker_mode is not None:
        broker_enum = BrokerMode(broker_mode.lower())
        updates["collaborators"] = config.collaborators.model_copy(
            update={"broker_mode": broker_enum}
        )

    if updates:
        return config.model_copy(update=updates)

    return config
