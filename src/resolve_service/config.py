"""
Configuration management for the resolve service.

Loads configuration from YAML with ZERO defaults for required sections.
Every setting the engine depends on must be present in config.yaml.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

REDACTION_MARKER = "***"

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class DirectoryConfig(BaseModel):
    """Agent directory configuration."""

    model_config = ConfigDict(extra="forbid")
    db_path: str
    initial_trust_score: int
    monthly_dispute_limit: int

    @field_validator("initial_trust_score")
    @classmethod
    def trust_score_in_range(cls, value: int) -> int:
        """Reject initial trust scores outside 0..100."""
        if not 0 <= value <= 100:
            msg = "directory.initial_trust_score must be between 0 and 100"
            raise ValueError(msg)
        return value


class LedgerConfig(BaseModel):
    """Credit ledger configuration."""

    model_config = ConfigDict(extra="forbid")
    db_path: str
    initial_credits: int


class TransactionsConfig(BaseModel):
    """Transaction lifecycle configuration."""

    model_config = ConfigDict(extra="forbid")
    default_expiry_days: int
    max_expiry_days: int

    @model_validator(mode="after")
    def validate_expiry(self) -> TransactionsConfig:
        """Default expiry must be positive and within the maximum."""
        if self.default_expiry_days < 1 or self.default_expiry_days > self.max_expiry_days:
            msg = "transactions.default_expiry_days must be between 1 and max_expiry_days"
            raise ValueError(msg)
        return self


class DisputesConfig(BaseModel):
    """Dispute lifecycle and pricing configuration."""

    model_config = ConfigDict(extra="forbid")
    response_deadline_hours: int
    decision_window_days: int
    free_value_threshold_cents: int
    free_monthly_disputes: int
    base_cost: int
    value_multiplier: int
    max_cost: int


class EscalationConfig(BaseModel):
    """Escalation configuration."""

    model_config = ConfigDict(extra="forbid")
    fee: int


class NotificationsConfig(BaseModel):
    """Webhook notification configuration."""

    model_config = ConfigDict(extra="forbid")
    webhook_url: str | None = None
    timeout_seconds: int


class ArbitrationConfig(BaseModel):
    """Mock arbiter configuration."""

    model_config = ConfigDict(extra="forbid")
    mock_ruling: str
    mock_reasoning: str

    @field_validator("mock_ruling")
    @classmethod
    def ruling_must_be_known(cls, value: str) -> str:
        """Reject rulings the dispute engine cannot record."""
        if value not in ("CLAIMANT", "RESPONDENT", "SPLIT", "DISMISSED"):
            msg = f"arbitration.mock_ruling must be a known ruling, got {value!r}"
            raise ValueError(msg)
        return value


class SweepsConfig(BaseModel):
    """Background sweep configuration."""

    model_config = ConfigDict(extra="forbid")
    enabled: bool
    interval_seconds: int


class RequestConfig(BaseModel):
    """Request validation configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class Settings(BaseModel):
    """Root configuration container."""

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    directory: DirectoryConfig
    ledger: LedgerConfig
    transactions: TransactionsConfig
    disputes: DisputesConfig
    escalation: EscalationConfig
    notifications: NotificationsConfig
    arbitration: ArbitrationConfig
    sweeps: SweepsConfig
    request: RequestConfig


def get_config_path() -> Path:
    """Resolve configuration path from CONFIG_PATH or the project root."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return _PROJECT_ROOT / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and validate settings. Cached after the first call."""
    config_path = get_config_path()
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file (expected a mapping): {config_path}"
        raise ValueError(msg)

    return Settings(**raw)


def clear_settings_cache() -> None:
    """Clear cached settings. Used in testing."""
    get_settings.cache_clear()


def get_safe_config() -> dict[str, Any]:
    """Return redacted config for logs/diagnostics."""
    data = get_settings().model_dump()
    if data["notifications"]["webhook_url"] is not None:
        data["notifications"]["webhook_url"] = REDACTION_MARKER
    return data
