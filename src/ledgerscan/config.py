"""Configuration surface for the ledgerscan service."""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

MEMORY_DSN = "memory://"


class ProviderAuth(BaseModel):
    """Basic auth credentials for the ledger source."""
    identifier: str = ""
    secret: SecretStr = SecretStr("")


class LedgerscanSettings(BaseSettings):
    """Main ledgerscan configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERSCAN_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    # Ledger source
    endpoint: str = "http://localhost:12000"
    auth: ProviderAuth = Field(default_factory=ProviderAuth)
    http_timeout: float = Field(default=30.0, gt=0)

    # Reconciliation chore
    interval: float = Field(default=60.0, gt=0, description="seconds between ticks")
    confirmations: int = Field(default=15, ge=0, description="blocks until a payment is final")
    disable_loop: bool = True

    # Payment cache; empty or memory:// keeps everything in process
    database_url: str = MEMORY_DSN

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("endpoint")
    @classmethod
    def strip_endpoint(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("database_url", mode="before")
    @classmethod
    def default_database_url(cls, v: str) -> str:
        if not v:
            return MEMORY_DSN
        if v != MEMORY_DSN and not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("database_url must be memory:// or a PostgreSQL URL")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def use_postgres(self) -> bool:
        return self.database_url != MEMORY_DSN


def _configuration_error(e: ValidationError) -> ConfigurationError:
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in e.errors()
    ]
    fields = ", ".join(err["field"] for err in errors)
    return ConfigurationError(f"invalid settings: {fields}", details={"errors": errors})


@lru_cache
def load_settings(env_file: str | None = None) -> LedgerscanSettings:
    """Load LedgerscanSettings once per process.

    Raises ConfigurationError when the environment holds invalid values.
    """
    try:
        if env_file:
            return LedgerscanSettings(_env_file=Path(env_file))
        return LedgerscanSettings()
    except ValidationError as e:
        raise _configuration_error(e) from e


def with_overrides(settings: LedgerscanSettings, overrides: dict[str, Any]) -> LedgerscanSettings:
    """Return a validated copy of ``settings`` with ``overrides`` applied."""
    try:
        return LedgerscanSettings.model_validate({**settings.model_dump(), **overrides})
    except ValidationError as e:
        raise _configuration_error(e) from e
