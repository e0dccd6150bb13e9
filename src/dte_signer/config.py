"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so MAIL__RELAY_URL maps to
mail.relay_url, DATABASE__HOST maps to database.host, SIGNING__RANDOM_SEED
maps to signing.random_seed, etc.

Every section except `database` has usable defaults: with no environment at
all the service runs on in-memory stores with simulated mail delivery.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection configuration.

    Accepts either a full connection string via DATABASE__DSN or individual
    components (DATABASE__HOST, DATABASE__PORT, DATABASE__NAME,
    DATABASE__USERNAME, DATABASE__PASSWORD). The DSN wins when both are set.
    """

    dsn: SecretStr | None = Field(
        default=None,
        description="Full PostgreSQL connection string (overrides individual fields)",
    )
    host: str | None = Field(default=None, description="PostgreSQL host")
    port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    name: str | None = Field(default=None, description="PostgreSQL database name")
    username: str | None = Field(default=None, description="PostgreSQL username")
    password: SecretStr | None = Field(default=None, description="PostgreSQL password")
    create_schema: bool = Field(default=True, description="Create tables and sequence at startup")

    @model_validator(mode="after")
    def resolve_dsn(self) -> DatabaseSettings:
        """Build `dsn` from the components when no full DSN was given."""
        if self.dsn is not None:
            return self
        missing = [f for f, v in [
            ("DATABASE__HOST", self.host),
            ("DATABASE__NAME", self.name),
            ("DATABASE__USERNAME", self.username),
            ("DATABASE__PASSWORD", self.password),
        ] if not v]
        if missing:
            raise ValueError("Set DATABASE__DSN or provide all of: " + ", ".join(missing))
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"  # type: ignore[union-attr]
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        assert self.dsn is not None  # guaranteed by resolve_dsn validator
        return self.dsn.get_secret_value()


class MailSettings(BaseModel):
    """Outgoing mail. No relay URL means deliveries are only logged."""

    relay_url: str | None = Field(default=None, description="HTTP mail relay endpoint")
    sender: str = Field(default="facturacion@empresa.com", description="From address of DTE mails")
    timeout_seconds: int = Field(default=30, ge=1)


class SigningSettings(BaseModel):
    """Simulated signing knobs."""

    default_issuer_tax_id: str = Field(
        default="00000000-0",
        description="Certificate used when the issuer has none registered",
    )
    random_seed: int | None = Field(
        default=None,
        description="Seed for reproducible signature outcomes and identifiers (tests, demos)",
    )
    max_signature_age_hours: int = Field(default=24, ge=1)
    enforce_revocation: bool = Field(
        default=False,
        description="Also check the live registry for revocation during validation",
    )


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Environment = Field(default=Environment.PRODUCTION)
    log_level: str = Field(default="INFO")
    database: DatabaseSettings | None = Field(default=None)
    mail: MailSettings = Field(default_factory=lambda: MailSettings())
    signing: SigningSettings = Field(default_factory=lambda: SigningSettings())

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """Unknown levels fall back to INFO rather than failing startup."""
        level = value.strip().upper()
        return level if level in _LOG_LEVELS else "INFO"

    @property
    def is_development(self) -> bool:
        return self.environment is Environment.DEVELOPMENT
