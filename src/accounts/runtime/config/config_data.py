"""Pydantic models for parsing the config.yaml configuration file.

This module contains Pydantic models that correspond to the structure of config.yaml.
These models handle validation and type conversion of the YAML configuration data.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, computed_field

from src.accounts.entities.core.user_record.entity import AccountClass


class CORSConfig(BaseModel):
    """CORS configuration for the application."""

    origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )
    allow_credentials: bool = True
    allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    )
    allow_headers: list[str] = Field(default=["*"])


class JWTClaimsConfig(BaseModel):
    """JWT claims mapping configuration."""

    user_id: str = Field(
        default="user_id",
        description="Claim holding the external uid (falls back to 'sub')",
    )
    provider: str = Field(
        default="firebase.sign_in_provider",
        description="Dotted path of the claim naming the sign-in provider",
    )
    email: str = Field(default="email", description="Claim name for email address")
    name: str = Field(default="name", description="Claim name for display name")


class JWTConfig(BaseModel):
    """JWT validation configuration."""

    allowed_algorithms: list[str] = Field(
        default_factory=lambda: ["HS256", "HS384", "HS512"],
        description="JWT algorithms allowed for token validation",
    )
    audiences: list[str] = Field(
        default_factory=list,
        description="JWT audiences that this API accepts (empty = skip audience check)",
    )
    clock_skew: int = Field(default=60, description="Clock skew tolerance in seconds")
    claims: JWTClaimsConfig = Field(
        default_factory=JWTClaimsConfig, description="JWT claims mapping configuration"
    )


class LoggingConfig(BaseModel):
    """Logging configuration model."""

    level: str = Field(default="INFO", description="Logging level")
    format: Literal["json", "plain"] = Field(default="json", description="Log format")
    file: str | None = Field(default="logs/app.log", description="Log file path")
    max_size_mb: int = Field(default=10, description="Maximum log file size in MB")
    backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )


class DatabaseConfig(BaseModel):
    """Database configuration model."""

    url: str = Field(
        default="sqlite:///./accounts.db",
        description="Database connection URL",
    )
    pool_size: int = Field(default=20, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    pool_recycle: int = Field(default=1800, description="Pool recycle time in seconds")
    password_file: str | None = Field(
        default=None,
        description="Path to file containing database password",
    )

    @computed_field
    @property
    def connection_string(self) -> str:
        """Construct the database connection string, reading the password file if set."""
        from sqlalchemy.engine import make_url

        base_url = make_url(self.url)
        if self.password_file and not base_url.password:
            try:
                with open(self.password_file) as f:
                    password = f.read().strip()
            except OSError as e:
                raise ValueError("Failed to read database password from file.") from e
            base_url = base_url.set(password=password)
        return base_url.render_as_string(hide_password=False)

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class AppConfig(BaseModel):
    """Application configuration model."""

    environment: Literal["development", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    host: str = Field(default="localhost", description="Application host")
    port: int = Field(default=8000, description="Application port")
    session_signing_secret: str | None = Field(
        default=None, description="Secret used to verify bearer identity tokens"
    )
    cors: CORSConfig = Field(
        default_factory=CORSConfig, description="CORS configuration"
    )


class IdentityConfig(BaseModel):
    """Identity resolution configuration."""

    store_backend: Literal["memory", "sql"] = Field(
        default="sql", description="Record store implementation"
    )
    store_timeout_ms: int = Field(
        default=5000,
        description="Timeout for record store reads, and the database statement timeout for writes",
    )
    max_resolution_attempts: int = Field(
        default=3,
        description="How many times resolution restarts after losing a write race",
    )
    precedence_order: list[AccountClass] = Field(
        default_factory=lambda: [
            AccountClass.PRIVILEGED_PRECEDENCE,
            AccountClass.STANDARD,
        ],
        description="Account classes from highest to lowest precedence",
    )
    admin_role: str = Field(
        default="admin", description="Token role required for administrative routes"
    )

    @property
    def store_timeout_seconds(self) -> float:
        return self.store_timeout_ms / 1000


class VerificationConfig(BaseModel):
    """Verification email policy."""

    min_resend_interval_minutes: int = Field(
        default=5, description="Minimum minutes between two verification emails"
    )
    max_per_day: int = Field(
        default=5, description="Maximum verification emails per calendar day"
    )
    timezone: str = Field(
        default="UTC", description="Timezone whose calendar days bound the daily limit"
    )
    status_cache_seconds: int = Field(
        default=30, description="How long an identity provider verification check is reused"
    )


class ReconciliationConfig(BaseModel):
    """Duplicate reconciliation configuration."""

    dry_run: bool = Field(
        default=False, description="Report planned deletions without deleting"
    )


class ConfigData(BaseModel):
    """Root configuration model that matches the config.yaml structure."""

    app: AppConfig = Field(
        default_factory=AppConfig, description="Application configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig, description="Database configuration"
    )
    jwt: JWTConfig = Field(
        default_factory=JWTConfig, description="JWT validation configuration"
    )
    identity: IdentityConfig = Field(
        default_factory=IdentityConfig, description="Identity resolution configuration"
    )
    verification: VerificationConfig = Field(
        default_factory=VerificationConfig, description="Verification email policy"
    )
    reconciliation: ReconciliationConfig = Field(
        default_factory=ReconciliationConfig,
        description="Duplicate reconciliation configuration",
    )
