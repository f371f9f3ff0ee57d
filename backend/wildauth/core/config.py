"""Application configuration loaded from environment variables.

Settings for the database, API, token signing, verification codes, reset
tokens and email delivery. Uses pydantic-settings for validation and .env
file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_security_invariants() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "wildblog_dev_password"  # nosec B105

# Minimum length for signing secrets in production (256 bits = 32 bytes)
_MIN_SECRET_LENGTH = 32

# bcrypt cost factor. 12 rounds lands around 100-250ms per hash on
# current server hardware.
DEFAULT_BCRYPT_ROUNDS = 12

# bcrypt accepts cost factors in this closed range
_MIN_BCRYPT_ROUNDS = 4
_MAX_BCRYPT_ROUNDS = 31


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "wildblog"
    database_user: str = "wildblog_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS
    # CRITICAL: Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # Credential storage backend: "sql" for PostgreSQL, "memory" for
    # single-process development and tests
    store_backend: Literal["sql", "memory"] = "sql"

    # Token signing. Access and refresh tokens use independent secrets so a
    # leaked secret only compromises one token class.
    auth_access_secret: SecretStr = SecretStr("")
    auth_refresh_secret: SecretStr = SecretStr("")
    auth_issuer: str = "wildblog"
    auth_audience: str = "wildblog-api"
    access_token_ttl_minutes: int = 60
    refresh_token_ttl_days: int = 7
    refresh_token_rotation: bool = True

    # Password hashing
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS

    # Verification codes
    verification_code_ttl_minutes: int = 10
    verification_code_cooldown_seconds: int = 60
    require_email_verification: bool = True

    # Password reset
    reset_token_ttl_minutes: int = 30
    reset_request_cooldown_seconds: int = 60

    # Email (Resend). Without an API key, messages are logged instead of sent.
    email_from: str = "noreply@wildblog.dev"
    email_sender_name: str = "Wildblog"
    resend_api_key: SecretStr = SecretStr("")

    # Frontend URL (for password reset links)
    frontend_url: str = "http://localhost:3000"

    # HTTP rate limiting (slowapi, per client IP)
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_security_invariants(self) -> "Settings":
        """Validate configuration invariants.

        Checks:
        - TTLs, cooldowns and bcrypt rounds are in range (all environments)
        - Access and refresh secrets differ when both are set (all environments)
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - Both signing secrets must be set and >= 32 chars in production
        """
        positive_fields = {
            "ACCESS_TOKEN_TTL_MINUTES": self.access_token_ttl_minutes,
            "REFRESH_TOKEN_TTL_DAYS": self.refresh_token_ttl_days,
            "VERIFICATION_CODE_TTL_MINUTES": self.verification_code_ttl_minutes,
            "VERIFICATION_CODE_COOLDOWN_SECONDS": self.verification_code_cooldown_seconds,
            "RESET_TOKEN_TTL_MINUTES": self.reset_token_ttl_minutes,
            "RESET_REQUEST_COOLDOWN_SECONDS": self.reset_request_cooldown_seconds,
        }
        for name, value in positive_fields.items():
            if value <= 0:
                msg = f"{name} must be positive. Got: {value}"
                raise ValueError(msg)

        if not _MIN_BCRYPT_ROUNDS <= self.bcrypt_rounds <= _MAX_BCRYPT_ROUNDS:
            msg = (
                f"BCRYPT_ROUNDS must be between {_MIN_BCRYPT_ROUNDS} and "
                f"{_MAX_BCRYPT_ROUNDS}. Got: {self.bcrypt_rounds}"
            )
            raise ValueError(msg)

        access_secret = self.auth_access_secret.get_secret_value()
        refresh_secret = self.auth_refresh_secret.get_secret_value()
        if access_secret and access_secret == refresh_secret:
            msg = (
                "AUTH_ACCESS_SECRET and AUTH_REFRESH_SECRET must differ. "
                "Sharing one secret lets a refresh token pass as an access token."
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "Credentialed CORS requests are incompatible with wildcard origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            for name, value in (
                ("AUTH_ACCESS_SECRET", access_secret),
                ("AUTH_REFRESH_SECRET", refresh_secret),
            ):
                if not value:
                    msg = (
                        f"{name} must be set in production. "
                        'Generate with: python -c "import secrets; '
                        'print(secrets.token_hex(32))"'
                    )
                    raise ValueError(msg)
                if len(value) < _MIN_SECRET_LENGTH:
                    msg = (
                        f"{name} must be at least {_MIN_SECRET_LENGTH} "
                        "characters for adequate security."
                    )
                    raise ValueError(msg)

        return self


settings = Settings()
