"""Application settings and configuration."""

import sys
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your_jwt_secret_key_here_at_least_32_characters"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "pauaffiliate"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console or json
    allowed_origins: str = "http://localhost:5173"
    frontend_url: str | None = None

    # JWT (bearer tokens and signed referral bindings)
    jwt_secret_key: str = "change-me-in-production"

    # Database
    database_url: str = "sqlite:///./pauaffiliate.db"
    sql_echo: bool = False

    # Flutterwave
    flutterwave_public_key: str | None = None
    flutterwave_secret_key: str | None = None  # Server-only
    flutterwave_webhook_secret: str | None = None  # Compared with the verif-hash header
    flutterwave_base_url: str = "https://api.flutterwave.com/v3"
    processor_timeout_seconds: float = 15.0
    processor_max_retries: int = 3

    # Marketplace rules
    default_currency: str = "NGN"
    platform_fee_rate: Decimal = Decimal("0.05")
    min_withdrawal_amount: Decimal = Decimal("1000")
    bank_account_number_length: int = 10  # NUBAN
    pending_sale_ttl_hours: int = 24
    referral_binding_ttl_minutes: int = 60

    # Email (SendGrid)
    sendgrid_api_key: str | None = None
    sendgrid_from_email: str = "noreply@pauaffiliate.com"
    sendgrid_from_name: str = "PAUAffiliate"
    withdrawal_monitor_email: str | None = None  # Receives a copy of every withdrawal request

    # Webhooks
    webhook_event_retention_days: int = 30


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\n❌  FATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
    if not settings.flutterwave_webhook_secret:
        print(
            "\n⚠️  FLUTTERWAVE_WEBHOOK_SECRET is not set - webhook settlement is disabled.\n",
            file=sys.stderr,
        )
