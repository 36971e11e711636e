"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_title: str = "Product Fulfillment API"
    api_version: str = "0.1.0"
    api_description: str = "Checkout and exactly-once fulfillment of product purchases"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "product-fulfillment-api"

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)
    provider_timeout_seconds: float = 10.0
    currency: str = "usd"

    # Redirect targets
    success_url: str = ""  # must contain {CHECKOUT_SESSION_ID}
    cancel_url: str = ""
    purchase_complete_url: str = ""  # where /purchase/success sends the browser

    # Static data (empty = packaged app/data/*.json)
    catalog_path: str = ""
    users_seed_path: str = ""
    seed_users_on_startup: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres", "sqlite")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL or SQLite URL, got: {self.database_url[:20]}..."
            )

        for name in ("success_url", "cancel_url", "purchase_complete_url"):
            if not getattr(self, name):
                errors.append(f"{name.upper()} is required but empty or missing")

        if self.success_url and "{CHECKOUT_SESSION_ID}" not in self.success_url:
            errors.append("SUCCESS_URL must contain the {CHECKOUT_SESSION_ID} placeholder")

        if self.provider_timeout_seconds <= 0:
            errors.append("PROVIDER_TIMEOUT_SECONDS must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def stripe_configured(self) -> bool:
        """True when the secret API key is present."""
        return bool(self.stripe_api_key)


# Global settings instance - validates at import time
settings = Settings()
