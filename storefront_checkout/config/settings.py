"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront_checkout.domain.models import PaymentMethod


class Settings(BaseSettings):
    """Application settings loaded from CHECKOUT_* environment variables."""

    # Storefront
    currency: str = Field(default="INR", description="ISO currency code for all prices")
    default_country: str = Field(default="India", description="Country used when none is given")
    allow_guest_checkout: bool = Field(default=True, description="Allow checkout without a user id")
    estimated_delivery_days: int = Field(default=5, ge=0, description="Days until estimated delivery")

    # Payment methods
    enabled_payment_methods: List[PaymentMethod] = Field(
        default_factory=lambda: list(PaymentMethod),
        description="Payment methods offered at checkout",
    )
    deferred_cash_max_amount: Optional[Decimal] = Field(
        default=None, description="Withhold cash on delivery above this amount (unset = no limit)"
    )

    # Payment execution
    payment_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Upper bound on a single payment attempt"
    )
    payment_max_attempts: int = Field(
        default=2, ge=1, description="Attempts per payment when the gateway is unavailable"
    )
    payment_retry_delay_seconds: float = Field(
        default=1.0, ge=0, description="Delay before retrying an unavailable gateway"
    )

    # Housekeeping
    finished_checkout_retention_seconds: float = Field(
        default=900.0, ge=0, description="How long finished checkouts stay readable"
    )
    housekeeping_interval_seconds: float = Field(
        default=60.0, gt=0, description="Interval between pruning passes"
    )

    # UPI direct transfer
    upi_payee_vpa: str = Field(default="merchant@upi", description="Payee virtual payment address")
    upi_payee_name: str = Field(default="Storefront", description="Payee display name")

    # Stripe Configuration
    stripe_secret_key: Optional[str] = Field(default=None, description="Stripe secret API key")
    stripe_webhook_secret: Optional[str] = Field(default=None, description="Stripe webhook signing secret")
    stripe_api_version: str = Field(default="2023-10-16", description="Stripe API version")
    stripe_max_network_retries: int = Field(
        default=2, ge=0, description="Network retries performed natively by the Stripe SDK"
    )
    stripe_poll_interval_seconds: float = Field(
        default=2.0, gt=0, description="Interval between PaymentIntent status polls"
    )

    # Database Configuration
    database_url: Optional[str] = Field(
        default=None, description="Async SQLAlchemy URL; orders stay in memory when unset"
    )
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="storefront-checkout", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="Render logs as JSON")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_prefix="CHECKOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: Optional[str]) -> Optional[str]:
        """Validate that a Stripe secret key, when given, is a test or live key."""
        if v is None:
            return v
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def stripe_enabled(self) -> bool:
        return self.stripe_secret_key is not None

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return self.stripe_secret_key is None or self.stripe_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
