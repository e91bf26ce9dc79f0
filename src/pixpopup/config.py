"""Centralized configuration management for the PIX popup core.

Loads all configuration from environment variables with sensible defaults.
"""

from decimal import Decimal
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Config(BaseSettings):
    """Main configuration class for the checkout core and the conversion relay."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PIXPOPUP_",
        case_sensitive=False,
        extra="ignore",
    )

    # PIX backend
    backend_url: str = Field(
        default="http://localhost:54321/functions/v1",
        description="Base URL of the charge generation / status functions",
    )
    backend_api_key: str = Field(default="", description="API key sent to the backend")
    request_timeout_seconds: float = Field(default=30.0)

    # Charge generation retry policy
    charge_max_retries: int = Field(default=2, ge=0, description="Retries after the first attempt")
    charge_retry_delay_seconds: float = Field(default=1.0, ge=0)

    # Transaction timing
    expiry_seconds: float = Field(default=15 * 60, gt=0, description="Charge lifetime")
    tick_interval_seconds: float = Field(default=1.0, gt=0, description="Countdown resolution")
    poll_interval_seconds: float = Field(default=5.0, gt=0, description="Status query interval")

    # Amounts
    min_amount: Decimal = Field(default=Decimal("10.00"))
    max_amount: Decimal = Field(default=Decimal("1000.00"))
    currency: str = Field(default="BRL")

    # Popup metadata
    popup_variant: str = Field(default="boost", description="Sent to the backend as popupModel")
    content_name: str = Field(default="Donation Popup")

    # Default Meta pixel credential
    meta_pixel_id: str = Field(default="")
    meta_access_token: str = Field(default="")

    # Conversion relay service
    graph_api_url: str = Field(default="https://graph.facebook.com/v20.0")
    relay_host: str = Field(default="0.0.0.0")
    relay_port: int = Field(default=4030)

    # Session storage (attribution, fingerprint fallback)
    session_store_path: Optional[str] = Field(default=None)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")


# Global config instance
config = Config()


def validate_config_for_service(service: Literal["checkout", "relay"]) -> None:
    """Validate that required configuration is present for a specific service.

    Args:
        service: The service name to validate configuration for.

    Raises:
        ValueError: If required configuration is missing.
    """
    errors = []

    if service == "checkout":
        if not config.backend_url:
            errors.append("PIXPOPUP_BACKEND_URL must be set")
        if config.min_amount <= 0:
            errors.append("PIXPOPUP_MIN_AMOUNT must be positive")
        if config.max_amount < config.min_amount:
            errors.append("PIXPOPUP_MAX_AMOUNT must not be lower than PIXPOPUP_MIN_AMOUNT")

    if service == "relay":
        if not config.graph_api_url:
            errors.append("PIXPOPUP_GRAPH_API_URL must be set for the relay service")

    if errors:
        error_msg = f"Configuration errors for {service} service:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)
