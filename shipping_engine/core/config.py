"""
Application configuration

Shipping provider credentials, merchant origin address and engine tuning.
Defaults are safe for local development: with no ENVIA_API_KEY the gateway
reports itself unconfigured and quoting falls back to fixed rates.
"""
import json
import os
import logging
from typing import List, Union
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Carriers quoted when the caller does not pass an explicit list
DEFAULT_CARRIERS = [
    "estafeta",
    "fedex",
    "dhl",
    "redpack",
    "paquetexpress",
    "99minutos",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # App
    APP_NAME: str = "Storefront Shipping"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Shipping provider (Envia.com REST API)
    ENVIA_API_KEY: str = ""
    ENVIA_API_URL: str = "https://api.envia.com"

    # Merchant origin - injected once into the gateway
    SHIPPING_ORIGIN_NAME: str = "Modhu Honey Store"
    SHIPPING_ORIGIN_COMPANY: str = "Modhu"
    SHIPPING_ORIGIN_EMAIL: str = "envios@modhu.mx"
    SHIPPING_ORIGIN_PHONE: str = "5551234567"
    SHIPPING_ORIGIN_STREET: str = "Calle Principal 123"
    SHIPPING_ORIGIN_CITY: str = "Xalapa"
    SHIPPING_ORIGIN_STATE: str = "VE"
    SHIPPING_ORIGIN_COUNTRY: str = "MX"
    SHIPPING_ORIGIN_POSTAL_CODE: str = "91000"

    # CARRIERS - accepts JSON array or comma-separated string
    SHIPPING_CARRIERS: Union[str, List[str]] = DEFAULT_CARRIERS

    @field_validator("SHIPPING_CARRIERS", mode="before")
    @classmethod
    def parse_carriers(cls, v):
        if isinstance(v, list):
            return [c.strip().lower() for c in v if c and c.strip()]
        if isinstance(v, str):
            if not v.strip():
                return DEFAULT_CARRIERS
            if v.startswith("["):
                try:
                    return [c.strip().lower() for c in json.loads(v) if c and c.strip()]
                except json.JSONDecodeError:
                    pass
            return [c.strip().lower() for c in v.split(",") if c.strip()]
        return v

    # Pricing policy
    SHIPPING_CURRENCY: str = "MXN"
    SHIPPING_FREE_THRESHOLD: float = 500.0

    # Gateway / sync tuning
    SHIPPING_GATEWAY_TIMEOUT_SECONDS: float = 30.0
    SHIPPING_SYNC_BATCH_SIZE: int = 5
    SHIPPING_SYNC_STALE_HOURS: int = 4
    SHIPPING_TRACKING_SYNC_ENABLED: bool = True
    SHIPPING_TRACKING_SYNC_INTERVAL_SECONDS: int = 300

    # Demo / read-only deployments never write tracking refreshes back
    SHIPPING_READONLY: bool = False

    @property
    def envia_configured(self) -> bool:
        return bool(self.ENVIA_API_KEY)

    @model_validator(mode="after")
    def validate_production_config(self):
        """Runtime validation to catch unsafe production configurations."""
        if self.ENVIRONMENT == "production":
            errors = []

            if self.DEBUG:
                errors.append(
                    "DEBUG=True is forbidden in production. "
                    "Set DEBUG=false or ENVIRONMENT=development"
                )

            if not self.ENVIA_API_URL.startswith("https://"):
                errors.append(
                    f"ENVIA_API_URL must use HTTPS in production (got {self.ENVIA_API_URL!r})"
                )

            if self.SHIPPING_SYNC_BATCH_SIZE < 1:
                errors.append("SHIPPING_SYNC_BATCH_SIZE must be at least 1")

            if errors:
                raise ValueError(
                    "PRODUCTION CONFIGURATION VIOLATIONS:\n" + "\n".join(f"  - {e}" for e in errors)
                )

        return self


# Try to load settings, provide helpful error on failure
try:
    settings = Settings()
except Exception as e:
    if os.getenv("ENVIRONMENT", "development") == "development":
        logger.warning(f"Settings validation failed ({e}), using development defaults.")
        os.environ["ENVIRONMENT"] = "development"
        settings = Settings()
    else:
        raise
