"""
Configuration settings for the Storefront fulfillment service.
Loads from environment variables with validation.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Storefront Fulfillment"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    HOST: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"
    ADMIN_API_KEY: str

    # Database
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379"

    # Checkout
    SHIPPING_COST: Decimal = Decimal("15.00")
    CURRENCY: str = "RON"
    ORDER_NUMBER_ATTEMPTS: int = 3

    # Payment processor (card flow)
    PAYMENT_API_URL: str = "https://api.stripe.com/v1"
    PAYMENT_API_KEY: str | None = None
    PAYMENT_WEBHOOK_SECRET: str | None = None
    PAYMENT_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 15.0

    # Carrier (DPD)
    DPD_API_URL: str = "https://api.dpd.ro/v1"
    DPD_USERNAME: str | None = None
    DPD_PASSWORD: str | None = None
    DPD_COUNTRY_NAME: str = "ROMANIA"
    DPD_SERVICE_ID: int = 2505
    DPD_PLACEHOLDER_STREETS: List[str] = ["PRINCIPALA", "CENTRALA", "1 DECEMBRIE", "REPUBLICII"]

    # Sender contact printed on shipments and invoices
    COMPANY_NAME: str = "ScreenShield SRL"
    COMPANY_PHONE: str = ""
    COMPANY_EMAIL: str = "contact@screenshield.ro"
    COMPANY_CIF: str | None = None

    # Invoicing (Oblio)
    OBLIO_API_URL: str = "https://www.oblio.eu/api"
    OBLIO_EMAIL: str | None = None
    OBLIO_API_SECRET: str | None = None
    OBLIO_SERIES_NAME: str = "SS"
    OBLIO_VAT_PERCENTAGE: int = 19

    # Transactional email (Resend)
    RESEND_API_URL: str = "https://api.resend.com"
    RESEND_API_KEY: str | None = None
    RESEND_FROM_EMAIL: str = "onboarding@resend.dev"
    RESEND_FROM_NAME: str = "ScreenShield"
    ADMIN_NOTIFICATION_EMAILS: List[str] = []

    def validate_production_settings(self):
        """Validate critical settings for production deployment."""
        if not self.DEBUG and not self.PAYMENT_WEBHOOK_SECRET:
            raise ValueError(
                "PAYMENT_WEBHOOK_SECRET is required in production. "
                "Copy it from the payment processor's webhook endpoint settings."
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader with production validation."""
    settings = Settings()
    # Validate critical settings when not in debug mode
    if not settings.DEBUG:
        settings.validate_production_settings()
    return settings
