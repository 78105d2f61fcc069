"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent

PAYPAL_LIVE_URL = "https://api-m.paypal.com"
PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Love Pages Payments API"
    APP_VERSION: str = "1.4.0"
    ENVIRONMENT: str = "development"   # development | production | test
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'lovepages.db'}"

    # --- Security ---
    SECRET_KEY: str = "lovepages-secret-key-change-in-production"
    TOKEN_MAX_AGE_SECONDS: int = 60 * 60 * 24 * 7
    CORS_ORIGINS: list[str] = ["*"]

    # --- Public URLs ---
    FRONTEND_URL: str = "http://localhost:5173"
    BACKEND_URL: str = "http://localhost:8000"

    # --- MercadoPago ---
    MERCADOPAGO_ACCESS_TOKEN: str = ""
    MERCADOPAGO_WEBHOOK_SECRET: str = ""
    MERCADOPAGO_API_URL: str = "https://api.mercadopago.com"
    MERCADOPAGO_PRO_PRICE: float = 3.00
    MERCADOPAGO_CURRENCY: str = "USD"

    # --- PayPal ---
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_WEBHOOK_ID: str = ""
    PAYPAL_API_URL: Optional[str] = None
    PAYPAL_PRO_PRICE: str = "1.75"
    PAYPAL_CURRENCY: str = "USD"

    # --- Provider I/O ---
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    STATUS_LOOKUP_ATTEMPTS: int = 5
    STATUS_LOOKUP_DELAY_SECONDS: float = 2.0
    CAPTURE_CONFIRM_TIMEOUT_SECONDS: float = 10.0

    # --- Development helpers ---
    ENABLE_PAYMENT_SIMULATION: bool = True

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def paypal_base_url(self) -> str:
        if self.PAYPAL_API_URL:
            return self.PAYPAL_API_URL.rstrip("/")
        return PAYPAL_LIVE_URL if self.is_production else PAYPAL_SANDBOX_URL

    @property
    def simulation_enabled(self) -> bool:
        # Never available in production, whatever the flag says
        return self.ENABLE_PAYMENT_SIMULATION and not self.is_production


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
