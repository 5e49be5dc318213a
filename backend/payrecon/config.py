"""
Application Configuration — Environment & Settings
Centralizes gateway credentials, reconciliation thresholds and scheduler
intervals from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Payment Reconciliation API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'payrecon.db'}"

    # --- Razorpay ---
    RAZORPAY_API_KEY: str = ""
    RAZORPAY_API_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com"

    # --- Cashfree ---
    CASHFREE_CLIENT_ID: str = ""
    CASHFREE_CLIENT_SECRET: str = ""
    CASHFREE_ENVIRONMENT: str = "sandbox"  # sandbox | production
    CASHFREE_API_VERSION: str = "2025-01-01"

    # --- PhonePe ---
    PHONEPE_CLIENT_ID: str = ""
    PHONEPE_CLIENT_SECRET: str = ""
    PHONEPE_CLIENT_VERSION: int = 1
    PHONEPE_ENV: str = "SANDBOX"  # SANDBOX | PRODUCTION
    PHONEPE_CALLBACK_USERNAME: str = ""
    PHONEPE_CALLBACK_PASSWORD: str = ""

    # --- Gateway calls ---
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # --- Reconciliation ---
    RECONCILE_STALE_MINUTES: int = 15
    RECONCILE_BATCH_SIZE: int = 50
    RECONCILE_INTERVAL_MINUTES: int = 10

    # --- Task scheduler ---
    SCHEDULER_POLL_SECONDS: float = 5.0
    SCHEDULER_LEASE_SECONDS: int = 300
    SCHEDULER_RETRY_DELAY_SECONDS: int = 60
    SCHEDULER_BATCH_SIZE: int = 20
    NOTIFICATION_MAX_RETRIES: int = 3

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
