"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Application
    APP_ENV: str = "development"
    SECRET_KEY: str
    API_V1_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Admin panel
    FRONTEND_URL: str = "http://localhost:3000"
    ADMIN_RETURN_PATH: str = "/adminpanel"
    ADMIN_SESSION_COOKIE: str = "admin_session"

    # Xero Integration
    XERO_CLIENT_ID: str = ""
    XERO_CLIENT_SECRET: str = ""
    XERO_REDIRECT_URI: str = "http://localhost:8000/api/xero/callback"
    XERO_SCOPES: str = "openid profile email accounting.transactions accounting.contacts offline_access"
    XERO_TOKEN_ENCRYPTION_KEY: str = ""  # 64 hex chars (256-bit)

    # Invoice Ninja
    INVOICE_NINJA_URL: str = ""
    INVOICE_NINJA_API_TOKEN: str = ""
    INVOICE_NINJA_WEBHOOK_SECRET: str = ""

    # Scheduled trigger
    CRON_SECRET: str = ""

    # Sync tuning
    SYNC_BULK_DELAY_SECONDS: float = 2.0
    SYNC_BATCH_LIMIT: int = 50
    CRON_MAX_RETRIES: int = 3
    MANUAL_MAX_RETRIES: int = 5
    WEBHOOK_QUEUE_MAXSIZE: int = 100
    WEBHOOK_REPLAY_AFTER_MINUTES: int = 5

    # Rate limiting
    RATE_LIMIT_DEFAULT: str = "120/minute"
    RATE_LIMIT_MANUAL_SYNC: str = "10/minute"

    # CORS
    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        if self.APP_ENV == "development":
            return ["*"]  # Allow all origins in development
        return [self.FRONTEND_URL]

    @property
    def SECURE_COOKIES(self) -> bool:
        return self.APP_ENV != "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True
    )


settings = Settings()
