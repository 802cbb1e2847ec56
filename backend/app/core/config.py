"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "FamilyNotify Dispatch API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    APP_URL: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis - REQUIRED
    REDIS_URL: str

    # Security - REQUIRED (no defaults for sensitive values)
    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # Shared secret for the scheduled sweep endpoints
    CRON_SECRET: str = ""

    # CORS
    CORS_ORIGINS: list[str] = []

    # Celery
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # Email (SMTP)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""
    SMTP_TLS: bool = True

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    # WhatsApp Cloud API
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_ACCESS_TOKEN: str = ""
    WHATSAPP_API_VERSION: str = "v18.0"

    # Web push (VAPID)
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_CLAIMS_EMAIL: str = "mailto:noreply@familynotify.com"

    # Voice call (Yemot)
    YEMOT_USERNAME: str = ""
    YEMOT_PASSWORD: str = ""
    YEMOT_API_URL: str = "https://www.call2all.co.il/ym/api"

    # Dispatch
    TRANSPORT_TIMEOUT_SECONDS: float = 30.0
    DISPATCH_CONCURRENCY: int = 1

    # Scheduler
    SCHEDULER_INTERVAL_SECONDS: float = 600.0
    SCHEDULER_BATCH_SIZE: int = 10
    # How late an offset reminder may still go out; must exceed the sweep interval
    EVENT_REMINDER_OFFSET_GRACE_MINUTES: int = 30
    ORPHANED_ATTEMPT_THRESHOLD_MINUTES: int = 30
    ORPHAN_RECONCILE_ENABLED: bool = False

    # Rate limiting
    # RATE_LIMIT_BACKEND: redis (shared across instances) or memory (single process)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_BACKEND: str = "redis"
    RATE_LIMIT_AUTH_LIMIT: int = 5
    RATE_LIMIT_AUTH_WINDOW_SECONDS: int = 60
    RATE_LIMIT_DISPATCH_LIMIT: int = 10
    RATE_LIMIT_DISPATCH_WINDOW_SECONDS: int = 60
    RATE_LIMIT_WRITE_LIMIT: int = 30
    RATE_LIMIT_WRITE_WINDOW_SECONDS: int = 60
    RATE_LIMIT_SUPER_ADMIN_LIMIT: int = 20
    RATE_LIMIT_SUPER_ADMIN_WINDOW_SECONDS: int = 60
    RATE_LIMIT_GLOBAL_LIMIT: int = 100
    RATE_LIMIT_GLOBAL_WINDOW_SECONDS: int = 60

    # Tracing
    OTLP_ENDPOINT: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
