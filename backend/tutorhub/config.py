from pydantic_settings import BaseSettings
from typing import List, Optional
from datetime import datetime
import os

class Settings(BaseSettings):
    # Application
    APP_NAME: str = "TutorHub Center Management API"
    APP_ENV: str = "development"
    DEBUG: bool = True
    ENABLE_API_DOCS: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Public base URL used to build portal links
    APP_URL: str = "http://localhost:3000"

    # Database
    DATABASE_URL: str

    # Redis (rate limiter storage in production)
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: Optional[str] = None

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    @property
    def origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Reverse proxies whose X-Forwarded-For / X-Real-IP headers are believed
    TRUSTED_PROXIES: str = ""

    @property
    def trusted_proxies_list(self) -> List[str]:
        return [proxy.strip() for proxy in self.TRUSTED_PROXIES.split(",") if proxy.strip()]

    # Portal tokens
    PORTAL_JWT_SECRET: Optional[str] = None
    PORTAL_TOKEN_DEFAULT_DAYS: int = 30
    # Tokens signed correctly but never stored are accepted only in this window
    PORTAL_ALLOW_UNTRACKED_TOKENS: bool = True
    PORTAL_UNTRACKED_TOKENS_UNTIL: Optional[datetime] = None

    # Cron
    CRON_SECRET: Optional[str] = None

    # Notification queue
    NOTIFICATION_BATCH_SIZE: int = 50
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_RETRY_DELAY_MINUTES: int = 5
    # Rows left in processing longer than this (crashed run) go back to the queue
    NOTIFICATION_PROCESSING_LEASE_MINUTES: int = 15

    # Auth provider (Supabase)
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    AUTH_CHECK_TIMEOUT_SECONDS: float = 10.0

    # SMS (Clickatell)
    CLICKATELL_API_URL: str = "https://platform.clickatell.com/messages/http/send"
    CLICKATELL_API_KEY: Optional[str] = None

    # Email (Resend)
    RESEND_API_URL: str = "https://api.resend.com/emails"
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM_EMAIL: str = "SA Tutorial Centers <noreply@satutorialcentres.co.za>"

    # Payment processor (Stripe)
    STRIPE_API_URL: str = "https://api.stripe.com/v1"
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_MICRO_PRICE_ID: Optional[str] = None
    STRIPE_STARTER_PRICE_ID: Optional[str] = None
    STRIPE_STANDARD_PRICE_ID: Optional[str] = None
    STRIPE_PREMIUM_PRICE_ID: Optional[str] = None

    @property
    def price_tier_map(self) -> dict:
        """Price id -> plan tier for every configured plan price"""
        prices = {
            "micro": self.STRIPE_MICRO_PRICE_ID,
            "starter": self.STRIPE_STARTER_PRICE_ID,
            "standard": self.STRIPE_STANDARD_PRICE_ID,
            "premium": self.STRIPE_PREMIUM_PRICE_ID,
        }
        return {price_id: tier for tier, price_id in prices.items() if price_id}

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"

# Create settings instance
settings = Settings()

# Ensure directories exist
log_dir = os.path.dirname(settings.LOG_FILE)
if log_dir:
    os.makedirs(log_dir, exist_ok=True)
