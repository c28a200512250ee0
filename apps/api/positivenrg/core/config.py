"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = True

    # Database
    DATABASE_URL: str = "postgresql+psycopg://localhost:5432/positivenrg"

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 24 * 7

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Google Calendar OAuth (companion calendar sync)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # Token Encryption (calendar OAuth tokens)
    FERNET_KEY: str = ""

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Booking policy
    PLATFORM_FEE_PERCENT: int = 20
    DEFAULT_CURRENCY: str = "GBP"
    BOOKING_NOTES_MAX_LENGTH: int = 2000
    PENDING_BOOKING_RETENTION_MINUTES: int = 60
    FULL_REFUND_NOTICE_HOURS: int = 24
    LATE_CANCEL_REFUND_PERCENT: int = 50

    # Cache TTLs (seconds)
    CACHE_TTL_COMPANION: int = 7200
    CACHE_TTL_COMPANION_LIST: int = 300
    CACHE_TTL_APPOINTMENT: int = 3600
    CACHE_TTL_AVAILABILITY: int = 60

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets


settings = Settings()
