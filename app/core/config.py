from pydantic_settings import BaseSettings
from typing import Optional, List


def _parse_csv(v: str) -> List[str]:
    """Parse comma-separated string; strip whitespace; keep non-empty."""
    if not v or not v.strip():
        return []
    return [o.strip() for o in v.split(",") if o.strip()]


_DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "postgresql://postgres:postgres@db:5432/enrollments"
    DB_STATEMENT_TIMEOUT_MS: int = 10000  # Bound on every query issued by webhook/sweep/admin paths
    DB_POOL_TIMEOUT_SECONDS: int = 10

    # CORS: comma-separated extra origins for production
    ALLOWED_ORIGINS_EXTRA: str = ""

    def get_allowed_origins(self) -> List[str]:
        """Return CORS allowed origins: default localhost + ALLOWED_ORIGINS_EXTRA."""
        return _DEFAULT_CORS_ORIGINS + _parse_csv(self.ALLOWED_ORIGINS_EXTRA)

    # Admin auth
    SECRET_KEY: str = "supersecret_jwt_key_change_in_production"
    JWT_ALGORITHM: str = "HS256"
    ADMIN_EMAILS: str = ""  # Comma-separated list of admin emails

    def get_admin_emails(self) -> List[str]:
        return [e.lower() for e in _parse_csv(self.ADMIN_EMAILS)]

    # Stripe
    STRIPE_WEBHOOK_SECRET: Optional[str] = None  # Webhook signing secret (whsec_...)
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Scheduler
    CRON_SECRET: Optional[str] = None  # Bearer credential for the reconciliation sweep
    STALE_PENDING_HOURS: int = 24
    WEBHOOK_RETRY_MIN_AGE_MINUTES: int = 5
    WEBHOOK_RETRY_BATCH_SIZE: int = 10
    MAX_WEBHOOK_ATTEMPTS: int = 5  # Sweep stops replaying an event after this many attempts

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        # Environment variables win over the .env file


settings = Settings()
