"""
Central configuration module for PodcastFlow Pro
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from typing import Optional, List

from dotenv import load_dotenv

# Only load .env in development
if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Required for all environments
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")  # Must be PostgreSQL - no default

    PORT: int = int(os.getenv("PORT", "8000"))
    APP_BASE_URL: str = os.getenv("APP_BASE_URL", "http://localhost:3000")

    # CORS
    CORS_ORIGINS: List[str] = []

    # Database pools
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Tenant schemas (one connection pool per org_<slug> schema)
    SCHEMA_POOL_SIZE: int = int(os.getenv("SCHEMA_POOL_SIZE", "5"))
    SLOW_QUERY_THRESHOLD_MS: int = int(os.getenv("SLOW_QUERY_THRESHOLD_MS", "1000"))
    LOG_QUERIES: bool = _env_bool("LOG_QUERIES")

    # Sessions
    SESSION_EXPIRE_HOURS: int = int(os.getenv("SESSION_EXPIRE_HOURS", "24"))

    # Email transport
    EMAIL_PROVIDER: Optional[str] = os.getenv("EMAIL_PROVIDER")  # 'ses', 'smtp' or 'dev'
    EMAIL_FROM_ADDRESS: str = os.getenv("EMAIL_FROM_ADDRESS", "noreply@podcastflow.pro")
    SUPPORT_EMAIL: str = os.getenv("SUPPORT_EMAIL", "support@podcastflow.pro")
    PLATFORM_NAME: str = os.getenv("PLATFORM_NAME", "PodcastFlow Pro")
    AWS_SES_REGION: str = os.getenv("AWS_SES_REGION", os.getenv("AWS_REGION", "us-east-1"))
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")
    SMTP_HOST: Optional[str] = os.getenv("SMTP_HOST")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: Optional[str] = os.getenv("SMTP_USER")
    SMTP_PASSWORD: Optional[str] = os.getenv("SMTP_PASSWORD")

    # Email queue worker
    EMAIL_QUEUE_POLL_SECONDS: int = int(os.getenv("EMAIL_QUEUE_POLL_SECONDS", "30"))
    EMAIL_QUEUE_BATCH_SIZE: int = int(os.getenv("EMAIL_QUEUE_BATCH_SIZE", "50"))
    EMAIL_QUEUE_MAX_ATTEMPTS: int = int(os.getenv("EMAIL_QUEUE_MAX_ATTEMPTS", "3"))
    EMAIL_QUEUE_RETRY_DELAY_SECONDS: int = int(os.getenv("EMAIL_QUEUE_RETRY_DELAY_SECONDS", "60"))
    EMAIL_QUEUE_RETENTION_DAYS: int = int(os.getenv("EMAIL_QUEUE_RETENTION_DAYS", "30"))
    SCHEDULER_ENABLED: bool = _env_bool("SCHEDULER_ENABLED", "true")

    # Build version (set during build/deploy)
    BUILD_VERSION: str = os.getenv("BUILD_VERSION", "dev")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._load_cors_origins()
        self._validate()

    def _load_cors_origins(self):
        """Load CORS origins from environment variable"""
        default_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        cors_env = os.getenv("CORS_ORIGINS", "")
        if cors_env:
            env_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
            self.CORS_ORIGINS = default_origins + env_origins
        else:
            self.CORS_ORIGINS = default_origins

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "test", "staging", "prod"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'test', 'staging', or 'prod'")

        if not self.SECRET_KEY:
            errors.append("SECRET_KEY is required but not set")
        elif len(self.SECRET_KEY) < 32:
            errors.append(f"SECRET_KEY must be at least 32 characters (current: {len(self.SECRET_KEY)})")

        # Tenant schemas depend on PostgreSQL search_path
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif not self.DATABASE_URL.startswith("postgresql") and self.ENV != "test":
            errors.append(f"DATABASE_URL must be a PostgreSQL connection string (got: {self.DATABASE_URL[:30]}...)")

        if self.EMAIL_PROVIDER and self.EMAIL_PROVIDER.lower() not in ["ses", "smtp", "dev"]:
            errors.append(f"Invalid EMAIL_PROVIDER: {self.EMAIL_PROVIDER}. Must be 'ses', 'smtp', or 'dev'")

        if self.EMAIL_QUEUE_MAX_ATTEMPTS < 1:
            errors.append("EMAIL_QUEUE_MAX_ATTEMPTS must be at least 1")

        if self.ENV in ["staging", "prod"]:
            if not self.EMAIL_PROVIDER or self.EMAIL_PROVIDER.lower() == "dev":
                errors.append(f"EMAIL_PROVIDER must be 'ses' or 'smtp' in {self.ENV}")
            if not self.APP_BASE_URL.startswith("https://"):
                errors.append("APP_BASE_URL must use HTTPS in staging/production")

        # Fail fast in staging/prod
        if errors and self.ENV in ["staging", "prod"]:
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION VALIDATION FAILED", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  ❌ {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            sys.exit(1)

        if errors:
            print("=" * 60, file=sys.stderr)
            print(f"CONFIGURATION WARNINGS ({self.ENV} mode - continuing)", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  ⚠️  {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode"""
        return self.ENV == "dev"

    @property
    def is_test(self) -> bool:
        return self.ENV == "test"


# Create global config instance
config = Config()
