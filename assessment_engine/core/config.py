# assessment_engine/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,  # Environment vars are uppercase
        extra="ignore",      # Ignore unexpected vars instead of raising
    )

    # Core application settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./assessment_engine.db"
    DATABASE_ECHO: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8101
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_FILE: str | None = "assessment_engine.log"

    # CORS settings
    ALLOWED_ORIGINS: list[str] = ["*"]  # In production, specify actual origins
    ALLOW_CREDENTIALS: bool = True
    ALLOWED_METHODS: list[str] = ["*"]
    ALLOWED_HEADERS: list[str] = ["*"]

    # JWT settings
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"

    # Attempt runtime (client side)
    API_BASE_URL: str = "http://localhost:8101/api/v1"
    HTTP_TIMEOUT_SECONDS: float = 15.0
    AUTOSAVE_INTERVAL_SECONDS: float = 30.0
    TIMER_TICK_SECONDS: float = 1.0
    FORCED_SUBMIT_MAX_RETRIES: int = 5
    FORCED_SUBMIT_BACKOFF_SECONDS: float = 2.0

    # Expired draft sweeper (server side)
    EXPIRY_SWEEP_ENABLED: bool = True
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 60
    EXPIRY_GRACE_SECONDS: int = 120

    # Letter grades, descending by minimum percentage
    GRADE_THRESHOLDS: list[tuple[str, float]] = [
        ("A+", 90.0),
        ("A", 80.0),
        ("B", 70.0),
        ("C", 60.0),
        ("D", 50.0),
        ("F", 0.0),
    ]

    # Certificate issuance hook
    CERTIFICATE_WEBHOOK_URL: str | None = None
    CERTIFICATE_WEBHOOK_SECRET: str | None = None


def _normalize_settings(settings: Settings) -> None:
    """Normalize values that have more than one accepted spelling."""
    # Heroku-style URLs need the async driver
    if settings.DATABASE_URL.startswith("postgres://"):
        settings.DATABASE_URL = settings.DATABASE_URL.replace(
            "postgres://", "postgresql+asyncpg://", 1
        )
    elif settings.DATABASE_URL.startswith("postgresql://"):
        settings.DATABASE_URL = settings.DATABASE_URL.replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    settings.API_BASE_URL = settings.API_BASE_URL.rstrip("/")
    settings.GRADE_THRESHOLDS = sorted(
        settings.GRADE_THRESHOLDS, key=lambda item: item[1], reverse=True
    )


def _validate_settings(settings: Settings) -> None:
    """Validate critical application settings."""
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL is required")
    if not settings.JWT_SECRET:
        raise ValueError("JWT_SECRET is required")
    if not settings.GRADE_THRESHOLDS:
        raise ValueError("GRADE_THRESHOLDS must define at least one grade")
    if settings.GRADE_THRESHOLDS[-1][1] > 0:
        raise ValueError("GRADE_THRESHOLDS must include a grade with minimum 0")
    if settings.TIMER_TICK_SECONDS <= 0 or settings.TIMER_TICK_SECONDS > 1:
        raise ValueError("TIMER_TICK_SECONDS must be in (0, 1]")
    if settings.AUTOSAVE_INTERVAL_SECONDS <= 0:
        raise ValueError("AUTOSAVE_INTERVAL_SECONDS must be positive")

    # Environment-specific validations
    if settings.ENVIRONMENT == "production" and settings.DEBUG:
        print("WARNING: DEBUG is enabled in production. Consider setting DEBUG=False.")
    if settings.ENVIRONMENT == "production" and settings.DATABASE_URL.startswith("sqlite"):
        raise ValueError("A sqlite DATABASE_URL is not allowed in production")


# Initialize settings with error handling
try:
    settings = Settings()
    _normalize_settings(settings)
    _validate_settings(settings)
except Exception as e:
    print(f"Error initializing settings: {e}")
    raise
