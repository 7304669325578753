import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from reconciliation_agent.core.errors import ConfigurationError

load_dotenv()

# Batch size per environment when BATCH_SIZE is not given explicitly
ENVIRONMENT_BATCH_SIZES = {
    "production": 100,
    "staging": 50,
    "development": 10,
    "test": 5,
}


def _default_database_url() -> str:
    host = os.getenv("PGHOST", "localhost")
    db = os.getenv("PGDATABASE", "postgres")
    user = os.getenv("PGUSER", "postgres")
    password = os.getenv("PGPASSWORD", "")
    return f"postgresql+asyncpg://{user}:{password}@{host}/{db}"


class Settings(BaseSettings):
    PROJECT_NAME: str = "Reconciliation Agent"
    ENVIRONMENT: str = "development"  # development, test, staging, production

    DATABASE_URL: str = ""

    # Payment gateway
    GATEWAY_API_URL: str = "https://api.abacatepay.com"
    GATEWAY_API_KEY: str = ""  # Required, checked when the agent is built

    # Run sizing and timing
    BATCH_SIZE: Optional[int] = None  # Resolved from ENVIRONMENT when unset
    RUN_TIMEOUT_SECONDS: float = 240.0  # 4 minutes
    LOCK_TTL_SECONDS: float = 300.0  # 5 minutes, must outlive the run timeout
    PENDING_ORDER_MIN_AGE_MINUTES: int = 60

    # Retry / throttling
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_BACKOFF_FACTOR: float = 2.0
    API_TIMEOUT_SECONDS: float = 30.0
    API_THROTTLE_SECONDS: float = 0.1

    # Circuit breaker
    CIRCUIT_BREAKER_THRESHOLD: float = 0.5  # api_errors / api_calls
    CIRCUIT_BREAKER_MIN_CALLS: int = 1  # 1 = ratio checked after every call
    CIRCUIT_BREAKER_COOLDOWN_SECONDS: float = 60.0

    # Scheduling
    SCHEDULE_CRON: str = "*/5 * * * *"
    SCHEDULER_TIMEZONE: str = "America/Sao_Paulo"

    # Observability
    LOG_LEVEL: Optional[str] = None  # INFO in production, DEBUG elsewhere
    LOG_JSON: bool = False
    SENTRY_DSN: str = ""
    METRICS_RETENTION_DAYS: int = 30

    # Alert thresholds (warning level; critical is derived)
    ALERT_DURATION_SECONDS: float = 180.0
    ALERT_API_ERROR_RATE: float = 0.1
    ALERT_ERRORS_COUNT: int = 5

    # Fulfillment hook for newly paid orders (optional)
    FULFILLMENT_WEBHOOK_URL: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def _resolve_and_validate(self) -> "Settings":
        if not self.DATABASE_URL:
            self.DATABASE_URL = _default_database_url()
        if self.BATCH_SIZE is None:
            self.BATCH_SIZE = ENVIRONMENT_BATCH_SIZES.get(self.ENVIRONMENT, 10)
        if self.LOG_LEVEL is None:
            self.LOG_LEVEL = "INFO" if self.is_production else "DEBUG"

        errors = []
        if self.BATCH_SIZE <= 0:
            errors.append("BATCH_SIZE must be greater than 0")
        if self.RUN_TIMEOUT_SECONDS <= 0:
            errors.append("RUN_TIMEOUT_SECONDS must be greater than 0")
        if self.LOCK_TTL_SECONDS <= 0:
            errors.append("LOCK_TTL_SECONDS must be greater than 0")
        if self.RUN_TIMEOUT_SECONDS >= self.LOCK_TTL_SECONDS:
            errors.append("RUN_TIMEOUT_SECONDS must be shorter than LOCK_TTL_SECONDS")
        if self.MAX_RETRIES < 1:
            errors.append("MAX_RETRIES must be at least 1")
        if self.RETRY_BASE_DELAY_SECONDS < 0:
            errors.append("RETRY_BASE_DELAY_SECONDS must not be negative")
        if self.RETRY_BACKOFF_FACTOR < 1:
            errors.append("RETRY_BACKOFF_FACTOR must be at least 1")
        if self.API_TIMEOUT_SECONDS <= 0:
            errors.append("API_TIMEOUT_SECONDS must be greater than 0")
        if self.API_THROTTLE_SECONDS < 0:
            errors.append("API_THROTTLE_SECONDS must not be negative")
        if not 0 < self.CIRCUIT_BREAKER_THRESHOLD <= 1:
            errors.append("CIRCUIT_BREAKER_THRESHOLD must be within (0, 1]")
        if self.CIRCUIT_BREAKER_MIN_CALLS < 1:
            errors.append("CIRCUIT_BREAKER_MIN_CALLS must be at least 1")
        if self.CIRCUIT_BREAKER_COOLDOWN_SECONDS < 0:
            errors.append("CIRCUIT_BREAKER_COOLDOWN_SECONDS must not be negative")
        if self.PENDING_ORDER_MIN_AGE_MINUTES < 0:
            errors.append("PENDING_ORDER_MIN_AGE_MINUTES must not be negative")
        if self.METRICS_RETENTION_DAYS <= 0:
            errors.append("METRICS_RETENTION_DAYS must be greater than 0")

        if errors:
            raise ConfigurationError(f"Invalid configuration: {', '.join(errors)}")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def require_gateway_credentials(self) -> None:
        """Fail fast when the gateway credential is missing."""
        if not self.GATEWAY_API_KEY:
            raise ConfigurationError("GATEWAY_API_KEY is not set; the gateway cannot be queried")


def load_settings(**overrides) -> Settings:
    """
    Build a Settings instance, normalizing pydantic errors to ConfigurationError.

    Invalid numeric values coming from the environment (e.g. BATCH_SIZE=abc)
    surface as pydantic validation errors; callers only need to handle one type.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
