# backend/app/core/config.py
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
import pytz
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.info(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)

_DEFAULT_SECRET_KEY = SecretStr("dev-only-secret-key-change-me")

class Settings(BaseSettings):
    secret_key: SecretStr = Field(
        default=_DEFAULT_SECRET_KEY,
        description="Secret key for JWT tokens",
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 720  # 12 hours

    database_url: str = Field(
        default="sqlite+pysqlite:///./appointments.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = False

    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for cross-process serialization locks (in-process only when unset)",
    )
    lock_namespace: str = "engine"
    lock_ttl_seconds: int = Field(default=30, ge=1)
    lock_timeout_seconds: float = Field(default=10.0, gt=0)

    engine_timezone: str = Field(
        default="UTC",
        description="Single timezone used for every appointment date/time comparison",
    )
    reinitiation_limit: int = Field(
        default=2,
        ge=1,
        description="Buyer cancellations after which a cancelled appointment stops blocking rebooking",
    )

    listing_service_url: Optional[str] = Field(
        default=None,
        description="Base URL of the listings service used for owner lookup",
    )
    listing_service_timeout_seconds: float = 5.0
    listing_owners: Dict[str, str] = Field(
        default_factory=dict,
        description="Static listing_id -> owner_id mapping used when no listings service is configured",
    )

    audit_enabled: bool = True

    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: Optional[str] = None
    completion_sweep_interval_seconds: int = Field(default=900, ge=60)
    completion_sweep_batch_size: int = Field(default=500, ge=1)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("engine_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

settings = Settings()
logger.info(
    "[CONFIG] Engine configuration: timezone=%s reinitiation_limit=%s redis_locks=%s",
    settings.engine_timezone,
    settings.reinitiation_limit,
    bool(settings.redis_url),
)
