import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Free tier (users without an active account subscription)
    FREE_TIER_MAX_GUESTS: int = 10
    FREE_TIER_MAX_COLLABORATORS: int = 1
    FREE_TIER_MAX_PHOTOS: int = 5
    FREE_TIER_EVENT_CREATIONS: int = 0

    # Trial assignment on signup. When unset, the first active trial plan
    # (by sort_order) the user has not consumed yet is used.
    TRIAL_PLAN_ID: Optional[str] = None
    AUTO_ASSIGN_TRIAL: bool = True

    # Quota advisory thresholds (percent of total creations used)
    QUOTA_WARN_THRESHOLDS: str = "80,90"

    # App URLs
    BACKEND_URL: str = "http://localhost:8000"
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Negative free-tier values are rejected: the free tier is never unlimited.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("partyplanner")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
    ]

    problems = [f"missing {key}" for key in required_keys if not getattr(cfg, key, None)]

    for key in (
        "FREE_TIER_MAX_GUESTS",
        "FREE_TIER_MAX_COLLABORATORS",
        "FREE_TIER_MAX_PHOTOS",
        "FREE_TIER_EVENT_CREATIONS",
    ):
        if int(getattr(cfg, key, 0)) < 0:
            problems.append(f"{key} must be >= 0")

    if problems:
        message = f"Invalid configuration: {', '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
