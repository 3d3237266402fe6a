"""
Configuration settings for the tenancy and entitlement core.
Values are read from the environment (or a .env file) via pydantic-settings.
"""

from pydantic_settings import BaseSettings
from typing import Any, Dict, List, Optional


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "SaaS Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str = "sqlite:///./saas_core.db"
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_RECYCLE: int = 3600

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_DB: int = 1

    # Cache Settings
    CACHE_BACKEND: str = "redis"  # redis, memory
    CACHE_KEY_PREFIX: str = "saas_core"
    CACHE_TTL_CURRENT_PLAN: int = 300  # 5 minutes
    CACHE_TTL_HAS_ACTIVE_PLAN: int = 600  # 10 minutes
    CACHE_TTL_ACTIVE_PLANS: int = 300
    CACHE_TTL_USAGE: int = 30
    CACHE_TTL_LIMITS: int = 60
    CACHE_TTL_YEARLY_ANCHOR: int = 3600  # 1 hour

    # Billing defaults assigned at onboarding
    DEFAULT_CURRENCY: str = "NPR"
    DEFAULT_MARKET: str = "nepal"
    FREE_PLAN_SLUG: str = "free"
    FREE_PLAN_TRIAL_DAYS: int = 7

    # Features whose limits are summed across concurrently active plans
    ADDITIVE_FEATURES: List[str] = ["unique_visitors"]

    # Rate Limiting
    RATE_LIMITS: Dict[str, Dict[str, int]] = {
        "auth": {"attempts": 5, "decay_minutes": 1},
        "password-reset": {"attempts": 3, "decay_minutes": 60},
        "api": {"attempts": 500, "decay_minutes": 1},
        "invitations": {"attempts": 20, "decay_minutes": 1},
        "workspace_settings": {"attempts": 30, "decay_minutes": 1},
    }
    RATE_LIMIT_FALLBACK_ATTEMPTS: int = 60
    PLAN_RATE_LIMIT_MULTIPLIERS: Dict[str, float] = {
        "free": 1,
        "starter": 2,
        "professional": 5,
        "enterprise": 10,
    }

    # Background Jobs (Celery configuration)
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    TRIAL_EXPIRY_SCHEDULE_SECONDS: float = 3600.0  # Every hour

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # text, json
    LOG_FILE: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        case_sensitive = True
        extra = "allow"

    def rate_limit_attempts(self, limit_type: str) -> int:
        """Base attempts for a rate limit bucket, or the global fallback."""
        bucket: Dict[str, Any] = self.RATE_LIMITS.get(limit_type) or {}
        return int(bucket.get("attempts", self.RATE_LIMIT_FALLBACK_ATTEMPTS))


# Create global settings instance
settings = Settings()

# Environment-specific overrides
if settings.ENVIRONMENT == "production":
    settings.DEBUG = False
    settings.LOG_LEVEL = "WARNING"
elif settings.ENVIRONMENT == "test":
    settings.CACHE_BACKEND = "memory"
    settings.REDIS_URL = "redis://localhost:6379/15"  # Use different Redis DB for tests
