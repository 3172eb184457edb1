import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./flashdeck.db"
    TEST_DATABASE_URL: Optional[str] = None

    # JWT auth
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_MINUTES: int = 60 * 24

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    SUBSCRIPTION_PRICE_CENTS: int = 999  # monthly, per educator

    # Read-through cache
    CACHE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_DEFAULT_TTL_SECONDS: int = 300
    CACHE_MAX_KEYS: int = 10000
    CACHE_SWEEP_INTERVAL_SECONDS: float = 60.0
    CACHE_SWEEP_BATCH: int = 500

    # Listing defaults
    PAGINATION_DEFAULT_LIMIT: int = 12
    PAGINATION_MAX_LIMIT: int = 100

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
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("flashdeck")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = ["JWT_SECRET"]
    if (getattr(cfg, "ENV", "development") or "").lower() == "production":
        required_keys += ["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    backend = (getattr(cfg, "CACHE_BACKEND", "memory") or "memory").lower()
    if backend not in {"memory", "redis"}:
        message = f"Unknown CACHE_BACKEND '{backend}', expected memory or redis"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
