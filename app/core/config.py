from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - DATABASE_URL (Postgres connection string; sqlite URLs work for local runs)
      - JWT_SECRET (HS256 signing secret shared with the auth provider)

    Optional:
      - CART_MAX_QUANTITY_PER_ITEM (per-line cap, unset/empty disables it)
      - RETURN_WINDOW_DAYS
      - LOCK_TIMEOUT_SECONDS
    """

    PROJECT_NAME: str = "Storefront Core"
    API_V1_STR: str = "/api/v1"

    # DB config
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 0

    # JWT verification (backend-side)
    JWT_SECRET: str
    JWT_ALG: str = "HS256"

    LOG_LEVEL: str = "INFO"

    # Business rules
    CART_MAX_QUANTITY_PER_ITEM: int | None = 5
    RETURN_WINDOW_DAYS: int = 7
    ORDER_NUMBER_PREFIX: str = "CL"

    # Upper bound for waiting on a per-key lock (cart, order)
    LOCK_TIMEOUT_SECONDS: float = 10.0

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
