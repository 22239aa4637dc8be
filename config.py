from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Commission engine settings, read from IB_* environment variables or .env."""

    DATABASE_DSN: str = "dbname=ib user=ib password=secret host=localhost port=5432"
    LOG_LEVEL: str = "INFO"

    # random attempts before switching to the clock-derived suffix
    REFERRAL_CODE_MAX_ATTEMPTS: int = 10

    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_prefix = "IB_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
