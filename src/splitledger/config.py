from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    database_url: str = Field("postgresql://localhost/splitledger", alias="DATABASE_URL")
    default_currency: str = Field("INR", alias="DEFAULT_CURRENCY", min_length=3, max_length=3)
    max_update_retries: int = Field(5, alias="MAX_UPDATE_RETRIES", ge=1)
    log_level: str = Field("INFO", alias="LOG_LEVEL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
