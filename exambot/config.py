from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BotSettings(BaseSettings):
    bot_token: str = ""
    api_base_url: str = "http://localhost:5000"
    api_token: str = ""
    api_timeout: float = 30.0
    language: str = "uz"
    grouped_duration_seconds: int = 180 * 60
    mixed_duration_seconds: int = 30 * 60
    tick_interval: float = 1.0
    results_page_size: int = 10

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="EXAMBOT_",
        extra="ignore",
    )

    @field_validator("grouped_duration_seconds", "mixed_duration_seconds")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("test duration must be positive")
        return value

    @field_validator("tick_interval", "api_timeout")
    @classmethod
    def validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("results_page_size")
    @classmethod
    def validate_page_size(cls, value: int) -> int:
        # backend caps page size at 1000
        return max(1, min(value, 1000))


@lru_cache(maxsize=1)
def get_settings() -> BotSettings:
    return BotSettings()
