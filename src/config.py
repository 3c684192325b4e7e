"""Конфигурация оркестратора из переменных окружения."""
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Настройки сервиса — парсятся из env или .env файла."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Rate limiting (секунды между запросами к сайту)
    requests_per_hour: int = Field(default=100, ge=1)
    scrape_delay_min: float = Field(default=5.0, ge=0)
    scrape_delay_max: float = Field(default=15.0, ge=0)
    rate_limiter_max_queue: int = Field(default=1000, ge=1)

    # Ретраи задач
    max_retries: int = 3
    precondition_max_retries: int = 20
    precondition_backoff_seconds: float = 30.0
    progress_throttle_seconds: float = 5.0
    handler_timeout_seconds: float = 28.0

    # Хранилище состояния очереди
    state_backend: Literal["memory", "file", "supabase"] = "file"
    state_file: str = "data/scraper_state.json"
    supabase_url: str = ""
    supabase_service_key: SecretStr = SecretStr("")
    state_table: str = "scraper_state"

    # Фоновые триггеры
    connection_sync_hours: float = 24
    connection_sync_check_minutes: int = 60
    manual_sync_min_hours: float = 6
    stale_profile_days: int = 7
    idle_check_seconds: int = 60
    stale_batch_size: int = 10

    # API управления
    scraper_api_key: SecretStr
    scraper_port: int = Field(
        default=8001,
        validation_alias=AliasChoices("SCRAPER_PORT", "PORT"),
    )

    # Модуль хоста с таблицей хэндлеров (HANDLERS: dict[str, Handler])
    handlers_module: str = ""
    log_level: str = "INFO"

    @model_validator(mode="after")
    def check_delay_window(self) -> "Settings":
        if self.scrape_delay_max < self.scrape_delay_min:
            raise ValueError("scrape_delay_max must be >= scrape_delay_min")
        if self.state_backend == "supabase" and not self.supabase_url:
            raise ValueError("supabase_url is required for state_backend=supabase")
        return self


def load_settings() -> Settings:
    """Создать Settings из переменных окружения (.env файла).

    Фабричная функция — обходит ограничение pyright, который не знает,
    что pydantic-settings заполняет обязательные поля из окружения.
    """
    return Settings.model_validate({})
