from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Celery worker configuration."""

    redis_url: str = "redis://redis:6379/0"
    timezone: str = "America/Sao_Paulo"
    notification_task_name: str = "notifications.appointment_event"
    notice_sweep_seconds: int = 60
    reminder_sweep_seconds: int = 300
    no_show_sweep_seconds: int = 900
    no_show_grace_minutes: int = 30

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
