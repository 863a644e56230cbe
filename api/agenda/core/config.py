from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Agenda API"
    database_url: str = (
        "postgresql+psycopg2://agenda:agenda@db:5432/agenda"  # pragma: allowlist secret
    )
    timezone: str = "America/Sao_Paulo"
    cors_origins: list[str] = ["http://localhost:3000"]
    rate_limit_requests: int = 120
    rate_limit_window_seconds: int = 60
    recurrence_policy: str = "BEST_EFFORT"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


settings = get_settings()
