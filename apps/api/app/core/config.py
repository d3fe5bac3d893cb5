from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "SalesTrack API"
    app_env: str = "local"
    app_debug: bool = True
    api_port: int = 8000
    database_url: str = "sqlite+pysqlite:///./salestrack.db"
    redis_url: str = "redis://redis:6379/0"
    jwt_secret: str = "replace-me"
    jwt_algorithm: str = "HS256"
    history_limit: int = 10
    notification_live_timeout_seconds: float = 2.0
    reminder_hour: int = 18
    reminder_minute: int = 30
    reminder_timezone: str = "UTC"
    reserved_phone_numbers: dict[str, str] = {}
    rate_limit_disabled: bool = False
    rate_limit_mutations_per_minute: int = 60
    metrics_enabled: bool = False
    otel_enabled: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
