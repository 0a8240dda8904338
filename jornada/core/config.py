from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AnyUrl, Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = Field(default="dev", description="dev|staging|prod")
    APP_NAME: str = "Jornada Core API"
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8081

    # Segurança (tokens emitidos externamente, aqui só verificamos)
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # DB
    DB_URL: AnyUrl | str = "sqlite+aiosqlite:///./jornada.db"
    RUN_MIGRATIONS_ON_STARTUP: bool = True

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Roteamento de eventos inbound
    DEFAULT_COUNTRY_CODE: str = "55"
    FALLBACK_JOURNEY_KEY: str = "sales_order"

    # Presença (ponto digital)
    PRESENCE_JOURNEY_KEY: str = "presence"
    PRESENCE_DEFAULT_TIME_ZONE: str = "America/Sao_Paulo"
    PRESENCE_PLANNED_MINUTES: int = 480

@lru_cache
def get_settings() -> Settings:
    return Settings()
