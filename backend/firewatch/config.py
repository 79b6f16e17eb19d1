# backend/firewatch/config.py
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Market Fire-Watch API"

    # PostgreSQL
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_HOST: str = "localhost"
    DB_PORT: str = "5432"
    CONFIG_DB_NAME: str = "firewatch_config"
    DATA_DB_NAME: str = "firewatch_data"

    # Full URLs win over the DB_* parts (e.g. sqlite+aiosqlite:///./config.db)
    CONFIG_DB_URL_OVERRIDE: Optional[str] = None
    DATA_DB_URL_OVERRIDE: Optional[str] = None

    # "sql" | "memory"
    STORAGE_BACKEND: str = "sql"

    @property
    def CONFIG_DB_URL(self) -> str:
        if self.CONFIG_DB_URL_OVERRIDE:
            return self.CONFIG_DB_URL_OVERRIDE
        return self._pg_url(self.CONFIG_DB_NAME)

    @property
    def DATA_DB_URL(self) -> str:
        if self.DATA_DB_URL_OVERRIDE:
            return self.DATA_DB_URL_OVERRIDE
        return self._pg_url(self.DATA_DB_NAME)

    def _pg_url(self, db_name: str) -> str:
        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{db_name}"

    # MQTT
    MQTT_ENABLED: bool = False
    MQTT_BROKER: str = "localhost"
    MQTT_PORT: int = 1883
    MQTT_USER: str = ""
    MQTT_PASSWORD: str = ""
    MQTT_TOPIC: str = "firewatch/+/packets"

    # Ingestion
    SYSTEM_REGISTRAR: str = "system"

    # Query windows (days)
    FIRE_HISTORY_MAX_RANGE_DAYS: int = 31
    FIRE_HISTORY_DEFAULT_RANGE_DAYS: int = 30
    RECEPTION_DEFAULT_RANGE_DAYS: int = 7
    RECEPTION_MAX_RANGE_DAYS: int = 31

    # Reception retention sweep, 0 disables
    RECEPTION_RETENTION_DAYS: int = 7
    RECEPTION_SWEEP_INTERVAL: int = 3600

    # Dashboard
    COMM_ERROR_CODES: List[str] = ["04"]
    DASHBOARD_RECENT_LIMIT: int = 50

    LOG_FILE: str = "firewatch.log"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
