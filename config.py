"""
Configuration management for DoseKeeper
"""

from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "DoseKeeper"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./dosekeeper.db"
    DATABASE_ECHO: bool = False

    # Civil time zone used for calendar-day boundaries
    TIMEZONE: str = "UTC"

    # Dose scheduling
    DOSE_HORIZON_DAYS: int = 30
    RECONCILE_WINDOW_MINUTES: int = 15
    DRIFT_THRESHOLD_MINUTES: int = 15
    LATE_DOSE_THRESHOLD_MINUTES: int = 15

    # Devices
    LOW_BATTERY_THRESHOLD: int = 20
    DEFAULT_LOW_STOCK_THRESHOLD: int = 5
    DEDUPE_DEVICE_ALERTS: bool = True

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
