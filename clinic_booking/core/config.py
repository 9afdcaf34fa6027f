from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_POSITIVE_FLOAT_DEFAULTS = {
    "persistence_timeout_seconds": 5.0,
    "cache_ttl_seconds": 300.0,
    "availability_refresh_seconds": 30.0,
}
_POSITIVE_INT_DEFAULTS = {
    "persistence_retry_attempts": 3,
    "cache_max_entries": 1000,
    "availability_horizon_days": 7,
    "availability_max_horizon_days": 60,
    "mongodb_connect_timeout_ms": 2000,
}


class Settings(BaseSettings):
    app_name: str = "Clinic Booking API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    bookings_store: str = "memory"
    schedules_store: str = "memory"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "clinic_booking"
    mongodb_bookings_collection: str = "bookings"
    mongodb_status_history_collection: str = "booking_status_history"
    mongodb_schedules_collection: str = "provider_schedules"
    mongodb_connect_timeout_ms: int = 2000
    persistence_timeout_seconds: float = 5.0
    persistence_retry_attempts: int = 3
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 1000
    cache_eviction_ratio: float = 0.2
    availability_horizon_days: int = 7
    availability_max_horizon_days: int = 60
    availability_refresh_seconds: float = 30.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("bookings_store", "schedules_store", mode="before")
    @classmethod
    def normalize_store_name(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator(*_POSITIVE_FLOAT_DEFAULTS, mode="before")
    @classmethod
    def normalize_positive_float(cls, value: float | str, info) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return _POSITIVE_FLOAT_DEFAULTS[info.field_name]
        return parsed_value

    @field_validator(*_POSITIVE_INT_DEFAULTS, mode="before")
    @classmethod
    def normalize_positive_int(cls, value: int | str, info) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return _POSITIVE_INT_DEFAULTS[info.field_name]
        return parsed_value

    @field_validator("cache_eviction_ratio", mode="before")
    @classmethod
    def normalize_cache_eviction_ratio(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0 or parsed_value > 1:
            return 0.2
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
