import pytest

from clinic_booking.core.config import Settings, get_settings


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOOKINGS_STORE", " MongoDB ")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://clinic.example.com, http://localhost:5173")
    monkeypatch.setenv("CACHE_TTL_SECONDS", "120")

    settings = get_settings()

    assert settings.bookings_store == "mongodb"
    assert settings.allowed_origins == ["https://clinic.example.com", "http://localhost:5173"]
    assert settings.cache_ttl_seconds == 120.0


def test_non_positive_values_fall_back_to_defaults() -> None:
    settings = Settings(
        cache_ttl_seconds=0,
        cache_max_entries=-5,
        persistence_retry_attempts=0,
        availability_horizon_days=0,
        cache_eviction_ratio=3,
    )

    assert settings.cache_ttl_seconds == 300.0
    assert settings.cache_max_entries == 1000
    assert settings.persistence_retry_attempts == 3
    assert settings.availability_horizon_days == 7
    assert settings.cache_eviction_ratio == 0.2
