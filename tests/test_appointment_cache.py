import threading

import pytest

from clinic_booking.services.appointment_cache import (
    PROVIDER_BLOCKING_BOOKINGS,
    PROVIDER_BOOKINGS,
    STATUS_SUMMARY,
    SUBJECT_BOOKINGS,
    AppointmentCache,
    CacheKey,
)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _CountingLoader:
    def __init__(self, value: object = "payload") -> None:
        self.value = value
        self.calls = 0

    def __call__(self) -> object:
        self.calls += 1
        return self.value


def test_get_or_load_serves_second_read_from_cache() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    loader = _CountingLoader()
    key = CacheKey(PROVIDER_BOOKINGS, "doctor-1")

    assert cache.get_or_load(key, loader) == "payload"
    assert cache.get_or_load(key, loader) == "payload"

    assert loader.calls == 1
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_entries_expire_once_ttl_has_elapsed() -> None:
    clock = _FakeClock()
    cache = AppointmentCache(ttl_seconds=300, clock=clock)
    loader = _CountingLoader()
    key = CacheKey(PROVIDER_BOOKINGS, "doctor-1")

    cache.get_or_load(key, loader)
    clock.advance(299)
    cache.get_or_load(key, loader)
    assert loader.calls == 1

    clock.advance(1)
    cache.get_or_load(key, loader)
    assert loader.calls == 2


def test_per_call_ttl_overrides_default() -> None:
    clock = _FakeClock()
    cache = AppointmentCache(ttl_seconds=300, clock=clock)
    loader = _CountingLoader()
    key = CacheKey(STATUS_SUMMARY, "booking-1")

    cache.get_or_load(key, loader, ttl_seconds=10)
    clock.advance(10)
    cache.get_or_load(key, loader, ttl_seconds=10)

    assert loader.calls == 2


def test_invalidate_makes_next_read_a_miss() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    loader = _CountingLoader()
    key = CacheKey(SUBJECT_BOOKINGS, "patient-1")
    cache.get_or_load(key, loader)

    assert cache.invalidate(key) is True
    cache.get_or_load(key, loader)

    assert loader.calls == 2
    assert cache.invalidate(CacheKey(SUBJECT_BOOKINGS, "nobody")) is False


def test_invalidate_provider_keeps_entries_of_other_scopes() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-1"), lambda: "a")
    cache.get_or_load(CacheKey(PROVIDER_BLOCKING_BOOKINGS, "doctor-1", "range"), lambda: "b")
    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-2"), lambda: "c")
    cache.get_or_load(CacheKey(SUBJECT_BOOKINGS, "doctor-1"), lambda: "d")

    removed = cache.invalidate_provider("doctor-1")

    assert removed == 2
    assert len(cache) == 2


def test_invalidate_booking_scopes_clears_provider_subject_and_booking() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-1"), lambda: "a")
    cache.get_or_load(CacheKey(SUBJECT_BOOKINGS, "patient-1"), lambda: "b")
    cache.get_or_load(CacheKey(STATUS_SUMMARY, "7"), lambda: "c")
    cache.get_or_load(CacheKey(STATUS_SUMMARY, "8"), lambda: "d")

    removed = cache.invalidate_booking_scopes(provider_id="doctor-1", subject_id="patient-1", booking_id="7")

    assert removed == 3
    assert len(cache) == 1


def test_full_cache_evicts_oldest_fifth_before_inserting() -> None:
    clock = _FakeClock()
    cache = AppointmentCache(max_entries=10, clock=clock)
    for index in range(10):
        cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, f"doctor-{index}"), lambda: "payload")
        clock.advance(1)

    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-new"), lambda: "payload")

    assert len(cache) == 9
    survivor = _CountingLoader()
    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-2"), survivor)
    assert survivor.calls == 0
    evicted = _CountingLoader()
    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-0"), evicted)
    assert evicted.calls == 1


def test_expired_entries_are_purged_before_eviction() -> None:
    clock = _FakeClock()
    cache = AppointmentCache(ttl_seconds=10, max_entries=3, clock=clock)
    for index in range(3):
        cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, f"doctor-{index}"), lambda: "payload")

    clock.advance(10)
    stats = cache.stats()
    assert stats["expired_entries"] == 3
    assert stats["valid_entries"] == 0

    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-new"), lambda: "payload")
    assert len(cache) == 1


def test_unusable_key_falls_back_to_direct_read() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    loader = _CountingLoader("direct")
    key = CacheKey(PROVIDER_BOOKINGS, "doctor-1", ["not", "hashable"])  # type: ignore[arg-type]

    assert cache.get_or_load(key, loader) == "direct"
    assert loader.calls == 1
    assert len(cache) == 0


def test_load_racing_an_invalidation_is_not_stored() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    key = CacheKey(PROVIDER_BOOKINGS, "doctor-1")

    def loader() -> str:
        cache.invalidate_provider("doctor-1")
        return "stale"

    assert cache.get_or_load(key, loader) == "stale"
    assert len(cache) == 0


def test_clear_drops_everything() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-1"), lambda: "a")
    cache.get_or_load(CacheKey(SUBJECT_BOOKINGS, "patient-1"), lambda: "b")

    cache.clear()

    assert len(cache) == 0
    assert cache.stats()["total_entries"] == 0


def test_concurrent_reads_and_invalidations_stay_within_bounds() -> None:
    cache = AppointmentCache(max_entries=50)
    errors: list[BaseException] = []

    def worker(worker_id: int) -> None:
        try:
            for index in range(200):
                key = CacheKey(PROVIDER_BOOKINGS, f"doctor-{index % 80}")
                assert cache.get_or_load(key, lambda: index) is not None
                if index % 7 == worker_id % 7:
                    cache.invalidate_provider(f"doctor-{index % 80}")
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(worker_id,)) for worker_id in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(cache) <= 50


@pytest.mark.parametrize(
    "kwargs",
    [{"ttl_seconds": 0}, {"max_entries": 0}, {"eviction_ratio": 0}, {"eviction_ratio": 1.5}],
)
def test_rejects_invalid_configuration(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        AppointmentCache(**kwargs)


def test_invalidating_another_scope_during_a_load_keeps_the_result() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    key = CacheKey(PROVIDER_BOOKINGS, "doctor-1")

    def loader() -> str:
        cache.invalidate_provider("doctor-2")
        cache.invalidate(CacheKey(SUBJECT_BOOKINGS, "patient-1"))
        return "fresh"

    cache.get_or_load(key, loader)

    again = _CountingLoader()
    assert cache.get_or_load(key, again) == "fresh"
    assert again.calls == 0


def test_clear_during_a_load_discards_the_result() -> None:
    cache = AppointmentCache(clock=_FakeClock())
    key = CacheKey(PROVIDER_BOOKINGS, "doctor-1")

    def loader() -> str:
        cache.clear()
        return "stale"

    cache.get_or_load(key, loader)

    assert len(cache) == 0


def test_scope_tracking_is_released_after_loads_finish() -> None:
    cache = AppointmentCache(clock=_FakeClock())

    def failing_loader() -> str:
        cache.invalidate_provider("doctor-2")
        raise RuntimeError("store down")

    cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-1"), lambda: "a")
    with pytest.raises(RuntimeError):
        cache.get_or_load(CacheKey(PROVIDER_BOOKINGS, "doctor-2"), failing_loader)

    assert cache._loads_in_flight == {}
    assert cache._scope_epochs == {}
