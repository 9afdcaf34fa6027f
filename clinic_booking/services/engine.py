from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from clinic_booking.core.config import Settings
from clinic_booking.services.appointment_cache import AppointmentCache
from clinic_booking.services.appointment_query_service import AppointmentQueryService
from clinic_booking.services.availability_service import AvailabilityService
from clinic_booking.services.booking_store import BookingStore, create_booking_store
from clinic_booking.services.booking_validator import BookingValidator
from clinic_booking.services.live_updates import InMemoryLiveUpdateBroker
from clinic_booking.services.schedule_store import ScheduleStore, create_schedule_store
from clinic_booking.services.status_lifecycle import StatusLifecycleManager


@dataclass
class BookingEngine:
    settings: Settings
    booking_store: BookingStore
    schedule_store: ScheduleStore
    cache: AppointmentCache
    live_updates: InMemoryLiveUpdateBroker
    queries: AppointmentQueryService
    availability: AvailabilityService
    validator: BookingValidator
    lifecycle: StatusLifecycleManager


def build_engine(
    settings: Settings,
    *,
    booking_store: BookingStore | None = None,
    schedule_store: ScheduleStore | None = None,
    cache: AppointmentCache | None = None,
    live_updates: InMemoryLiveUpdateBroker | None = None,
    clock: Callable[[], datetime] | None = None,
) -> BookingEngine:
    booking_store = booking_store or create_booking_store(settings)
    schedule_store = schedule_store or create_schedule_store(settings)
    cache = cache or AppointmentCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        eviction_ratio=settings.cache_eviction_ratio,
    )
    live_updates = live_updates or InMemoryLiveUpdateBroker()
    queries = AppointmentQueryService(booking_store, cache)
    return BookingEngine(
        settings=settings,
        booking_store=booking_store,
        schedule_store=schedule_store,
        cache=cache,
        live_updates=live_updates,
        queries=queries,
        availability=AvailabilityService(
            schedule_store,
            queries,
            max_horizon_days=settings.availability_max_horizon_days,
            refresh_interval_seconds=settings.availability_refresh_seconds,
            clock=clock,
        ),
        validator=BookingValidator(booking_store, cache, clock=clock),
        lifecycle=StatusLifecycleManager(booking_store, cache, live_updates, clock=clock),
    )
