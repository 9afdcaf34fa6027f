from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from clinic_booking.core.errors import ValidationError
from clinic_booking.services.appointment_query_service import AppointmentQueryService
from clinic_booking.services.availability_calculator import AvailabilityCalculator
from clinic_booking.services.booking_models import normalize_instant
from clinic_booking.services.conflict_resolver import AvailabilityResult, BookingConflictResolver
from clinic_booking.services.schedule_store import ScheduleStore

logger = logging.getLogger(__name__)


class AvailabilityService:
    def __init__(
        self,
        schedule_store: ScheduleStore,
        queries: AppointmentQueryService,
        *,
        calculator: AvailabilityCalculator | None = None,
        resolver: BookingConflictResolver | None = None,
        max_horizon_days: int = 60,
        refresh_interval_seconds: float | None = 30.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.schedule_store = schedule_store
        self.queries = queries
        self.calculator = calculator or AvailabilityCalculator()
        self.resolver = resolver or BookingConflictResolver()
        self.max_horizon_days = max_horizon_days
        self.refresh_interval_seconds = refresh_interval_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    def get_availability(
        self,
        provider_id: str,
        *,
        horizon_days: int = 7,
        now: datetime | None = None,
    ) -> AvailabilityResult:
        if horizon_days < 1 or horizon_days > self.max_horizon_days:
            raise ValidationError(
                f"Horizon must be between 1 and {self.max_horizon_days} days.",
                details={"horizon_days": horizon_days},
            )

        reference = normalize_instant(now or self._clock())
        schedule = self.schedule_store.get_schedule(provider_id)
        raw_slots = self.calculator.generate(schedule, horizon_days=horizon_days, now=reference)

        window_start = raw_slots[0].instant if raw_slots else reference
        window_end = raw_slots[-1].instant if raw_slots else reference + timedelta(days=horizon_days)
        bookings = self.queries.blocking_bookings(provider_id, window_start, window_end)

        result = self.resolver.resolve(raw_slots, bookings, schedule=schedule, now=reference)
        result.refresh_interval_seconds = self.refresh_interval_seconds
        logger.info(
            "Availability computed provider_id=%s horizon_days=%s slots=%s available_days=%s",
            provider_id,
            horizon_days,
            len(raw_slots),
            len(result.available_days),
        )
        return result
