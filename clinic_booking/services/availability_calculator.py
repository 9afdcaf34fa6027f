from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from clinic_booking.core.errors import ValidationError
from clinic_booking.services.booking_models import (
    WEEKDAY_NAMES,
    ScheduleConfig,
    Slot,
    WorkingDay,
    add_minutes,
    combine_local,
    normalize_instant,
)

logger = logging.getLogger(__name__)


class AvailabilityCalculator:
    """Expands a weekly schedule into raw candidate slots.

    The output carries no availability state; that is assigned afterwards by
    ``BookingConflictResolver``.
    """

    def generate(
        self,
        schedule: ScheduleConfig,
        *,
        horizon_days: int,
        now: datetime,
    ) -> list[Slot]:
        if horizon_days <= 0:
            raise ValidationError(
                "Horizon must cover at least one day.",
                details={"horizon_days": horizon_days},
            )
        if schedule.duration_minutes <= 0:
            raise ValidationError(
                "Appointment duration must be greater than zero.",
                details={"appointment_duration": schedule.duration_minutes},
            )

        reference = normalize_instant(now)
        first_day = schedule.local_date(reference)
        slots: list[Slot] = []
        for offset in range(horizon_days):
            day = first_day + timedelta(days=offset)
            if not schedule.is_open_on(day):
                continue
            working_day = schedule.working_day_for(day)
            if working_day is None:
                continue
            slots.extend(self._generate_day(schedule, day, working_day))

        logger.debug(
            "Generated %s raw slots provider_id=%s horizon_days=%s",
            len(slots),
            schedule.provider_id,
            horizon_days,
        )
        return slots

    def _generate_day(self, schedule: ScheduleConfig, day: date, working_day: WorkingDay) -> list[Slot]:
        duration = schedule.duration_minutes
        span = working_day.span_minutes
        if duration >= span:
            raise ValidationError(
                f"Appointment duration must be shorter than the working day on {WEEKDAY_NAMES[working_day.weekday]}.",
                details={
                    "day": WEEKDAY_NAMES[working_day.weekday],
                    "appointment_duration": duration,
                    "working_minutes": span,
                },
            )

        tzinfo = schedule.tzinfo
        slots: list[Slot] = []
        seen_instants: set[datetime] = set()
        # A trailing step shorter than the duration is dropped.
        for step in range(span // duration):
            start_time = add_minutes(working_day.start_time, step * duration)
            end_time = add_minutes(start_time, duration)
            instant = combine_local(day, start_time, tzinfo)
            # Wall-clock times skipped by a DST jump resolve onto an existing instant.
            if instant in seen_instants:
                continue
            seen_instants.add(instant)
            slots.append(
                Slot(
                    date=day,
                    time=start_time,
                    instant=instant,
                    end_instant=combine_local(day, end_time, tzinfo),
                ),
            )
        return slots
