from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any

from clinic_booking.services.booking_models import (
    Available,
    Booking,
    ScheduleConfig,
    Slot,
    SlotAvailability,
    Unavailable,
    UnavailableReason,
    normalize_instant,
)

logger = logging.getLogger(__name__)


@dataclass
class AvailabilityResult:
    provider_id: str
    computed_at: datetime
    days: dict[date, list[Slot]] = field(default_factory=dict)
    available_days: list[date] = field(default_factory=list)
    refresh_interval_seconds: float | None = None

    @property
    def slots(self) -> list[Slot]:
        return [slot for day_slots in self.days.values() for slot in day_slots]

    def slots_for(self, day: date) -> list[Slot]:
        return list(self.days.get(day, []))

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "computed_at": self.computed_at.isoformat(),
            "refresh_interval_seconds": self.refresh_interval_seconds,
            "available_days": [day.isoformat() for day in self.available_days],
            "days": [
                {
                    "date": day.isoformat(),
                    "slots": [slot.to_dict() for slot in day_slots],
                }
                for day, day_slots in self.days.items()
            ],
        }


class BookingConflictResolver:
    """Assigns a final availability state to every raw slot.

    Precedence is fixed: booked, then break, then past, then available.
    """

    def resolve(
        self,
        slots: Iterable[Slot],
        bookings: Iterable[Booking],
        *,
        schedule: ScheduleConfig,
        now: datetime,
    ) -> AvailabilityResult:
        reference = normalize_instant(now)
        today = schedule.local_date(reference)
        booked_instants = {
            normalize_instant(booking.instant)
            for booking in bookings
            if booking.provider_id == schedule.provider_id and booking.is_blocking
        }

        result = AvailabilityResult(provider_id=schedule.provider_id, computed_at=reference)
        for slot in slots:
            availability = self._classify(
                slot,
                booked_instants=booked_instants,
                schedule=schedule,
                today=today,
                now=reference,
            )
            result.days.setdefault(slot.date, []).append(replace(slot, availability=availability))

        for day, day_slots in result.days.items():
            if any(slot.is_available for slot in day_slots):
                result.available_days.append(day)

        logger.debug(
            "Resolved availability provider_id=%s days=%s available_days=%s blocking_bookings=%s",
            schedule.provider_id,
            len(result.days),
            len(result.available_days),
            len(booked_instants),
        )
        return result

    def _classify(
        self,
        slot: Slot,
        *,
        booked_instants: set[datetime],
        schedule: ScheduleConfig,
        today: date,
        now: datetime,
    ) -> SlotAvailability:
        if slot.instant in booked_instants:
            return Unavailable(UnavailableReason.booked)
        if self._overlaps_break(slot, schedule):
            return Unavailable(UnavailableReason.break_time)
        if slot.date == today and slot.instant < now:
            return Unavailable(UnavailableReason.past)
        return Available()

    @staticmethod
    def _overlaps_break(slot: Slot, schedule: ScheduleConfig) -> bool:
        working_day = schedule.working_day_for(slot.date)
        if working_day is None:
            return False
        slot_start = slot.time.hour * 60 + slot.time.minute
        slot_end = slot_start + schedule.duration_minutes
        for interval in working_day.breaks:
            break_start = interval.start_time.hour * 60 + interval.start_time.minute
            break_end = interval.end_time.hour * 60 + interval.end_time.minute
            if slot_start < break_end and slot_end > break_start:
                return True
        return False
