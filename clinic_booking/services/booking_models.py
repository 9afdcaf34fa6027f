from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clinic_booking.core.errors import ValidationError

WEEKDAY_NAMES: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class BookingStatus(StrEnum):
    scheduled = "scheduled"
    in_progress = "in-progress"
    checked = "checked"
    cancelled = "cancelled"


BLOCKING_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.scheduled, BookingStatus.in_progress},
)
TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.checked, BookingStatus.cancelled},
)


class UnavailableReason(StrEnum):
    booked = "booked"
    break_time = "break"
    past = "past"


@dataclass(frozen=True)
class Available:
    is_available = True

    def to_dict(self) -> dict[str, Any]:
        return {"state": "available", "reason": None}


@dataclass(frozen=True)
class Unavailable:
    reason: UnavailableReason
    is_available = False

    def to_dict(self) -> dict[str, Any]:
        return {"state": "unavailable", "reason": self.reason.value}


SlotAvailability = Available | Unavailable


def normalize_instant(value: datetime) -> datetime:
    """Return the canonical form of an instant: aware UTC, truncated to the minute."""
    if not isinstance(value, datetime):
        raise ValidationError("Instant must be a datetime.", details={"value": repr(value)})
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(
            "Instant must carry a timezone offset.",
            details={"value": value.isoformat()},
        )
    return value.astimezone(UTC).replace(second=0, microsecond=0)


def parse_booking_status(value: str | BookingStatus) -> BookingStatus:
    if isinstance(value, BookingStatus):
        return value
    normalized = str(value).strip().lower().replace("_", "-")
    try:
        return BookingStatus(normalized)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown booking status: {value!r}.",
            details={"status": str(value)},
        ) from exc


@dataclass(frozen=True)
class Slot:
    date: date
    time: time
    instant: datetime
    end_instant: datetime
    availability: SlotAvailability | None = None

    @property
    def is_available(self) -> bool:
        return bool(self.availability and self.availability.is_available)

    def to_dict(self) -> dict[str, Any]:
        availability = self.availability.to_dict() if self.availability else None
        return {
            "date": self.date.isoformat(),
            "time": self.time.strftime("%H:%M"),
            "instant": self.instant.isoformat(),
            "end_instant": self.end_instant.isoformat(),
            "available": self.is_available,
            "reason": availability["reason"] if availability else None,
        }


@dataclass(frozen=True)
class BreakInterval:
    start_time: time
    end_time: time


@dataclass(frozen=True)
class WorkingDay:
    weekday: int
    is_working: bool
    start_time: time
    end_time: time
    breaks: tuple[BreakInterval, ...] = ()

    @property
    def span_minutes(self) -> int:
        return _minutes_of(self.end_time) - _minutes_of(self.start_time)


@dataclass(frozen=True)
class VacationRange:
    start_date: date
    end_date: date
    reason: str | None = None

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class ScheduleConfig:
    provider_id: str
    duration_minutes: int
    start_date: date
    end_date: date
    working_days: Mapping[int, WorkingDay] = field(default_factory=dict)
    vacations: tuple[VacationRange, ...] = ()
    timezone: str = "UTC"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def working_day_for(self, day: date) -> WorkingDay | None:
        working_day = self.working_days.get(day.weekday())
        if not working_day or not working_day.is_working:
            return None
        return working_day

    def is_open_on(self, day: date) -> bool:
        if day < self.start_date or day > self.end_date:
            return False
        return not any(vacation.contains(day) for vacation in self.vacations)

    def local_date(self, instant: datetime) -> date:
        return instant.astimezone(self.tzinfo).date()

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "appointment_duration": self.duration_minutes,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "timezone": self.timezone,
            "working_hours": [
                {
                    "day": WEEKDAY_NAMES[weekday].capitalize(),
                    "is_working": working_day.is_working,
                    "start_time": working_day.start_time.strftime("%H:%M"),
                    "end_time": working_day.end_time.strftime("%H:%M"),
                    "breaks": [
                        {
                            "start_time": interval.start_time.strftime("%H:%M"),
                            "end_time": interval.end_time.strftime("%H:%M"),
                        }
                        for interval in working_day.breaks
                    ],
                }
                for weekday, working_day in sorted(self.working_days.items())
            ],
            "vacations": [
                {
                    "start_date": vacation.start_date.isoformat(),
                    "end_date": vacation.end_date.isoformat(),
                    "reason": vacation.reason,
                }
                for vacation in self.vacations
            ],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ScheduleConfig:
        provider_id = str(payload.get("provider_id") or "").strip()
        if not provider_id:
            raise ValidationError("Schedule is missing provider_id.")

        raw_duration = _first_present(payload, "appointment_duration", "duration_minutes")
        try:
            duration_minutes = int(raw_duration)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                "Appointment duration must be an integer number of minutes.",
                details={"appointment_duration": raw_duration},
            ) from exc
        if duration_minutes <= 0:
            raise ValidationError(
                "Appointment duration must be greater than zero.",
                details={"appointment_duration": duration_minutes},
            )

        start_date = _parse_date(payload.get("start_date"), field_name="start_date")
        end_date = _parse_date(payload.get("end_date"), field_name="end_date")
        if end_date < start_date:
            raise ValidationError(
                "Schedule end_date must not be before start_date.",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )

        timezone_name = str(payload.get("timezone") or "UTC").strip()
        try:
            ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationError(
                f"Unknown timezone: {timezone_name!r}.",
                details={"timezone": timezone_name},
            ) from exc

        working_days: dict[int, WorkingDay] = {}
        for raw_day in payload.get("working_hours") or []:
            working_day = _parse_working_day(raw_day)
            if working_day.weekday in working_days:
                raise ValidationError(
                    f"Duplicate working hours for {WEEKDAY_NAMES[working_day.weekday]}.",
                )
            if working_day.is_working and duration_minutes >= working_day.span_minutes:
                day_name = WEEKDAY_NAMES[working_day.weekday]
                raise ValidationError(
                    f"Appointment duration must be shorter than the working day on {day_name}.",
                    details={
                        "day": day_name,
                        "appointment_duration": duration_minutes,
                        "working_minutes": working_day.span_minutes,
                    },
                )
            working_days[working_day.weekday] = working_day

        vacations = tuple(_parse_vacation(raw_vacation) for raw_vacation in payload.get("vacations") or [])

        return cls(
            provider_id=provider_id,
            duration_minutes=duration_minutes,
            start_date=start_date,
            end_date=end_date,
            working_days=working_days,
            vacations=vacations,
            timezone=timezone_name,
        )


@dataclass
class Booking:
    id: str
    provider_id: str
    subject_id: str
    instant: datetime
    status: BookingStatus = BookingStatus.scheduled
    created_at: datetime | None = None
    status_changed_at: datetime | None = None
    status_changed_by: str | None = None
    cancellation_reason: str | None = None
    completion_notes: str | None = None
    link_id: str | None = None

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "subject_id": self.subject_id,
            "instant": self.instant,
            "status": self.status.value,
            "created_at": self.created_at,
            "status_changed_at": self.status_changed_at,
            "status_changed_by": self.status_changed_by,
            "cancellation_reason": self.cancellation_reason,
            "completion_notes": self.completion_notes,
            "link_id": self.link_id,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> Booking:
        return cls(
            id=str(document.get("_id") or document.get("id") or ""),
            provider_id=str(document.get("provider_id", "")),
            subject_id=str(document.get("subject_id", "")),
            instant=_as_utc(document["instant"]),
            status=parse_booking_status(document.get("status", BookingStatus.scheduled)),
            created_at=_as_utc(document.get("created_at")),
            status_changed_at=_as_utc(document.get("status_changed_at")),
            status_changed_by=document.get("status_changed_by"),
            cancellation_reason=document.get("cancellation_reason"),
            completion_notes=document.get("completion_notes"),
            link_id=document.get("link_id"),
        )


@dataclass(frozen=True)
class StatusHistoryEntry:
    booking_id: str
    old_status: BookingStatus
    new_status: BookingStatus
    actor_id: str
    changed_at: datetime
    reason: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "actor_id": self.actor_id,
            "changed_at": self.changed_at,
            "reason": self.reason,
            "notes": self.notes,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> StatusHistoryEntry:
        return cls(
            booking_id=str(document.get("booking_id", "")),
            old_status=parse_booking_status(document["old_status"]),
            new_status=parse_booking_status(document["new_status"]),
            actor_id=str(document.get("actor_id", "")),
            changed_at=_as_utc(document["changed_at"]),
            reason=document.get("reason"),
            notes=document.get("notes"),
        )


def combine_local(day: date, wall_time: time, tzinfo: ZoneInfo) -> datetime:
    return normalize_instant(datetime.combine(day, wall_time, tzinfo=tzinfo))


def add_minutes(value: time, minutes: int) -> time:
    return (datetime.combine(date.min, value) + timedelta(minutes=minutes)).time()


def _minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


def _as_utc(value: Any) -> Any:
    if not isinstance(value, datetime):
        return value
    # BSON datetimes come back naive and are always UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _parse_date(value: Any, *, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid {field_name}: expected YYYY-MM-DD.",
        details={field_name: value if isinstance(value, str) else repr(value)},
    )


def _parse_time(value: Any, *, field_name: str) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if isinstance(value, str):
        parts = value.strip().split(":")
        if len(parts) in (2, 3) and all(part.isdigit() for part in parts):
            hour, minute = int(parts[0]), int(parts[1])
            if 0 <= hour < 24 and 0 <= minute < 60:
                return time(hour, minute)
    raise ValidationError(
        f"Invalid {field_name}: expected HH:MM.",
        details={field_name: value if isinstance(value, str) else repr(value)},
    )


def _parse_weekday(value: Any) -> int:
    normalized = str(value or "").strip().lower()
    if normalized in WEEKDAY_NAMES:
        return WEEKDAY_NAMES.index(normalized)
    raise ValidationError(f"Unknown weekday: {value!r}.", details={"day": str(value)})


def _parse_working_day(raw_day: Mapping[str, Any]) -> WorkingDay:
    weekday = _parse_weekday(raw_day.get("day"))
    day_name = WEEKDAY_NAMES[weekday]
    is_working = bool(_first_present(raw_day, "is_working", "isWorking"))
    start_time = _parse_time(
        _first_present(raw_day, "start_time", "startTime") or "09:00",
        field_name=f"{day_name}.start_time",
    )
    end_time = _parse_time(
        _first_present(raw_day, "end_time", "endTime") or "17:00",
        field_name=f"{day_name}.end_time",
    )
    if is_working and end_time <= start_time:
        raise ValidationError(
            f"{day_name.capitalize()}: end time must be after start time.",
            details={"day": day_name},
        )

    breaks: list[BreakInterval] = []
    for raw_break in raw_day.get("breaks") or []:
        break_start = _parse_time(
            _first_present(raw_break, "start_time", "startTime"),
            field_name=f"{day_name}.breaks.start_time",
        )
        break_end = _parse_time(
            _first_present(raw_break, "end_time", "endTime"),
            field_name=f"{day_name}.breaks.end_time",
        )
        if break_end <= break_start:
            raise ValidationError(
                f"{day_name.capitalize()}: break end must be after break start.",
                details={"day": day_name},
            )
        breaks.append(BreakInterval(start_time=break_start, end_time=break_end))

    return WorkingDay(
        weekday=weekday,
        is_working=is_working,
        start_time=start_time,
        end_time=end_time,
        breaks=tuple(breaks),
    )


def _parse_vacation(raw_vacation: Mapping[str, Any]) -> VacationRange:
    start_date = _parse_date(raw_vacation.get("start_date"), field_name="vacation.start_date")
    end_date = _parse_date(raw_vacation.get("end_date"), field_name="vacation.end_date")
    if end_date < start_date:
        raise ValidationError(
            "Vacation end_date must not be before start_date.",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    reason = raw_vacation.get("reason")
    return VacationRange(
        start_date=start_date,
        end_date=end_date,
        reason=str(reason).strip() or None if reason is not None else None,
    )
