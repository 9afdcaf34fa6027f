from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from clinic_booking.core.errors import NotFoundError
from clinic_booking.services.appointment_cache import (
    PROVIDER_BLOCKING_BOOKINGS,
    PROVIDER_BOOKINGS,
    PROVIDER_STATS,
    STATUS_HISTORY,
    STATUS_SUMMARY,
    SUBJECT_BOOKINGS,
    AppointmentCache,
    CacheKey,
)
from clinic_booking.services.booking_models import (
    BLOCKING_STATUSES,
    Booking,
    BookingStatus,
    StatusHistoryEntry,
    normalize_instant,
)
from clinic_booking.services.booking_store import BookingStore


@dataclass(frozen=True)
class StatusSummary:
    booking_id: str
    provider_id: str
    subject_id: str
    instant: datetime
    current_status: BookingStatus
    status_changed_at: datetime | None
    status_changed_by: str | None
    cancellation_reason: str | None
    completion_notes: str | None
    status_change_count: int
    last_status_change: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "provider_id": self.provider_id,
            "subject_id": self.subject_id,
            "instant": self.instant,
            "current_status": self.current_status.value,
            "status_changed_at": self.status_changed_at,
            "status_changed_by": self.status_changed_by,
            "cancellation_reason": self.cancellation_reason,
            "completion_notes": self.completion_notes,
            "status_change_count": self.status_change_count,
            "last_status_change": self.last_status_change,
        }


class AppointmentQueryService:
    """Read queries over bookings, served through the appointment cache."""

    def __init__(self, store: BookingStore, cache: AppointmentCache) -> None:
        self.store = store
        self.cache = cache

    def blocking_bookings(self, provider_id: str, start: datetime, end: datetime) -> list[Booking]:
        key = CacheKey(PROVIDER_BLOCKING_BOOKINGS, provider_id, _range_qualifier(start, end))
        bookings = self.cache.get_or_load(
            key,
            lambda: tuple(
                self.store.read_by_provider(
                    provider_id,
                    start=start,
                    end=end,
                    statuses=BLOCKING_STATUSES,
                ),
            ),
        )
        return list(bookings)

    def provider_bookings(
        self,
        provider_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Booking]:
        start, end = _normalize_bound(start), _normalize_bound(end)
        key = CacheKey(PROVIDER_BOOKINGS, provider_id, _range_qualifier(start, end))
        bookings = self.cache.get_or_load(
            key,
            lambda: tuple(self.store.read_by_provider(provider_id, start=start, end=end)),
        )
        return list(bookings)

    def subject_bookings(self, subject_id: str) -> list[Booking]:
        key = CacheKey(SUBJECT_BOOKINGS, subject_id)
        bookings = self.cache.get_or_load(key, lambda: tuple(self.store.read_by_subject(subject_id)))
        return list(bookings)

    def status_history(self, booking_id: str) -> list[StatusHistoryEntry]:
        key = CacheKey(STATUS_HISTORY, booking_id)
        entries = self.cache.get_or_load(key, lambda: tuple(self._load_history(booking_id)))
        return list(entries)

    def status_summary(self, booking_id: str) -> StatusSummary:
        key = CacheKey(STATUS_SUMMARY, booking_id)
        return self.cache.get_or_load(key, lambda: self._load_summary(booking_id))

    def provider_stats(
        self,
        provider_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, int]:
        start, end = _normalize_bound(start), _normalize_bound(end)
        key = CacheKey(PROVIDER_STATS, provider_id, _range_qualifier(start, end))
        stats = self.cache.get_or_load(key, lambda: self._load_stats(provider_id, start, end))
        return dict(stats)

    def _load_history(self, booking_id: str) -> list[StatusHistoryEntry]:
        if self.store.get_by_id(booking_id) is None:
            raise NotFoundError("Booking not found.", details={"booking_id": booking_id})
        return self.store.list_history(booking_id)

    def _load_summary(self, booking_id: str) -> StatusSummary:
        booking = self.store.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found.", details={"booking_id": booking_id})
        history = self.store.list_history(booking_id)
        return StatusSummary(
            booking_id=booking.id,
            provider_id=booking.provider_id,
            subject_id=booking.subject_id,
            instant=booking.instant,
            current_status=booking.status,
            status_changed_at=booking.status_changed_at,
            status_changed_by=booking.status_changed_by,
            cancellation_reason=booking.cancellation_reason,
            completion_notes=booking.completion_notes,
            status_change_count=len(history),
            last_status_change=history[-1].changed_at if history else None,
        )

    def _load_stats(
        self,
        provider_id: str,
        start: datetime | None,
        end: datetime | None,
    ) -> dict[str, int]:
        bookings = self.store.read_by_provider(provider_id, start=start, end=end)
        stats = {"total": len(bookings)}
        for status in BookingStatus:
            stats[status.name] = sum(1 for booking in bookings if booking.status == status)
        return stats


def _normalize_bound(value: datetime | None) -> datetime | None:
    return normalize_instant(value) if value is not None else None


def _range_qualifier(start: datetime | None, end: datetime | None) -> str | None:
    if start is None and end is None:
        return None
    return f"{start.isoformat() if start else '*'}_{end.isoformat() if end else '*'}"
