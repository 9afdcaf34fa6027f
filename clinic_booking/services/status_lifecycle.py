from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, NoReturn

from clinic_booking.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    TransitionFailedError,
    UniquenessViolation,
    ValidationError,
)
from clinic_booking.services.appointment_cache import AppointmentCache
from clinic_booking.services.booking_models import (
    Booking,
    BookingStatus,
    StatusHistoryEntry,
    parse_booking_status,
)
from clinic_booking.services.booking_store import BookingStore
from clinic_booking.services.live_updates import LiveUpdatePublisher, StatusChangeEvent

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Mapping[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.scheduled: frozenset({BookingStatus.checked, BookingStatus.cancelled}),
    BookingStatus.in_progress: frozenset(),
    BookingStatus.checked: frozenset(),
    BookingStatus.cancelled: frozenset(),
}


def is_valid_transition(current: BookingStatus, requested: BookingStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


class StatusLifecycleManager:
    """Moves bookings through scheduled -> checked | cancelled.

    A successful transition updates the booking, appends one history entry
    and publishes a live update as a single unit. Cache entries scoped to the
    booking, its provider and its subject are dropped before the live update
    goes out and again once the commit returns.
    """

    def __init__(
        self,
        store: BookingStore,
        cache: AppointmentCache,
        publisher: LiveUpdatePublisher,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.publisher = publisher
        self._clock = clock or (lambda: datetime.now(UTC))

    def transition(
        self,
        *,
        booking_id: str,
        new_status: BookingStatus | str,
        actor_id: str,
        reason: str | None = None,
        notes: str | None = None,
    ) -> Booking:
        requested = parse_booking_status(new_status)
        actor_id = actor_id.strip()
        if not actor_id:
            raise ValidationError("actor_id is required to change a booking status.")

        booking = self.store.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found.", details={"booking_id": booking_id})
        if not is_valid_transition(booking.status, requested):
            raise InvalidTransitionError(booking.status.value, requested.value)

        changed_at = self._clock()
        fields = self._build_fields(requested, actor_id, changed_at, reason=reason, notes=notes)
        history_entry = StatusHistoryEntry(
            booking_id=booking.id,
            old_status=booking.status,
            new_status=requested,
            actor_id=actor_id,
            changed_at=changed_at,
            reason=fields.get("cancellation_reason"),
            notes=fields.get("completion_notes"),
        )

        try:
            updated = self.store.commit_status_transition(
                booking.id,
                expected_status=booking.status,
                fields=fields,
                history_entry=history_entry,
                before_commit=self._publish,
            )
        except (PersistenceError, UniquenessViolation) as exc:
            logger.exception("Status transition failed booking_id=%s requested=%s", booking.id, requested)
            self._invalidate(booking)
            raise TransitionFailedError(
                "Booking status could not be updated.",
                details={"booking_id": booking.id, "requested_status": requested.value},
            ) from exc
        except Exception as exc:
            logger.exception("Status transition aborted booking_id=%s requested=%s", booking.id, requested)
            self._invalidate(booking)
            raise TransitionFailedError(
                "Booking status change was rolled back.",
                details={"booking_id": booking.id, "requested_status": requested.value},
            ) from exc

        if updated is None:
            self._raise_for_concurrent_change(booking, requested)

        # Drops anything loaded while the commit was in flight.
        self._invalidate(updated)
        logger.info(
            "Booking status changed booking_id=%s %s->%s actor_id=%s",
            updated.id,
            booking.status,
            requested,
            actor_id,
        )
        return updated

    def cancel(self, booking_id: str, *, actor_id: str, reason: str) -> Booking:
        return self.transition(
            booking_id=booking_id,
            new_status=BookingStatus.cancelled,
            actor_id=actor_id,
            reason=reason,
        )

    def check(self, booking_id: str, *, actor_id: str, notes: str) -> Booking:
        return self.transition(
            booking_id=booking_id,
            new_status=BookingStatus.checked,
            actor_id=actor_id,
            notes=notes,
        )

    def _publish(self, booking: Booking) -> None:
        # Subscribers refresh on the event, so cached reads must already be gone.
        self._invalidate(booking)
        self.publisher.publish(
            StatusChangeEvent(
                booking_id=booking.id,
                provider_id=booking.provider_id,
                subject_id=booking.subject_id,
                new_status=booking.status,
                occurred_at=booking.status_changed_at or self._clock(),
            ),
        )

    def _invalidate(self, booking: Booking) -> None:
        self.cache.invalidate_booking_scopes(
            provider_id=booking.provider_id,
            subject_id=booking.subject_id,
            booking_id=booking.id,
        )

    def _raise_for_concurrent_change(self, booking: Booking, requested: BookingStatus) -> NoReturn:
        current = self.store.get_by_id(booking.id)
        if current is None:
            raise NotFoundError("Booking not found.", details={"booking_id": booking.id})
        raise InvalidTransitionError(current.status.value, requested.value)

    @staticmethod
    def _build_fields(
        requested: BookingStatus,
        actor_id: str,
        changed_at: datetime,
        *,
        reason: str | None,
        notes: str | None,
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "status": requested,
            "status_changed_at": changed_at,
            "status_changed_by": actor_id,
        }
        if requested == BookingStatus.cancelled:
            cleaned_reason = (reason or "").strip()
            if not cleaned_reason:
                raise ValidationError("A cancellation reason is required.")
            fields["cancellation_reason"] = cleaned_reason
        elif requested == BookingStatus.checked:
            cleaned_notes = (notes or "").strip()
            if not cleaned_notes:
                raise ValidationError("Completion notes are required.")
            fields["completion_notes"] = cleaned_notes
        return fields
