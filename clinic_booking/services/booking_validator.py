from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from clinic_booking.core.errors import SlotTakenError, UniquenessViolation, ValidationError
from clinic_booking.services.appointment_cache import AppointmentCache
from clinic_booking.services.booking_models import Booking, BookingStatus, normalize_instant
from clinic_booking.services.booking_store import BookingStore

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = "Slot no longer available, choose another time."


class BookingValidator:
    """Guards the commit of a new booking.

    The pre-insert lookup always goes straight to the store; the cache is
    never consulted here. The store's uniqueness constraint still decides
    the outcome when two requests pass the lookup at the same time.
    """

    def __init__(
        self,
        store: BookingStore,
        cache: AppointmentCache,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self._clock = clock or (lambda: datetime.now(UTC))

    def is_slot_free(self, provider_id: str, instant: datetime) -> bool:
        return self.store.read_by_provider_and_instant(provider_id, normalize_instant(instant)) is None

    def book(
        self,
        *,
        provider_id: str,
        subject_id: str,
        instant: datetime,
        link_id: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        provider_id = provider_id.strip()
        subject_id = subject_id.strip()
        if not provider_id or not subject_id:
            raise ValidationError("Both provider_id and subject_id are required.")

        canonical_instant = normalize_instant(instant)
        reference = normalize_instant(now or self._clock())
        if canonical_instant < reference:
            raise ValidationError(
                "Cannot book a slot in the past.",
                details={"instant": canonical_instant.isoformat()},
            )

        existing = self.store.read_by_provider_and_instant(provider_id, canonical_instant)
        if existing is not None:
            logger.warning(
                "Slot taken at commit check provider_id=%s instant=%s existing_booking_id=%s",
                provider_id,
                canonical_instant.isoformat(),
                existing.id,
            )
            self.cache.invalidate_provider(provider_id)
            raise self._slot_taken(provider_id, canonical_instant)

        try:
            booking = self.store.insert(
                provider_id=provider_id,
                subject_id=subject_id,
                instant=canonical_instant,
                status=BookingStatus.scheduled,
                link_id=link_id,
            )
        except UniquenessViolation as exc:
            logger.warning(
                "Slot taken at insert provider_id=%s instant=%s",
                provider_id,
                canonical_instant.isoformat(),
            )
            self.cache.invalidate_provider(provider_id)
            raise self._slot_taken(provider_id, canonical_instant) from exc

        self.cache.invalidate_booking_scopes(
            provider_id=provider_id,
            subject_id=subject_id,
            booking_id=booking.id,
        )
        logger.info(
            "Booking created booking_id=%s provider_id=%s subject_id=%s instant=%s",
            booking.id,
            provider_id,
            subject_id,
            canonical_instant.isoformat(),
        )
        return booking

    @staticmethod
    def _slot_taken(provider_id: str, instant: datetime) -> SlotTakenError:
        return SlotTakenError(
            SLOT_TAKEN_MESSAGE,
            details={
                "provider_id": provider_id,
                "instant": instant.isoformat(),
                "recompute_availability": True,
            },
        )
