from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from clinic_booking.services.booking_models import BookingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChangeEvent:
    booking_id: str
    provider_id: str
    subject_id: str
    new_status: BookingStatus
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "provider_id": self.provider_id,
            "subject_id": self.subject_id,
            "new_status": self.new_status.value,
            "occurred_at": self.occurred_at.isoformat(),
        }


StatusChangeCallback = Callable[[StatusChangeEvent], None]


class LiveUpdatePublisher(ABC):
    @abstractmethod
    def publish(self, event: StatusChangeEvent) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class SubscriptionFilter:
    provider_id: str | None = None
    subject_id: str | None = None
    booking_id: str | None = None

    def matches(self, event: StatusChangeEvent) -> bool:
        return (
            (self.provider_id is None or self.provider_id == event.provider_id)
            and (self.subject_id is None or self.subject_id == event.subject_id)
            and (self.booking_id is None or self.booking_id == event.booking_id)
        )


class InMemoryLiveUpdateBroker(LiveUpdatePublisher):
    """Fans status changes out to in-process subscribers.

    Subscriptions can be narrowed to one provider, one subject or one
    booking; filters given together must all match. A subscriber that raises
    is logged and skipped; delivery to the others continues.

    ``publish`` runs inside the store's commit, so callbacks must not wait on
    other threads that use the same store.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_token = 1
        self._subscribers: dict[int, tuple[StatusChangeCallback, SubscriptionFilter]] = {}

    def subscribe(
        self,
        callback: StatusChangeCallback,
        *,
        provider_id: str | None = None,
        subject_id: str | None = None,
        booking_id: str | None = None,
    ) -> Callable[[], None]:
        subscription = SubscriptionFilter(provider_id=provider_id, subject_id=subject_id, booking_id=booking_id)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = (callback, subscription)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, event: StatusChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
        for callback, subscription in subscribers:
            if not subscription.matches(event):
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Live update subscriber failed booking_id=%s new_status=%s",
                    event.booking_id,
                    event.new_status,
                )

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
