from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class BookingEngineError(Exception):
    code = "booking_engine_error"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(BookingEngineError):
    code = "validation_error"


class NotFoundError(BookingEngineError):
    code = "not_found"


class InvalidTransitionError(BookingEngineError):
    code = "invalid_transition"

    def __init__(self, current_status: str, requested_status: str) -> None:
        super().__init__(
            f"Invalid status transition from {current_status} to {requested_status}.",
            details={
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )
        self.current_status = current_status
        self.requested_status = requested_status


class SlotTakenError(BookingEngineError):
    code = "slot_taken"


class TransitionFailedError(BookingEngineError):
    code = "transition_failed"


class PersistenceError(BookingEngineError):
    code = "persistence_error"


class UniquenessViolation(BookingEngineError):
    """A second blocking booking was written for an occupied provider instant."""

    code = "uniqueness_violation"


class CacheError(BookingEngineError):
    code = "cache_error"
