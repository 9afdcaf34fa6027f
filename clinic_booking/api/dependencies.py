from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from fastapi import Request
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from clinic_booking.core.errors import PersistenceError
from clinic_booking.services.engine import BookingEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_engine(request: Request) -> BookingEngine:
    return request.app.state.engine


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    logger.warning(
        "Persistence read failed on attempt %s (%s); retrying in %.2fs",
        retry_state.attempt_number,
        f"{type(exc).__name__}: {exc}" if exc else "unknown error",
        sleep_seconds or 0.0,
    )


def read_with_retry(engine: BookingEngine, func: Callable[[], T]) -> T:
    """Run a read, retrying ``PersistenceError`` a bounded number of times.

    Writes never go through here.
    """
    decorated = retry(
        retry=retry_if_exception_type(PersistenceError),
        stop=stop_after_attempt(engine.settings.persistence_retry_attempts),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        before_sleep=_log_before_sleep,
        reraise=True,
    )(func)
    return decorated()
