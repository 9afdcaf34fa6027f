import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from clinic_booking.api.dependencies import get_engine, read_with_retry
from clinic_booking.core.errors import BookingEngineError, SlotTakenError
from clinic_booking.schemas.availability import AvailabilityResponse
from clinic_booking.schemas.booking import (
    BookingCreateRequest,
    BookingResponse,
    BookingsResponse,
    ProviderStatsResponse,
    SlotTakenResponse,
    StatusHistoryEntryResponse,
    StatusHistoryResponse,
    StatusSummaryResponse,
    StatusTransitionRequest,
)
from clinic_booking.services.booking_models import Booking
from clinic_booking.services.engine import BookingEngine

router = APIRouter(tags=["bookings"])
logger = logging.getLogger(__name__)


@router.post(
    "/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_409_CONFLICT: {"model": SlotTakenResponse}},
)
def create_booking(
    payload: BookingCreateRequest,
    engine: BookingEngine = Depends(get_engine),
):
    try:
        booking = engine.validator.book(
            provider_id=payload.provider_id,
            subject_id=payload.subject_id,
            instant=payload.instant,
            link_id=payload.link_id,
        )
    except SlotTakenError as exc:
        body = SlotTakenResponse(
            message=exc.message,
            availability=_recompute_availability(engine, payload.provider_id),
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=body.model_dump(mode="json"),
        )
    return _map_booking(booking)


@router.get(
    "/bookings/{booking_id}",
    response_model=StatusSummaryResponse,
)
def get_booking_status_summary(
    booking_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> StatusSummaryResponse:
    summary = read_with_retry(engine, lambda: engine.queries.status_summary(booking_id))
    return StatusSummaryResponse.model_validate(summary.to_dict())


@router.get(
    "/bookings/{booking_id}/history",
    response_model=StatusHistoryResponse,
)
def get_booking_status_history(
    booking_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> StatusHistoryResponse:
    entries = read_with_retry(engine, lambda: engine.queries.status_history(booking_id))
    return StatusHistoryResponse(
        booking_id=booking_id,
        items=[StatusHistoryEntryResponse.model_validate(entry.to_dict()) for entry in entries],
    )


@router.post(
    "/bookings/{booking_id}/status",
    response_model=BookingResponse,
)
def change_booking_status(
    booking_id: str,
    payload: StatusTransitionRequest,
    engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    booking = engine.lifecycle.transition(
        booking_id=booking_id,
        new_status=payload.new_status,
        actor_id=payload.actor_id,
        reason=payload.reason,
        notes=payload.notes,
    )
    return _map_booking(booking)


@router.get(
    "/providers/{provider_id}/bookings",
    response_model=BookingsResponse,
)
def list_provider_bookings(
    provider_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    engine: BookingEngine = Depends(get_engine),
) -> BookingsResponse:
    bookings = read_with_retry(
        engine,
        lambda: engine.queries.provider_bookings(provider_id, start=start, end=end),
    )
    return BookingsResponse(items=[_map_booking(booking) for booking in bookings])


@router.get(
    "/providers/{provider_id}/stats",
    response_model=ProviderStatsResponse,
)
def get_provider_stats(
    provider_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    engine: BookingEngine = Depends(get_engine),
) -> ProviderStatsResponse:
    stats = read_with_retry(
        engine,
        lambda: engine.queries.provider_stats(provider_id, start=start, end=end),
    )
    return ProviderStatsResponse(provider_id=provider_id, **stats)


@router.get(
    "/subjects/{subject_id}/bookings",
    response_model=BookingsResponse,
)
def list_subject_bookings(
    subject_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> BookingsResponse:
    bookings = read_with_retry(engine, lambda: engine.queries.subject_bookings(subject_id))
    return BookingsResponse(items=[_map_booking(booking) for booking in bookings])


def _map_booking(booking: Booking) -> BookingResponse:
    return BookingResponse.model_validate(booking.to_dict())


def _recompute_availability(engine: BookingEngine, provider_id: str) -> AvailabilityResponse | None:
    try:
        result = engine.availability.get_availability(
            provider_id,
            horizon_days=engine.settings.availability_horizon_days,
        )
    except BookingEngineError as exc:
        logger.warning("Could not recompute availability provider_id=%s (%s)", provider_id, exc.message)
        return None
    return AvailabilityResponse.model_validate(result.to_dict())
