from fastapi import APIRouter, Depends, Query

from clinic_booking.api.dependencies import get_engine, read_with_retry
from clinic_booking.schemas.availability import AvailabilityResponse
from clinic_booking.services.engine import BookingEngine

router = APIRouter(prefix="/providers", tags=["availability"])


@router.get(
    "/{provider_id}/availability",
    response_model=AvailabilityResponse,
)
def get_provider_availability(
    provider_id: str,
    days: int | None = Query(default=None, ge=1),
    engine: BookingEngine = Depends(get_engine),
) -> AvailabilityResponse:
    horizon_days = days or engine.settings.availability_horizon_days
    result = read_with_retry(
        engine,
        lambda: engine.availability.get_availability(provider_id, horizon_days=horizon_days),
    )
    return AvailabilityResponse.model_validate(result.to_dict())
