import logging

from fastapi import APIRouter, Depends

from clinic_booking.api.dependencies import get_engine, read_with_retry
from clinic_booking.schemas.schedule import ScheduleRequest, ScheduleResponse
from clinic_booking.services.booking_models import ScheduleConfig
from clinic_booking.services.engine import BookingEngine

router = APIRouter(prefix="/providers", tags=["schedules"])
logger = logging.getLogger(__name__)


@router.get(
    "/{provider_id}/schedule",
    response_model=ScheduleResponse,
)
def get_provider_schedule(
    provider_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> ScheduleResponse:
    schedule = read_with_retry(engine, lambda: engine.schedule_store.get_schedule(provider_id))
    return ScheduleResponse.model_validate(schedule.to_dict())


@router.put(
    "/{provider_id}/schedule",
    response_model=ScheduleResponse,
)
def save_provider_schedule(
    provider_id: str,
    payload: ScheduleRequest,
    engine: BookingEngine = Depends(get_engine),
) -> ScheduleResponse:
    schedule = ScheduleConfig.from_payload(
        {
            **payload.model_dump(mode="json"),
            "provider_id": provider_id,
        },
    )
    engine.schedule_store.save_schedule(schedule)
    logger.info(
        "Schedule saved provider_id=%s duration=%s working_days=%s",
        provider_id,
        schedule.duration_minutes,
        sum(1 for day in schedule.working_days.values() if day.is_working),
    )
    return ScheduleResponse.model_validate(schedule.to_dict())
