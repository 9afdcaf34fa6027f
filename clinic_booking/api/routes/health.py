from fastapi import APIRouter, Depends

from clinic_booking.api.dependencies import get_engine
from clinic_booking.schemas.health import HealthResponse
from clinic_booking.services.engine import BookingEngine
from clinic_booking.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def healthcheck(engine: BookingEngine = Depends(get_engine)) -> HealthResponse:
    service = HealthService(engine.settings)
    return service.get_status()
