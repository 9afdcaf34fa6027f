from fastapi import APIRouter, Depends, status

from clinic_booking.api.dependencies import get_engine
from clinic_booking.schemas.booking import CacheStatsResponse
from clinic_booking.services.engine import BookingEngine

router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("/stats", response_model=CacheStatsResponse)
def get_cache_stats(engine: BookingEngine = Depends(get_engine)) -> CacheStatsResponse:
    return CacheStatsResponse(**engine.cache.stats())


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def clear_cache(engine: BookingEngine = Depends(get_engine)) -> None:
    engine.cache.clear()
