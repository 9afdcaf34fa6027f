from fastapi import APIRouter

from clinic_booking.api.routes.availability import router as availability_router
from clinic_booking.api.routes.bookings import router as bookings_router
from clinic_booking.api.routes.cache import router as cache_router
from clinic_booking.api.routes.health import router as health_router
from clinic_booking.api.routes.schedules import router as schedules_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

# Unversioned routes used by the current booking UI.
api_router.include_router(schedules_router)
api_router.include_router(availability_router)
api_router.include_router(bookings_router)
api_router.include_router(cache_router)

v1_router.include_router(schedules_router)
v1_router.include_router(availability_router)
v1_router.include_router(bookings_router)
v1_router.include_router(cache_router)
api_router.include_router(v1_router)
