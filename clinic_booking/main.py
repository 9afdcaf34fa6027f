import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_booking.api.router import api_router
from clinic_booking.core.config import Settings, get_settings
from clinic_booking.core.errors import (
    BookingEngineError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    SlotTakenError,
    TransitionFailedError,
    UniquenessViolation,
    ValidationError,
)
from clinic_booking.services.engine import BookingEngine, build_engine

logger = logging.getLogger(__name__)

_ERROR_STATUS_CODES: tuple[tuple[type[BookingEngineError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (SlotTakenError, status.HTTP_409_CONFLICT),
    (UniquenessViolation, status.HTTP_409_CONFLICT),
    (TransitionFailedError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_application(
    settings: Settings | None = None,
    *,
    engine: BookingEngine | None = None,
) -> FastAPI:
    _configure_logging()
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
    )
    app.state.engine = engine or build_engine(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BookingEngineError, _handle_booking_engine_error)
    app.include_router(api_router, prefix=settings.api_prefix)
    logger.info(
        "Booking engine ready bookings_store=%s schedules_store=%s",
        settings.bookings_store,
        settings.schedules_store,
    )

    return app


def _status_code_for(exc: BookingEngineError) -> int:
    for error_type, status_code in _ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _handle_booking_engine_error(request: Request, exc: BookingEngineError) -> JSONResponse:
    status_code = _status_code_for(exc)
    if status_code >= 500:
        logger.warning("Request failed path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


app = create_application()
