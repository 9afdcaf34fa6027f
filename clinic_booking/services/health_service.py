from datetime import UTC, datetime

from clinic_booking.core.config import Settings
from clinic_booking.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=self.settings.app_name,
            bookings_store=self.settings.bookings_store,
            schedules_store=self.settings.schedules_store,
            timestamp=datetime.now(UTC),
        )
