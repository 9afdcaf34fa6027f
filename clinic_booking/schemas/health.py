from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    bookings_store: str
    schedules_store: str
    timestamp: datetime
