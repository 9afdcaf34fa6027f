from datetime import date, datetime

from pydantic import BaseModel, Field


class AvailabilitySlot(BaseModel):
    date: date
    time: str
    instant: datetime
    end_instant: datetime
    available: bool
    reason: str | None = None


class AvailabilityDay(BaseModel):
    date: date
    slots: list[AvailabilitySlot] = Field(default_factory=list)


class AvailabilityResponse(BaseModel):
    provider_id: str
    computed_at: datetime
    refresh_interval_seconds: float | None = None
    available_days: list[date] = Field(default_factory=list)
    days: list[AvailabilityDay] = Field(default_factory=list)
