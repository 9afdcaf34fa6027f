from datetime import date

from pydantic import BaseModel, Field, field_validator, model_validator

_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class BreakTime(BaseModel):
    start_time: str
    end_time: str


class WorkingHours(BaseModel):
    day: str
    is_working: bool = False
    start_time: str = "09:00"
    end_time: str = "17:00"
    breaks: list[BreakTime] = Field(default_factory=list)

    @field_validator("day", mode="before")
    @classmethod
    def normalize_day(cls, value: str) -> str:
        normalized = str(value).strip().capitalize()
        if normalized not in _WEEKDAYS:
            raise ValueError(f"day must be one of {', '.join(_WEEKDAYS)}")
        return normalized


class Vacation(BaseModel):
    start_date: date
    end_date: date
    reason: str | None = None


class ScheduleRequest(BaseModel):
    appointment_duration: int = Field(ge=5, le=120)
    start_date: date
    end_date: date = date(2099, 12, 31)
    timezone: str = "UTC"
    working_hours: list[WorkingHours]
    vacations: list[Vacation] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_working_day(self) -> "ScheduleRequest":
        if not any(day.is_working for day in self.working_hours):
            raise ValueError("Please select at least one working day")
        return self


class ScheduleResponse(ScheduleRequest):
    provider_id: str
