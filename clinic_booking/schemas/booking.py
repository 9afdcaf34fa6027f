from datetime import datetime

from pydantic import AwareDatetime, BaseModel, Field

from clinic_booking.schemas.availability import AvailabilityResponse


class BookingCreateRequest(BaseModel):
    provider_id: str
    subject_id: str
    instant: AwareDatetime
    link_id: str | None = None


class BookingResponse(BaseModel):
    id: str
    provider_id: str
    subject_id: str
    instant: datetime
    status: str
    created_at: datetime | None = None
    status_changed_at: datetime | None = None
    status_changed_by: str | None = None
    cancellation_reason: str | None = None
    completion_notes: str | None = None
    link_id: str | None = None


class BookingsResponse(BaseModel):
    items: list[BookingResponse] = Field(default_factory=list)


class StatusTransitionRequest(BaseModel):
    new_status: str
    actor_id: str
    reason: str | None = None
    notes: str | None = None


class StatusHistoryEntryResponse(BaseModel):
    booking_id: str
    old_status: str
    new_status: str
    actor_id: str
    changed_at: datetime
    reason: str | None = None
    notes: str | None = None


class StatusHistoryResponse(BaseModel):
    booking_id: str
    items: list[StatusHistoryEntryResponse] = Field(default_factory=list)


class StatusSummaryResponse(BaseModel):
    booking_id: str
    provider_id: str
    subject_id: str
    instant: datetime
    current_status: str
    status_changed_at: datetime | None = None
    status_changed_by: str | None = None
    cancellation_reason: str | None = None
    completion_notes: str | None = None
    status_change_count: int = 0
    last_status_change: datetime | None = None


class ProviderStatsResponse(BaseModel):
    provider_id: str
    total: int = 0
    scheduled: int = 0
    in_progress: int = 0
    checked: int = 0
    cancelled: int = 0


class CacheStatsResponse(BaseModel):
    total_entries: int
    valid_entries: int
    expired_entries: int
    max_entries: int
    hits: int
    misses: int


class SlotTakenResponse(BaseModel):
    code: str = "slot_taken"
    message: str
    availability: AvailabilityResponse | None = None
