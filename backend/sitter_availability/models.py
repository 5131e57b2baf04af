from typing import Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class TimeSlot(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    start: str
    end: str


WeekSchedule = Dict[str, List[TimeSlot]]


class SlotValidationError(BaseModel):
    code: Literal[
        "missing_field",
        "malformed_time",
        "inverted_range",
        "outside_operational_hours",
    ]
    message: str


class OverlapResult(BaseModel):
    overlapping: bool
    collides_with: Optional[TimeSlot] = None


class ScheduleError(BaseModel):
    code: Literal[
        "missing_field",
        "malformed_time",
        "inverted_range",
        "outside_operational_hours",
        "overlap",
        "duplicate_id",
        "unknown_weekday",
    ]
    message: str
    weekday: Optional[str] = None
    slot: Optional[TimeSlot] = None
    collides_with: Optional[TimeSlot] = None


class SlotDiff(BaseModel):
    added: List[TimeSlot] = Field(default_factory=list)
    removed: List[TimeSlot] = Field(default_factory=list)
    modified: List[TimeSlot] = Field(default_factory=list)
    unchanged: List[TimeSlot] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    @property
    def write_count(self) -> int:
        # modified slots cost a delete plus an insert
        return len(self.added) + len(self.removed) + 2 * len(self.modified)


class SlotOperation(BaseModel):
    kind: Literal["delete", "insert"]
    weekday: str
    slot: TimeSlot


class BoardingDiff(BaseModel):
    to_add: List[str] = Field(default_factory=list)
    to_remove: List[str] = Field(default_factory=list)


class WeeklySlotRecord(BaseModel):
    id: str
    weekday: int = Field(ge=1, le=7)
    start_time: str
    end_time: str


class BoardingDateRecord(BaseModel):
    id: str
    date: str


class ErrorDescriptor(BaseModel):
    code: Literal["persistence_error", "duplicate_override", "validation_error"]
    message: str


class ScheduleFetchResult(BaseModel):
    schedule: WeekSchedule
    error: Optional[ErrorDescriptor] = None
    from_cache: bool = False


class SaveResult(BaseModel):
    success: bool
    error: Optional[ErrorDescriptor] = None
    schedule_error: Optional[ScheduleError] = None


class OverridesFetchResult(BaseModel):
    dates: List[str] = Field(default_factory=list)
    error: Optional[ErrorDescriptor] = None


class OverrideResult(BaseModel):
    success: bool
    date: str
    affected: int = 0
    error: Optional[ErrorDescriptor] = None


class EffectiveSlotsResult(BaseModel):
    date: str
    weekday: Optional[str] = None
    unavailable: bool = False
    slots: List[TimeSlot] = Field(default_factory=list)
    error: Optional[ErrorDescriptor] = None


class BoardingFetchResult(BaseModel):
    dates: List[str] = Field(default_factory=list)
    error: Optional[ErrorDescriptor] = None


class WeekScheduleUpdateRequest(BaseModel):
    schedule: WeekSchedule


class SlotCheckRequest(BaseModel):
    candidate: TimeSlot
    existing: List[TimeSlot] = Field(default_factory=list)


class SlotCheckResponse(BaseModel):
    valid: bool
    error: Optional[ScheduleError] = None
    display: str


class UnavailableDateRequest(BaseModel):
    date: str


class DateListRequest(BaseModel):
    dates: List[str]


class RemovalResponse(BaseModel):
    date: str
    affected: int
