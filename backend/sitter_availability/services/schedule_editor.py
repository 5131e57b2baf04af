from typing import Dict, List, Optional

from sitter_availability.config import OPERATIONAL_HOURS, OperationalHours
from sitter_availability.models import ScheduleError, TimeSlot, WeekSchedule
from sitter_availability.services.schedule import (
    copy_week_schedule,
    empty_week_schedule,
    new_slot_id,
    normalize_week_schedule,
    normalize_weekday,
    sort_slots,
)
from sitter_availability.services.slot_validator import check_candidate

SLOT_PRESETS: Dict[str, tuple[str, str]] = {
    "morning": ("08:00", "12:00"),
    "afternoon": ("12:00", "16:00"),
    "evening": ("16:00", "19:00"),
}


class ScheduleEditor:
    """In-memory week schedule where every mutation is validated first.

    A rejected mutation returns the ScheduleError and leaves the schedule as it
    was; an accepted one keeps the day sorted by start time.
    """

    def __init__(self, schedule: Optional[WeekSchedule] = None, hours: OperationalHours = OPERATIONAL_HOURS):
        self.hours = hours
        self._schedule = normalize_week_schedule(schedule) if schedule else empty_week_schedule()

    @property
    def schedule(self) -> WeekSchedule:
        return copy_week_schedule(self._schedule)

    def slots_for(self, weekday: str) -> List[TimeSlot]:
        return list(self._schedule[normalize_weekday(weekday)])

    def add_slot(self, weekday: str, start: str, end: str) -> tuple[Optional[TimeSlot], Optional[ScheduleError]]:
        day = normalize_weekday(weekday)
        candidate = TimeSlot(id=new_slot_id(), start=start, end=end)
        error = check_candidate(self._schedule[day], candidate, weekday=day, hours=self.hours)
        if error:
            return None, error
        self._schedule[day] = sort_slots([*self._schedule[day], candidate])
        return candidate, None

    def add_preset(self, weekday: str, preset: str) -> tuple[Optional[TimeSlot], Optional[ScheduleError]]:
        start, end = SLOT_PRESETS[preset.strip().lower()]
        return self.add_slot(weekday, start, end)

    def update_slot(
        self,
        weekday: str,
        slot_id: str,
        *,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> tuple[Optional[TimeSlot], Optional[ScheduleError]]:
        day = normalize_weekday(weekday)
        current = next((slot for slot in self._schedule[day] if slot.id == slot_id), None)
        if current is None:
            raise KeyError(slot_id)
        updated = current.model_copy(
            update={
                "start": current.start if start is None else start,
                "end": current.end if end is None else end,
            }
        )
        # detect_overlap skips the slot's own id, so the old version never collides.
        error = check_candidate(self._schedule[day], updated, weekday=day, hours=self.hours)
        if error:
            return None, error
        self._schedule[day] = sort_slots(
            updated if slot.id == slot_id else slot for slot in self._schedule[day]
        )
        return updated, None

    def remove_slot(self, weekday: str, slot_id: str) -> bool:
        day = normalize_weekday(weekday)
        remaining = [slot for slot in self._schedule[day] if slot.id != slot_id]
        removed = len(remaining) != len(self._schedule[day])
        self._schedule[day] = remaining
        return removed

    def clear_day(self, weekday: str) -> None:
        self._schedule[normalize_weekday(weekday)] = []
