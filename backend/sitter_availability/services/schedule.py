import re
from datetime import date
from typing import Dict, Iterable, List, Optional, Union
from uuid import uuid4

from sitter_availability.errors import AvailabilityValidationError
from sitter_availability.models import TimeSlot, WeekSchedule

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

# Persistence numbers weekdays 1-7 starting on Monday.
WEEKDAY_NUMBERS: Dict[str, int] = {name: idx + 1 for idx, name in enumerate(WEEKDAYS)}

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def new_slot_id() -> str:
    return uuid4().hex


def empty_week_schedule() -> WeekSchedule:
    return {day: [] for day in WEEKDAYS}


def normalize_weekday(name: str) -> str:
    normalized = (name or "").strip().lower()
    if normalized not in WEEKDAY_NUMBERS:
        raise AvailabilityValidationError(f"Unknown weekday: {name!r}")
    return normalized


def weekday_number(name: str) -> int:
    return WEEKDAY_NUMBERS[normalize_weekday(name)]


def weekday_name(number: int) -> Optional[str]:
    if 1 <= number <= 7:
        return WEEKDAYS[number - 1]
    return None


def parse_time(value: str) -> Optional[tuple[int, int]]:
    """Parse ``HH:MM`` into (hours, minutes); None when malformed or out of range."""
    match = _TIME_PATTERN.match((value or "").strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours, minutes


def time_to_minutes(value: str) -> int:
    parsed = parse_time(value)
    if parsed is None:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    return parsed[0] * 60 + parsed[1]


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _start_sort_key(slot: TimeSlot) -> float:
    parsed = parse_time(slot.start)
    if parsed is None:
        return float("inf")
    return parsed[0] * 60 + parsed[1]


def sort_slots(slots: Iterable[TimeSlot]) -> List[TimeSlot]:
    return sorted(slots, key=_start_sort_key)


def format_display(value: str) -> str:
    """Render ``13:05`` as ``1:05 PM``; anything unparseable comes back as-is."""
    parsed = parse_time(value) if value else None
    if parsed is None:
        return value
    hours, minutes = parsed
    period = "PM" if hours >= 12 else "AM"
    display_hours = hours % 12 or 12
    return f"{display_hours}:{minutes:02d} {period}"


def format_slot_range(slot: TimeSlot) -> str:
    return f"{format_display(slot.start)} - {format_display(slot.end)}"


def parse_iso_date(value: Union[str, date], *, field: str = "date") -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat((value or "").strip())
    except ValueError as exc:
        raise AvailabilityValidationError(f"Invalid {field}; expected YYYY-MM-DD") from exc


def format_iso_date(value: Union[str, date]) -> str:
    return parse_iso_date(value).isoformat()


def weekday_of(value: Union[str, date]) -> str:
    return WEEKDAYS[parse_iso_date(value).weekday()]


def normalize_week_schedule(schedule: Dict[str, List[TimeSlot]]) -> WeekSchedule:
    """Lowercase weekday keys, fill missing days and sort each day by start.

    Raises AvailabilityValidationError for a key that is not a weekday.
    """
    normalized = empty_week_schedule()
    for day, slots in schedule.items():
        normalized[normalize_weekday(day)].extend(slots or [])
    return {day: sort_slots(slots) for day, slots in normalized.items()}


def copy_week_schedule(schedule: WeekSchedule) -> WeekSchedule:
    return {day: [slot.model_copy() for slot in slots] for day, slots in schedule.items()}
