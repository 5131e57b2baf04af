from datetime import date
from typing import Iterable, List, Set, Union

from sitter_availability.errors import DuplicateOverrideError
from sitter_availability.models import TimeSlot, WeekSchedule
from sitter_availability.services.schedule import format_iso_date, sort_slots, weekday_of


class UnavailabilityOverrides:
    """Dates on which a provider's recurring weekly slots do not apply."""

    def __init__(self, dates: Iterable[Union[str, date]] = ()):
        self._dates: Set[str] = {format_iso_date(value) for value in dates}

    def __len__(self) -> int:
        return len(self._dates)

    def __contains__(self, value: object) -> bool:
        if not isinstance(value, (str, date)):
            return False
        return self.is_unavailable(value)

    def add(self, value: Union[str, date]) -> str:
        key = format_iso_date(value)
        if key in self._dates:
            raise DuplicateOverrideError(key)
        self._dates.add(key)
        return key

    def remove(self, value: Union[str, date]) -> int:
        key = format_iso_date(value)
        if key not in self._dates:
            return 0
        self._dates.discard(key)
        return 1

    def is_unavailable(self, value: Union[str, date]) -> bool:
        return format_iso_date(value) in self._dates

    def dates(self) -> List[str]:
        return sorted(self._dates)

    def resolve_effective_slots(self, week_schedule: WeekSchedule, value: Union[str, date]) -> List[TimeSlot]:
        """Slots that actually apply on a date.

        This is the one place the recurring schedule and date overrides are
        combined; anything answering "is the provider open on this date"
        goes through here.
        """
        if self.is_unavailable(value):
            return []
        weekday = weekday_of(value)
        slots: List[TimeSlot] = []
        for day, day_slots in week_schedule.items():
            if day.strip().lower() == weekday:
                slots.extend(day_slots or [])
        return sort_slots(slots)
