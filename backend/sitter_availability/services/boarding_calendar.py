from datetime import date
from typing import Iterable, List, Set, Union

from sitter_availability.models import BoardingDiff
from sitter_availability.services.schedule import format_iso_date, parse_iso_date


class BoardingCalendar:
    """Explicit set of dates a provider takes boarding stays.

    Unrelated to the weekly schedule: there is no recurrence and no time of
    day, a date is simply in the set or not.
    """

    def __init__(self, dates: Iterable[Union[str, date]] = ()):
        self._dates: Set[str] = {format_iso_date(value) for value in dates}

    def __len__(self) -> int:
        return len(self._dates)

    def add(self, value: Union[str, date]) -> bool:
        key = format_iso_date(value)
        if key in self._dates:
            return False
        self._dates.add(key)
        return True

    def remove(self, value: Union[str, date]) -> bool:
        key = format_iso_date(value)
        if key not in self._dates:
            return False
        self._dates.discard(key)
        return True

    def toggle(self, value: Union[str, date]) -> bool:
        """Flip a date in or out of the set; returns True when it is now present."""
        if self.remove(value):
            return False
        self.add(value)
        return True

    def contains(self, value: Union[str, date]) -> bool:
        return format_iso_date(value) in self._dates

    def dates(self) -> List[str]:
        return sorted(self._dates)


def diff_boarding_dates(existing: Iterable[Union[str, date]], updated: Iterable[Union[str, date]]) -> BoardingDiff:
    existing_set = {format_iso_date(value) for value in existing}
    updated_set = {format_iso_date(value) for value in updated}
    return BoardingDiff(
        to_add=sorted(updated_set - existing_set),
        to_remove=sorted(existing_set - updated_set),
    )


def upcoming(dates: Iterable[Union[str, date]], today: date) -> List[str]:
    return sorted(
        {format_iso_date(value) for value in dates if parse_iso_date(value) >= today}
    )
