"""Minimal write plans between two snapshots of a week schedule.

Slots are joined on id within a single weekday. The only write primitives are
insert and delete, so a slot whose times changed is deleted and re-inserted,
while unchanged slots are left alone to keep any metadata stored with them.
"""

from typing import Dict, Iterable, List

from sitter_availability.models import SlotDiff, SlotOperation, TimeSlot, WeekSchedule
from sitter_availability.services.schedule import WEEKDAYS, normalize_weekday, sort_slots


def diff_slots(original_slots: Iterable[TimeSlot], updated_slots: Iterable[TimeSlot]) -> SlotDiff:
    original_by_id = {slot.id: slot for slot in original_slots}
    updated = list(updated_slots)
    updated_ids = {slot.id for slot in updated}

    diff = SlotDiff()
    for slot in updated:
        previous = original_by_id.get(slot.id)
        if previous is None:
            diff.added.append(slot)
        elif previous.start != slot.start or previous.end != slot.end:
            diff.modified.append(slot)
        else:
            diff.unchanged.append(slot)

    diff.removed = [slot for slot in original_by_id.values() if slot.id not in updated_ids]
    return diff


def diff_schedule(original: WeekSchedule, updated: WeekSchedule) -> Dict[str, SlotDiff]:
    original_days = _by_weekday(original)
    updated_days = _by_weekday(updated)
    weekdays = [day for day in WEEKDAYS if day in original_days or day in updated_days]
    return {
        day: diff_slots(original_days.get(day, []), updated_days.get(day, []))
        for day in weekdays
    }


def plan_operations(diffs: Dict[str, SlotDiff]) -> List[SlotOperation]:
    """Turn per-weekday diffs into deletes followed by inserts."""
    deletes: List[SlotOperation] = []
    inserts: List[SlotOperation] = []
    for day, diff in diffs.items():
        for slot in [*diff.removed, *diff.modified]:
            deletes.append(SlotOperation(kind="delete", weekday=day, slot=slot))
        for slot in [*diff.added, *diff.modified]:
            inserts.append(SlotOperation(kind="insert", weekday=day, slot=slot))
    return deletes + inserts


def apply_operations(original: WeekSchedule, operations: Iterable[SlotOperation]) -> WeekSchedule:
    result = {day: list(slots) for day, slots in _by_weekday(original).items()}
    for operation in operations:
        day = normalize_weekday(operation.weekday)
        slots = result.setdefault(day, [])
        if operation.kind == "delete":
            result[day] = [slot for slot in slots if slot.id != operation.slot.id]
        else:
            slots.append(operation.slot)
    return {day: sort_slots(slots) for day, slots in result.items()}


def _by_weekday(schedule: WeekSchedule) -> Dict[str, List[TimeSlot]]:
    days: Dict[str, List[TimeSlot]] = {}
    for day, slots in schedule.items():
        days.setdefault(normalize_weekday(day), []).extend(slots or [])
    return days
