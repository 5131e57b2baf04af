"""Gatekeeping for weekly slots.

Everything here returns result values rather than raising, so editors can show
the message next to the offending slot and keep the previous state.
"""

from typing import Dict, Iterable, List, Optional

from sitter_availability.config import OPERATIONAL_HOURS, OperationalHours
from sitter_availability.errors import AvailabilityValidationError
from sitter_availability.models import (
    OverlapResult,
    ScheduleError,
    SlotValidationError,
    TimeSlot,
)
from sitter_availability.services.schedule import (
    format_display,
    format_slot_range,
    normalize_weekday,
    parse_time,
    time_to_minutes,
)


def validate_slot(slot: TimeSlot, hours: OperationalHours = OPERATIONAL_HOURS) -> Optional[SlotValidationError]:
    if not (slot.start or "").strip() or not (slot.end or "").strip():
        return SlotValidationError(code="missing_field", message="Start and end times are required.")

    start = parse_time(slot.start)
    end = parse_time(slot.end)
    if start is None or end is None:
        return SlotValidationError(
            code="malformed_time",
            message="Invalid time format. Use HH:MM with hours 0-23 and minutes 0-59.",
        )

    start_minutes = start[0] * 60 + start[1]
    end_minutes = end[0] * 60 + end[1]
    if start_minutes >= end_minutes:
        return SlotValidationError(code="inverted_range", message="End time must be later than start time.")

    if start_minutes < time_to_minutes(hours.opens):
        return SlotValidationError(
            code="outside_operational_hours",
            message=f"Start time cannot be earlier than {format_display(hours.opens)}.",
        )
    if end_minutes > time_to_minutes(hours.closes):
        return SlotValidationError(
            code="outside_operational_hours",
            message=f"End time cannot be later than {format_display(hours.closes)}.",
        )
    return None


def detect_overlap(existing_slots: Iterable[TimeSlot], candidate: TimeSlot) -> OverlapResult:
    """Report the first existing slot the candidate collides with.

    Intervals are half-open, so a slot ending at 12:00 does not collide with one
    starting at 12:00. Slots sharing the candidate's id are its own previous
    version and are skipped.
    """
    candidate_start = time_to_minutes(candidate.start)
    candidate_end = time_to_minutes(candidate.end)

    for slot in existing_slots:
        if slot.id == candidate.id:
            continue
        existing_start = time_to_minutes(slot.start)
        existing_end = time_to_minutes(slot.end)
        has_overlap = (
            existing_start <= candidate_start < existing_end
            or existing_start < candidate_end <= existing_end
            or (candidate_start <= existing_start and candidate_end >= existing_end)
        )
        if has_overlap:
            return OverlapResult(overlapping=True, collides_with=slot)

    return OverlapResult(overlapping=False)


def check_candidate(
    existing_slots: List[TimeSlot],
    candidate: TimeSlot,
    *,
    weekday: Optional[str] = None,
    hours: OperationalHours = OPERATIONAL_HOURS,
) -> Optional[ScheduleError]:
    """Validate a candidate and check it against the rest of its day."""
    invalid = validate_slot(candidate, hours)
    if invalid:
        return ScheduleError(code=invalid.code, message=invalid.message, weekday=weekday, slot=candidate)

    overlap = detect_overlap(existing_slots, candidate)
    if overlap.overlapping:
        other = overlap.collides_with
        return ScheduleError(
            code="overlap",
            message=f"This time slot overlaps with an existing slot: {format_slot_range(other)}",
            weekday=weekday,
            slot=candidate,
            collides_with=other,
        )
    return None


def validate_day(
    slots: List[TimeSlot],
    *,
    weekday: Optional[str] = None,
    hours: OperationalHours = OPERATIONAL_HOURS,
) -> Optional[ScheduleError]:
    accepted: List[TimeSlot] = []
    for slot in slots:
        if any(other.id == slot.id for other in accepted):
            return ScheduleError(
                code="duplicate_id",
                message=f"Time slot id {slot.id} appears more than once.",
                weekday=weekday,
                slot=slot,
            )
        error = check_candidate(accepted, slot, weekday=weekday, hours=hours)
        if error:
            return error
        accepted.append(slot)
    return None


def validate_week_schedule(
    schedule: Dict[str, List[TimeSlot]],
    hours: OperationalHours = OPERATIONAL_HOURS,
) -> Optional[ScheduleError]:
    by_weekday: Dict[str, List[TimeSlot]] = {}
    for day, slots in schedule.items():
        try:
            weekday = normalize_weekday(day)
        except AvailabilityValidationError as exc:
            return ScheduleError(code="unknown_weekday", message=str(exc), weekday=day)
        by_weekday.setdefault(weekday, []).extend(slots or [])

    seen: Dict[str, str] = {}
    for weekday, slots in by_weekday.items():
        error = validate_day(slots, weekday=weekday, hours=hours)
        if error:
            return error
        for slot in slots:
            # ids are unique per provider, not per day
            if slot.id in seen:
                return ScheduleError(
                    code="duplicate_id",
                    message=f"Time slot id {slot.id} is used on both {seen[slot.id]} and {weekday}.",
                    weekday=weekday,
                    slot=slot,
                )
            seen[slot.id] = weekday
    return None
