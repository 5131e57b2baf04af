import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import date
from threading import Event, Lock
from typing import Callable, ContextManager, Dict, Iterable, List, Literal, Optional, Union

from sitter_availability.config import FETCH_COOLDOWN_SECONDS, OPERATIONAL_HOURS, OperationalHours
from sitter_availability.errors import (
    AvailabilityValidationError,
    DuplicateOverrideError,
    UniquenessViolation,
)
from sitter_availability.models import (
    BoardingFetchResult,
    EffectiveSlotsResult,
    ErrorDescriptor,
    OverrideResult,
    OverridesFetchResult,
    SaveResult,
    ScheduleFetchResult,
    SlotOperation,
    TimeSlot,
    WeekSchedule,
)
from sitter_availability.services.availability_store import AvailabilityRepository, availability_store
from sitter_availability.services.boarding_calendar import BoardingCalendar, diff_boarding_dates, upcoming
from sitter_availability.services.diff_engine import diff_schedule, plan_operations
from sitter_availability.services.schedule import (
    copy_week_schedule,
    empty_week_schedule,
    format_iso_date,
    minutes_to_time,
    normalize_week_schedule,
    sort_slots,
    time_to_minutes,
    weekday_name,
    weekday_number,
    weekday_of,
)
from sitter_availability.services.slot_validator import validate_week_schedule
from sitter_availability.services.unavailability_store import UnavailabilityOverrides

logger = logging.getLogger(__name__)

FetchState = Literal["idle", "fetching", "fetched", "failed"]


class _PendingFetch:
    def __init__(self) -> None:
        self.done = Event()
        self.result: Optional[ScheduleFetchResult] = None


@dataclass
class _ProviderState:
    state: FetchState = "idle"
    schedule: Optional[WeekSchedule] = None
    fetched_at: Optional[float] = None
    pending: Optional[_PendingFetch] = None
    # bumped by every successful save; a fetch that started earlier must not overwrite it
    generation: int = 0


def _short(provider_id: str) -> str:
    return provider_id[:8]


def _persistence_error(exc: Exception) -> ErrorDescriptor:
    return ErrorDescriptor(code="persistence_error", message=str(exc) or exc.__class__.__name__)


def _validation_error(message: str) -> ErrorDescriptor:
    return ErrorDescriptor(code="validation_error", message=message)


class SyncCoordinator:
    """Owns every read and write of a provider's availability.

    Reads of the weekly schedule are coalesced per provider: a caller arriving
    while a read is in flight waits for it, and a caller arriving within the
    cooldown after a successful read gets the cached snapshot. Failures never
    escape as exceptions; they come back as ErrorDescriptor values next to an
    empty but usable default.
    """

    def __init__(
        self,
        repository: AvailabilityRepository,
        *,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
        cooldown_seconds: float = FETCH_COOLDOWN_SECONDS,
        hours: OperationalHours = OPERATIONAL_HOURS,
    ):
        self._repository = repository
        self._clock = clock
        self._today = today
        self.cooldown_seconds = cooldown_seconds
        self.hours = hours
        self._lock = Lock()
        self._providers: Dict[str, _ProviderState] = {}

    def _entry(self, provider_id: str) -> _ProviderState:
        return self._providers.setdefault(provider_id, _ProviderState())

    def _atomic(self) -> ContextManager[None]:
        atomic = getattr(self._repository, "atomic", None)
        return atomic() if callable(atomic) else nullcontext()

    def fetch_state(self, provider_id: str) -> FetchState:
        with self._lock:
            entry = self._providers.get(provider_id)
            return entry.state if entry else "idle"

    def last_known_schedule(self, provider_id: str) -> Optional[WeekSchedule]:
        with self._lock:
            entry = self._providers.get(provider_id)
            if entry is None or entry.schedule is None:
                return None
            return copy_week_schedule(entry.schedule)

    def fetch(self, provider_id: str) -> ScheduleFetchResult:
        with self._lock:
            entry = self._entry(provider_id)
            pending = entry.pending
            if pending is None:
                if (
                    entry.schedule is not None
                    and entry.fetched_at is not None
                    and self._clock() - entry.fetched_at < self.cooldown_seconds
                ):
                    logger.debug("Serving cached availability for provider %s", _short(provider_id))
                    return ScheduleFetchResult(schedule=copy_week_schedule(entry.schedule), from_cache=True)
                pending = _PendingFetch()
                entry.pending = pending
                entry.state = "fetching"
                generation = entry.generation
                owner = True
            else:
                owner = False

        if not owner:
            logger.debug("Joining in-flight availability fetch for provider %s", _short(provider_id))
            pending.done.wait()
            shared = pending.result
            assert shared is not None
            return ScheduleFetchResult(
                schedule=copy_week_schedule(shared.schedule),
                error=shared.error,
                from_cache=True,
            )

        result = ScheduleFetchResult(
            schedule=empty_week_schedule(),
            error=ErrorDescriptor(code="persistence_error", message="Fetch did not complete"),
        )
        try:
            result = self._read_schedule(provider_id)
        finally:
            with self._lock:
                if entry.generation != generation:
                    logger.debug("Discarding fetch for provider %s superseded by a save", _short(provider_id))
                elif result.error is None:
                    entry.schedule = copy_week_schedule(result.schedule)
                    entry.fetched_at = self._clock()
                    entry.state = "fetched"
                else:
                    # a failed read does not arm the cooldown, so a retry reads again
                    entry.state = "failed"
                entry.pending = None
            pending.result = result
            pending.done.set()
        return result

    def _read_schedule(self, provider_id: str) -> ScheduleFetchResult:
        logger.info("Fetching availability for provider %s", _short(provider_id))
        try:
            schedule = self._load_server_schedule(provider_id)
        except Exception as exc:
            logger.exception("Availability fetch failed for provider %s", _short(provider_id))
            return ScheduleFetchResult(schedule=empty_week_schedule(), error=_persistence_error(exc))
        empty = all(not slots for slots in schedule.values())
        logger.info("Fetched availability for provider %s, empty=%s", _short(provider_id), empty)
        return ScheduleFetchResult(schedule=schedule)

    def _load_server_schedule(self, provider_id: str) -> WeekSchedule:
        schedule = empty_week_schedule()
        for record in self._repository.list_weekly_slots(provider_id):
            day = weekday_name(record.weekday)
            if day is None:
                logger.warning("Skipping slot %s with invalid weekday %s", record.id, record.weekday)
                continue
            schedule[day].append(
                TimeSlot(id=record.id, start=record.start_time[:5], end=record.end_time[:5])
            )
        return {day: sort_slots(slots) for day, slots in schedule.items()}

    def _canonical(self, schedule: WeekSchedule) -> WeekSchedule:
        return {
            day: [
                slot.model_copy(
                    update={
                        "start": minutes_to_time(time_to_minutes(slot.start)),
                        "end": minutes_to_time(time_to_minutes(slot.end)),
                    }
                )
                for slot in slots
            ]
            for day, slots in schedule.items()
        }

    def save(self, provider_id: str, updated_schedule: WeekSchedule) -> SaveResult:
        invalid = validate_week_schedule(updated_schedule, self.hours)
        if invalid:
            logger.info("Rejected availability save for provider %s: %s", _short(provider_id), invalid.code)
            return SaveResult(success=False, error=_validation_error(invalid.message), schedule_error=invalid)
        target = self._canonical(normalize_week_schedule(updated_schedule))

        # Always diff against what the server holds now, never a cached copy.
        try:
            current = self._load_server_schedule(provider_id)
        except Exception as exc:
            logger.exception("Could not load current availability for provider %s", _short(provider_id))
            return SaveResult(success=False, error=_persistence_error(exc))

        diffs = diff_schedule(current, target)
        for day, diff in diffs.items():
            logger.info(
                "Day %s: %d added, %d modified, %d removed, %d unchanged",
                day,
                len(diff.added),
                len(diff.modified),
                len(diff.removed),
                len(diff.unchanged),
            )
        operations = plan_operations(diffs)
        logger.info("Executing %d availability writes for provider %s", len(operations), _short(provider_id))

        issued_ids: Dict[str, str] = {}
        try:
            with self._atomic():
                for operation in operations:
                    new_id = self._execute(provider_id, operation)
                    if new_id is not None and new_id != operation.slot.id:
                        issued_ids[operation.slot.id] = new_id
        except Exception as exc:
            logger.exception("Availability save failed for provider %s", _short(provider_id))
            return SaveResult(success=False, error=_persistence_error(exc))

        snapshot = {
            day: [
                slot.model_copy(update={"id": issued_ids[slot.id]}) if slot.id in issued_ids else slot
                for slot in slots
            ]
            for day, slots in target.items()
        }
        with self._lock:
            entry = self._entry(provider_id)
            entry.schedule = snapshot
            entry.fetched_at = self._clock()
            entry.state = "fetched"
            entry.generation += 1
        return SaveResult(success=True)

    def _execute(self, provider_id: str, operation: SlotOperation) -> Optional[str]:
        slot = operation.slot
        if operation.kind == "delete":
            self._repository.delete_weekly_slot(slot.id, provider_id)
            return None
        return self._repository.insert_weekly_slot(
            provider_id,
            weekday_number(operation.weekday),
            slot.start,
            slot.end,
            slot_id=slot.id,
        )

    def fetch_overrides(self, provider_id: str) -> OverridesFetchResult:
        try:
            dates = self._repository.list_unavailable_dates(provider_id)
        except Exception as exc:
            logger.exception("Unavailability fetch failed for provider %s", _short(provider_id))
            return OverridesFetchResult(error=_persistence_error(exc))
        return OverridesFetchResult(dates=UnavailabilityOverrides(dates).dates())

    def add_override(self, provider_id: str, value: Union[str, date]) -> OverrideResult:
        try:
            key = format_iso_date(value)
        except AvailabilityValidationError as exc:
            return OverrideResult(success=False, date=str(value), error=_validation_error(str(exc)))

        try:
            overrides = UnavailabilityOverrides(self._repository.list_unavailable_dates(provider_id))
            overrides.add(key)
            self._repository.insert_unavailable_date(provider_id, key)
        except (DuplicateOverrideError, UniquenessViolation):
            logger.info("Provider %s already unavailable on %s", _short(provider_id), key)
            return OverrideResult(
                success=False,
                date=key,
                error=ErrorDescriptor(code="duplicate_override", message=f"Already marked unavailable on {key}"),
            )
        except Exception as exc:
            logger.exception("Adding unavailable date failed for provider %s", _short(provider_id))
            return OverrideResult(success=False, date=key, error=_persistence_error(exc))
        return OverrideResult(success=True, date=key, affected=1)

    def remove_override(self, provider_id: str, value: Union[str, date]) -> OverrideResult:
        try:
            key = format_iso_date(value)
        except AvailabilityValidationError as exc:
            return OverrideResult(success=False, date=str(value), error=_validation_error(str(exc)))
        try:
            affected = self._repository.delete_unavailable_date(provider_id, key)
        except Exception as exc:
            logger.exception("Removing unavailable date failed for provider %s", _short(provider_id))
            return OverrideResult(success=False, date=key, error=_persistence_error(exc))
        return OverrideResult(success=True, date=key, affected=affected)

    def save_overrides(self, provider_id: str, dates: Iterable[Union[str, date]]) -> SaveResult:
        try:
            wanted = UnavailabilityOverrides(dates)
        except AvailabilityValidationError as exc:
            return SaveResult(success=False, error=_validation_error(str(exc)))

        try:
            existing = UnavailabilityOverrides(self._repository.list_unavailable_dates(provider_id))
            to_add = [key for key in wanted.dates() if not existing.is_unavailable(key)]
            to_remove = [key for key in existing.dates() if not wanted.is_unavailable(key)]
            logger.info(
                "Unavailability for provider %s: %d to add, %d to remove",
                _short(provider_id),
                len(to_add),
                len(to_remove),
            )
            with self._atomic():
                for key in to_remove:
                    self._repository.delete_unavailable_date(provider_id, key)
                for key in to_add:
                    self._repository.insert_unavailable_date(provider_id, key)
        except Exception as exc:
            logger.exception("Saving unavailability failed for provider %s", _short(provider_id))
            return SaveResult(success=False, error=_persistence_error(exc))
        return SaveResult(success=True)

    def effective_slots(self, provider_id: str, value: Union[str, date]) -> EffectiveSlotsResult:
        try:
            key = format_iso_date(value)
        except AvailabilityValidationError as exc:
            return EffectiveSlotsResult(date=str(value), error=_validation_error(str(exc)))

        fetched = self.fetch(provider_id)
        if fetched.error:
            return EffectiveSlotsResult(date=key, weekday=weekday_of(key), error=fetched.error)
        overrides_result = self.fetch_overrides(provider_id)
        if overrides_result.error:
            return EffectiveSlotsResult(date=key, weekday=weekday_of(key), error=overrides_result.error)

        overrides = UnavailabilityOverrides(overrides_result.dates)
        return EffectiveSlotsResult(
            date=key,
            weekday=weekday_of(key),
            unavailable=overrides.is_unavailable(key),
            slots=overrides.resolve_effective_slots(fetched.schedule, key),
        )

    def fetch_boarding(self, provider_id: str, upcoming_only: bool = False) -> BoardingFetchResult:
        try:
            records = self._repository.list_boarding_dates(provider_id)
        except Exception as exc:
            logger.exception("Boarding fetch failed for provider %s", _short(provider_id))
            return BoardingFetchResult(error=_persistence_error(exc))
        dates = BoardingCalendar(record.date for record in records).dates()
        if upcoming_only:
            dates = upcoming(dates, self._today())
        return BoardingFetchResult(dates=dates)

    def save_boarding(self, provider_id: str, dates: Iterable[Union[str, date]]) -> SaveResult:
        try:
            wanted = BoardingCalendar(dates)
        except AvailabilityValidationError as exc:
            return SaveResult(success=False, error=_validation_error(str(exc)))

        try:
            records = self._repository.list_boarding_dates(provider_id)
            diff = diff_boarding_dates([record.date for record in records], wanted.dates())
            logger.info(
                "Boarding for provider %s: %d to add, %d to remove",
                _short(provider_id),
                len(diff.to_add),
                len(diff.to_remove),
            )
            dropped = set(diff.to_remove)
            removed_ids: List[str] = [record.id for record in records if record.date in dropped]
            with self._atomic():
                if removed_ids:
                    self._repository.delete_boarding_dates(removed_ids, provider_id)
                if diff.to_add:
                    self._repository.insert_boarding_dates(provider_id, diff.to_add)
        except Exception as exc:
            logger.exception("Saving boarding availability failed for provider %s", _short(provider_id))
            return SaveResult(success=False, error=_persistence_error(exc))
        return SaveResult(success=True)


sync_coordinator = SyncCoordinator(availability_store)
