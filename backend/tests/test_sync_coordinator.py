import os
import sys
import threading
from datetime import date
from typing import Dict, List, Optional
from uuid import uuid4

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from sitter_availability.errors import PersistenceError, UniquenessViolation
from sitter_availability.models import BoardingDateRecord, TimeSlot, WeeklySlotRecord
from sitter_availability.services.availability_store import AvailabilityStore
from sitter_availability.services.sync_coordinator import SyncCoordinator


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRepository:
    """In-memory persistence without transactions, so partial failures stay visible."""

    def __init__(self) -> None:
        self.slots: Dict[str, WeeklySlotRecord] = {}
        self.owners: Dict[str, str] = {}
        self.unavailable: Dict[str, set] = {}
        self.boarding: Dict[str, List[BoardingDateRecord]] = {}
        self.calls: List[str] = []
        self.fail_reads = False
        self.fail_insert_after: Optional[int] = None
        self.inserts = 0
        self.read_gate: Optional[threading.Event] = None
        self.read_started = threading.Event()

    def seed_slot(self, provider_id: str, weekday: int, start: str, end: str, slot_id: Optional[str] = None) -> str:
        slot_id = slot_id or uuid4().hex
        self.slots[slot_id] = WeeklySlotRecord(id=slot_id, weekday=weekday, start_time=f"{start}:00", end_time=f"{end}:00")
        self.owners[slot_id] = provider_id
        return slot_id

    def writes(self) -> List[str]:
        return [call for call in self.calls if not call.startswith("list")]

    def list_weekly_slots(self, provider_id: str) -> List[WeeklySlotRecord]:
        self.calls.append("list_weekly_slots")
        if self.fail_reads:
            raise PersistenceError("database unreachable")
        # rows are read before blocking, like a slow query returning an old snapshot
        rows = [record for slot_id, record in self.slots.items() if self.owners[slot_id] == provider_id]
        gate = self.read_gate
        self.read_started.set()
        if gate is not None:
            gate.wait(timeout=5)
        return rows

    def insert_weekly_slot(self, provider_id, weekday, start_time, end_time, slot_id=None) -> str:
        self.calls.append("insert_weekly_slot")
        if self.fail_insert_after is not None and self.inserts >= self.fail_insert_after:
            raise PersistenceError("insert failed")
        self.inserts += 1
        return self.seed_slot(provider_id, weekday, start_time, end_time, slot_id)

    def delete_weekly_slot(self, slot_id: str, provider_id: str) -> int:
        self.calls.append("delete_weekly_slot")
        if self.owners.get(slot_id) != provider_id:
            return 0
        del self.slots[slot_id]
        del self.owners[slot_id]
        return 1

    def list_unavailable_dates(self, provider_id: str) -> List[str]:
        self.calls.append("list_unavailable_dates")
        return sorted(self.unavailable.get(provider_id, set()))

    def insert_unavailable_date(self, provider_id: str, unavailable_date: str) -> str:
        self.calls.append("insert_unavailable_date")
        dates = self.unavailable.setdefault(provider_id, set())
        if unavailable_date in dates:
            raise UniquenessViolation("duplicate key value violates unique constraint")
        dates.add(unavailable_date)
        return uuid4().hex

    def delete_unavailable_date(self, provider_id: str, unavailable_date: str) -> int:
        self.calls.append("delete_unavailable_date")
        dates = self.unavailable.get(provider_id, set())
        if unavailable_date not in dates:
            return 0
        dates.discard(unavailable_date)
        return 1

    def list_boarding_dates(self, provider_id: str) -> List[BoardingDateRecord]:
        self.calls.append("list_boarding_dates")
        return list(self.boarding.get(provider_id, []))

    def insert_boarding_dates(self, provider_id: str, dates) -> List[BoardingDateRecord]:
        self.calls.append("insert_boarding_dates")
        records = [BoardingDateRecord(id=uuid4().hex, date=value) for value in dates]
        self.boarding.setdefault(provider_id, []).extend(records)
        return records

    def delete_boarding_dates(self, ids, provider_id=None) -> int:
        self.calls.append("delete_boarding_dates")
        doomed = set(ids)
        before = self.boarding.get(provider_id, [])
        self.boarding[provider_id] = [record for record in before if record.id not in doomed]
        return len(before) - len(self.boarding[provider_id])

    def resolve_availability_for_date(self, provider_id: str, slot_date: str) -> List[TimeSlot]:
        raise NotImplementedError


def _coordinator(repository, clock=None):
    return SyncCoordinator(
        repository,
        clock=clock or FakeClock(),
        today=lambda: date(2024, 7, 2),
        cooldown_seconds=2.0,
    )


def _spans(slots):
    return [(slot.start, slot.end) for slot in slots]


def test_fetch_maps_records_to_sorted_week():
    repository = FakeRepository()
    repository.seed_slot("sitter", 1, "13:00", "15:00")
    repository.seed_slot("sitter", 1, "09:00", "12:00")
    repository.seed_slot("sitter", 7, "10:00", "11:00")

    result = _coordinator(repository).fetch("sitter")

    assert result.error is None
    assert result.from_cache is False
    assert _spans(result.schedule["monday"]) == [("09:00", "12:00"), ("13:00", "15:00")]
    assert _spans(result.schedule["sunday"]) == [("10:00", "11:00")]
    assert result.schedule["wednesday"] == []


def test_fetch_within_cooldown_serves_cached_value():
    repository = FakeRepository()
    repository.seed_slot("sitter", 2, "09:00", "10:00")
    clock = FakeClock()
    coordinator = _coordinator(repository, clock)

    coordinator.fetch("sitter")
    clock.advance(1.5)
    cached = coordinator.fetch("sitter")
    assert cached.from_cache is True
    assert _spans(cached.schedule["tuesday"]) == [("09:00", "10:00")]
    assert repository.calls.count("list_weekly_slots") == 1

    clock.advance(1.0)
    assert coordinator.fetch("sitter").from_cache is False
    assert repository.calls.count("list_weekly_slots") == 2


def test_cooldown_is_per_provider():
    repository = FakeRepository()
    coordinator = _coordinator(repository)
    coordinator.fetch("sitter_a")
    coordinator.fetch("sitter_b")
    assert repository.calls.count("list_weekly_slots") == 2


def test_failed_fetch_returns_empty_week_and_error():
    repository = FakeRepository()
    repository.fail_reads = True
    coordinator = _coordinator(repository)

    result = coordinator.fetch("sitter")

    assert result.error.code == "persistence_error"
    assert set(result.schedule) == {
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    }
    assert all(slots == [] for slots in result.schedule.values())
    assert coordinator.fetch_state("sitter") == "failed"

    repository.fail_reads = False
    retried = coordinator.fetch("sitter")
    assert retried.error is None
    assert repository.calls.count("list_weekly_slots") == 2
    assert coordinator.fetch_state("sitter") == "fetched"


def test_concurrent_fetches_share_one_read():
    repository = FakeRepository()
    repository.seed_slot("sitter", 3, "09:00", "10:00")
    repository.read_gate = threading.Event()
    coordinator = _coordinator(repository)
    results = []

    first = threading.Thread(target=lambda: results.append(coordinator.fetch("sitter")))
    first.start()
    assert repository.read_started.wait(timeout=5)
    assert coordinator.fetch_state("sitter") == "fetching"

    second = threading.Thread(target=lambda: results.append(coordinator.fetch("sitter")))
    second.start()
    repository.read_gate.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert repository.calls.count("list_weekly_slots") == 1
    assert len(results) == 2
    assert all(_spans(result.schedule["wednesday"]) == [("09:00", "10:00")] for result in results)


def test_fetch_started_before_save_does_not_overwrite_saved_schedule():
    repository = FakeRepository()
    repository.seed_slot("sitter", 1, "09:00", "12:00", slot_id="old")
    gate = threading.Event()
    repository.read_gate = gate
    coordinator = _coordinator(repository)
    stale = []

    reader = threading.Thread(target=lambda: stale.append(coordinator.fetch("sitter")))
    reader.start()
    assert repository.read_started.wait(timeout=5)

    repository.read_gate = None
    assert coordinator.save("sitter", {"monday": []}).success is True
    assert repository.slots == {}

    gate.set()
    reader.join(timeout=5)
    assert [slot.id for slot in stale[0].schedule["monday"]] == ["old"]

    cached = coordinator.fetch("sitter")
    assert cached.from_cache is True
    assert cached.schedule["monday"] == []
    assert coordinator.effective_slots("sitter", "2024-06-10").slots == []
    assert coordinator.fetch_state("sitter") == "fetched"


def test_save_only_writes_the_difference():
    repository = FakeRepository()
    morning_id = repository.seed_slot("sitter", 1, "09:00", "12:00")
    coordinator = _coordinator(repository)

    updated = {
        "Monday": [
            TimeSlot(id=morning_id, start="09:00", end="12:00"),
            TimeSlot(id="afternoon", start="13:00", end="15:00"),
        ]
    }
    result = coordinator.save("sitter", updated)

    assert result.success is True
    assert repository.writes() == ["insert_weekly_slot"]
    assert set(repository.slots) == {morning_id, "afternoon"}
    cached = coordinator.last_known_schedule("sitter")
    assert _spans(cached["monday"]) == [("09:00", "12:00"), ("13:00", "15:00")]


def test_save_modified_slot_is_deleted_then_reinserted():
    repository = FakeRepository()
    slot_id = repository.seed_slot("sitter", 4, "09:00", "12:00")
    coordinator = _coordinator(repository)

    result = coordinator.save("sitter", {"thursday": [TimeSlot(id=slot_id, start="10:00", end="12:00")]})

    assert result.success is True
    assert repository.writes() == ["delete_weekly_slot", "insert_weekly_slot"]
    assert repository.slots[slot_id].start_time.startswith("10:00")


def test_save_diffs_against_fresh_server_state():
    repository = FakeRepository()
    coordinator = _coordinator(repository)
    coordinator.fetch("sitter")
    # another session writes after our fetch
    foreign_id = repository.seed_slot("sitter", 5, "09:00", "10:00")

    result = coordinator.save("sitter", {"friday": [TimeSlot(id="mine", start="11:00", end="12:00")]})

    assert result.success is True
    assert foreign_id not in repository.slots
    assert set(repository.slots) == {"mine"}
    assert repository.calls.count("list_weekly_slots") == 2


def test_invalid_schedule_never_reaches_persistence():
    repository = FakeRepository()
    coordinator = _coordinator(repository)

    result = coordinator.save(
        "sitter",
        {"monday": [TimeSlot(start="09:00", end="12:00"), TimeSlot(start="11:00", end="14:00")]},
    )

    assert result.success is False
    assert result.error.code == "validation_error"
    assert result.schedule_error.code == "overlap"
    assert repository.calls == []


def test_outside_hours_slot_is_rejected_on_save():
    repository = FakeRepository()
    result = _coordinator(repository).save("sitter", {"monday": [TimeSlot(start="07:00", end="10:00")]})
    assert result.schedule_error.code == "outside_operational_hours"
    assert repository.calls == []


def test_partial_failure_reports_first_error_and_keeps_cache():
    repository = FakeRepository()
    repository.fail_insert_after = 1
    coordinator = _coordinator(repository)
    coordinator.fetch("sitter")

    updated = {
        "monday": [TimeSlot(id="one", start="09:00", end="10:00")],
        "tuesday": [TimeSlot(id="two", start="09:00", end="10:00")],
    }
    result = coordinator.save("sitter", updated)

    assert result.success is False
    assert result.error.code == "persistence_error"
    assert result.error.message == "insert failed"
    assert set(repository.slots) == {"one"}
    assert all(slots == [] for slots in coordinator.last_known_schedule("sitter").values())

    repository.fail_insert_after = None
    assert coordinator.save("sitter", updated).success is True
    assert set(repository.slots) == {"one", "two"}
    assert repository.calls.count("insert_weekly_slot") == 3


def test_sqlite_batch_rolls_back_on_failure(tmp_path, monkeypatch):
    store = AvailabilityStore(db_path=str(tmp_path / "availability.sqlite3"))
    coordinator = SyncCoordinator(store, clock=FakeClock())
    real_insert = store.insert_weekly_slot
    calls = {"count": 0}

    def flaky_insert(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise PersistenceError("disk I/O error")
        return real_insert(*args, **kwargs)

    monkeypatch.setattr(store, "insert_weekly_slot", flaky_insert)
    result = coordinator.save(
        "sitter",
        {
            "monday": [TimeSlot(id="one", start="09:00", end="10:00")],
            "tuesday": [TimeSlot(id="two", start="09:00", end="10:00")],
        },
    )

    assert result.success is False
    assert store.list_weekly_slots("sitter") == []


def test_sqlite_save_and_fetch_agree(tmp_path):
    store = AvailabilityStore(db_path=str(tmp_path / "availability.sqlite3"))
    clock = FakeClock()
    coordinator = SyncCoordinator(store, clock=clock)
    schedule = {
        "monday": [TimeSlot(id="a", start="9:00", end="12:00"), TimeSlot(id="b", start="13:00", end="15:00")],
        "saturday": [TimeSlot(id="c", start="08:00", end="19:00")],
    }

    assert coordinator.save("sitter", schedule).success is True
    clock.advance(5)
    fetched = coordinator.fetch("sitter")

    assert fetched.from_cache is False
    assert _spans(fetched.schedule["monday"]) == [("09:00", "12:00"), ("13:00", "15:00")]
    assert [slot.id for slot in fetched.schedule["saturday"]] == ["c"]
    assert fetched.schedule == coordinator.last_known_schedule("sitter")


def test_add_override_and_duplicate():
    repository = FakeRepository()
    coordinator = _coordinator(repository)

    added = coordinator.add_override("sitter", "2024-06-10")
    assert added.success is True
    assert added.affected == 1

    duplicate = coordinator.add_override("sitter", date(2024, 6, 10))
    assert duplicate.success is False
    assert duplicate.error.code == "duplicate_override"
    assert repository.calls.count("insert_unavailable_date") == 1


def test_override_before_today_is_accepted():
    repository = FakeRepository()
    coordinator = _coordinator(repository)

    result = coordinator.add_override("sitter", "2024-01-15")

    assert result.success is True
    assert coordinator.fetch_overrides("sitter").dates == ["2024-01-15"]


def test_uniqueness_violation_from_persistence_is_a_duplicate():
    repository = FakeRepository()
    coordinator = _coordinator(repository)
    repository.list_unavailable_dates = lambda provider_id: []
    repository.unavailable["sitter"] = {"2024-06-10"}

    result = coordinator.add_override("sitter", "2024-06-10")
    assert result.error.code == "duplicate_override"


def test_malformed_override_date_is_a_validation_error():
    repository = FakeRepository()
    result = _coordinator(repository).add_override("sitter", "June 10th")
    assert result.error.code == "validation_error"
    assert repository.calls == []


def test_remove_override_is_idempotent():
    repository = FakeRepository()
    coordinator = _coordinator(repository)
    coordinator.add_override("sitter", "2024-06-10")
    assert coordinator.remove_override("sitter", "2024-06-10").affected == 1
    again = coordinator.remove_override("sitter", "2024-06-10")
    assert again.success is True
    assert again.affected == 0


def test_save_overrides_writes_only_delta():
    repository = FakeRepository()
    repository.unavailable["sitter"] = {"2024-06-10", "2024-06-11"}
    coordinator = _coordinator(repository)

    result = coordinator.save_overrides("sitter", ["2024-06-11", "2024-06-12"])

    assert result.success is True
    assert repository.writes() == ["delete_unavailable_date", "insert_unavailable_date"]
    assert coordinator.fetch_overrides("sitter").dates == ["2024-06-11", "2024-06-12"]


def test_effective_slots_respect_overrides():
    repository = FakeRepository()
    repository.seed_slot("sitter", 1, "09:00", "12:00")
    coordinator = _coordinator(repository)

    assert _spans(coordinator.effective_slots("sitter", "2024-06-17").slots) == [("09:00", "12:00")]

    coordinator.add_override("sitter", "2024-06-10")
    blocked = coordinator.effective_slots("sitter", "2024-06-10")
    assert blocked.unavailable is True
    assert blocked.weekday == "monday"
    assert blocked.slots == []


def test_effective_slots_surface_fetch_errors():
    repository = FakeRepository()
    repository.fail_reads = True
    result = _coordinator(repository).effective_slots("sitter", "2024-06-10")
    assert result.error.code == "persistence_error"
    assert result.slots == []


def test_save_boarding_applies_set_difference():
    repository = FakeRepository()
    repository.boarding["sitter"] = [
        BoardingDateRecord(id="b1", date="2024-07-01"),
        BoardingDateRecord(id="b2", date="2024-07-02"),
    ]
    morning_id = repository.seed_slot("sitter", 1, "09:00", "12:00")
    coordinator = _coordinator(repository)

    result = coordinator.save_boarding("sitter", ["2024-07-02", "2024-07-03"])

    assert result.success is True
    assert repository.writes() == ["delete_boarding_dates", "insert_boarding_dates"]
    assert [record.date for record in repository.boarding["sitter"]] == ["2024-07-02", "2024-07-03"]
    assert repository.boarding["sitter"][0].id == "b2"
    assert set(repository.slots) == {morning_id}


def test_save_boarding_without_changes_writes_nothing():
    repository = FakeRepository()
    repository.boarding["sitter"] = [BoardingDateRecord(id="b1", date="2024-07-01")]
    assert _coordinator(repository).save_boarding("sitter", [date(2024, 7, 1)]).success is True
    assert repository.writes() == []


def test_fetch_boarding_upcoming_only():
    repository = FakeRepository()
    repository.boarding["sitter"] = [
        BoardingDateRecord(id="b0", date="2024-06-30"),
        BoardingDateRecord(id="b1", date="2024-07-02"),
    ]
    coordinator = _coordinator(repository)
    assert coordinator.fetch_boarding("sitter").dates == ["2024-06-30", "2024-07-02"]
    assert coordinator.fetch_boarding("sitter", upcoming_only=True).dates == ["2024-07-02"]


def test_weekly_save_does_not_touch_boarding():
    repository = FakeRepository()
    repository.boarding["sitter"] = [BoardingDateRecord(id="b1", date="2024-07-01")]
    coordinator = _coordinator(repository)
    coordinator.save("sitter", {"monday": [TimeSlot(start="09:00", end="10:00")]})
    assert coordinator.fetch_boarding("sitter").dates == ["2024-07-01"]
