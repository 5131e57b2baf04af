import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Iterable, Iterator, List, Optional, Protocol
from uuid import uuid4

from sitter_availability.config import AVAILABILITY_DB_PATH
from sitter_availability.errors import PersistenceError, UniquenessViolation
from sitter_availability.models import BoardingDateRecord, TimeSlot, WeeklySlotRecord
from sitter_availability.services.schedule import (
    format_iso_date,
    minutes_to_time,
    time_to_minutes,
    weekday_of,
    weekday_number,
)
from sitter_availability.services.unavailability_store import UnavailabilityOverrides


class AvailabilityRepository(Protocol):
    def list_weekly_slots(self, provider_id: str) -> List[WeeklySlotRecord]: ...

    def insert_weekly_slot(
        self,
        provider_id: str,
        weekday: int,
        start_time: str,
        end_time: str,
        slot_id: Optional[str] = None,
    ) -> str: ...

    def delete_weekly_slot(self, slot_id: str, provider_id: str) -> int: ...

    def list_unavailable_dates(self, provider_id: str) -> List[str]: ...

    def insert_unavailable_date(self, provider_id: str, unavailable_date: str) -> str: ...

    def delete_unavailable_date(self, provider_id: str, unavailable_date: str) -> int: ...

    def list_boarding_dates(self, provider_id: str) -> List[BoardingDateRecord]: ...

    def insert_boarding_dates(self, provider_id: str, dates: Iterable[str]) -> List[BoardingDateRecord]: ...

    def delete_boarding_dates(self, ids: Iterable[str], provider_id: Optional[str] = None) -> int: ...

    def resolve_availability_for_date(self, provider_id: str, slot_date: str) -> List[TimeSlot]: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _canonical_time(value: str) -> str:
    return minutes_to_time(time_to_minutes(value))


@dataclass
class AvailabilityStore:
    db_path: str

    def __post_init__(self) -> None:
        # Re-entrant so atomic() can hold it while the write methods run.
        self._lock = RLock()
        self._active_conn: Optional[sqlite3.Connection] = None
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS weekly_slots (
                    id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    weekday INTEGER NOT NULL CHECK (weekday BETWEEN 1 AND 7),
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (provider_id, id),
                    CHECK (start_time < end_time)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS unavailable_dates (
                    id TEXT PRIMARY KEY,
                    provider_id TEXT NOT NULL,
                    unavailable_date TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (provider_id, unavailable_date)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS boarding_dates (
                    id TEXT PRIMARY KEY,
                    provider_id TEXT NOT NULL,
                    available_date TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (provider_id, available_date)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_weekly_slots_provider_weekday ON weekly_slots(provider_id, weekday)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_boarding_dates_date ON boarding_dates(available_date)"
            )

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._active_conn is not None:
                try:
                    yield self._active_conn
                except sqlite3.Error as exc:
                    raise self._translate(exc) from exc
                return

            try:
                conn = self._connect()
            except sqlite3.Error as exc:
                raise self._translate(exc) from exc
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise self._translate(exc) from exc
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def _translate(self, exc: sqlite3.Error) -> PersistenceError:
        if isinstance(exc, sqlite3.IntegrityError) and "UNIQUE" in str(exc).upper():
            return UniquenessViolation(str(exc))
        return PersistenceError(str(exc))

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run every write issued inside the block in one transaction."""
        with self._lock:
            if self._active_conn is not None:
                yield
                return
            try:
                conn = self._connect()
            except sqlite3.Error as exc:
                raise self._translate(exc) from exc
            self._active_conn = conn
            try:
                yield
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                self._active_conn = None
                conn.close()

    def list_weekly_slots(self, provider_id: str) -> List[WeeklySlotRecord]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT id, weekday, start_time, end_time
                FROM weekly_slots
                WHERE provider_id = ?
                ORDER BY weekday, start_time
                """,
                (provider_id,),
            ).fetchall()
        return [
            WeeklySlotRecord(
                id=row["id"],
                weekday=row["weekday"],
                start_time=row["start_time"],
                end_time=row["end_time"],
            )
            for row in rows
        ]

    def insert_weekly_slot(
        self,
        provider_id: str,
        weekday: int,
        start_time: str,
        end_time: str,
        slot_id: Optional[str] = None,
    ) -> str:
        new_id = slot_id or uuid4().hex
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO weekly_slots (id, provider_id, weekday, start_time, end_time, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (new_id, provider_id, weekday, _canonical_time(start_time), _canonical_time(end_time), _now_iso()),
            )
        return new_id

    def delete_weekly_slot(self, slot_id: str, provider_id: str) -> int:
        with self._session() as conn:
            cursor = conn.execute(
                "DELETE FROM weekly_slots WHERE id = ? AND provider_id = ?",
                (slot_id, provider_id),
            )
            return cursor.rowcount

    def list_unavailable_dates(self, provider_id: str) -> List[str]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT unavailable_date FROM unavailable_dates
                WHERE provider_id = ?
                ORDER BY unavailable_date
                """,
                (provider_id,),
            ).fetchall()
        return [row["unavailable_date"] for row in rows]

    def insert_unavailable_date(self, provider_id: str, unavailable_date: str) -> str:
        new_id = f"unv_{uuid4().hex}"
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO unavailable_dates (id, provider_id, unavailable_date, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (new_id, provider_id, format_iso_date(unavailable_date), _now_iso()),
            )
        return new_id

    def delete_unavailable_date(self, provider_id: str, unavailable_date: str) -> int:
        with self._session() as conn:
            cursor = conn.execute(
                "DELETE FROM unavailable_dates WHERE provider_id = ? AND unavailable_date = ?",
                (provider_id, format_iso_date(unavailable_date)),
            )
            return cursor.rowcount

    def list_boarding_dates(self, provider_id: str) -> List[BoardingDateRecord]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT id, available_date FROM boarding_dates
                WHERE provider_id = ?
                ORDER BY available_date
                """,
                (provider_id,),
            ).fetchall()
        return [BoardingDateRecord(id=row["id"], date=row["available_date"]) for row in rows]

    def insert_boarding_dates(self, provider_id: str, dates: Iterable[str]) -> List[BoardingDateRecord]:
        records = [
            BoardingDateRecord(id=f"brd_{uuid4().hex}", date=format_iso_date(value))
            for value in dates
        ]
        if not records:
            return []
        created_at = _now_iso()
        with self._session() as conn:
            conn.executemany(
                """
                INSERT INTO boarding_dates (id, provider_id, available_date, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [(record.id, provider_id, record.date, created_at) for record in records],
            )
        return records

    def delete_boarding_dates(self, ids: Iterable[str], provider_id: Optional[str] = None) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        placeholders = ", ".join("?" for _ in id_list)
        query = f"DELETE FROM boarding_dates WHERE id IN ({placeholders})"
        params: List[str] = list(id_list)
        if provider_id is not None:
            query += " AND provider_id = ?"
            params.append(provider_id)
        with self._session() as conn:
            return conn.execute(query, params).rowcount

    def resolve_availability_for_date(self, provider_id: str, slot_date: str) -> List[TimeSlot]:
        normalized = format_iso_date(slot_date)
        weekday = weekday_of(normalized)
        with self._session() as conn:
            blocked = conn.execute(
                "SELECT 1 FROM unavailable_dates WHERE provider_id = ? AND unavailable_date = ? LIMIT 1",
                (provider_id, normalized),
            ).fetchone()
            rows = conn.execute(
                """
                SELECT id, start_time, end_time FROM weekly_slots
                WHERE provider_id = ? AND weekday = ?
                ORDER BY start_time
                """,
                (provider_id, weekday_number(weekday)),
            ).fetchall()
        overrides = UnavailabilityOverrides([normalized] if blocked else [])
        schedule = {
            weekday: [
                TimeSlot(id=row["id"], start=row["start_time"][:5], end=row["end_time"][:5])
                for row in rows
            ]
        }
        return overrides.resolve_effective_slots(schedule, normalized)


availability_store = AvailabilityStore(db_path=AVAILABILITY_DB_PATH)
