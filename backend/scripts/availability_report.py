#!/usr/bin/env python3
import argparse
import json
import os
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sitter_availability.models import WeekSchedule
from sitter_availability.services.boarding_calendar import upcoming
from sitter_availability.services.schedule import WEEKDAYS, format_slot_range, parse_time, time_to_minutes


def _minutes(schedule: WeekSchedule) -> int:
    total = 0
    for slots in schedule.values():
        for slot in slots:
            if parse_time(slot.start) and parse_time(slot.end):
                total += time_to_minutes(slot.end) - time_to_minutes(slot.start)
    return total


def build_report(
    provider_id: str,
    schedule: WeekSchedule,
    unavailable_dates: Iterable[str],
    boarding_dates: Iterable[str],
    today: Optional[date] = None,
) -> Dict[str, Any]:
    today = today or date.today()
    unavailable = upcoming(unavailable_dates, today)
    boarding = upcoming(boarding_dates, today)
    return {
        "provider_id": provider_id,
        "as_of": today.isoformat(),
        "weekly": {day: [format_slot_range(slot) for slot in schedule.get(day, [])] for day in WEEKDAYS},
        "weekly_hours": round(_minutes(schedule) / 60, 2),
        "open_days": [day for day in WEEKDAYS if schedule.get(day)],
        "upcoming_unavailable": unavailable,
        "upcoming_boarding": boarding,
        # a boarding night on a blocked day is usually a data-entry mistake
        "conflicts": sorted(set(unavailable) & set(boarding)),
    }


def print_human(report: Dict[str, Any]) -> None:
    print(f"Provider: {report['provider_id']} (as of {report['as_of']})")
    print(f"Weekly hours: {report['weekly_hours']:.2f}")
    for day, ranges in report["weekly"].items():
        label = ", ".join(ranges) if ranges else "-"
        print(f"  {day.capitalize():<10} {label}")
    print(f"Upcoming unavailable dates: {len(report['upcoming_unavailable'])}")
    for value in report["upcoming_unavailable"]:
        print(f"  - {value}")
    print(f"Upcoming boarding dates: {len(report['upcoming_boarding'])}")
    for value in report["upcoming_boarding"]:
        print(f"  - {value}")
    if report["conflicts"]:
        print("Boarding offered on unavailable dates:")
        for value in report["conflicts"]:
            print(f"  - {value}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Summarize a sitter's stored availability.")
    parser.add_argument("provider_id", help="Provider whose availability to report.")
    parser.add_argument("--db-path", default="", help="SQLite file to read. Defaults to AVAILABILITY_DB_PATH.")
    parser.add_argument("--json-out", default="", help="Optional path to write JSON summary.")
    args = parser.parse_args(argv)

    # The store module opens AVAILABILITY_DB_PATH on import, so point it at the
    # requested file before importing it.
    if args.db_path:
        os.environ["AVAILABILITY_DB_PATH"] = args.db_path
    from sitter_availability.services.availability_store import AvailabilityStore, availability_store
    from sitter_availability.services.sync_coordinator import SyncCoordinator

    store = AvailabilityStore(db_path=args.db_path) if args.db_path else availability_store
    coordinator = SyncCoordinator(store)
    fetched = coordinator.fetch(args.provider_id)
    overrides = coordinator.fetch_overrides(args.provider_id)
    boarding = coordinator.fetch_boarding(args.provider_id)
    for error in (fetched.error, overrides.error, boarding.error):
        if error:
            print(f"Could not read availability: {error.message}", file=sys.stderr)
            return 1

    report = build_report(args.provider_id, fetched.schedule, overrides.dates, boarding.dates)
    print_human(report)

    if args.json_out:
        path = Path(args.json_out)
        path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
        print(f"Wrote report: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
