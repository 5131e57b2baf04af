import os
from dataclasses import dataclass
from pathlib import Path


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _get_clock_time(name: str, default: str) -> str:
    raw = (os.getenv(name) or "").strip()
    parts = raw.split(":")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        return default
    hours, minutes = int(parts[0]), int(parts[1])
    if hours > 23 or minutes > 59:
        return default
    return f"{hours:02d}:{minutes:02d}"


def parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class OperationalHours:
    """Window every weekly slot must fit in: start >= opens, end <= closes."""

    opens: str = "08:00"
    closes: str = "19:00"


OPERATIONAL_HOURS = OperationalHours(
    opens=_get_clock_time("OPERATIONAL_HOURS_START", "08:00"),
    closes=_get_clock_time("OPERATIONAL_HOURS_END", "19:00"),
)

FETCH_COOLDOWN_SECONDS = _get_positive_int("FETCH_COOLDOWN_MS", 2000) / 1000.0

_default_db = str(Path(__file__).resolve().parents[1] / "data" / "availability.sqlite3")
AVAILABILITY_DB_PATH = os.getenv("AVAILABILITY_DB_PATH", _default_db)

AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")
AUTH_REQUIRED = _get_bool(os.getenv("AUTH_REQUIRED"), default=False)
AUTH_TOKEN_TTL_HOURS = _get_positive_int("AUTH_TOKEN_TTL_HOURS", 24)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
