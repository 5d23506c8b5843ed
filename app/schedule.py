"""
Trip schedule state: a date range split into days, each holding an ordered
list of attractions, plus a pointer to the day receiving new additions.

The state is written to a key-value storage on every mutation and read back
once when a TripSchedule is constructed. Bad stored data is ignored, never
fatal.
"""

import json
import logging
import os
from datetime import date, timedelta
from typing import Optional, List, Dict, Any

from app.auth import db, utc_now_iso
from app.models import ScheduleDay

logger = logging.getLogger("nycguide.schedule")

STORAGE_KEY = "nyc_schedule_v1"


class ScheduleError(Exception):
    """Base class for schedule state errors."""


class DayOutOfRange(ScheduleError):
    """A day index does not point into the current day list."""

    def __init__(self, index: int, day_count: int):
        self.index = index
        self.day_count = day_count
        super().__init__(f"Day index {index} is out of range for {day_count} day(s)")


class InvalidScheduleState(ScheduleError):
    """Serialized schedule data could not be parsed."""


# ─────────────────────────── DATE HELPERS ───────────────────────────

def parse_iso_date(value: Optional[str]) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def days_in_range(start: Optional[str], end: Optional[str]) -> List[str]:
    """Every ISO date from start to end inclusive; [] for a missing or backwards range."""
    start_date = parse_iso_date(start)
    end_date = parse_iso_date(end)
    if not start_date or not end_date or end_date < start_date:
        return []

    dates = []
    current = start_date
    while current <= end_date:
        dates.append(current.isoformat())
        current += timedelta(days=1)
    return dates


# ─────────────────────────── STORAGE BACKENDS ───────────────────────────

class MemoryStorage:
    """Dict-backed storage, mostly for tests and scripts."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value
        self.writes += 1


class JsonFileStorage:
    """All keys in a single JSON object file, rewritten on every set."""

    def __init__(self, path: str):
        self.path = path

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable storage file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[str]:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)


class SqliteScheduleStorage:
    """One storage namespace per browser/device, kept in schedule_storage."""

    def __init__(self, device_id: str):
        self.device_id = device_id

    def get(self, key: str) -> Optional[str]:
        conn = db()
        row = conn.execute(
            "SELECT value FROM schedule_storage WHERE device_id = ? AND key = ?",
            (self.device_id, key)
        ).fetchone()
        conn.close()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        conn = db()
        conn.execute("""
            INSERT INTO schedule_storage (device_id, key, value, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(device_id, key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """, (self.device_id, key, value, utc_now_iso()))
        conn.commit()
        conn.close()


# ─────────────────────────── STATE ───────────────────────────

class TripSchedule:
    """
    Client-side planning state.

    Invariants:
    - with a valid range, len(days) == (end - start).days + 1
    - 0 <= active_day_index < len(days) whenever days is non-empty
    - an attraction id appears at most once per day
    """

    def __init__(self, storage=None, key: str = STORAGE_KEY):
        self.storage = storage if storage is not None else MemoryStorage()
        self.key = key
        self.start_date: Optional[str] = None
        self.end_date: Optional[str] = None
        self.days: List[ScheduleDay] = []
        self.active_day_index: int = 0
        self._hydrate()

    # ── persistence ──

    def _hydrate(self):
        try:
            raw = self.storage.get(self.key)
        except Exception as e:
            logger.warning(f"Could not read schedule storage: {e}")
            return
        if not raw:
            return
        try:
            self._apply(self.from_dict(json.loads(raw)))
        except (ValueError, ScheduleError) as e:
            logger.warning(f"Ignoring malformed stored schedule: {e}")

    def _persist(self):
        self.storage.set(self.key, json.dumps(self.to_dict()))

    def _apply(self, other: "TripSchedule"):
        self.start_date = other.start_date
        self.end_date = other.end_date
        self.days = other.days
        self.active_day_index = other.active_day_index

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": self.start_date,
            "endDate": self.end_date,
            "days": [d.to_dict() for d in self.days],
            "activeDayIndex": self.active_day_index,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TripSchedule":
        """Build a detached schedule from serialized state; raises InvalidScheduleState."""
        if not isinstance(data, dict):
            raise InvalidScheduleState("Schedule state must be an object")

        start = data.get("startDate")
        end = data.get("endDate")
        for value in (start, end):
            if value is not None and not isinstance(value, str):
                raise InvalidScheduleState("Schedule dates must be strings or null")

        raw_days = data.get("days") or []
        if not isinstance(raw_days, list):
            raise InvalidScheduleState("Schedule days must be a list")

        days = []
        for raw_day in raw_days:
            if not isinstance(raw_day, dict) or not isinstance(raw_day.get("date"), str):
                raise InvalidScheduleState("Each day needs a date")
            items = raw_day.get("items") or []
            if not isinstance(items, list) or not all(isinstance(i, dict) and "id" in i for i in items):
                raise InvalidScheduleState(f"Bad items for {raw_day.get('date')}")
            days.append(ScheduleDay(date=raw_day["date"], items=[dict(i) for i in items]))

        index = data.get("activeDayIndex", 0)
        if not isinstance(index, int) or isinstance(index, bool):
            raise InvalidScheduleState("activeDayIndex must be an integer")
        if not 0 <= index < max(len(days), 1):
            index = 0

        schedule = cls(MemoryStorage())
        schedule.start_date = start
        schedule.end_date = end
        schedule.days = days
        schedule.active_day_index = index
        return schedule

    # ── queries ──

    def _check_day(self, index: int):
        if not isinstance(index, int) or not 0 <= index < len(self.days):
            raise DayOutOfRange(index, len(self.days))

    def total_items(self) -> int:
        return sum(len(d.items) for d in self.days)

    def has_items(self) -> bool:
        return any(d.items for d in self.days)

    @property
    def active_day(self) -> Optional[ScheduleDay]:
        if 0 <= self.active_day_index < len(self.days):
            return self.days[self.active_day_index]
        return None

    # ── mutations ──

    def set_date_range(self, start: Optional[str], end: Optional[str]):
        """
        Regenerate the day list for [start, end]. An unparseable or backwards
        range leaves an empty day list rather than raising.
        """
        self.start_date = start
        self.end_date = end
        self.days = [ScheduleDay(date=d) for d in days_in_range(start, end)]
        self.active_day_index = 0
        self._persist()

    def set_active_day(self, index: int):
        self._check_day(index)
        self.active_day_index = index
        self._persist()

    def add_to_active_day(self, attraction: Dict[str, Any]) -> bool:
        """Append to the active day. Returns False if it was already there."""
        self._check_day(self.active_day_index)
        day = self.days[self.active_day_index]
        if attraction.get("id") in day.item_ids():
            return False
        day.items.append(dict(attraction))
        self._persist()
        return True

    def remove_from_day(self, day_index: int, attraction_id: str) -> bool:
        self._check_day(day_index)
        day = self.days[day_index]
        before = len(day.items)
        day.items = [item for item in day.items if item.get("id") != attraction_id]
        self._persist()
        return len(day.items) != before

    def reset(self):
        self.start_date = None
        self.end_date = None
        self.days = []
        self.active_day_index = 0
        self._persist()

    def replace(self, start: str, end: str, days: List[ScheduleDay]):
        """Swap in a loaded trip wholesale."""
        self.start_date = start
        self.end_date = end
        self.days = [ScheduleDay(date=d.date, items=[dict(i) for i in d.items]) for d in days]
        self.active_day_index = 0
        self._persist()
