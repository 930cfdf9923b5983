"""
Time parsing and slot calculation.

Everything in this module is pure: no database, no clock reads. The caller
passes the schedule, the occupied intervals and ``now`` explicitly, so the
same inputs always give the same slots.
"""

import re
from datetime import date, datetime, time
from typing import Iterable, NamedTuple, Optional, Union

from ...errors import ValidationError
from ...models import STATUS_CANCELLED

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_GRANULARITY_MINUTES = 10
MINUTES_PER_DAY = 24 * 60

_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})$")
_TIME_12H = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$")


class Interval(NamedTuple):
    """Half-open [start, end) in minutes after midnight"""

    start: int
    end: int

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end


class DaySchedule(NamedTuple):
    enabled: bool
    ranges: tuple[Interval, ...]

    @property
    def closing_minute(self) -> Optional[int]:
        if not self.enabled or not self.ranges:
            return None
        return max(r.end for r in self.ranges)


CLOSED = DaySchedule(enabled=False, ranges=())


def parse_time(value: str) -> int:
    """
    Parse "HH:MM" or "H:MM AM/PM" into minutes after midnight.

    Raises:
        ValueError: unrecognised format or out-of-range values
    """
    text = (value or "").strip()

    match = _TIME_24H.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
    else:
        match = _TIME_12H.match(text)
        if not match:
            raise ValueError(f"Invalid time format: {value!r}")
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours < 1 or hours > 12:
            raise ValueError(f"Invalid time format: {value!r}")
        hours = hours % 12
        if match.group(3).upper() == "PM":
            hours += 12

    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time: {value!r}")
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    """Minutes after midnight -> "HH:MM" """
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def minutes_to_time(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def _parse_bound(value, field: str, day_name: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value * 60
    try:
        return parse_time(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid {field} for {day_name}: {value!r}") from e


def normalize_day(day_name: str, raw: Optional[dict]) -> DaySchedule:
    """
    Normalise one weekday entry.

    Accepts the single-range form ``{"enabled", "startHour", "endHour"}`` and
    the multi-range form with ``"ranges": [{"start": "09:00", "end": "12:00"}, ...]``.
    A missing entry means closed.
    """
    if not raw or raw.get("enabled") is False:
        return CLOSED

    if raw.get("ranges"):
        ranges = [
            Interval(
                _parse_bound(r.get("start"), "range start", day_name),
                _parse_bound(r.get("end"), "range end", day_name),
            )
            for r in raw["ranges"]
        ]
    elif "startHour" in raw and "endHour" in raw:
        ranges = [
            Interval(
                _parse_bound(raw["startHour"], "startHour", day_name),
                _parse_bound(raw["endHour"], "endHour", day_name),
            )
        ]
    else:
        raise ValidationError(f"Operating hours for {day_name} have no time range")

    for r in ranges:
        if not 0 <= r.start < r.end <= MINUTES_PER_DAY:
            raise ValidationError(
                f"Operating hours for {day_name} must start before they end "
                f"({format_minutes(r.start)}-{format_minutes(r.end)})"
            )

    ranges.sort()
    for previous, current in zip(ranges, ranges[1:]):
        if previous.overlaps(current):
            raise ValidationError(f"Operating hour ranges for {day_name} overlap")

    return DaySchedule(enabled=True, ranges=tuple(ranges))


def normalize_schedule(config: Optional[dict]) -> dict[str, DaySchedule]:
    """Normalise a whole week; weekdays missing from ``config`` are closed."""
    config = config or {}
    return {name: normalize_day(name, config.get(name)) for name in WEEKDAYS}


OccupiedRecord = Union[Interval, object]


def occupied_intervals(day: date, records: Iterable[OccupiedRecord]) -> list[Interval]:
    """
    Turn appointments / blocked periods into intervals for ``day``.

    Records may be Interval tuples (already for this day) or appointment-like
    objects with ``date``, ``start_minute``, ``end_minute`` and ``status``.
    Cancelled records and records on other days are ignored.
    """
    intervals = []
    for record in records:
        if isinstance(record, Interval):
            intervals.append(record)
            continue
        if getattr(record, "status", None) == STATUS_CANCELLED:
            continue
        if getattr(record, "date", day) != day:
            continue
        intervals.append(Interval(record.start_minute, record.end_minute))
    return intervals


def available_slots(
    day: date,
    schedule: DaySchedule,
    service_duration: int,
    occupied: Iterable[OccupiedRecord],
    now: datetime,
    granularity: int = DEFAULT_GRANULARITY_MINUTES,
) -> list[time]:
    """
    Bookable start times for ``day``, ascending.

    A candidate survives when it is in the future, the service fits before
    its range closes, and [start, start + duration) does not overlap any
    occupied interval. Touching endpoints are not a conflict.
    """
    if not schedule.enabled or service_duration <= 0:
        return []

    today = now.date()
    if day < today:
        return []

    busy = occupied_intervals(day, occupied)

    slots = set()
    for r in schedule.ranges:
        for start in range(r.start, r.end, granularity):
            if datetime.combine(day, minutes_to_time(start)) <= now:
                continue
            end = start + service_duration
            if end > r.end:
                continue
            candidate = Interval(start, end)
            if any(candidate.overlaps(b) for b in busy):
                continue
            slots.add(start)

    return [minutes_to_time(m) for m in sorted(slots)]


def is_on_schedule(
    schedule: DaySchedule,
    start_minute: int,
    service_duration: int,
    granularity: int = DEFAULT_GRANULARITY_MINUTES,
) -> bool:
    """True when ``start_minute`` is a grid start whose service ends before its range closes"""
    for r in schedule.ranges:
        if r.start <= start_minute < r.end and (start_minute - r.start) % granularity == 0:
            return start_minute + service_duration <= r.end
    return False
