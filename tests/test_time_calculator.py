"""Tests for time parsing, schedule normalisation and the slot grid."""

from datetime import date, datetime, time
from types import SimpleNamespace

import pytest

from clinicbook.domain.scheduling.time_calculator import (
    CLOSED,
    DaySchedule,
    Interval,
    available_slots,
    format_minutes,
    is_on_schedule,
    normalize_day,
    normalize_schedule,
    parse_time,
)
from clinicbook.errors import ValidationError

TUESDAY = date(2025, 6, 10)
BEFORE_OPENING = datetime(2025, 6, 9, 8, 0)
NINE_TO_FIVE = DaySchedule(enabled=True, ranges=(Interval(9 * 60, 17 * 60),))


def hhmm(slots: list[time]) -> list[str]:
    return [s.strftime("%H:%M") for s in slots]


class TestParseTime:
    """Tests for parse_time."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("09:00", 540),
            ("9:05", 545),
            ("23:59", 1439),
            ("1:30 PM", 810),
            ("12:00 AM", 0),
            ("12:15 PM", 735),
            ("11:45am", 705),
        ],
    )
    def test_accepts_24h_and_12h(self, value, expected) -> None:
        assert parse_time(value) == expected

    @pytest.mark.parametrize("value", ["", "noon", "24:00", "9:60", "13:00 PM", "0:30 AM"])
    def test_rejects_invalid(self, value) -> None:
        with pytest.raises(ValueError):
            parse_time(value)

    def test_format_minutes(self) -> None:
        assert format_minutes(545) == "09:05"
        assert format_minutes(0) == "00:00"


class TestNormalizeSchedule:
    """Tests for schedule normalisation."""

    def test_single_range_with_hours(self) -> None:
        """startHour/endHour integers are whole hours."""
        day = normalize_day("monday", {"enabled": True, "startHour": 9, "endHour": 17})
        assert day == NINE_TO_FIVE

    def test_single_range_with_times(self) -> None:
        day = normalize_day("monday", {"enabled": True, "startHour": "08:30", "endHour": "12:00"})
        assert day.ranges == (Interval(510, 720),)

    def test_multi_range_is_sorted(self) -> None:
        day = normalize_day(
            "monday",
            {
                "enabled": True,
                "ranges": [{"start": "13:00", "end": "17:00"}, {"start": "09:00", "end": "12:00"}],
            },
        )
        assert day.ranges == (Interval(540, 720), Interval(780, 1020))
        assert day.closing_minute == 1020

    def test_disabled_and_missing_days_are_closed(self) -> None:
        assert normalize_day("sunday", {"enabled": False, "startHour": 9, "endHour": 17}) == CLOSED
        assert normalize_day("sunday", None) == CLOSED
        assert normalize_schedule({})["wednesday"] == CLOSED

    def test_start_after_end_rejected(self) -> None:
        with pytest.raises(ValidationError):
            normalize_day("monday", {"enabled": True, "startHour": 17, "endHour": 9})

    def test_overlapping_ranges_rejected(self) -> None:
        with pytest.raises(ValidationError):
            normalize_day(
                "monday",
                {
                    "enabled": True,
                    "ranges": [
                        {"start": "09:00", "end": "12:00"},
                        {"start": "11:00", "end": "14:00"},
                    ],
                },
            )

    def test_enabled_without_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            normalize_day("monday", {"enabled": True})


class TestAvailableSlots:
    """Tests for available_slots."""

    def test_disabled_day_has_no_slots(self) -> None:
        """A closed weekday yields nothing."""
        assert available_slots(TUESDAY, CLOSED, 60, [], BEFORE_OPENING) == []

    def test_existing_appointment_blocks_overlapping_starts(self) -> None:
        """09:00-17:00, 60 minute service, appointment 10:00-11:00."""
        slots = hhmm(available_slots(TUESDAY, NINE_TO_FIVE, 60, [Interval(600, 660)], BEFORE_OPENING))

        assert "09:50" not in slots  # would run into 10:00
        assert "10:00" not in slots
        assert "11:00" in slots  # back to back is fine
        assert "16:30" not in slots  # would end at 17:30
        assert "09:00" in slots
        assert slots[-1] == "16:00"

    def test_grid_is_ten_minutes(self) -> None:
        slots = hhmm(available_slots(TUESDAY, NINE_TO_FIVE, 60, [], BEFORE_OPENING))
        assert slots[:3] == ["09:00", "09:10", "09:20"]
        assert len(slots) == 43

    def test_no_slot_overlaps_anything_occupied(self) -> None:
        occupied = [Interval(560, 600), Interval(700, 745), Interval(900, 960)]
        for slot in available_slots(TUESDAY, NINE_TO_FIVE, 30, occupied, BEFORE_OPENING):
            start = slot.hour * 60 + slot.minute
            candidate = Interval(start, start + 30)
            assert not any(candidate.overlaps(o) for o in occupied)

    def test_multi_range_day(self) -> None:
        """Each range closes on its own; lunch is never bookable."""
        day = DaySchedule(enabled=True, ranges=(Interval(540, 720), Interval(780, 1020)))
        slots = hhmm(available_slots(TUESDAY, day, 60, [], BEFORE_OPENING))

        assert "11:00" in slots
        assert "11:10" not in slots
        assert "12:00" not in slots
        assert "13:00" in slots

    def test_past_times_today_are_dropped(self) -> None:
        now = datetime(2025, 6, 10, 10, 5)
        slots = hhmm(available_slots(TUESDAY, NINE_TO_FIVE, 60, [], now))
        assert slots[0] == "10:10"

    def test_current_minute_is_not_bookable(self) -> None:
        now = datetime(2025, 6, 10, 10, 10)
        slots = hhmm(available_slots(TUESDAY, NINE_TO_FIVE, 60, [], now))
        assert slots[0] == "10:20"

    def test_past_day_has_no_slots(self) -> None:
        now = datetime(2025, 6, 11, 8, 0)
        assert available_slots(TUESDAY, NINE_TO_FIVE, 60, [], now) == []

    def test_cancelled_and_other_day_records_ignored(self) -> None:
        records = [
            SimpleNamespace(date=TUESDAY, start_minute=540, end_minute=600, status="Cancelled"),
            SimpleNamespace(date=date(2025, 6, 11), start_minute=540, end_minute=600, status="Confirmed"),
            SimpleNamespace(date=TUESDAY, start_minute=600, end_minute=660, status="Blocked"),
        ]
        slots = hhmm(available_slots(TUESDAY, NINE_TO_FIVE, 60, records, BEFORE_OPENING))

        assert "09:00" in slots
        assert "10:00" not in slots

    def test_same_inputs_same_output(self) -> None:
        """The calculation is pure: no hidden state, inputs untouched."""
        occupied = [Interval(600, 660)]
        first = available_slots(TUESDAY, NINE_TO_FIVE, 60, occupied, BEFORE_OPENING)
        second = available_slots(TUESDAY, NINE_TO_FIVE, 60, occupied, BEFORE_OPENING)

        assert first == second
        assert occupied == [Interval(600, 660)]

    def test_non_positive_duration_has_no_slots(self) -> None:
        assert available_slots(TUESDAY, NINE_TO_FIVE, 0, [], BEFORE_OPENING) == []


class TestIsOnSchedule:
    """Tests for is_on_schedule."""

    def test_grid_start_that_fits(self) -> None:
        assert is_on_schedule(NINE_TO_FIVE, 600, 60)

    def test_off_grid_start(self) -> None:
        assert not is_on_schedule(NINE_TO_FIVE, 605, 60)

    def test_runs_past_closing(self) -> None:
        assert not is_on_schedule(NINE_TO_FIVE, 990, 60)

    def test_outside_hours(self) -> None:
        assert not is_on_schedule(NINE_TO_FIVE, 480, 60)
        assert not is_on_schedule(CLOSED, 600, 60)
