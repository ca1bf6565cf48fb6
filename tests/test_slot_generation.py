from datetime import date

import pytest
from pydantic import ValidationError

from roster.dates import DateSet
from roster.models import BreakWindow, Shift, Weekday
from roster.slots import (
    generate_overtime_slots,
    generate_time_slots,
    overtime_window,
    partition,
)
from roster.timeofday import to_hhmm, to_minutes

MONDAY = date(2025, 7, 7)
TUESDAY = date(2025, 7, 8)


def _shift(**overrides) -> Shift:
    fields = dict(
        doctor_id="alice-id",
        title="Clinic",
        start_time="09:00",
        end_time="12:00",
        days_of_week=["Monday"],
        max_patients_per_hour=3,
        slot_duration=30,
    )
    fields.update(overrides)
    return Shift(**fields)


def test_partition_skips_break_window() -> None:
    windows = partition(540, 720, 30, BreakWindow(start="10:00", end="10:30"))
    assert [(to_hhmm(s), to_hhmm(e)) for s, e in windows] == [
        ("09:00", "09:30"),
        ("09:30", "10:00"),
        ("10:30", "11:00"),
        ("11:00", "11:30"),
        ("11:30", "12:00"),
    ]


def test_partition_drops_window_partially_inside_break() -> None:
    # 45 minute slots: 09:45-10:30 touches the 10:00 break and is skipped
    windows = partition(540, 720, 45, BreakWindow(start="10:00", end="10:15"))
    assert [(to_hhmm(s), to_hhmm(e)) for s, e in windows] == [
        ("09:00", "09:45"),
        ("10:30", "11:15"),
        ("11:15", "12:00"),
    ]


def test_partition_drops_trailing_partial_window() -> None:
    windows = partition(540, 600, 45)
    assert windows == [(540, 585)]


def test_partition_never_overlaps_and_stays_in_window() -> None:
    for duration in (15, 30, 45, 60):
        lunch = BreakWindow(start="12:00", end="13:00")
        windows = partition(480, 1020, duration, lunch)
        for (s1, e1), (s2, _) in zip(windows, windows[1:]):
            assert e1 <= s2
        for s, e in windows:
            assert e - s == duration
            assert 480 <= s and e <= 1020
            assert not (s < 780 and e > 720)


def test_generate_time_slots_copies_capacity() -> None:
    shift = _shift(break_time={"start": "10:00", "end": "10:30"})
    slots = generate_time_slots(shift, MONDAY)
    assert len(slots) == 5
    assert {s.max_patients for s in slots} == {3}
    assert all(s.date == MONDAY and s.doctor_id == "alice-id" for s in slots)
    assert all(s.is_available and not s.is_blocked for s in slots)
    assert len({s.id for s in slots}) == 5


def test_overtime_window_clamps_to_midnight() -> None:
    shift = _shift(start_time="20:00", end_time="23:00")
    assert overtime_window(shift, 2) == (1380, 1440)


def test_generate_overtime_slots_after_shift_end() -> None:
    shift = _shift()
    slots = generate_overtime_slots(shift, MONDAY, 1.5, "alice-id", "ot-1")
    assert [(s.start_time, s.end_time) for s in slots] == [
        ("12:00", "12:30"),
        ("12:30", "13:00"),
        ("13:00", "13:30"),
    ]
    assert {s.overtime_id for s in slots} == {"ot-1"}


def test_short_overtime_yields_no_whole_slot() -> None:
    shift = _shift(slot_duration=30)
    assert generate_overtime_slots(shift, MONDAY, 0.25, "alice-id", "ot-2") == []


def test_shift_definition_rejects_bad_windows() -> None:
    with pytest.raises(ValidationError):
        _shift(start_time="12:00", end_time="09:00")
    with pytest.raises(ValidationError):
        _shift(slot_duration=20)
    with pytest.raises(ValidationError):
        _shift(break_time={"start": "08:00", "end": "09:30"})
    with pytest.raises(ValidationError):
        _shift(days_of_week=[])
    with pytest.raises(ValidationError):
        _shift(start_time="9am")


def test_shift_days_are_ordered_and_deduplicated() -> None:
    shift = _shift(days_of_week=["Friday", "Monday", "Friday"])
    assert shift.days_of_week == [Weekday.MONDAY, Weekday.FRIDAY]
    assert shift.runs_on(MONDAY)
    assert not shift.runs_on(TUESDAY)


def test_time_helpers() -> None:
    assert to_minutes("07:05") == 425
    assert to_minutes("24:00") == 1440
    assert to_hhmm(425) == "07:05"
    with pytest.raises(ValueError):
        to_minutes("25:00")


def test_date_set_forms() -> None:
    single = DateSet.from_fields(day=MONDAY)
    assert single.is_single and list(single) == [MONDAY]
    week = DateSet.from_fields(start=MONDAY, end=date(2025, 7, 13))
    assert len(week) == 7
    assert TUESDAY in week
    assert str(week) == "2025-07-07 to 2025-07-13"
    assert week.overlaps(single)
    with pytest.raises(ValueError):
        DateSet.from_fields(day=MONDAY, start=MONDAY, end=TUESDAY)
    with pytest.raises(ValueError):
        DateSet.from_fields(start=MONDAY)
    with pytest.raises(ValueError):
        DateSet(TUESDAY, MONDAY)


def test_day_shift_with_lunch_yields_fourteen_slots() -> None:
    shift = _shift(
        start_time="09:00",
        end_time="17:00",
        break_time={"start": "12:00", "end": "13:00"},
    )
    slots = generate_time_slots(shift, MONDAY)
    assert len(slots) == 14
    assert not any(
        to_minutes(s.start_time) < 780 and to_minutes(s.end_time) > 720
        for s in slots
    )


def test_two_hour_overtime_adds_four_slots() -> None:
    shift = _shift(start_time="09:00", end_time="17:00")
    slots = generate_overtime_slots(shift, MONDAY, 2, "alice-id", "ot-3")
    assert len(slots) == 4
    assert (slots[0].start_time, slots[-1].end_time) == ("17:00", "19:00")
