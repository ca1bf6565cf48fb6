from datetime import date

import pytest

from roster.models import ShiftDefinition

MONDAY = date(2025, 7, 7)
TUESDAY = date(2025, 7, 8)


@pytest.fixture
def shifts(services, staff, morning):
    afternoon = ShiftDefinition(
        title="Afternoon clinic",
        start_time="13:00",
        end_time="15:00",
        days_of_week=["Monday", "Wednesday"],
    )
    alice_shift, _ = services.registry.create(staff.alice, morning)
    bob_shift, _ = services.registry.create(staff.bob, afternoon)
    return alice_shift, bob_shift


def _entries(services, doctor_id=None):
    return services.schedule.week(MONDAY, doctor_id)


def test_week_lists_each_running_day(services, shifts) -> None:
    entries = _entries(services)
    alice = [e for e in entries if e.doctor_id == "alice-id"]
    bob = [e for e in entries if e.doctor_id == "bob-id"]
    assert [e.day_name for e in alice] == [
        "Monday",
        "Tuesday",
        "Wednesday",
        "Thursday",
        "Friday",
    ]
    assert [e.date for e in bob] == [MONDAY, date(2025, 7, 9)]
    assert alice[0].break_start == "10:00"
    assert bob[0].break_start is None


def test_week_hides_approved_leave(services, staff, shifts) -> None:
    leave, _ = services.leave.submit(
        staff.alice, "sick", MONDAY, TUESDAY, "Recovering from flu", is_emergency=True
    )
    assert len(_entries(services, "alice-id")) == 5
    services.leave.process(leave.id, staff.admin, "approved")
    assert [e.date for e in _entries(services, "alice-id")][0] == date(2025, 7, 9)


def test_week_shows_swapped_owner(services, staff, shifts) -> None:
    alice_shift, bob_shift = shifts
    swap, _ = services.swaps.create(
        staff.alice,
        swap_with_id="bob-id",
        original_shift_id=alice_shift.id,
        requested_shift_id=bob_shift.id,
        swap_date=MONDAY,
    )
    services.swaps.partner_respond(swap.id, staff.bob, "accepted")
    services.swaps.admin_decide(swap.id, staff.admin, "approved")

    monday = [e for e in _entries(services) if e.date == MONDAY]
    owners = {e.shift_id: e.doctor_id for e in monday}
    assert owners == {alice_shift.id: "bob-id", bob_shift.id: "alice-id"}


def test_week_adds_overtime_entry(services, staff, shifts) -> None:
    alice_shift, _ = shifts
    overtime, _ = services.overtime.create(staff.alice, alice_shift.id, MONDAY, 1.5)
    services.overtime.update_status(overtime.id, staff.admin, "approved")

    monday = [e for e in _entries(services, "alice-id") if e.date == MONDAY]
    assert [e.status for e in monday] == ["available", "overtime"]
    extra = monday[1]
    assert (extra.start_time, extra.end_time) == ("12:00", "13:30")
    assert extra.title == "Morning clinic (Overtime)"
    assert extra.id.endswith("_ot")
