from datetime import date

import pytest

from roster.errors import (
    BusinessRuleError,
    InvalidInputError,
    InvalidTransitionError,
    PermissionDeniedError,
)
from roster.models import OvertimeStatus

MONDAY = date(2025, 7, 7)
TUESDAY = date(2025, 7, 8)
SATURDAY = date(2025, 7, 12)


@pytest.fixture
def shift(services, staff, morning):
    shift, _ = services.registry.create(staff.alice, morning)
    return shift


def test_create_validates_shift_and_date(services, staff, shift) -> None:
    with pytest.raises(PermissionDeniedError):
        services.overtime.create(staff.bob, shift.id, MONDAY, 1)
    with pytest.raises(BusinessRuleError):
        services.overtime.create(staff.alice, shift.id, SATURDAY, 1)
    with pytest.raises(InvalidInputError):
        services.overtime.create(staff.alice, shift.id, MONDAY, 30)

    overtime, events = services.overtime.create(
        staff.alice, shift.id, MONDAY, 1, "Backlog of referrals"
    )
    assert overtime.status == OvertimeStatus.PENDING
    assert events[0].recipient_id == "alice-id"


def test_approval_extends_only_that_date(services, staff, shift) -> None:
    store = services.slot_store
    store.generate_for_date("alice-id", MONDAY)
    store.generate_for_date("alice-id", TUESDAY)
    overtime, _ = services.overtime.create(staff.alice, shift.id, MONDAY, 1)

    overtime, events = services.overtime.update_status(
        overtime.id, staff.admin, "approved", "Thanks"
    )
    assert overtime.status == OvertimeStatus.APPROVED
    assert overtime.admin_comment == "Thanks"
    assert "approved: Thanks" in events[0].content

    monday = store.slots_for("alice-id", MONDAY)
    assert [s.start_time for s in monday][-2:] == ["12:00", "12:30"]
    assert {s.overtime_id for s in monday[-2:]} == {overtime.id}
    assert len(store.slots_for("alice-id", TUESDAY)) == 5

    with pytest.raises(InvalidTransitionError):
        services.overtime.update_status(overtime.id, staff.admin, "rejected")
    # a retried extension adds nothing
    assert services.overtime.extend(overtime) == []
    assert len(store.slots_for("alice-id", MONDAY)) == 7


def test_overlapping_overtime_does_not_duplicate_slots(services, staff, shift) -> None:
    first, _ = services.overtime.create(staff.alice, shift.id, MONDAY, 1)
    second, _ = services.overtime.create(staff.alice, shift.id, MONDAY, 1.5)
    services.overtime.update_status(first.id, staff.admin, "approved")
    services.overtime.update_status(second.id, staff.admin, "approved")

    starts = [s.start_time for s in services.slot_store.slots_for("alice-id", MONDAY)]
    assert starts.count("12:00") == 1
    assert starts.count("12:30") == 1
    assert starts.count("13:00") == 1


def test_rejection_adds_no_slots(services, staff, shift) -> None:
    services.slot_store.generate_for_date("alice-id", MONDAY)
    overtime, _ = services.overtime.create(staff.alice, shift.id, MONDAY, 2)
    overtime, _ = services.overtime.update_status(overtime.id, staff.admin, "rejected")
    assert overtime.status == OvertimeStatus.REJECTED
    assert len(services.slot_store.slots_for("alice-id", MONDAY)) == 5


def test_update_status_rules(services, staff, shift) -> None:
    overtime, _ = services.overtime.create(staff.alice, shift.id, MONDAY, 1)
    with pytest.raises(PermissionDeniedError):
        services.overtime.update_status(overtime.id, staff.alice, "approved")
    with pytest.raises(InvalidInputError):
        services.overtime.update_status(overtime.id, staff.admin, "pending")

    assert [o.id for o in services.overtime.list_for(staff.alice)] == [overtime.id]
    assert services.overtime.list_for(staff.bob) == []
    assert len(services.overtime.list_for(staff.admin)) == 1


def test_overtime_slots_during_approved_leave_start_blocked(
    services, staff, shift
) -> None:
    overtime, _ = services.overtime.create(staff.alice, shift.id, MONDAY, 1)
    leave, _ = services.leave.submit(
        staff.alice,
        "emergency",
        MONDAY,
        MONDAY,
        "Family emergency at home",
        is_emergency=True,
    )
    services.leave.process(leave.id, staff.admin, "approved")
    services.overtime.update_status(overtime.id, staff.admin, "approved")

    extra = [
        s
        for s in services.slot_store.slots_for("alice-id", MONDAY)
        if s.overtime_id == overtime.id
    ]
    assert [s.start_time for s in extra] == ["12:00", "12:30"]
    assert {s.block_reason for s in extra} == {"emergency leave"}
