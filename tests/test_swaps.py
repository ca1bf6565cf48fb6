from datetime import date

import pytest

from roster.errors import (
    BusinessRuleError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from roster.models import CoverageStatus, PartnerDecision, ShiftDefinition, SwapStatus

MONDAY = date(2025, 7, 7)
TUESDAY = date(2025, 7, 8)
SATURDAY = date(2025, 7, 12)


@pytest.fixture
def shifts(services, staff, morning):
    afternoon = ShiftDefinition(
        title="Afternoon clinic",
        start_time="13:00",
        end_time="15:00",
        days_of_week=["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"],
        max_patients_per_hour=2,
    )
    alice_shift, _ = services.registry.create(staff.alice, morning)
    bob_shift, _ = services.registry.create(staff.bob, afternoon)
    return alice_shift, bob_shift


def _trade(services, staff, shifts, **overrides):
    alice_shift, bob_shift = shifts
    fields = dict(
        swap_with_id="bob-id",
        original_shift_id=alice_shift.id,
        requested_shift_id=bob_shift.id,
        swap_date=MONDAY,
        reason="School event",
    )
    fields.update(overrides)
    return services.swaps.create(staff.alice, **fields)


def test_create_notifies_partner_and_requester(services, staff, shifts) -> None:
    swap, events = _trade(services, staff, shifts)
    assert swap.status == SwapStatus.PENDING
    assert swap.partner_decision == PartnerDecision.PENDING
    assert sorted(e.recipient_id for e in events) == ["alice-id", "bob-id"]
    confirmation = next(e for e in events if e.recipient_id == "alice-id")
    assert "Bob Mensah" in confirmation.content


def test_create_validation(services, staff, shifts) -> None:
    alice_shift, bob_shift = shifts
    with pytest.raises(InvalidInputError):
        _trade(services, staff, shifts, swap_with_id="alice-id")
    with pytest.raises(InvalidInputError):
        _trade(services, staff, shifts, requested_shift_id=None)
    with pytest.raises(InvalidInputError):
        _trade(services, staff, shifts, swap_type="cover")
    with pytest.raises(InvalidInputError):
        _trade(services, staff, shifts, swap_start_date=MONDAY, swap_end_date=TUESDAY)
    with pytest.raises(InvalidInputError):
        _trade(services, staff, shifts, swap_date=None)
    with pytest.raises(NotFoundError):
        _trade(services, staff, shifts, swap_with_id="ghost-id")


def test_create_business_rules(services, staff, shifts) -> None:
    alice_shift, bob_shift = shifts
    with pytest.raises(BusinessRuleError):
        _trade(services, staff, shifts, swap_with_id="carol-id")
    with pytest.raises(PermissionDeniedError):
        _trade(services, staff, shifts, original_shift_id=bob_shift.id)
    with pytest.raises(BusinessRuleError):
        _trade(services, staff, shifts, requested_shift_id=alice_shift.id)
    with pytest.raises(BusinessRuleError):
        _trade(services, staff, shifts, swap_date=SATURDAY)


def test_cover_refused_when_partner_is_busy(services, staff, shifts, morning) -> None:
    alice_shift, _ = shifts
    services.registry.create(staff.bob, morning)
    with pytest.raises(BusinessRuleError):
        services.swaps.create(
            staff.alice,
            swap_with_id="bob-id",
            original_shift_id=alice_shift.id,
            swap_type="cover",
            swap_date=MONDAY,
        )


def test_approval_requires_partner_acceptance(services, staff, shifts) -> None:
    swap, _ = _trade(services, staff, shifts)
    with pytest.raises(BusinessRuleError):
        services.swaps.admin_decide(swap.id, staff.admin, "approved")

    with pytest.raises(PermissionDeniedError):
        services.swaps.partner_respond(swap.id, staff.alice, "accepted")
    swap, _ = services.swaps.partner_respond(swap.id, staff.bob, "declined")
    with pytest.raises(InvalidTransitionError):
        services.swaps.partner_respond(swap.id, staff.bob, "accepted")
    with pytest.raises(BusinessRuleError):
        services.swaps.admin_decide(swap.id, staff.admin, "approved")

    swap, events = services.swaps.admin_decide(swap.id, staff.admin, "rejected")
    assert swap.status == SwapStatus.REJECTED
    assert sorted(e.recipient_id for e in events) == ["alice-id", "bob-id"]


def test_approved_trade_moves_slots_for_that_date(services, staff, shifts) -> None:
    alice_shift, bob_shift = shifts
    store = services.slot_store
    swap, _ = _trade(services, staff, shifts)

    swap, events = services.swaps.partner_respond(swap.id, staff.bob, "accepted")
    assert sorted(e.recipient_id for e in events) == ["admin-id", "alice-id", "bob-id"]
    swap, _ = services.swaps.admin_decide(swap.id, staff.admin, "approved", "ok")
    assert swap.status == SwapStatus.APPROVED

    monday_alice = store.slots_for("alice-id", MONDAY)
    monday_bob = store.slots_for("bob-id", MONDAY)
    assert {s.shift_id for s in monday_alice} == {bob_shift.id}
    assert {s.shift_id for s in monday_bob} == {alice_shift.id}

    tuesday = store.generate_for_date("alice-id", TUESDAY)
    assert {s.shift_id for s in tuesday} == {alice_shift.id}

    with pytest.raises(InvalidTransitionError):
        services.swaps.admin_decide(swap.id, staff.admin, "cancelled")


def test_cover_swap_records_leave_coverage(services, staff, shifts) -> None:
    alice_shift, _ = shifts
    leave, _ = services.leave.submit(
        staff.alice,
        "sick",
        MONDAY,
        MONDAY,
        "Recovering from surgery",
        is_emergency=True,
    )
    services.leave.process(leave.id, staff.admin, "approved")

    swap, _ = services.swaps.create(
        staff.alice,
        swap_with_id="bob-id",
        original_shift_id=alice_shift.id,
        swap_type="cover",
        swap_start_date=MONDAY,
        swap_end_date=TUESDAY,
    )
    services.swaps.partner_respond(swap.id, staff.bob, "accepted")
    services.swaps.admin_decide(swap.id, staff.admin, "approved")

    for day in (MONDAY, TUESDAY):
        moved = services.slot_store.slots.for_shift_on(alice_shift.id, day)
        assert moved and {s.doctor_id for s in moved} == {"bob-id"}

    leave = services.leave.leaves.get(leave.id)
    assert [
        (c.staff_id, c.shift_date, c.status) for c in leave.covering_staff
    ] == [("bob-id", MONDAY, CoverageStatus.ACCEPTED)]


def _cover_monday(services, staff, shift_id) -> None:
    swap, _ = services.swaps.create(
        staff.alice,
        swap_with_id="bob-id",
        original_shift_id=shift_id,
        swap_type="cover",
        swap_date=MONDAY,
    )
    services.swaps.partner_respond(swap.id, staff.bob, "accepted")
    services.swaps.admin_decide(swap.id, staff.admin, "approved")


def test_leave_block_does_not_follow_slots_to_the_coverer(
    services, staff, shifts
) -> None:
    alice_shift, _ = shifts
    store = services.slot_store
    store.generate_for_date("alice-id", MONDAY)
    leave, _ = services.leave.submit(
        staff.alice,
        "sick",
        MONDAY,
        MONDAY,
        "Recovering from surgery",
        is_emergency=True,
    )
    services.leave.process(leave.id, staff.admin, "approved")
    assert all(s.is_blocked for s in store.slots_for("alice-id", MONDAY))

    _cover_monday(services, staff, alice_shift.id)

    covered = store.slots.for_shift_on(alice_shift.id, MONDAY)
    assert covered and {s.doctor_id for s in covered} == {"bob-id"}
    assert not any(s.is_blocked for s in covered)
    assert all(s.is_available for s in covered)

    services.leave.cancel(leave.id, staff.alice)
    after = store.slots.for_shift_on(alice_shift.id, MONDAY)
    assert {s.doctor_id for s in after} == {"bob-id"}
    assert not any(s.is_blocked for s in after)


def test_slots_handed_to_a_colleague_on_leave_are_blocked(
    services, staff, shifts
) -> None:
    alice_shift, _ = shifts
    services.slot_store.generate_for_date("alice-id", MONDAY)
    leave, _ = services.leave.submit(
        staff.bob,
        "personal",
        MONDAY,
        MONDAY,
        "Moving house this week",
        is_emergency=True,
    )
    services.leave.process(leave.id, staff.admin, "approved")

    _cover_monday(services, staff, alice_shift.id)

    covered = services.slot_store.slots.for_shift_on(alice_shift.id, MONDAY)
    assert {s.doctor_id for s in covered} == {"bob-id"}
    assert {s.block_reason for s in covered} == {"personal leave"}
    assert not any(s.is_available for s in covered)


def test_apply_is_idempotent(services, staff, shifts) -> None:
    swap, _ = _trade(services, staff, shifts)
    services.swaps.partner_respond(swap.id, staff.bob, "accepted")
    swap, _ = services.swaps.admin_decide(swap.id, staff.admin, "approved")
    before = sorted(
        (s.id, s.doctor_id) for s in services.slot_store.slots._select(lambda s: True)
    )
    services.swaps.apply(swap)
    after = sorted(
        (s.id, s.doctor_id) for s in services.slot_store.slots._select(lambda s: True)
    )
    assert before == after


def test_listing(services, staff, shifts) -> None:
    swap, _ = _trade(services, staff, shifts)
    assert [s.id for s in services.swaps.list_for(staff.bob)] == [swap.id]
    assert services.swaps.list_for(staff.carol) == []
    assert len(services.swaps.list_for(staff.admin)) == 1
