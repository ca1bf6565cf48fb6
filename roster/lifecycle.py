"""
Allowed state transitions for time slots and for leave, overtime and swap
requests.

Coordinators never assign a status directly; they go through these functions
so an illegal step raises ``InvalidTransitionError`` before anything is saved.
"""

from datetime import datetime

from roster.errors import BusinessRuleError, InvalidTransitionError
from roster.models import (
    LeaveRequest,
    LeaveStatus,
    Overtime,
    OvertimeStatus,
    PartnerDecision,
    ShiftSwap,
    SwapStatus,
    TimeSlot,
)

LEAVE_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.PENDING: frozenset(
        {LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED}
    ),
    LeaveStatus.APPROVED: frozenset({LeaveStatus.CANCELLED}),
    LeaveStatus.REJECTED: frozenset({LeaveStatus.CANCELLED}),
    LeaveStatus.CANCELLED: frozenset(),
}

OVERTIME_TRANSITIONS: dict[OvertimeStatus, frozenset[OvertimeStatus]] = {
    OvertimeStatus.PENDING: frozenset(
        {OvertimeStatus.APPROVED, OvertimeStatus.REJECTED}
    ),
    OvertimeStatus.APPROVED: frozenset(),
    OvertimeStatus.REJECTED: frozenset(),
}

PARTNER_TRANSITIONS: dict[PartnerDecision, frozenset[PartnerDecision]] = {
    PartnerDecision.PENDING: frozenset(
        {PartnerDecision.ACCEPTED, PartnerDecision.DECLINED}
    ),
    PartnerDecision.ACCEPTED: frozenset(),
    PartnerDecision.DECLINED: frozenset(),
}

SWAP_TRANSITIONS: dict[SwapStatus, frozenset[SwapStatus]] = {
    SwapStatus.PENDING: frozenset(
        {SwapStatus.APPROVED, SwapStatus.REJECTED, SwapStatus.CANCELLED}
    ),
    SwapStatus.APPROVED: frozenset(),
    SwapStatus.REJECTED: frozenset(),
    SwapStatus.CANCELLED: frozenset(),
}


def _check(entity: str, table: dict, current, target) -> None:
    if target not in table[current]:
        raise InvalidTransitionError(entity, str(current), str(target))


def approve_leave(
    leave: LeaveRequest, admin_id: str, at: datetime
) -> LeaveRequest:
    _check("Leave request", LEAVE_TRANSITIONS, leave.status, LeaveStatus.APPROVED)
    return leave.model_copy(
        update={
            "status": LeaveStatus.APPROVED,
            "approved_by": admin_id,
            "approval_date": at,
        }
    )


def reject_leave(
    leave: LeaveRequest, admin_id: str, at: datetime, reason: str | None
) -> LeaveRequest:
    _check("Leave request", LEAVE_TRANSITIONS, leave.status, LeaveStatus.REJECTED)
    return leave.model_copy(
        update={
            "status": LeaveStatus.REJECTED,
            "approved_by": admin_id,
            "approval_date": at,
            "rejection_reason": reason,
        }
    )


def cancel_leave(leave: LeaveRequest, reason: str | None) -> LeaveRequest:
    _check("Leave request", LEAVE_TRANSITIONS, leave.status, LeaveStatus.CANCELLED)
    return leave.model_copy(
        update={"status": LeaveStatus.CANCELLED, "cancellation_reason": reason}
    )


def decide_overtime(
    overtime: Overtime,
    decision: OvertimeStatus,
    at: datetime,
    comment: str | None,
) -> Overtime:
    _check("Overtime request", OVERTIME_TRANSITIONS, overtime.status, decision)
    return overtime.model_copy(
        update={"status": decision, "decision_at": at, "admin_comment": comment}
    )


def record_partner_decision(
    swap: ShiftSwap, decision: PartnerDecision, at: datetime
) -> ShiftSwap:
    if swap.status != SwapStatus.PENDING:
        raise InvalidTransitionError(
            "Swap request", str(swap.status), f"partner {decision}"
        )
    _check(
        "Swap partner decision",
        PARTNER_TRANSITIONS,
        swap.partner_decision,
        decision,
    )
    return swap.model_copy(
        update={"partner_decision": decision, "partner_decision_at": at}
    )


def decide_swap(
    swap: ShiftSwap, decision: SwapStatus, at: datetime, comment: str | None
) -> ShiftSwap:
    _check("Swap request", SWAP_TRANSITIONS, swap.status, decision)
    if (
        decision == SwapStatus.APPROVED
        and swap.partner_decision != PartnerDecision.ACCEPTED
    ):
        raise BusinessRuleError(
            "Swap cannot be approved until the swap partner has accepted "
            f"(partner decision is {swap.partner_decision})"
        )
    return swap.model_copy(
        update={"status": decision, "decision_at": at, "admin_comment": comment}
    )


def book_slot(slot: TimeSlot, appointment_id: str) -> TimeSlot:
    if appointment_id in slot.appointments:
        return slot
    if slot.is_blocked or slot.is_full or not slot.is_available:
        raise BusinessRuleError("Slot is not available for booking")
    booked = slot.booked_patients + 1
    return slot.model_copy(
        update={
            "booked_patients": booked,
            "appointments": [*slot.appointments, appointment_id],
            "is_available": booked < slot.max_patients,
        }
    )


def release_booking(slot: TimeSlot, appointment_id: str) -> TimeSlot:
    if appointment_id not in slot.appointments:
        return slot
    booked = max(0, slot.booked_patients - 1)
    available = booked < slot.max_patients and not slot.is_blocked
    return slot.model_copy(
        update={
            "booked_patients": booked,
            "appointments": [a for a in slot.appointments if a != appointment_id],
            "is_available": available,
        }
    )


def set_blocked(slot: TimeSlot, blocked: bool, reason: str | None) -> TimeSlot:
    if blocked:
        return slot.model_copy(
            update={"is_blocked": True, "block_reason": reason, "is_available": False}
        )
    return slot.model_copy(
        update={
            "is_blocked": False,
            "block_reason": None,
            "is_available": slot.booked_patients < slot.max_patients,
        }
    )
