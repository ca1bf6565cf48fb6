"""
Slot generation and the slot store.

``partition`` and ``generate_time_slots`` are pure; ``SlotStore`` persists
their output and owns the booking/blocking state machine.
"""

import logging
import math
from collections.abc import Callable
from datetime import date

from roster import lifecycle
from roster.directory import is_admin
from roster.errors import InvalidInputError, PermissionDeniedError
from roster.models import BreakWindow, LeaveRequest, Shift, StaffMember, TimeSlot
from roster.repositories import (
    Database,
    LeaveRepository,
    ShiftRepository,
    SlotRepository,
)
from roster.timeofday import MINUTES_PER_DAY, to_hhmm, to_minutes

logger = logging.getLogger(__name__)


def partition(
    start: int,
    end: int,
    duration: int,
    break_time: BreakWindow | None = None,
) -> list[tuple[int, int]]:
    """
    Cut [start, end) into consecutive ``duration``-minute windows.

    A window that overlaps the break at all is skipped, as is a trailing
    window that would run past ``end``.
    """
    if duration <= 0:
        raise ValueError("duration must be positive")
    b_start = b_end = None
    if break_time is not None:
        b_start, b_end = to_minutes(break_time.start), to_minutes(break_time.end)

    windows = []
    cursor = start
    while cursor + duration <= end:
        cursor_end = cursor + duration
        if b_start is None or not (cursor < b_end and cursor_end > b_start):
            windows.append((cursor, cursor_end))
        cursor = cursor_end
    return windows


def generate_time_slots(shift: Shift, day: date) -> list[TimeSlot]:
    return [
        TimeSlot(
            shift_id=shift.id,
            doctor_id=shift.doctor_id,
            date=day,
            start_time=to_hhmm(s),
            end_time=to_hhmm(e),
            max_patients=shift.max_patients_per_hour,
        )
        for s, e in partition(
            shift.start_minutes,
            shift.end_minutes,
            shift.slot_duration,
            shift.break_time,
        )
    ]


def overtime_window(shift: Shift, hours: float) -> tuple[int, int]:
    start = shift.end_minutes
    return start, min(start + math.ceil(hours * 60), MINUTES_PER_DAY)


def generate_overtime_slots(
    shift: Shift,
    day: date,
    hours: float,
    doctor_id: str,
    overtime_id: str,
) -> list[TimeSlot]:
    start, end = overtime_window(shift, hours)
    return [
        TimeSlot(
            shift_id=shift.id,
            doctor_id=doctor_id,
            date=day,
            start_time=to_hhmm(s),
            end_time=to_hhmm(e),
            max_patients=shift.max_patients_per_hour,
            overtime_id=overtime_id,
        )
        for s, e in partition(start, end, shift.slot_duration, shift.break_time)
    ]


def block_for_leave(
    slots: list[TimeSlot], leaves: LeaveRepository
) -> list[TimeSlot]:
    """Born-blocked copies of slots whose owner is on approved leave that day."""
    reasons: dict[tuple[str, date], str | None] = {}
    result = []
    for slot in slots:
        key = (slot.doctor_id, slot.date)
        if key not in reasons:
            on_leave = leaves.approved_on(*key)
            reasons[key] = on_leave[0].block_reason if on_leave else None
        reason = reasons[key]
        if reason and not slot.is_blocked:
            slot = lifecycle.set_blocked(slot, True, reason)
        result.append(slot)
    return result


class SlotStore:
    def __init__(self, db: Database, today_fn: Callable[[], date]) -> None:
        self.slots = SlotRepository(db)
        self.shifts = ShiftRepository(db)
        self.leaves = LeaveRepository(db)
        self.today_fn = today_fn

    def ensure_shift_slots(self, shift: Shift, day: date) -> list[TimeSlot]:
        """Slots of ``shift`` on ``day``, generating them on first use."""
        drafts = block_for_leave(generate_time_slots(shift, day), self.leaves)
        created, slots = self.slots.insert_for_shift_date(shift.id, day, drafts)
        if created:
            logger.info(
                "generated %d slot(s) for shift %s on %s", len(slots), shift.id, day
            )
        return slots

    def generate_for_date(self, doctor_id: str, day: date) -> list[TimeSlot]:
        for shift in self.shifts.active_on(doctor_id, day):
            self.ensure_shift_slots(shift, day)
        return self.slots.for_doctor_on(doctor_id, day)

    def slots_for(
        self, doctor_id: str, day: date, *, available_only: bool = False
    ) -> list[TimeSlot]:
        slots = self.slots.for_doctor_on(doctor_id, day)
        if available_only:
            slots = [s for s in slots if s.is_available]
        return slots

    def book_slot(self, slot_id: str, appointment_id: str) -> TimeSlot:
        slot = self.slots.mutate(
            slot_id, lambda s: lifecycle.book_slot(s, appointment_id)
        )
        logger.info(
            "booked appointment %s into slot %s (%d/%d)",
            appointment_id,
            slot_id,
            slot.booked_patients,
            slot.max_patients,
        )
        return slot

    def cancel_booking(self, slot_id: str, appointment_id: str) -> TimeSlot:
        slot = self.slots.mutate(
            slot_id, lambda s: lifecycle.release_booking(s, appointment_id)
        )
        logger.info("released appointment %s from slot %s", appointment_id, slot_id)
        return slot

    def toggle_block(
        self,
        actor: StaffMember,
        slot_id: str,
        blocked: bool,
        reason: str | None = None,
    ) -> TimeSlot:
        slot = self.slots.get(slot_id)
        if slot.doctor_id != actor.id and not is_admin(actor):
            raise PermissionDeniedError("Only the slot owner may block or unblock it")
        if blocked and not reason:
            raise InvalidInputError(
                "Validation failed",
                [{"field": "reason", "message": "a reason is required to block"}],
            )
        slot = self.slots.mutate(
            slot_id, lambda s: lifecycle.set_blocked(s, blocked, reason)
        )
        logger.info(
            "slot %s %s by %s", slot_id, "blocked" if blocked else "unblocked", actor.id
        )
        return slot

    def block_future_for_shift(self, shift_id: str, reason: str) -> int:
        count = 0
        for slot in self.slots.for_shift_from(shift_id, self.today_fn()):
            self.slots.mutate(
                slot.id, lambda s: lifecycle.set_blocked(s, True, reason)
            )
            count += 1
        logger.info("blocked %d future slot(s) of shift %s", count, shift_id)
        return count

    def hand_over(
        self, shift_id: str, day: date, from_doctor_id: str, to_doctor_id: str
    ) -> int:
        """
        Move a shift's slots on ``day`` to another doctor.

        Leave blocks travel with the person, not the slot: a block placed for
        the giver's approved leave is lifted, and the receiver's own approved
        leave that day blocks the slots again.
        """
        moved = self.slots.reassign_range(
            shift_id, [day], from_doctor_id, to_doctor_id
        )[day]
        giver_reasons = {
            r.block_reason for r in self.leaves.approved_on(from_doctor_id, day)
        }
        taker_leave = self.leaves.approved_on(to_doctor_id, day)
        taker_reason = taker_leave[0].block_reason if taker_leave else None

        def _rebase(slot: TimeSlot) -> TimeSlot:
            if slot.doctor_id != to_doctor_id:
                return slot
            if slot.is_blocked and slot.block_reason in giver_reasons:
                slot = lifecycle.set_blocked(slot, False, None)
            if taker_reason and not slot.is_blocked:
                slot = lifecycle.set_blocked(slot, True, taker_reason)
            return slot

        for slot in self.slots.for_shift_on(shift_id, day):
            if slot.doctor_id == to_doctor_id:
                self.slots.mutate(slot.id, _rebase)
        return moved

    def cover_for_leave(
        self, leave: LeaveRequest, day: date, staff_id: str
    ) -> list[TimeSlot]:
        """
        Open slots for ``staff_id`` mirroring the leave-taker's shifts on
        ``day``. Start times the coverer already works are skipped.
        """
        drafts = [
            slot.model_copy(
                update={"doctor_id": staff_id, "covering_leave_id": leave.id}
            )
            for shift in self.shifts.active_on(leave.doctor_id, day)
            for slot in generate_time_slots(shift, day)
        ]
        created = self.slots.insert_missing(block_for_leave(drafts, self.leaves))
        if created:
            logger.info(
                "opened %d cover slot(s) for %s on %s (leave %s)",
                len(created),
                staff_id,
                day,
                leave.id,
            )
        return created

    def withdraw_cover(self, leave_id: str, reason: str) -> int:
        count = self.slots.block_covering(leave_id, reason)
        logger.info("blocked %d cover slot(s) of leave %s", count, leave_id)
        return count
