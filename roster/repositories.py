"""
One repository per entity over the shared key/value store.

Bulk date operations walk a ``DateSet`` and apply an independent, idempotent
update per slot, so a range that fails halfway can simply be re-run.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import date

from roster import lifecycle
from roster.database import InMemoryKeyValueDatabase
from roster.dates import DateSet
from roster.errors import NotFoundError
from roster.models import (
    LeaveRequest,
    LeaveStatus,
    Notification,
    Overtime,
    Shift,
    ShiftSwap,
    StaffMember,
    TimeSlot,
)
from roster.timeofday import to_minutes

logger = logging.getLogger(__name__)

Database = InMemoryKeyValueDatabase[str, object]


class StaffRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def put(self, member: StaffMember) -> StaffMember:
        self.db.put(f"staff:{member.id}", member)
        return member

    def find(self, staff_id: str) -> StaffMember | None:
        member = self.db.get(f"staff:{staff_id}")
        return member if isinstance(member, StaffMember) else None

    def all(self) -> list[StaffMember]:
        return [m for m in self.db.scan("staff:") if isinstance(m, StaffMember)]


class ShiftRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def put(self, shift: Shift) -> Shift:
        self.db.put(f"shift:{shift.id}", shift)
        return shift

    def find(self, shift_id: str) -> Shift | None:
        shift = self.db.get(f"shift:{shift_id}")
        return shift if isinstance(shift, Shift) else None

    def get(self, shift_id: str) -> Shift:
        shift = self.find(shift_id)
        if shift is None:
            raise NotFoundError("Shift", shift_id)
        return shift

    def all(self) -> list[Shift]:
        shifts = [s for s in self.db.scan("shift:") if isinstance(s, Shift)]
        return sorted(shifts, key=lambda s: s.created_at, reverse=True)

    def active(self, doctor_id: str | None = None) -> list[Shift]:
        return [
            s
            for s in self.all()
            if s.is_active and (doctor_id is None or s.doctor_id == doctor_id)
        ]

    def active_on(self, doctor_id: str, day: date) -> list[Shift]:
        return [s for s in self.active(doctor_id) if s.runs_on(day)]


def _slot_order(slot: TimeSlot) -> tuple:
    return (slot.date, to_minutes(slot.start_time), slot.shift_id)


class SlotRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def find(self, slot_id: str) -> TimeSlot | None:
        slot = self.db.get(f"slot:{slot_id}")
        return slot if isinstance(slot, TimeSlot) else None

    def get(self, slot_id: str) -> TimeSlot:
        slot = self.find(slot_id)
        if slot is None:
            raise NotFoundError("Time slot", slot_id)
        return slot

    def _select(self, predicate: Callable[[TimeSlot], bool]) -> list[TimeSlot]:
        slots = [
            s
            for s in self.db.scan("slot:")
            if isinstance(s, TimeSlot) and predicate(s)
        ]
        return sorted(slots, key=_slot_order)

    def for_doctor_on(self, doctor_id: str, day: date) -> list[TimeSlot]:
        return self._select(lambda s: s.doctor_id == doctor_id and s.date == day)

    def for_shift_on(self, shift_id: str, day: date) -> list[TimeSlot]:
        return self._select(lambda s: s.shift_id == shift_id and s.date == day)

    def for_shift_from(self, shift_id: str, day: date) -> list[TimeSlot]:
        return self._select(lambda s: s.shift_id == shift_id and s.date >= day)

    def insert_for_shift_date(
        self, shift_id: str, day: date, slots: Iterable[TimeSlot]
    ) -> tuple[bool, list[TimeSlot]]:
        """
        Persist a generated slot set for (shift, date) unless one already exists.
        Returns (created, slots); the first writer wins.
        """
        with self.db.locked():
            if not self.db.insert_if_absent(f"slotgen:{shift_id}:{day}", True):
                return False, self.for_shift_on(shift_id, day)
            slots = list(slots)
            for slot in slots:
                self.db.put(f"slot:{slot.id}", slot)
            return True, slots

    def insert_extension(
        self, marker: str, slots: Iterable[TimeSlot]
    ) -> tuple[bool, list[TimeSlot]]:
        """
        Append slots to an existing day once per ``marker``; starts already
        taken on the same shift/date are skipped.
        """
        with self.db.locked():
            if not self.db.insert_if_absent(f"slotext:{marker}", True):
                return False, []
            created = []
            for slot in slots:
                taken = {
                    s.start_time for s in self.for_shift_on(slot.shift_id, slot.date)
                }
                if slot.start_time in taken:
                    continue
                self.db.put(f"slot:{slot.id}", slot)
                created.append(slot)
            return True, created

    def insert_missing(self, slots: Iterable[TimeSlot]) -> list[TimeSlot]:
        """Persist slots whose doctor has nothing starting then on that date."""
        with self.db.locked():
            created = []
            for slot in slots:
                taken = {
                    s.start_time for s in self.for_doctor_on(slot.doctor_id, slot.date)
                }
                if slot.start_time in taken:
                    continue
                self.db.put(f"slot:{slot.id}", slot)
                created.append(slot)
            return created

    def block_covering(self, leave_id: str, reason: str) -> int:
        def _block(slot: TimeSlot) -> TimeSlot:
            if slot.is_blocked:
                return slot
            return lifecycle.set_blocked(slot, True, reason)

        count = 0
        for slot in self._select(lambda s: s.covering_leave_id == leave_id):
            if not slot.is_blocked:
                self.mutate(slot.id, _block)
                count += 1
        return count

    def mutate(self, slot_id: str, fn: Callable[[TimeSlot], TimeSlot]) -> TimeSlot:
        updated = self.db.update(f"slot:{slot_id}", fn)
        if updated is None:
            raise NotFoundError("Time slot", slot_id)
        return updated

    def block_range(
        self,
        doctor_id: str,
        dates: DateSet,
        reason: str,
    ) -> dict[date, int]:
        """Block every unblocked slot; slots blocked for another reason keep it."""

        def _block(slot: TimeSlot) -> TimeSlot:
            if slot.is_blocked:
                return slot
            return lifecycle.set_blocked(slot, True, reason)

        touched = {}
        for day in dates:
            count = 0
            for slot in self.for_doctor_on(doctor_id, day):
                if not slot.is_blocked:
                    self.mutate(slot.id, _block)
                    count += 1
            touched[day] = count
            logger.info(
                "blocked %d slot(s) for %s on %s (%s)", count, doctor_id, day, reason
            )
        return touched

    def unblock_range(
        self,
        doctor_id: str,
        dates: DateSet,
        reason: str,
    ) -> dict[date, int]:
        """Unblock only slots whose block reason is exactly ``reason``."""

        def _unblock(slot: TimeSlot) -> TimeSlot:
            if not slot.is_blocked or slot.block_reason != reason:
                return slot
            return lifecycle.set_blocked(slot, False, None)

        touched = {}
        for day in dates:
            count = 0
            for slot in self.for_doctor_on(doctor_id, day):
                if slot.is_blocked and slot.block_reason == reason:
                    self.mutate(slot.id, _unblock)
                    count += 1
            touched[day] = count
            logger.info(
                "unblocked %d slot(s) for %s on %s (%s)", count, doctor_id, day, reason
            )
        return touched

    def reassign_range(
        self,
        shift_id: str,
        dates: Iterable[date],
        from_doctor_id: str,
        to_doctor_id: str,
    ) -> dict[date, int]:
        """Move ownership of a shift's slots; slots already moved are left alone."""

        def _reassign(slot: TimeSlot) -> TimeSlot:
            if slot.doctor_id != from_doctor_id:
                return slot
            return slot.model_copy(update={"doctor_id": to_doctor_id})

        touched = {}
        for day in dates:
            count = 0
            for slot in self.for_shift_on(shift_id, day):
                if slot.doctor_id == from_doctor_id:
                    self.mutate(slot.id, _reassign)
                    count += 1
            touched[day] = count
            logger.info(
                "reassigned %d slot(s) of shift %s on %s from %s to %s",
                count,
                shift_id,
                day,
                from_doctor_id,
                to_doctor_id,
            )
        return touched


class LeaveRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def put(self, leave: LeaveRequest) -> LeaveRequest:
        self.db.put(f"leave:{leave.id}", leave)
        return leave

    def get(self, leave_id: str) -> LeaveRequest:
        leave = self.db.get(f"leave:{leave_id}")
        if not isinstance(leave, LeaveRequest):
            raise NotFoundError("Leave request", leave_id)
        return leave

    def all(self) -> list[LeaveRequest]:
        leaves = [
            r for r in self.db.scan("leave:") if isinstance(r, LeaveRequest)
        ]
        return sorted(leaves, key=lambda r: r.created_at, reverse=True)

    def for_doctor(self, doctor_id: str) -> list[LeaveRequest]:
        return [r for r in self.all() if r.doctor_id == doctor_id]

    def overlapping(
        self,
        doctor_id: str,
        dates: DateSet,
        statuses: Iterable[LeaveStatus],
    ) -> list[LeaveRequest]:
        wanted = set(statuses)
        return [
            r
            for r in self.for_doctor(doctor_id)
            if r.status in wanted and r.date_set.overlaps(dates)
        ]

    def approved_on(self, doctor_id: str, day: date) -> list[LeaveRequest]:
        return self.overlapping(
            doctor_id, DateSet.single(day), [LeaveStatus.APPROVED]
        )

    def mutate(
        self, leave_id: str, fn: Callable[[LeaveRequest], LeaveRequest]
    ) -> LeaveRequest:
        updated = self.db.update(f"leave:{leave_id}", fn)
        if updated is None:
            raise NotFoundError("Leave request", leave_id)
        return updated


class OvertimeRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def put(self, overtime: Overtime) -> Overtime:
        self.db.put(f"overtime:{overtime.id}", overtime)
        return overtime

    def get(self, overtime_id: str) -> Overtime:
        overtime = self.db.get(f"overtime:{overtime_id}")
        if not isinstance(overtime, Overtime):
            raise NotFoundError("Overtime request", overtime_id)
        return overtime

    def all(self) -> list[Overtime]:
        items = [o for o in self.db.scan("overtime:") if isinstance(o, Overtime)]
        return sorted(items, key=lambda o: o.requested_at, reverse=True)

    def for_doctor(self, doctor_id: str) -> list[Overtime]:
        return [o for o in self.all() if o.doctor_id == doctor_id]

    def mutate(self, overtime_id: str, fn: Callable[[Overtime], Overtime]) -> Overtime:
        updated = self.db.update(f"overtime:{overtime_id}", fn)
        if updated is None:
            raise NotFoundError("Overtime request", overtime_id)
        return updated


class SwapRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def put(self, swap: ShiftSwap) -> ShiftSwap:
        self.db.put(f"swap:{swap.id}", swap)
        return swap

    def get(self, swap_id: str) -> ShiftSwap:
        swap = self.db.get(f"swap:{swap_id}")
        if not isinstance(swap, ShiftSwap):
            raise NotFoundError("Swap request", swap_id)
        return swap

    def all(self) -> list[ShiftSwap]:
        swaps = [s for s in self.db.scan("swap:") if isinstance(s, ShiftSwap)]
        return sorted(swaps, key=lambda s: s.requested_at, reverse=True)

    def involving(self, staff_id: str) -> list[ShiftSwap]:
        return [s for s in self.all() if s.involves(staff_id)]

    def mutate(self, swap_id: str, fn: Callable[[ShiftSwap], ShiftSwap]) -> ShiftSwap:
        updated = self.db.update(f"swap:{swap_id}", fn)
        if updated is None:
            raise NotFoundError("Swap request", swap_id)
        return updated


class NotificationRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def put(self, notification: Notification) -> Notification:
        self.db.put(f"notification:{notification.id}", notification)
        return notification

    def for_recipient(self, recipient_id: str) -> list[Notification]:
        items = [
            n
            for n in self.db.scan("notification:")
            if isinstance(n, Notification) and n.recipient_id == recipient_id
        ]
        return sorted(items, key=lambda n: n.created_at, reverse=True)
