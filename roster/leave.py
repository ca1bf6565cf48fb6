import logging
from collections.abc import Callable
from datetime import date, datetime

from pydantic import ValidationError

from roster import lifecycle
from roster.directory import (
    STAFF_ROLES,
    StaffDirectory,
    is_admin,
    require_admin,
    require_role,
)
from roster.errors import BusinessRuleError, InvalidInputError, PermissionDeniedError
from roster.models import (
    CoverageStatus,
    CoveringStaff,
    LeaveRequest,
    LeaveStatistics,
    LeaveStatus,
    LeaveType,
    LeaveTypeTotal,
    Notification,
    StaffMember,
    TimeSlot,
)
from roster.repositories import Database, LeaveRepository, SlotRepository
from roster.slots import SlotStore

logger = logging.getLogger(__name__)

OPEN_STATUSES = (LeaveStatus.PENDING, LeaveStatus.APPROVED)
COVER_WITHDRAWN = "Coverage cancelled"


class LeaveCoordinator:
    """
    Leave lifecycle. Approval blocks the requester's slots over the leave
    range; cancelling an approved leave unblocks exactly those slots again
    and blocks the cover slots opened for colleagues.

    Slots that already carry bookings are only blocked when the caller opts in
    (``block_booked_slots``); otherwise approval is refused so nobody's
    appointment disappears without a reschedule.
    """

    def __init__(
        self,
        db: Database,
        directory: StaffDirectory,
        slot_store: SlotStore,
        now_fn: Callable[[], datetime],
        *,
        block_booked_slots: bool = False,
    ) -> None:
        self.db = db
        self.leaves = LeaveRepository(db)
        self.slots = SlotRepository(db)
        self.slot_store = slot_store
        self.directory = directory
        self.now_fn = now_fn
        self.block_booked_slots = block_booked_slots

    def submit(
        self,
        actor: StaffMember,
        leave_type: LeaveType | str,
        start_date: date,
        end_date: date,
        reason: str,
        is_emergency: bool = False,
        covering_staff_ids: list[str] | None = None,
    ) -> tuple[LeaveRequest, list[Notification]]:
        require_role(actor, *STAFF_ROLES)
        covering_staff_ids = list(dict.fromkeys(covering_staff_ids or []))
        try:
            leave = LeaveRequest(
                doctor_id=actor.id,
                leave_type=leave_type,
                start_date=start_date,
                end_date=end_date,
                reason=reason,
                is_emergency=is_emergency,
                covering_staff=[
                    CoveringStaff(staff_id=staff_id) for staff_id in covering_staff_ids
                ],
            )
        except ValidationError as e:
            raise InvalidInputError.from_validation(e) from e

        if not is_emergency and not covering_staff_ids:
            raise InvalidInputError(
                "Please propose at least one covering colleague for "
                "non-emergency leave",
                [{"field": "covering_staff_ids", "message": "at least one required"}],
            )
        for staff_id in covering_staff_ids:
            if staff_id == actor.id or self.directory.find(staff_id) is None:
                raise InvalidInputError(
                    "Validation failed",
                    [
                        {
                            "field": "covering_staff_ids",
                            "message": f"{staff_id} cannot cover this leave",
                        }
                    ],
                )

        with self.db.locked():
            if self.leaves.overlapping(actor.id, leave.date_set, OPEN_STATUSES):
                logger.warning(
                    "leave for %s over %s overlaps an open request",
                    actor.id,
                    leave.date_set,
                )
                raise BusinessRuleError(
                    "You already have a leave request for overlapping dates"
                )
            self.leaves.put(leave)

        logger.info(
            "leave %s submitted by %s (%s, %s)",
            leave.id,
            actor.id,
            leave.leave_type,
            leave.date_set,
        )
        events = [
            Notification(
                recipient_id=admin.id,
                content=(
                    f"{actor.name} has submitted a {leave.leave_type} leave "
                    f"request for {leave.date_set}"
                ),
            )
            for admin in self.directory.admins()
        ]
        events += [
            Notification(
                recipient_id=staff_id,
                content=f"{actor.name} requested coverage for {leave.date_set}",
            )
            for staff_id in covering_staff_ids
        ]
        return leave, events

    def process(
        self,
        request_id: str,
        actor: StaffMember,
        decision: LeaveStatus | str,
        rejection_reason: str | None = None,
        *,
        block_booked_slots: bool | None = None,
    ) -> tuple[LeaveRequest, list[Notification]]:
        require_admin(actor)
        if decision not in (LeaveStatus.APPROVED, LeaveStatus.REJECTED):
            raise InvalidInputError(
                "Status must be either approved or rejected",
                [{"field": "decision", "message": f"invalid decision {decision!r}"}],
            )
        decision = LeaveStatus(decision)
        leave = self.leaves.get(request_id)
        now = self.now_fn()

        if decision == LeaveStatus.REJECTED:
            leave = self.leaves.mutate(
                request_id,
                lambda r: lifecycle.reject_leave(r, actor.id, now, rejection_reason),
            )
            content = f"Your {leave.leave_type} leave request has been rejected"
            if rejection_reason:
                content += f". Reason: {rejection_reason}"
            logger.info("leave %s rejected by %s", leave.id, actor.id)
            return leave, [Notification(recipient_id=leave.doctor_id, content=content)]

        # fail before touching any slot
        lifecycle.approve_leave(leave, actor.id, now)
        if block_booked_slots is None:
            block_booked_slots = self.block_booked_slots
        booked = self._booked_slots(leave)
        if booked and not block_booked_slots:
            logger.warning(
                "leave %s covers %d booked slot(s); approval refused",
                leave.id,
                len(booked),
            )
            raise BusinessRuleError(
                f"{len(booked)} slot(s) in the leave range already have bookings; "
                "reschedule them or approve with block_booked_slots"
            )

        self.slots.block_range(leave.doctor_id, leave.date_set, leave.block_reason)
        leave = self.leaves.mutate(
            request_id, lambda r: lifecycle.approve_leave(r, actor.id, now)
        )
        logger.info("leave %s approved by %s", leave.id, actor.id)
        events = [
            Notification(
                recipient_id=leave.doctor_id,
                content=f"Your {leave.leave_type} leave request has been approved",
            )
        ]
        leave, coverage_events = self._assign_coverage(leave)
        return leave, events + coverage_events

    def cancel(
        self,
        request_id: str,
        actor: StaffMember,
        reason: str | None = None,
    ) -> tuple[LeaveRequest, list[Notification]]:
        leave = self.leaves.get(request_id)
        by_requester = leave.doctor_id == actor.id
        if not by_requester and not is_admin(actor):
            raise PermissionDeniedError("Unauthorized to cancel this leave request")
        if leave.status == LeaveStatus.CANCELLED:
            raise BusinessRuleError("Leave request is already cancelled")

        if leave.status == LeaveStatus.APPROVED:
            self.slots.unblock_range(
                leave.doctor_id, leave.date_set, leave.block_reason
            )
            self.slot_store.withdraw_cover(leave.id, COVER_WITHDRAWN)
        leave = self.leaves.mutate(
            request_id, lambda r: lifecycle.cancel_leave(r, reason)
        )
        logger.info("leave %s cancelled by %s", leave.id, actor.id)

        suffix = f". Reason: {reason}" if reason else ""
        if by_requester:
            events = [
                Notification(
                    recipient_id=admin.id,
                    content=(
                        f"{actor.name} has cancelled their leave request{suffix}"
                    ),
                )
                for admin in self.directory.admins()
            ]
        else:
            events = [
                Notification(
                    recipient_id=leave.doctor_id,
                    content=(
                        f"Your leave request has been cancelled by {actor.name}{suffix}"
                    ),
                )
            ]
        return leave, events

    def list_for(
        self,
        actor: StaffMember,
        doctor_id: str | None = None,
        status: LeaveStatus | None = None,
    ) -> list[LeaveRequest]:
        if is_admin(actor):
            leaves = (
                self.leaves.for_doctor(doctor_id) if doctor_id else self.leaves.all()
            )
        else:
            leaves = self.leaves.for_doctor(actor.id)
        if status is not None:
            leaves = [r for r in leaves if r.status == status]
        return leaves

    def statistics(
        self,
        actor: StaffMember,
        year: int | None = None,
        doctor_id: str | None = None,
    ) -> LeaveStatistics:
        """
        Approved leave per type for leaves starting in ``year``, largest
        total first. Staff only ever see their own figures.
        """
        if year is None:
            year = self.now_fn().year
        if not is_admin(actor):
            doctor_id = actor.id
        leaves = [
            r
            for r in self.list_for(actor, doctor_id)
            if r.start_date.year == year
        ]
        totals: dict[LeaveType, LeaveTypeTotal] = {}
        for r in leaves:
            if r.status != LeaveStatus.APPROVED:
                continue
            total = totals.get(r.leave_type) or LeaveTypeTotal(
                leave_type=r.leave_type, count=0, total_days=0
            )
            totals[r.leave_type] = total.model_copy(
                update={
                    "count": total.count + 1,
                    "total_days": total.total_days + len(r.date_set),
                }
            )
        by_type = sorted(
            totals.values(), key=lambda t: (-t.total_days, t.leave_type)
        )
        return LeaveStatistics(
            year=year,
            doctor_id=doctor_id,
            by_type=by_type,
            total_leaves=sum(t.count for t in by_type),
            pending_leaves=sum(1 for r in leaves if r.status == LeaveStatus.PENDING),
        )

    def coverage_requests(self, actor: StaffMember) -> list[LeaveRequest]:
        return [
            r
            for r in self.leaves.all()
            if r.status in OPEN_STATUSES
            and any(
                c.staff_id == actor.id and c.status == CoverageStatus.REQUESTED
                for c in r.covering_staff
            )
        ]

    def respond_coverage(
        self,
        request_id: str,
        actor: StaffMember,
        decision: CoverageStatus | str,
        shift_date: date | None = None,
    ) -> tuple[LeaveRequest, list[Notification]]:
        if decision not in (CoverageStatus.ACCEPTED, CoverageStatus.DECLINED):
            raise InvalidInputError(
                "Invalid decision",
                [{"field": "decision", "message": f"invalid decision {decision!r}"}],
            )
        decision = CoverageStatus(decision)
        leave = self.leaves.get(request_id)
        if shift_date is not None and shift_date not in leave.date_set:
            raise InvalidInputError(
                "Validation failed",
                [{"field": "shift_date", "message": "date is outside the leave"}],
            )

        def _respond(r: LeaveRequest) -> LeaveRequest:
            entries, updated = [], False
            for entry in r.covering_staff:
                mine = (
                    entry.staff_id == actor.id
                    and entry.status == CoverageStatus.REQUESTED
                    and (
                        shift_date is None
                        or entry.shift_date is None
                        or entry.shift_date == shift_date
                    )
                )
                if mine:
                    entry = entry.model_copy(
                        update={
                            "status": decision,
                            "shift_date": entry.shift_date or shift_date,
                        }
                    )
                    updated = True
                entries.append(entry)
            if not updated:
                raise BusinessRuleError(
                    "No matching pending coverage found to respond to"
                )
            return r.model_copy(update={"covering_staff": entries})

        leave = self.leaves.mutate(request_id, _respond)
        logger.info("coverage %s by %s for leave %s", decision, actor.id, leave.id)
        on = f" for {shift_date.isoformat()}" if shift_date else ""
        events = [
            Notification(
                recipient_id=leave.doctor_id,
                content=f"Your coverage request was {decision} by a colleague{on}.",
            )
        ]
        if (
            decision == CoverageStatus.ACCEPTED
            and leave.status == LeaveStatus.APPROVED
        ):
            leave, assigned = self._assign_coverage(leave)
            events += assigned
        return leave, events

    def record_coverage(self, request_id: str, staff_id: str, day: date) -> bool:
        """
        Add an accepted covering entry for ``staff_id`` on ``day`` unless one is
        already recorded. Returns True when an entry was added.
        """
        added = False

        def _add(r: LeaveRequest) -> LeaveRequest:
            nonlocal added
            if _is_covered_by(r, staff_id, day):
                return r
            added = True
            entry = CoveringStaff(
                staff_id=staff_id, shift_date=day, status=CoverageStatus.ACCEPTED
            )
            return r.model_copy(update={"covering_staff": [*r.covering_staff, entry]})

        self.leaves.mutate(request_id, _add)
        return added

    def _booked_slots(self, leave: LeaveRequest) -> list[TimeSlot]:
        return [
            slot
            for day in leave.date_set
            for slot in self.slots.for_doctor_on(leave.doctor_id, day)
            if slot.booked_patients > 0 and not slot.is_blocked
        ]

    def _assign_coverage(
        self, leave: LeaveRequest
    ) -> tuple[LeaveRequest, list[Notification]]:
        """
        Give every leave date to an accepted colleague: dated acceptances
        first, then undated acceptances in turn. The coverer gets open slots
        mirroring the leave-taker's shifts on that date.
        """
        accepted = [
            c for c in leave.covering_staff if c.status == CoverageStatus.ACCEPTED
        ]
        dated: dict[date, str] = {}
        for c in accepted:
            if c.shift_date is not None:
                dated.setdefault(c.shift_date, c.staff_id)
        general = list(
            dict.fromkeys(c.staff_id for c in accepted if c.shift_date is None)
        )
        if not dated and not general:
            return leave, []

        events = []
        turn = 0
        for day in leave.date_set:
            staff_id = dated.get(day)
            if staff_id is None:
                if not general:
                    continue
                staff_id = general[turn % len(general)]
                turn += 1
            added = self.record_coverage(leave.id, staff_id, day)
            opened = self.slot_store.cover_for_leave(leave, day, staff_id)
            if added or opened:
                events.append(
                    Notification(
                        recipient_id=staff_id,
                        content=(
                            f"You have been assigned to cover on {day.isoformat()} "
                            "for a colleague's approved leave."
                        ),
                    )
                )
        return self.leaves.get(leave.id), events


def _is_covered_by(leave: LeaveRequest, staff_id: str, day: date) -> bool:
    return any(
        c.staff_id == staff_id
        and c.shift_date == day
        and c.status == CoverageStatus.ACCEPTED
        for c in leave.covering_staff
    )
