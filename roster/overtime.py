import logging
from collections.abc import Callable
from datetime import date, datetime

from pydantic import ValidationError

from roster import lifecycle
from roster.directory import STAFF_ROLES, is_admin, require_admin, require_role
from roster.errors import BusinessRuleError, InvalidInputError, PermissionDeniedError
from roster.models import (
    Notification,
    Overtime,
    OvertimeStatus,
    StaffMember,
    TimeSlot,
)
from roster.repositories import (
    Database,
    LeaveRepository,
    OvertimeRepository,
    ShiftRepository,
    SlotRepository,
)
from roster.slots import block_for_leave, generate_overtime_slots

logger = logging.getLogger(__name__)


class OvertimeCoordinator:
    def __init__(self, db: Database, now_fn: Callable[[], datetime]) -> None:
        self.overtime = OvertimeRepository(db)
        self.leaves = LeaveRepository(db)
        self.shifts = ShiftRepository(db)
        self.slots = SlotRepository(db)
        self.now_fn = now_fn

    def create(
        self,
        actor: StaffMember,
        shift_id: str,
        day: date,
        hours: float,
        reason: str | None = None,
    ) -> tuple[Overtime, list[Notification]]:
        require_role(actor, *STAFF_ROLES)
        shift = self.shifts.get(shift_id)
        if shift.doctor_id != actor.id:
            raise PermissionDeniedError(
                "Overtime can only be requested on your own shift"
            )
        if not shift.is_active:
            raise BusinessRuleError("Overtime cannot be requested on a deleted shift")
        if not shift.runs_on(day):
            raise BusinessRuleError(
                f'Shift "{shift.title}" does not run on {day.isoformat()}'
            )
        try:
            overtime = Overtime(
                doctor_id=actor.id,
                shift_id=shift.id,
                date=day,
                hours=hours,
                reason=reason,
            )
        except ValidationError as e:
            raise InvalidInputError.from_validation(e) from e

        self.overtime.put(overtime)
        logger.info(
            "overtime %s requested by %s: %s h on %s",
            overtime.id,
            actor.id,
            hours,
            day,
        )
        return overtime, [
            Notification(
                recipient_id=actor.id,
                content=(
                    f"Your overtime request for shift on {day.isoformat()} "
                    f"({hours:g} hours) has been submitted."
                ),
            )
        ]

    def update_status(
        self,
        overtime_id: str,
        actor: StaffMember,
        decision: OvertimeStatus | str,
        comment: str | None = None,
    ) -> tuple[Overtime, list[Notification]]:
        require_admin(actor)
        if decision not in (OvertimeStatus.APPROVED, OvertimeStatus.REJECTED):
            raise InvalidInputError(
                "Invalid status",
                [{"field": "decision", "message": f"invalid decision {decision!r}"}],
            )
        decision = OvertimeStatus(decision)
        overtime = self.overtime.get(overtime_id)
        now = self.now_fn()
        lifecycle.decide_overtime(overtime, decision, now, comment)

        if decision == OvertimeStatus.APPROVED:
            self.extend(overtime)
        overtime = self.overtime.mutate(
            overtime_id,
            lambda o: lifecycle.decide_overtime(o, decision, now, comment),
        )
        logger.info("overtime %s %s by %s", overtime.id, decision, actor.id)

        content = (
            f"Your overtime request for shift on {overtime.date.isoformat()} "
            f"has been {decision}"
        )
        if comment:
            content += f": {comment}"
        return overtime, [
            Notification(recipient_id=overtime.doctor_id, content=content + ".")
        ]

    def extend(self, overtime: Overtime) -> list[TimeSlot]:
        """Append the extension slots after the shift's end on that one date."""
        shift = self.shifts.get(overtime.shift_id)
        slots = generate_overtime_slots(
            shift, overtime.date, overtime.hours, overtime.doctor_id, overtime.id
        )
        slots = block_for_leave(slots, self.leaves)
        created, slots = self.slots.insert_extension(f"overtime:{overtime.id}", slots)
        if created:
            logger.info(
                "added %d overtime slot(s) to shift %s on %s",
                len(slots),
                shift.id,
                overtime.date,
            )
        return slots

    def list_for(self, actor: StaffMember) -> list[Overtime]:
        if is_admin(actor):
            return self.overtime.all()
        return self.overtime.for_doctor(actor.id)
