import logging
from typing import Any

from pydantic import ValidationError

from roster.directory import STAFF_ROLES, is_admin, require_admin, require_role
from roster.errors import InvalidInputError, PermissionDeniedError
from roster.models import Notification, Shift, ShiftDefinition, StaffMember
from roster.repositories import Database, ShiftRepository
from roster.slots import SlotStore

logger = logging.getLogger(__name__)

# fields a patch may not touch
_PROTECTED = {"id", "doctor_id", "is_active", "created_at"}


class ShiftRegistry:
    """Owns shift definitions; deleting one blocks its future slots."""

    def __init__(self, db: Database, slot_store: SlotStore) -> None:
        self.shifts = ShiftRepository(db)
        self.slot_store = slot_store

    def create(
        self,
        actor: StaffMember,
        definition: ShiftDefinition | dict[str, Any],
        staff_id: str | None = None,
    ) -> tuple[Shift, list[Notification]]:
        require_role(actor, *STAFF_ROLES)
        owner_id = staff_id or actor.id
        if owner_id != actor.id:
            require_admin(actor)
        definition = _validate(definition)

        shift = self.shifts.put(
            Shift(doctor_id=owner_id, **definition.model_dump())
        )
        logger.info("shift %s created for %s by %s", shift.id, owner_id, actor.id)
        return shift, [
            Notification(
                recipient_id=owner_id,
                content=f'Shift "{shift.title}" has been created.',
            )
        ]

    def update(
        self, shift_id: str, actor: StaffMember, patch: dict[str, Any]
    ) -> Shift:
        shift = self.shifts.get(shift_id)
        if shift.doctor_id != actor.id:
            raise PermissionDeniedError("Only the shift owner may update it")
        if not shift.is_active:
            raise InvalidInputError("Deleted shifts cannot be updated")
        bad = _PROTECTED.intersection(patch)
        if bad:
            raise InvalidInputError(
                "Validation failed",
                [{"field": f, "message": "field is read-only"} for f in sorted(bad)],
            )

        current = shift.model_dump(include=set(ShiftDefinition.model_fields))
        definition = _validate({**current, **patch})
        fields = {
            name: getattr(definition, name)
            for name in ShiftDefinition.model_fields
        }
        shift = self.shifts.put(shift.model_copy(update=fields))
        logger.info("shift %s updated by %s", shift.id, actor.id)
        return shift

    def delete(
        self, shift_id: str, actor: StaffMember
    ) -> tuple[Shift, list[Notification]]:
        shift = self.shifts.get(shift_id)
        by_admin = shift.doctor_id != actor.id
        if by_admin and not is_admin(actor):
            raise PermissionDeniedError("Only the shift owner may delete it")

        shift = self.shifts.put(shift.model_copy(update={"is_active": False}))
        reason = "Shift deleted by admin" if by_admin else "Shift deleted"
        blocked = self.slot_store.block_future_for_shift(shift.id, reason)
        logger.info(
            "shift %s deleted by %s, %d future slot(s) blocked",
            shift.id,
            actor.id,
            blocked,
        )
        return shift, [
            Notification(
                recipient_id=shift.doctor_id,
                content=f'Your shift "{shift.title}" has been deleted.',
            )
        ]

    def get(self, shift_id: str) -> Shift:
        return self.shifts.get(shift_id)

    def list_for(self, staff_id: str) -> list[Shift]:
        return self.shifts.active(staff_id)

    def list_all(self, actor: StaffMember) -> list[Shift]:
        require_admin(actor)
        return self.shifts.active()


def _validate(definition: ShiftDefinition | dict[str, Any]) -> ShiftDefinition:
    if isinstance(definition, ShiftDefinition):
        return definition
    try:
        return ShiftDefinition.model_validate(definition)
    except ValidationError as e:
        raise InvalidInputError.from_validation(e) from e
