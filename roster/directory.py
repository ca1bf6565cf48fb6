"""
Staff directory lookups and the role gate.

Identity itself belongs to the authentication layer; this module only answers
"who is this, which department/specialization, which role".
"""

import logging

from roster.errors import NotFoundError, PermissionDeniedError
from roster.models import Role, StaffMember
from roster.repositories import Database, StaffRepository

logger = logging.getLogger(__name__)

STAFF_ROLES = (Role.STAFF, Role.ADMIN)


def require_role(actor: StaffMember, *roles: Role) -> None:
    if actor.role not in roles:
        logger.warning("%s (%s) denied: needs one of %s", actor.id, actor.role, roles)
        allowed = " or ".join(str(r) for r in roles)
        raise PermissionDeniedError(f"Only {allowed} users may do this")


def require_admin(actor: StaffMember) -> None:
    require_role(actor, Role.ADMIN)


def is_admin(actor: StaffMember) -> bool:
    return actor.role == Role.ADMIN


class StaffDirectory:
    def __init__(self, db: Database) -> None:
        self.repo = StaffRepository(db)

    def register(self, member: StaffMember) -> StaffMember:
        return self.repo.put(member)

    def find(self, staff_id: str) -> StaffMember | None:
        return self.repo.find(staff_id)

    def get(self, staff_id: str) -> StaffMember:
        member = self.repo.find(staff_id)
        if member is None:
            raise NotFoundError("Staff member", staff_id)
        return member

    def admins(self) -> list[StaffMember]:
        return [m for m in self.repo.all() if m.role == Role.ADMIN]

    @staticmethod
    def share_team(a: StaffMember, b: StaffMember) -> bool:
        """Same department or same specialization (blank values never match)."""
        if a.department and a.department == b.department:
            return True
        return bool(a.specialization) and a.specialization == b.specialization
