"""
Shift swaps between two staff members.

A swap is created by the requester, answered once by the partner and then
decided by an admin. Approval moves slot ownership date by date; every date is
applied independently, so re-running an interrupted approval is safe.
"""

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
from roster.leave import LeaveCoordinator
from roster.models import (
    Notification,
    PartnerDecision,
    Shift,
    ShiftSwap,
    StaffMember,
    SwapStatus,
    SwapType,
)
from roster.repositories import (
    Database,
    LeaveRepository,
    ShiftRepository,
    SwapRepository,
)
from roster.slots import SlotStore

logger = logging.getLogger(__name__)

ADMIN_DECISIONS = (SwapStatus.APPROVED, SwapStatus.REJECTED, SwapStatus.CANCELLED)


class SwapCoordinator:
    def __init__(
        self,
        db: Database,
        directory: StaffDirectory,
        slot_store: SlotStore,
        leave: LeaveCoordinator,
        now_fn: Callable[[], datetime],
    ) -> None:
        self.swaps = SwapRepository(db)
        self.shifts = ShiftRepository(db)
        self.leaves = LeaveRepository(db)
        self.directory = directory
        self.slot_store = slot_store
        self.leave = leave
        self.now_fn = now_fn

    def create(
        self,
        actor: StaffMember,
        swap_with_id: str,
        original_shift_id: str,
        swap_type: SwapType | str = SwapType.TRADE,
        requested_shift_id: str | None = None,
        swap_date: date | None = None,
        swap_start_date: date | None = None,
        swap_end_date: date | None = None,
        reason: str | None = None,
    ) -> tuple[ShiftSwap, list[Notification]]:
        require_role(actor, *STAFF_ROLES)
        try:
            swap = ShiftSwap(
                requester_id=actor.id,
                swap_with_id=swap_with_id,
                original_shift_id=original_shift_id,
                requested_shift_id=requested_shift_id,
                swap_type=swap_type,
                swap_date=swap_date,
                swap_start_date=swap_start_date,
                swap_end_date=swap_end_date,
                reason=reason,
            )
        except ValidationError as e:
            raise InvalidInputError.from_validation(e) from e

        if swap.swap_with_id == actor.id:
            raise InvalidInputError(
                "Validation failed",
                [{"field": "swap_with_id", "message": "cannot swap with yourself"}],
            )
        if swap.swap_type == SwapType.TRADE and not swap.requested_shift_id:
            raise InvalidInputError(
                "Validation failed",
                [
                    {
                        "field": "requested_shift_id",
                        "message": "a trade needs the partner's shift",
                    }
                ],
            )
        if swap.swap_type == SwapType.COVER and swap.requested_shift_id:
            raise InvalidInputError(
                "Validation failed",
                [
                    {
                        "field": "requested_shift_id",
                        "message": "a cover swap does not take a shift in return",
                    }
                ],
            )

        partner = self.directory.get(swap.swap_with_id)
        if not StaffDirectory.share_team(actor, partner):
            logger.warning(
                "swap %s -> %s refused: no shared department or specialization",
                actor.id,
                partner.id,
            )
            raise BusinessRuleError(
                "Swap partner must share your department or specialization"
            )

        original = self.shifts.get(swap.original_shift_id)
        if original.doctor_id != actor.id:
            raise PermissionDeniedError("The original shift must be your own")
        if not original.is_active:
            raise BusinessRuleError("The original shift has been deleted")
        requested = None
        if swap.requested_shift_id:
            requested = self.shifts.get(swap.requested_shift_id)
            if requested.doctor_id != partner.id:
                raise BusinessRuleError(
                    "The requested shift must belong to the swap partner"
                )
            if not requested.is_active:
                raise BusinessRuleError("The requested shift has been deleted")

        for day in swap.date_set:
            self._check_day(original, requested, partner, day)

        self.swaps.put(swap)
        logger.info(
            "swap %s created: %s %s with %s on %s",
            swap.id,
            actor.id,
            swap.swap_type,
            partner.id,
            swap.date_set,
        )
        return swap, [
            Notification(
                recipient_id=partner.id,
                content=(
                    f"{actor.name} has requested a shift swap ({swap.swap_type}) "
                    f"with you for {swap.date_set}."
                ),
            ),
            Notification(
                recipient_id=actor.id,
                content=(
                    f"Your shift swap request for {swap.date_set} has been sent "
                    f"to {partner.name}."
                ),
            ),
        ]

    def partner_respond(
        self,
        swap_id: str,
        actor: StaffMember,
        decision: PartnerDecision | str,
    ) -> tuple[ShiftSwap, list[Notification]]:
        if decision not in (PartnerDecision.ACCEPTED, PartnerDecision.DECLINED):
            raise InvalidInputError(
                "Invalid decision",
                [{"field": "decision", "message": f"invalid decision {decision!r}"}],
            )
        decision = PartnerDecision(decision)
        swap = self.swaps.get(swap_id)
        if swap.swap_with_id != actor.id:
            raise PermissionDeniedError("Only the swap partner may respond")

        now = self.now_fn()
        swap = self.swaps.mutate(
            swap_id, lambda s: lifecycle.record_partner_decision(s, decision, now)
        )
        logger.info("swap %s %s by partner %s", swap.id, decision, actor.id)

        events = [
            Notification(
                recipient_id=swap.requester_id,
                content=f"{actor.name} has {decision} your shift swap request.",
            ),
            Notification(
                recipient_id=swap.swap_with_id,
                content=f"You have {decision} a shift swap request.",
            ),
        ]
        if decision == PartnerDecision.ACCEPTED:
            events += [
                Notification(
                    recipient_id=admin.id,
                    content=f"A shift swap for {swap.date_set} awaits approval.",
                )
                for admin in self.directory.admins()
            ]
        return swap, events

    def admin_decide(
        self,
        swap_id: str,
        actor: StaffMember,
        decision: SwapStatus | str,
        comment: str | None = None,
    ) -> tuple[ShiftSwap, list[Notification]]:
        require_admin(actor)
        if decision not in ADMIN_DECISIONS:
            raise InvalidInputError(
                "Invalid status",
                [{"field": "decision", "message": f"invalid decision {decision!r}"}],
            )
        decision = SwapStatus(decision)
        swap = self.swaps.get(swap_id)
        now = self.now_fn()
        try:
            lifecycle.decide_swap(swap, decision, now, comment)
        except BusinessRuleError:
            logger.warning("swap %s cannot become %s", swap.id, decision)
            raise

        if decision == SwapStatus.APPROVED:
            self.apply(swap)
        swap = self.swaps.mutate(
            swap_id, lambda s: lifecycle.decide_swap(s, decision, now, comment)
        )
        logger.info("swap %s %s by %s", swap.id, decision, actor.id)

        suffix = f": {comment}" if comment else ""
        return swap, [
            Notification(
                recipient_id=swap.requester_id,
                content=f"Your shift swap request has been {decision}{suffix}.",
            ),
            Notification(
                recipient_id=swap.swap_with_id,
                content=(
                    f"A shift swap request involving you has been {decision}{suffix}."
                ),
            ),
        ]

    def apply(self, swap: ShiftSwap) -> None:
        """Move slot ownership for every date of an approved swap."""
        original = self.shifts.get(swap.original_shift_id)
        requested = (
            self.shifts.get(swap.requested_shift_id)
            if swap.swap_type == SwapType.TRADE and swap.requested_shift_id
            else None
        )
        for shift in filter(None, (original, requested)):
            if not shift.is_active:
                raise BusinessRuleError(
                    f'Shift "{shift.title}" was deleted after the swap was requested'
                )
        for day in swap.date_set:
            self._apply_day(swap, original, requested, day)

    def list_for(self, actor: StaffMember) -> list[ShiftSwap]:
        if is_admin(actor):
            return self.swaps.all()
        return self.swaps.involving(actor.id)

    def _check_day(
        self,
        original: Shift,
        requested: Shift | None,
        partner: StaffMember,
        day: date,
    ) -> None:
        if not original.runs_on(day):
            raise BusinessRuleError(
                f'Shift "{original.title}" does not run on {day.isoformat()}'
            )
        if requested is not None and requested.runs_on(day):
            return
        clash = next(
            (s for s in self.shifts.active_on(partner.id, day) if s.overlaps(original)),
            None,
        )
        if clash is not None:
            logger.warning(
                "swap refused: %s already works %s-%s on %s",
                partner.id,
                clash.start_time,
                clash.end_time,
                day,
            )
            raise BusinessRuleError(
                f"{partner.name} already has an overlapping shift "
                f'("{clash.title}") on {day.isoformat()}'
            )

    def _apply_day(
        self,
        swap: ShiftSwap,
        original: Shift,
        requested: Shift | None,
        day: date,
    ) -> None:
        requester_id, partner_id = swap.requester_id, swap.swap_with_id
        moved = 0
        if original.runs_on(day):
            self.slot_store.ensure_shift_slots(original, day)
            moved += self.slot_store.hand_over(
                original.id, day, requester_id, partner_id
            )
        else:
            logger.warning(
                "swap %s: shift %s no longer runs on %s", swap.id, original.id, day
            )

        traded = requested is not None and requested.runs_on(day)
        if traded:
            self.slot_store.ensure_shift_slots(requested, day)
            moved += self.slot_store.hand_over(
                requested.id, day, partner_id, requester_id
            )

        covered = 0
        for leave in self.leaves.approved_on(requester_id, day):
            covered += self.leave.record_coverage(leave.id, partner_id, day)
        if traded:
            for leave in self.leaves.approved_on(partner_id, day):
                covered += self.leave.record_coverage(leave.id, requester_id, day)

        logger.info(
            "swap %s applied on %s: %d slot(s) moved, %d coverage entr(ies) added",
            swap.id,
            day,
            moved,
            covered,
        )
