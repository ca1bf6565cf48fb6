import asyncio
import logging
from datetime import UTC, date, datetime
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from roster import config
from roster.database import InMemoryKeyValueDatabase
from roster.directory import StaffDirectory, is_admin
from roster.errors import (
    BusinessRuleError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    SchedulingError,
)
from roster.leave import LeaveCoordinator
from roster.models import (
    CoverageStatus,
    LeaveStatus,
    LeaveType,
    Notification,
    OvertimeStatus,
    PartnerDecision,
    ShiftDefinition,
    StaffMember,
    SwapStatus,
    SwapType,
)
from roster.notifier import send_notification
from roster.overtime import OvertimeCoordinator
from roster.repositories import NotificationRepository
from roster.schedule import WeeklySchedule
from roster.shifts import ShiftRegistry
from roster.slots import SlotStore
from roster.swaps import SwapCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


class ShiftCreateRequest(ShiftDefinition):
    staff_id: str | None = None


class GenerateSlotsRequest(BaseModel):
    date: date
    doctor_id: str | None = None


class BookingRequest(BaseModel):
    appointment_id: str


class BlockRequest(BaseModel):
    blocked: bool
    reason: str | None = None


class LeaveSubmitRequest(BaseModel):
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str
    is_emergency: bool = False
    covering_staff_ids: list[str] = []


class LeaveDecisionRequest(BaseModel):
    decision: LeaveStatus
    rejection_reason: str | None = None
    block_booked_slots: bool | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class CoverageResponseRequest(BaseModel):
    decision: CoverageStatus
    shift_date: date | None = None


class OvertimeCreateRequest(BaseModel):
    shift_id: str
    date: date
    hours: float
    reason: str | None = None


class OvertimeDecisionRequest(BaseModel):
    decision: OvertimeStatus
    comment: str | None = None


class SwapCreateRequest(BaseModel):
    swap_with_id: str
    original_shift_id: str
    swap_type: SwapType = SwapType.TRADE
    requested_shift_id: str | None = None
    swap_date: date | None = None
    swap_start_date: date | None = None
    swap_end_date: date | None = None
    reason: str | None = None


class PartnerResponseRequest(BaseModel):
    decision: PartnerDecision


class SwapDecisionRequest(BaseModel):
    decision: SwapStatus
    comment: str | None = None


async def current_actor(
    request: Request, x_staff_id: str | None = Header(default=None)
) -> StaffMember:
    if not x_staff_id:
        raise HTTPException(status_code=401, detail="Missing X-Staff-Id header")
    actor = request.app.state.directory.find(x_staff_id)
    if actor is None:
        raise HTTPException(status_code=401, detail="Unknown staff member")
    return actor


async def dispatch(request: Request, events: list[Notification]) -> None:
    outbox: NotificationRepository = request.app.state.notifications
    for event in events:
        outbox.put(event)
    if events:
        logger.info("dispatching %d notification(s)", len(events))
    await asyncio.gather(
        *(send_notification(e.recipient_id, e.content) for e in events)
    )


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/shifts", status_code=201)
async def create_shift(
    body: ShiftCreateRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    registry: ShiftRegistry = request.app.state.registry
    definition = ShiftDefinition.model_validate(
        body.model_dump(exclude={"staff_id"})
    )
    shift, events = registry.create(actor, definition, staff_id=body.staff_id)
    await dispatch(request, events)
    return {"status": "created", "shift": shift}


@router.get("/shifts")
async def list_shifts(
    request: Request,
    staff_id: str | None = None,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    registry: ShiftRegistry = request.app.state.registry
    if staff_id is None and is_admin(actor):
        shifts = registry.list_all(actor)
    else:
        shifts = registry.list_for(staff_id or actor.id)
    return {"shifts": shifts}


@router.patch("/shifts/{shift_id}")
async def update_shift(
    shift_id: str,
    patch: dict[str, Any],
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    shift = request.app.state.registry.update(shift_id, actor, patch)
    return {"status": "updated", "shift": shift}


@router.delete("/shifts/{shift_id}")
async def delete_shift(
    shift_id: str,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    shift, events = request.app.state.registry.delete(shift_id, actor)
    await dispatch(request, events)
    return {"status": "deleted", "shift": shift}


@router.post("/slots/generate")
async def generate_slots(
    body: GenerateSlotsRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    slot_store: SlotStore = request.app.state.slot_store
    doctor_id = body.doctor_id or actor.id
    slots = slot_store.generate_for_date(doctor_id, body.date)
    return {"doctor_id": doctor_id, "date": body.date, "slots": slots}


@router.get("/doctors/{doctor_id}/slots/{day}")
async def list_slots(
    doctor_id: str,
    day: date,
    request: Request,
    available_only: bool = False,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    slots = request.app.state.slot_store.slots_for(
        doctor_id, day, available_only=available_only
    )
    return {"doctor_id": doctor_id, "date": day, "slots": slots}


@router.post("/slots/{slot_id}/book")
async def book_slot(
    slot_id: str,
    body: BookingRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    slot = request.app.state.slot_store.book_slot(slot_id, body.appointment_id)
    return {"status": "booked", "slot": slot}


@router.post("/slots/{slot_id}/cancel")
async def cancel_booking(
    slot_id: str,
    body: BookingRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    slot = request.app.state.slot_store.cancel_booking(slot_id, body.appointment_id)
    return {"status": "released", "slot": slot}


@router.patch("/slots/{slot_id}/block")
async def toggle_block(
    slot_id: str,
    body: BlockRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    slot = request.app.state.slot_store.toggle_block(
        actor, slot_id, body.blocked, body.reason
    )
    return {"status": "blocked" if slot.is_blocked else "unblocked", "slot": slot}


@router.post("/leave", status_code=201)
async def submit_leave(
    body: LeaveSubmitRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    leave, events = request.app.state.leave.submit(
        actor,
        body.leave_type,
        body.start_date,
        body.end_date,
        body.reason,
        is_emergency=body.is_emergency,
        covering_staff_ids=body.covering_staff_ids,
    )
    await dispatch(request, events)
    return {"status": "submitted", "leave_request": leave}


@router.get("/leave")
async def list_leave(
    request: Request,
    doctor_id: str | None = None,
    status: LeaveStatus | None = None,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    leaves = request.app.state.leave.list_for(actor, doctor_id, status)
    return {"leave_requests": leaves}


@router.get("/leave/coverage")
async def list_coverage_requests(
    request: Request, actor: StaffMember = Depends(current_actor)
) -> dict:
    return {"leave_requests": request.app.state.leave.coverage_requests(actor)}


@router.get("/leave/statistics")
async def leave_statistics(
    request: Request,
    year: int | None = None,
    doctor_id: str | None = None,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    stats = request.app.state.leave.statistics(actor, year, doctor_id)
    return {"statistics": stats}


@router.post("/leave/{request_id}/decision")
async def process_leave(
    request_id: str,
    body: LeaveDecisionRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    leave, events = request.app.state.leave.process(
        request_id,
        actor,
        body.decision,
        body.rejection_reason,
        block_booked_slots=body.block_booked_slots,
    )
    await dispatch(request, events)
    return {"status": leave.status, "leave_request": leave}


@router.post("/leave/{request_id}/cancel")
async def cancel_leave(
    request_id: str,
    request: Request,
    body: CancelRequest | None = None,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    reason = body.reason if body else None
    leave, events = request.app.state.leave.cancel(request_id, actor, reason)
    await dispatch(request, events)
    return {"status": leave.status, "leave_request": leave}


@router.post("/leave/{request_id}/coverage")
async def respond_coverage(
    request_id: str,
    body: CoverageResponseRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    leave, events = request.app.state.leave.respond_coverage(
        request_id, actor, body.decision, body.shift_date
    )
    await dispatch(request, events)
    return {"status": body.decision, "leave_request": leave}


@router.post("/overtime", status_code=201)
async def create_overtime(
    body: OvertimeCreateRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    overtime, events = request.app.state.overtime.create(
        actor, body.shift_id, body.date, body.hours, body.reason
    )
    await dispatch(request, events)
    return {"status": overtime.status, "overtime": overtime}


@router.get("/overtime")
async def list_overtime(
    request: Request, actor: StaffMember = Depends(current_actor)
) -> dict:
    return {"overtime": request.app.state.overtime.list_for(actor)}


@router.post("/overtime/{overtime_id}/decision")
async def decide_overtime(
    overtime_id: str,
    body: OvertimeDecisionRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    overtime, events = request.app.state.overtime.update_status(
        overtime_id, actor, body.decision, body.comment
    )
    await dispatch(request, events)
    return {"status": overtime.status, "overtime": overtime}


@router.post("/swaps", status_code=201)
async def create_swap(
    body: SwapCreateRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    swap, events = request.app.state.swaps.create(actor, **body.model_dump())
    await dispatch(request, events)
    return {"status": swap.status, "swap": swap}


@router.get("/swaps")
async def list_swaps(
    request: Request, actor: StaffMember = Depends(current_actor)
) -> dict:
    return {"swaps": request.app.state.swaps.list_for(actor)}


@router.post("/swaps/{swap_id}/respond")
async def respond_swap(
    swap_id: str,
    body: PartnerResponseRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    swap, events = request.app.state.swaps.partner_respond(
        swap_id, actor, body.decision
    )
    await dispatch(request, events)
    return {"partner_decision": swap.partner_decision, "swap": swap}


@router.post("/swaps/{swap_id}/decision")
async def decide_swap(
    swap_id: str,
    body: SwapDecisionRequest,
    request: Request,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    swap, events = request.app.state.swaps.admin_decide(
        swap_id, actor, body.decision, body.comment
    )
    await dispatch(request, events)
    return {"status": swap.status, "swap": swap}


@router.get("/schedule/week")
async def weekly_schedule(
    request: Request,
    start: date | None = None,
    doctor_id: str | None = None,
    actor: StaffMember = Depends(current_actor),
) -> dict:
    start = start or request.app.state.now_fn().date()
    entries = request.app.state.schedule.week(start, doctor_id)
    return {"week_start": start, "schedules": entries}


@router.get("/notifications")
async def list_notifications(
    request: Request, actor: StaffMember = Depends(current_actor)
) -> dict:
    outbox: NotificationRepository = request.app.state.notifications
    return {"notifications": outbox.for_recipient(actor.id)}


_STATUS_CODES: list[tuple[type[SchedulingError], int]] = [
    (InvalidInputError, 422),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (BusinessRuleError, 409),
]


async def scheduling_error_handler(
    request: Request, exc: SchedulingError
) -> JSONResponse:
    status_code = next(
        (code for kind, code in _STATUS_CODES if isinstance(exc, kind)), 400
    )
    logger.info(
        "%s %s -> %d: %s", request.method, request.url.path, status_code, exc.message
    )
    body: dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, InvalidInputError) and exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=status_code, content=body)


def create_app() -> FastAPI:
    logging.basicConfig(level=config.LOG_LEVEL)

    app = FastAPI()
    db: InMemoryKeyValueDatabase[str, object] = InMemoryKeyValueDatabase()
    app.state.database = db

    app.state.now_fn = lambda: datetime.now(UTC)

    # resolved per call; app.state.now_fn is replaceable
    def now() -> datetime:
        return app.state.now_fn()

    def today() -> date:
        return app.state.now_fn().date()

    app.state.directory = StaffDirectory(db)
    app.state.slot_store = SlotStore(db, today)
    app.state.registry = ShiftRegistry(db, app.state.slot_store)
    app.state.leave = LeaveCoordinator(
        db,
        app.state.directory,
        app.state.slot_store,
        now,
        block_booked_slots=config.LEAVE_BLOCKS_BOOKED_SLOTS,
    )
    app.state.overtime = OvertimeCoordinator(db, now)
    app.state.swaps = SwapCoordinator(
        db, app.state.directory, app.state.slot_store, app.state.leave, now
    )
    app.state.schedule = WeeklySchedule(db)
    app.state.notifications = NotificationRepository(db)

    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.include_router(router)
    return app
