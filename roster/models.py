"""
Domain models for shifts, time slots and the three coordinators.
"""

from datetime import UTC, date, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from roster import config
from roster.dates import DateSet
from roster.timeofday import TIME_PATTERN, to_minutes


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


class Role(StrEnum):
    ADMIN = "admin"
    STAFF = "staff"
    PATIENT = "patient"


class Weekday(StrEnum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return list(cls)[day.weekday()]


SLOT_DURATIONS = (15, 30, 45, 60)


class StaffMember(BaseModel):
    id: str
    name: str
    role: Role
    department: str | None = None
    specialization: str | None = None


class BreakWindow(BaseModel):
    start: str = Field(pattern=TIME_PATTERN)
    end: str = Field(pattern=TIME_PATTERN)

    @model_validator(mode="after")
    def _ordered(self) -> "BreakWindow":
        if to_minutes(self.end) <= to_minutes(self.start):
            raise ValueError("break end must be after break start")
        return self


class ShiftDefinition(BaseModel):
    """What a staff member submits; validated before anything is stored."""

    title: str = Field(min_length=1, max_length=100)
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)
    days_of_week: list[Weekday]
    max_patients_per_hour: int = Field(
        default=config.DEFAULT_MAX_PATIENTS_PER_HOUR, ge=1, le=20
    )
    slot_duration: int = config.DEFAULT_SLOT_DURATION
    department: str = config.DEFAULT_DEPARTMENT
    break_time: BreakWindow | None = None
    special_notes: str | None = Field(default=None, max_length=500)

    @field_validator("slot_duration")
    @classmethod
    def _allowed_duration(cls, v: int) -> int:
        if v not in SLOT_DURATIONS:
            raise ValueError(f"slot_duration must be one of {SLOT_DURATIONS}")
        return v

    @field_validator("days_of_week")
    @classmethod
    def _non_empty_days(cls, v: list[Weekday]) -> list[Weekday]:
        if not v:
            raise ValueError("at least one weekday is required")
        # keep calendar order, drop duplicates
        return [d for d in Weekday if d in v]

    @model_validator(mode="after")
    def _window(self) -> "ShiftDefinition":
        start, end = to_minutes(self.start_time), to_minutes(self.end_time)
        if end <= start:
            raise ValueError("end_time must be after start_time")
        if self.break_time is not None:
            b_start = to_minutes(self.break_time.start)
            b_end = to_minutes(self.break_time.end)
            if b_start < start or b_end > end:
                raise ValueError("break_time must lie within the shift window")
        return self


class Shift(ShiftDefinition):
    id: str = Field(default_factory=new_id)
    doctor_id: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end_time)

    def runs_on(self, day: date) -> bool:
        return Weekday.of(day) in self.days_of_week

    def overlaps(self, other: "Shift") -> bool:
        return (
            self.start_minutes < other.end_minutes
            and other.start_minutes < self.end_minutes
        )


class TimeSlot(BaseModel):
    id: str = Field(default_factory=new_id)
    shift_id: str
    doctor_id: str
    date: date
    start_time: str
    end_time: str
    max_patients: int = Field(ge=1)
    booked_patients: int = Field(default=0, ge=0)
    is_available: bool = True
    is_blocked: bool = False
    block_reason: str | None = None
    appointments: list[str] = Field(default_factory=list)
    overtime_id: str | None = None
    covering_leave_id: str | None = None

    @property
    def is_full(self) -> bool:
        return self.booked_patients >= self.max_patients

    @property
    def status(self) -> str:
        if self.is_blocked:
            return "blocked"
        if self.is_full:
            return "full"
        return "available"


class LeaveType(StrEnum):
    SICK = "sick"
    VACATION = "vacation"
    PERSONAL = "personal"
    EMERGENCY = "emergency"
    MATERNITY = "maternity"
    PATERNITY = "paternity"
    BEREAVEMENT = "bereavement"


class LeaveStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class CoverageStatus(StrEnum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class CoveringStaff(BaseModel):
    staff_id: str
    shift_date: date | None = None
    status: CoverageStatus = CoverageStatus.REQUESTED


class LeaveRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    doctor_id: str
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str = Field(min_length=10, max_length=500)
    is_emergency: bool = False
    status: LeaveStatus = LeaveStatus.PENDING
    approved_by: str | None = None
    approval_date: datetime | None = None
    rejection_reason: str | None = Field(default=None, max_length=300)
    cancellation_reason: str | None = None
    covering_staff: list[CoveringStaff] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _range(self) -> "LeaveRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self

    @property
    def block_reason(self) -> str:
        return f"{self.leave_type} leave"

    @property
    def date_set(self) -> DateSet:
        return DateSet(self.start_date, self.end_date)


class LeaveTypeTotal(BaseModel):
    leave_type: LeaveType
    count: int
    total_days: int


class LeaveStatistics(BaseModel):
    year: int
    doctor_id: str | None = None
    by_type: list[LeaveTypeTotal]
    total_leaves: int
    pending_leaves: int


class OvertimeStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Overtime(BaseModel):
    id: str = Field(default_factory=new_id)
    doctor_id: str
    shift_id: str
    date: date
    hours: float = Field(ge=0.25, le=24)
    reason: str | None = Field(default=None, max_length=500)
    status: OvertimeStatus = OvertimeStatus.PENDING
    requested_at: datetime = Field(default_factory=utcnow)
    decision_at: datetime | None = None
    admin_comment: str | None = Field(default=None, max_length=500)


class SwapType(StrEnum):
    TRADE = "trade"
    COVER = "cover"


class PartnerDecision(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class SwapStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ShiftSwap(BaseModel):
    id: str = Field(default_factory=new_id)
    requester_id: str
    swap_with_id: str
    original_shift_id: str
    requested_shift_id: str | None = None
    swap_type: SwapType = SwapType.TRADE
    swap_date: date | None = None
    swap_start_date: date | None = None
    swap_end_date: date | None = None
    partner_decision: PartnerDecision = PartnerDecision.PENDING
    partner_decision_at: datetime | None = None
    status: SwapStatus = SwapStatus.PENDING
    reason: str | None = Field(default=None, max_length=500)
    admin_comment: str | None = Field(default=None, max_length=500)
    requested_at: datetime = Field(default_factory=utcnow)
    decision_at: datetime | None = None

    @model_validator(mode="after")
    def _dates(self) -> "ShiftSwap":
        # neither or both of the date forms given
        DateSet.from_fields(
            day=self.swap_date, start=self.swap_start_date, end=self.swap_end_date
        )
        return self

    @property
    def date_set(self) -> DateSet:
        return DateSet.from_fields(
            day=self.swap_date, start=self.swap_start_date, end=self.swap_end_date
        )

    def involves(self, staff_id: str) -> bool:
        return staff_id in (self.requester_id, self.swap_with_id)


class Notification(BaseModel):
    """Outbound record for the delivery subsystem."""

    id: str = Field(default_factory=new_id)
    recipient_id: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)
