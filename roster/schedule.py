"""
Weekly view of who effectively works which shift, after approved swaps,
approved leave and approved overtime are taken into account.
"""

from collections import defaultdict
from datetime import date, timedelta

from pydantic import BaseModel

from roster.dates import DateSet
from roster.models import (
    LeaveStatus,
    OvertimeStatus,
    SwapStatus,
    SwapType,
    Weekday,
)
from roster.repositories import (
    Database,
    LeaveRepository,
    OvertimeRepository,
    ShiftRepository,
    SwapRepository,
)
from roster.slots import overtime_window
from roster.timeofday import to_hhmm


class ScheduleEntry(BaseModel):
    id: str
    shift_id: str
    doctor_id: str
    date: date
    day_name: Weekday
    start_time: str
    end_time: str
    break_start: str | None = None
    break_end: str | None = None
    max_patients: int
    slot_duration: int
    department: str
    title: str
    status: str = "available"


class WeeklySchedule:
    def __init__(self, db: Database) -> None:
        self.shifts = ShiftRepository(db)
        self.leaves = LeaveRepository(db)
        self.overtime = OvertimeRepository(db)
        self.swaps = SwapRepository(db)

    def week(self, start: date, doctor_id: str | None = None) -> list[ScheduleEntry]:
        week = DateSet(start, start + timedelta(days=6))

        on_leave = {
            (r.doctor_id, day)
            for r in self.leaves.all()
            if r.status == LeaveStatus.APPROVED and r.date_set.overlaps(week)
            for day in r.date_set
        }

        overtime_hours: dict[tuple[str, date, str], float] = defaultdict(float)
        for o in self.overtime.all():
            if o.status == OvertimeStatus.APPROVED and o.date in week:
                overtime_hours[(o.shift_id, o.date, o.doctor_id)] += o.hours

        # (shift id, date) -> doctor working it after the swap
        swapped: dict[tuple[str, date], str] = {}
        for s in self.swaps.all():
            if s.status != SwapStatus.APPROVED or not s.date_set.overlaps(week):
                continue
            requested = (
                self.shifts.find(s.requested_shift_id)
                if s.swap_type == SwapType.TRADE and s.requested_shift_id
                else None
            )
            for day in s.date_set:
                swapped[(s.original_shift_id, day)] = s.swap_with_id
                if requested is not None and requested.runs_on(day):
                    swapped[(requested.id, day)] = s.requester_id

        entries = []
        for day in week:
            for shift in self.shifts.active():
                if not shift.runs_on(day):
                    continue
                effective = swapped.get((shift.id, day), shift.doctor_id)
                if doctor_id is not None and effective != doctor_id:
                    continue
                if (effective, day) in on_leave:
                    continue

                entry = ScheduleEntry(
                    id=f"{shift.id}_{day.isoformat()}",
                    shift_id=shift.id,
                    doctor_id=effective,
                    date=day,
                    day_name=Weekday.of(day),
                    start_time=shift.start_time,
                    end_time=shift.end_time,
                    break_start=shift.break_time.start if shift.break_time else None,
                    break_end=shift.break_time.end if shift.break_time else None,
                    max_patients=shift.max_patients_per_hour,
                    slot_duration=shift.slot_duration,
                    department=shift.department,
                    title=shift.title,
                )
                entries.append(entry)

                hours = overtime_hours.get((shift.id, day, effective))
                if hours:
                    ot_start, ot_end = overtime_window(shift, hours)
                    entries.append(
                        entry.model_copy(
                            update={
                                "id": f"{entry.id}_ot",
                                "start_time": to_hhmm(ot_start),
                                "end_time": to_hhmm(ot_end),
                                "break_start": None,
                                "break_end": None,
                                "title": f"{shift.title} (Overtime)",
                                "status": "overtime",
                            }
                        )
                    )
        return entries
