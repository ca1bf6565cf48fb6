from datetime import UTC, date, datetime
from types import SimpleNamespace

import pytest

from roster.database import InMemoryKeyValueDatabase
from roster.directory import StaffDirectory
from roster.leave import LeaveCoordinator
from roster.models import Role, ShiftDefinition, StaffMember
from roster.overtime import OvertimeCoordinator
from roster.schedule import WeeklySchedule
from roster.shifts import ShiftRegistry
from roster.slots import SlotStore
from roster.swaps import SwapCoordinator


def _now() -> datetime:
    return datetime.now(UTC)


def _today() -> date:
    return datetime.now(UTC).date()


@pytest.fixture
def db() -> InMemoryKeyValueDatabase[str, object]:
    return InMemoryKeyValueDatabase()


@pytest.fixture
def staff() -> SimpleNamespace:
    return SimpleNamespace(
        admin=StaffMember(id="admin-id", name="Ada Admin", role=Role.ADMIN),
        alice=StaffMember(
            id="alice-id",
            name="Alice Ongwele",
            role=Role.STAFF,
            department="Cardiology",
            specialization="Cardiology",
        ),
        bob=StaffMember(
            id="bob-id",
            name="Bob Mensah",
            role=Role.STAFF,
            department="Cardiology",
            specialization="Electrophysiology",
        ),
        carol=StaffMember(
            id="carol-id",
            name="Carol Lind",
            role=Role.STAFF,
            department="Neurology",
            specialization="Neurology",
        ),
        patient=StaffMember(id="pat-id", name="Pat Patient", role=Role.PATIENT),
    )


@pytest.fixture
def services(db, staff) -> SimpleNamespace:
    directory = StaffDirectory(db)
    for member in vars(staff).values():
        directory.register(member)
    slot_store = SlotStore(db, _today)
    leave = LeaveCoordinator(db, directory, slot_store, _now)
    return SimpleNamespace(
        db=db,
        directory=directory,
        slot_store=slot_store,
        registry=ShiftRegistry(db, slot_store),
        leave=leave,
        overtime=OvertimeCoordinator(db, _now),
        swaps=SwapCoordinator(db, directory, slot_store, leave, _now),
        schedule=WeeklySchedule(db),
    )


@pytest.fixture
def morning() -> ShiftDefinition:
    """09:00-12:00, 30 minute slots, 10:00-10:30 break, weekdays."""
    return ShiftDefinition(
        title="Morning clinic",
        start_time="09:00",
        end_time="12:00",
        days_of_week=["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"],
        max_patients_per_hour=2,
        slot_duration=30,
        break_time={"start": "10:00", "end": "10:30"},
    )
