import datetime as dt
import uuid
from collections.abc import Callable
from zoneinfo import ZoneInfo

import pytest

from clinicflow.config import ClinicScheduleConfig
from clinicflow.domain.clock import FixedClock
from clinicflow.domain.models import (
    Appointment,
    AppointmentRequest,
    AppointmentStatus,
    Diagnosis,
    PatientFields,
)
from clinicflow.scheduling.service import SchedulingService
from clinicflow.scheduling.slots import SlotAvailabilityCalculator
from clinicflow.store.adapters.memory import InMemoryAppointmentStore
from clinicflow.store.repository import AppointmentRepository

CLINIC_TZ = ZoneInfo("America/Mexico_City")

# Monday 2026-03-02, 08:00 clinic time. The clinic opens at 09:00.
NOW = dt.datetime(2026, 3, 2, 8, 0, tzinfo=CLINIC_TZ)
TUESDAY = dt.date(2026, 3, 3)
SUNDAY = dt.date(2026, 3, 8)

MakeAppointment = Callable[..., Appointment]


def at(date: dt.date, hour: int, minute: int = 0) -> dt.datetime:
    """Clinic-local aware datetime."""
    return dt.datetime.combine(date, dt.time(hour, minute), tzinfo=CLINIC_TZ)


@pytest.fixture
def config() -> ClinicScheduleConfig:
    return ClinicScheduleConfig(timezone="America/Mexico_City")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def slots(config: ClinicScheduleConfig, clock: FixedClock) -> SlotAvailabilityCalculator:
    return SlotAvailabilityCalculator(config, clock)


@pytest.fixture
def store(clock: FixedClock) -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore(clock)


@pytest.fixture
def repository(store: InMemoryAppointmentStore) -> AppointmentRepository:
    return AppointmentRepository(store, timeout_seconds=1.0, retry_base_seconds=0.0)


@pytest.fixture
def service(
    repository: AppointmentRepository, config: ClinicScheduleConfig, clock: FixedClock
) -> SchedulingService:
    return SchedulingService(repository, config, clock)


@pytest.fixture
def make_appointment() -> MakeAppointment:
    """Build an appointment record without going through a store."""

    def _make(
        scheduled_at: dt.datetime,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        **overrides: object,
    ) -> Appointment:
        fields: dict[str, object] = {
            "id": str(uuid.uuid4()),
            "patient_id": "patient-1",
            "scheduled_at": scheduled_at,
            "reason_for_visit": Diagnosis.INGUINAL_HERNIA,
            "status": status,
            "updated_at": NOW,
        }
        fields.update(overrides)
        return Appointment.model_validate(fields)

    return _make


@pytest.fixture
def patient() -> PatientFields:
    return PatientFields(
        name="Ana",
        last_name="Lopez",
        phone="+52 55 1234 5678",
        email="ana@example.com",
        age=42,
        birth_date=dt.date(1984, 1, 15),
        primary_diagnosis=Diagnosis.CHOLELITHIASIS,
    )


@pytest.fixture
def request_tuesday_10() -> AppointmentRequest:
    return AppointmentRequest(
        scheduled_at=at(TUESDAY, 10), reason_for_visit=Diagnosis.CHOLELITHIASIS
    )
