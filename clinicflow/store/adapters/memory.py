import asyncio
import datetime as dt
import uuid
from collections import defaultdict

from clinicflow.domain.clock import Clock
from clinicflow.domain.exceptions import (
    AppointmentNotFoundError,
    DuplicatePatientError,
    SlotConflictError,
    ValidationError,
    VersionConflictError,
)
from clinicflow.domain.models import (
    Appointment,
    AppointmentHistoryEntry,
    AppointmentRequest,
    AppointmentStatus,
    Patient,
    PatientFields,
)
from clinicflow.scheduling.state_machine import AppointmentStateMachine


class InMemoryAppointmentStore:
    """In-process implementation of the AppointmentStoreProtocol protocol.

    Enforces what a real database would: one active appointment per
    ``(doctor_id, scheduled_at)``, optimistic concurrency on ``updated_at``,
    legal status transitions, and the duplicate-patient guard. Writes are
    serialized with an asyncio lock.

    For tests, queue failures with :meth:`fail` and slow every call down with
    ``delay_seconds``. Seed data with :meth:`add_appointment`.
    """

    def __init__(self, clock: Clock, state_machine: AppointmentStateMachine | None = None) -> None:
        self._clock = clock
        self._state_machine = state_machine or AppointmentStateMachine()
        self._lock = asyncio.Lock()
        self.patients: dict[str, Patient] = {}
        self.appointments: dict[str, Appointment] = {}
        self.history: dict[str, list[AppointmentHistoryEntry]] = defaultdict(list)
        self.delay_seconds: float = 0.0
        self.closed: bool = False
        self._failures: dict[str, list[Exception]] = defaultdict(list)

    def fail(self, method: str, *errors: Exception) -> None:
        """Make the next ``len(errors)`` calls to ``method`` raise those errors in order."""
        self._failures[method].extend(errors)

    def add_appointment(self, appointment: Appointment) -> Appointment:
        self.appointments[appointment.id] = appointment
        return appointment

    async def _enter(self, method: str) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        queued = self._failures.get(method)
        if queued:
            raise queued.pop(0)

    def _next_version(self, previous: dt.datetime | None = None) -> dt.datetime:
        now = self._clock.now()
        if previous is not None and now <= previous:
            return previous + dt.timedelta(microseconds=1)
        return now

    def _get(self, appointment_id: str) -> Appointment:
        try:
            return self.appointments[appointment_id]
        except KeyError:
            raise AppointmentNotFoundError(appointment_id) from None

    def _check_version(self, current: Appointment, expected_version: dt.datetime) -> None:
        if current.updated_at != expected_version:
            raise VersionConflictError(current.id, expected_version, current.updated_at)

    def _check_slot_free(
        self, doctor_id: str | None, scheduled_at: dt.datetime, ignore_id: str | None = None
    ) -> None:
        for other in self.appointments.values():
            if (
                other.is_active
                and other.id != ignore_id
                and other.doctor_id == doctor_id
                and other.scheduled_at == scheduled_at
            ):
                raise SlotConflictError(scheduled_at)

    def _record(
        self,
        appointment_id: str,
        field: str,
        before: str | None,
        after: str | None,
        reason: str,
        at: dt.datetime,
    ) -> None:
        self.history[appointment_id].append(
            AppointmentHistoryEntry(
                appointment_id=appointment_id,
                field_changed=field,
                value_before=before,
                value_after=after,
                change_reason=reason,
                changed_at=at,
            )
        )

    async def list_appointments(
        self,
        start: dt.datetime,
        end: dt.datetime,
        exclude_statuses: frozenset[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        await self._enter("list_appointments")
        excluded = exclude_statuses or frozenset()
        found = [
            a
            for a in self.appointments.values()
            if start <= a.scheduled_at < end and a.status not in excluded
        ]
        return sorted(found, key=lambda a: a.scheduled_at)

    async def get_appointment(self, appointment_id: str) -> Appointment:
        await self._enter("get_appointment")
        return self._get(appointment_id)

    async def list_history(self, appointment_id: str) -> list[AppointmentHistoryEntry]:
        await self._enter("list_history")
        self._get(appointment_id)
        return list(self.history.get(appointment_id, []))

    async def create_patient(self, fields: PatientFields) -> str:
        await self._enter("create_patient")
        async with self._lock:
            if fields.birth_date is not None:
                for existing in self.patients.values():
                    if (
                        existing.birth_date == fields.birth_date
                        and existing.name.casefold() == fields.name.casefold()
                        and existing.last_name.casefold() == fields.last_name.casefold()
                    ):
                        raise DuplicatePatientError(existing.id)
            patient = Patient(
                id=str(uuid.uuid4()),
                registered_at=self._clock.now(),
                **fields.model_dump(),
            )
            self.patients[patient.id] = patient
            return patient.id

    async def create_appointment(self, patient_id: str, request: AppointmentRequest) -> str:
        await self._enter("create_appointment")
        async with self._lock:
            if patient_id not in self.patients:
                raise ValidationError(f"Unknown patient: {patient_id}", "patientId")
            self._check_slot_free(request.doctor_id, request.scheduled_at)
            now = self._next_version()
            appointment = Appointment(
                id=str(uuid.uuid4()),
                patient_id=patient_id,
                scheduled_at=request.scheduled_at,
                reason_for_visit=request.reason_for_visit,
                status=AppointmentStatus.SCHEDULED,
                is_first_visit=request.is_first_visit,
                updated_at=now,
                brief_notes=request.brief_notes,
                doctor_id=request.doctor_id,
            )
            self.appointments[appointment.id] = appointment
            self._record(appointment.id, "status", None, appointment.status.value, "Created", now)
            return appointment.id

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        reason: str,
        expected_version: dt.datetime,
    ) -> Appointment:
        await self._enter("update_appointment_status")
        async with self._lock:
            current = self._get(appointment_id)
            self._check_version(current, expected_version)
            self._state_machine.transition(current.status, new_status, reason=reason)
            now = self._next_version(current.updated_at)
            updated = current.model_copy(update={"status": new_status, "updated_at": now})
            self.appointments[appointment_id] = updated
            self._record(
                appointment_id,
                "status",
                current.status.value,
                new_status.value,
                reason or f"Status change: {current.status.value} -> {new_status.value}",
                now,
            )
            return updated

    async def reschedule_appointment(
        self,
        appointment_id: str,
        new_datetime: dt.datetime,
        expected_version: dt.datetime,
    ) -> Appointment:
        await self._enter("reschedule_appointment")
        async with self._lock:
            current = self._get(appointment_id)
            self._check_version(current, expected_version)
            self._state_machine.transition(current.status, AppointmentStatus.RESCHEDULED)
            self._check_slot_free(current.doctor_id, new_datetime, ignore_id=current.id)

            now = self._next_version(current.updated_at)
            self.appointments[appointment_id] = current.model_copy(
                update={"status": AppointmentStatus.RESCHEDULED, "updated_at": now}
            )
            replacement = Appointment(
                id=str(uuid.uuid4()),
                patient_id=current.patient_id,
                scheduled_at=new_datetime,
                reason_for_visit=current.reason_for_visit,
                status=AppointmentStatus.SCHEDULED,
                is_first_visit=current.is_first_visit,
                updated_at=now,
                brief_notes=current.brief_notes,
                doctor_id=current.doctor_id,
                rescheduled_from_id=current.id,
            )
            self.appointments[replacement.id] = replacement

            reason = f"Rescheduled to {new_datetime.isoformat()}"
            self._record(
                appointment_id,
                "status",
                current.status.value,
                AppointmentStatus.RESCHEDULED.value,
                reason,
                now,
            )
            self._record(
                replacement.id,
                "scheduled_at",
                current.scheduled_at.isoformat(),
                new_datetime.isoformat(),
                reason,
                now,
            )
            return replacement

    async def health_check(self) -> bool:
        return not self.closed

    async def close(self) -> None:
        self.closed = True
