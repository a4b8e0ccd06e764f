import datetime as dt
from abc import ABC, abstractmethod
from typing import Protocol

from clinicflow.domain.models import (
    Appointment,
    AppointmentHistoryEntry,
    AppointmentRequest,
    AppointmentStatus,
    PatientFields,
)


class AbstractAppointmentRepository(ABC):
    """Durable storage of patients and appointments as seen by the scheduling core."""

    @abstractmethod
    async def list_appointments(
        self,
        start: dt.datetime,
        end: dt.datetime,
        exclude_statuses: frozenset[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        """List appointments scheduled in ``[start, end)``.

        Args:
            start: Inclusive lower bound, timezone-aware.
            end: Exclusive upper bound, timezone-aware.
            exclude_statuses: Statuses to leave out, or None for all.

        Returns:
            Appointments ordered by ``scheduled_at``.

        Raises:
            TransientError: If the store could not be read after retries.
        """

    @abstractmethod
    async def get_appointment(self, appointment_id: str) -> Appointment:
        """Fetch one appointment, including its current version token.

        Raises:
            AppointmentNotFoundError: If no appointment has that ID.
            TransientError: If the store could not be read after retries.
        """

    @abstractmethod
    async def list_history(self, appointment_id: str) -> list[AppointmentHistoryEntry]:
        """Audit trail of an appointment, oldest first."""

    @abstractmethod
    async def create_patient(self, fields: PatientFields) -> str:
        """Register a patient and return the assigned ID.

        Raises:
            DuplicatePatientError: If the same person is already registered.
            UnknownOutcomeError: If the write timed out.
        """

    @abstractmethod
    async def create_appointment(self, patient_id: str, request: AppointmentRequest) -> str:
        """Book a ``SCHEDULED`` appointment and return its ID.

        Raises:
            SlotConflictError: If an active appointment already holds the slot.
            ValidationError: If the patient does not exist.
            UnknownOutcomeError: If the write timed out.
        """

    @abstractmethod
    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        reason: str,
        expected_version: dt.datetime,
    ) -> Appointment:
        """Move an appointment to ``new_status`` if nobody changed it since it was read.

        Raises:
            VersionConflictError: If the stored version differs from ``expected_version``.
            IllegalTransitionError: If the change is not a legal edge.
            AppointmentNotFoundError: If no appointment has that ID.
            UnknownOutcomeError: If the write timed out.
        """

    @abstractmethod
    async def reschedule_appointment(
        self,
        appointment_id: str,
        new_datetime: dt.datetime,
        expected_version: dt.datetime,
    ) -> Appointment:
        """Mark the appointment ``RESCHEDULED`` and book its replacement.

        Returns:
            The new ``SCHEDULED`` appointment.

        Raises:
            VersionConflictError: If the stored version differs from ``expected_version``.
            SlotConflictError: If the new slot is already taken.
            IllegalTransitionError: If the appointment cannot be rescheduled.
            UnknownOutcomeError: If the write timed out.
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the store is reachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by this repository."""


class AppointmentStoreProtocol(Protocol):
    """Low-level interface to a concrete persistence backend."""

    async def list_appointments(
        self,
        start: dt.datetime,
        end: dt.datetime,
        exclude_statuses: frozenset[AppointmentStatus] | None = None,
    ) -> list[Appointment]: ...

    async def get_appointment(self, appointment_id: str) -> Appointment: ...

    async def list_history(self, appointment_id: str) -> list[AppointmentHistoryEntry]: ...

    async def create_patient(self, fields: PatientFields) -> str: ...

    async def create_appointment(self, patient_id: str, request: AppointmentRequest) -> str: ...

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        reason: str,
        expected_version: dt.datetime,
    ) -> Appointment: ...

    async def reschedule_appointment(
        self,
        appointment_id: str,
        new_datetime: dt.datetime,
        expected_version: dt.datetime,
    ) -> Appointment: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...
