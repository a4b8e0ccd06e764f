import datetime as dt

from loguru import logger

from clinicflow.domain.exceptions import (
    PartialAdmissionFailureError,
    SlotConflictError,
    TransientError,
    ValidationError,
)
from clinicflow.domain.models import (
    NON_BLOCKING_STATUSES,
    AdmissionResult,
    Appointment,
    AppointmentRequest,
    PatientFields,
)
from clinicflow.scheduling.datetime_helpers import day_bounds
from clinicflow.scheduling.reschedule import RescheduleConflictResolver
from clinicflow.scheduling.slots import SlotAvailabilityCalculator
from clinicflow.store.ports import AbstractAppointmentRepository


class AdmissionCoordinator:
    """Creates a patient and their first appointment as one logical unit.

    The slot is checked before anything is written, so an unavailable time
    never leaves an orphaned patient behind. If the appointment write fails
    after the patient exists, :class:`PartialAdmissionFailureError` carries the
    new patient ID and the caller resumes with ``admit(..., patient_id=...)``.
    """

    def __init__(
        self,
        repository: AbstractAppointmentRepository,
        slots: SlotAvailabilityCalculator,
        resolver: RescheduleConflictResolver,
    ) -> None:
        self._repo = repository
        self._slots = slots
        self._resolver = resolver

    async def _snapshot(self, around: dt.datetime) -> list[Appointment]:
        local_day = around.astimezone(self._slots.timezone).date()
        start, _ = day_bounds(local_day, self._slots.timezone)
        _, end = day_bounds(
            local_day + dt.timedelta(days=self._slots.config.suggestion_lookahead_days),
            self._slots.timezone,
        )
        return await self._repo.list_appointments(start, end, NON_BLOCKING_STATUSES)

    async def admit(
        self,
        patient: PatientFields,
        request: AppointmentRequest,
        *,
        patient_id: str | None = None,
    ) -> AdmissionResult:
        """Admit a new patient with their first appointment.

        Args:
            patient: Demographic fields of the new patient.
            request: The first appointment to book.
            patient_id: ID of a patient created by an earlier, partially failed
                admission. Patient creation is skipped when given.

        Raises:
            ValidationError: If the requested time breaks a schedule rule, the
                patient is a duplicate, or the resumed ``patient_id`` is unknown.
            SlotConflictError: If the slot is taken; nothing was written.
            PartialAdmissionFailureError: If the patient exists but the
                appointment could not be created.
        """
        self._slots.validate_datetime(request.scheduled_at)
        snapshot = await self._snapshot(request.scheduled_at)
        self._resolver.validate(None, request.scheduled_at, snapshot)

        resumed = patient_id is not None
        if patient_id is None:
            patient_id = await self._repo.create_patient(patient)
        else:
            logger.info("Resuming admission for existing patient: id={}", patient_id)

        try:
            appointment_id = await self._repo.create_appointment(patient_id, request)
        except SlotConflictError as exc:
            # Lost the race to a concurrent booking between the check and the write.
            try:
                latest = await self._snapshot(request.scheduled_at)
                suggestions = self._resolver.suggest(request.scheduled_at, latest)
            except TransientError as read_exc:
                logger.warning("Could not compute alternatives: {}", read_exc)
                suggestions = []
            logger.warning(
                "Slot taken concurrently; patient {} awaits a new appointment time", patient_id
            )
            raise PartialAdmissionFailureError(
                patient_id, str(exc), exc.with_suggestions(suggestions)
            ) from exc
        except Exception as exc:
            if resumed and isinstance(exc, ValidationError):
                # unknown resume ID: nothing new was written
                raise
            logger.warning(
                "Appointment creation failed after patient {} was created: {}", patient_id, exc
            )
            raise PartialAdmissionFailureError(patient_id, str(exc), exc) from exc

        logger.info("Admission complete: patient={}, appointment={}", patient_id, appointment_id)
        return AdmissionResult(patient_id=patient_id, appointment_id=appointment_id)
