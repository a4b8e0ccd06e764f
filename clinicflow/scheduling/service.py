import datetime as dt

from loguru import logger

from clinicflow.config import ClinicScheduleConfig
from clinicflow.domain.clock import Clock
from clinicflow.domain.exceptions import (
    BusinessRuleError,
    CheckInWindowExpiredError,
    SlotConflictError,
    TooLateToRescheduleError,
    TransientError,
)
from clinicflow.domain.models import (
    NON_BLOCKING_STATUSES,
    Action,
    ActionAvailability,
    AdmissionResult,
    Appointment,
    AppointmentHistoryEntry,
    AppointmentRequest,
    PatientFields,
)
from clinicflow.scheduling.admission import AdmissionCoordinator
from clinicflow.scheduling.datetime_helpers import day_bounds
from clinicflow.scheduling.eligibility import (
    CHECK_IN_EXPIRED_REASON,
    RESCHEDULABLE_STATUSES,
    ActionEligibilityEvaluator,
)
from clinicflow.scheduling.reschedule import RescheduleConflictResolver
from clinicflow.scheduling.slots import SlotAvailabilityCalculator
from clinicflow.scheduling.state_machine import AppointmentStateMachine
from clinicflow.store.ports import AbstractAppointmentRepository


class SchedulingService:
    """Entry point for UI, CLI and API callers.

    Wires the pure calculators to the repository: each operation reads a fresh
    snapshot, decides with the calculators, and writes with the version it read.
    """

    def __init__(
        self,
        repository: AbstractAppointmentRepository,
        config: ClinicScheduleConfig,
        clock: Clock,
    ) -> None:
        self._repo = repository
        self._config = config
        self._clock = clock
        self.slots = SlotAvailabilityCalculator(config, clock)
        self.state_machine = AppointmentStateMachine(config.reason_max_length)
        self.evaluator = ActionEligibilityEvaluator(config)
        self.resolver = RescheduleConflictResolver(self.slots)
        self.admissions = AdmissionCoordinator(repository, self.slots, self.resolver)

    async def _appointments_from(self, date: dt.date, days: int) -> list[Appointment]:
        start, _ = day_bounds(date, self.slots.timezone)
        _, end = day_bounds(date + dt.timedelta(days=days), self.slots.timezone)
        return await self._repo.list_appointments(start, end, NON_BLOCKING_STATUSES)

    async def get_available_slots(self, date: dt.date) -> list[dt.time]:
        if not self.slots.is_bookable_date(date):
            return []
        appointments = await self._appointments_from(date, 0)
        return self.slots.available_slots(date, appointments)

    async def get_action_availability(self, appointment_id: str) -> ActionAvailability:
        appointment = await self._repo.get_appointment(appointment_id)
        return self.evaluator.evaluate(appointment, self._clock.now())

    async def get_history(self, appointment_id: str) -> list[AppointmentHistoryEntry]:
        return await self._repo.list_history(appointment_id)

    async def submit_admission(
        self,
        patient: PatientFields,
        request: AppointmentRequest,
        *,
        patient_id: str | None = None,
    ) -> AdmissionResult:
        return await self.admissions.admit(patient, request, patient_id=patient_id)

    async def request_reschedule(
        self, appointment_id: str, candidate: dt.datetime
    ) -> Appointment:
        """Move an appointment to ``candidate``.

        Returns:
            The new ``SCHEDULED`` appointment that replaces the old one.

        Raises:
            TooLateToRescheduleError: If the reschedule cutoff has passed.
            BusinessRuleError: If the appointment's status does not allow it.
            ValidationError: If ``candidate`` breaks a schedule rule.
            SlotConflictError: If ``candidate`` is taken, with alternatives.
            VersionConflictError: If the appointment changed concurrently.
        """
        appointment = await self._repo.get_appointment(appointment_id)
        self._ensure_allowed(Action.RESCHEDULE, appointment)
        self.slots.validate_datetime(candidate)

        local_day = candidate.astimezone(self.slots.timezone).date()
        lookahead = self._config.suggestion_lookahead_days
        snapshot = await self._appointments_from(local_day, lookahead)
        self.resolver.validate(appointment_id, candidate, snapshot)

        try:
            return await self._repo.reschedule_appointment(
                appointment_id, candidate, appointment.updated_at
            )
        except SlotConflictError as exc:
            try:
                latest = await self._appointments_from(local_day, lookahead)
                suggestions = self.resolver.suggest(candidate, latest, appointment_id)
            except TransientError as read_exc:
                logger.warning("Could not compute alternatives: {}", read_exc)
                suggestions = []
            raise exc.with_suggestions(suggestions) from exc

    async def perform_action(
        self,
        appointment_id: str,
        action: Action,
        *,
        expected_version: dt.datetime,
        reason: str = "",
    ) -> Appointment:
        """Apply a status-changing front-office action.

        ``expected_version`` is the ``updated_at`` the caller last saw; the write
        is rejected with VersionConflictError if the appointment moved on since.
        """
        if action in (Action.RESCHEDULE, Action.VIEW_HISTORY):
            raise ValueError(f"{action.value} is not a status action; use its own operation")

        appointment = await self._repo.get_appointment(appointment_id)
        self._ensure_allowed(action, appointment)
        target = self.state_machine.apply_action(appointment.status, action, reason)
        return await self._repo.update_appointment_status(
            appointment_id, target, reason, expected_version
        )

    def _ensure_allowed(self, action: Action, appointment: Appointment) -> None:
        now = self._clock.now()
        reason = self.evaluator.check(action, appointment, now)
        if reason is None:
            return

        logger.info(
            "Action {} refused for appointment {}: {}", action.value, appointment.id, reason
        )
        if action == Action.CHECK_IN and reason == CHECK_IN_EXPIRED_REASON:
            _, window_end = self.evaluator.check_in_window(appointment)
            raise CheckInWindowExpiredError(reason, window_end)
        if action == Action.RESCHEDULE and appointment.status in RESCHEDULABLE_STATUSES:
            raise TooLateToRescheduleError(reason, self.evaluator.reschedule_cutoff(appointment))
        raise BusinessRuleError(action, reason)
