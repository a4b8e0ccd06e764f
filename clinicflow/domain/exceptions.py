import datetime as dt

from clinicflow.domain.models import Action, AppointmentStatus


class SchedulingError(Exception):
    """Base exception for all scheduling and admission errors."""

    kind: str = "scheduling_error"


class ValidationError(SchedulingError):
    """Raised when caller input is malformed or violates the clinic schedule."""

    kind = "validation_error"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)


class DuplicatePatientError(ValidationError):
    """Raised when a patient with the same name and birth date already exists."""

    def __init__(self, existing_patient_id: str | None = None) -> None:
        self.existing_patient_id = existing_patient_id
        super().__init__("A patient with the same name and birth date already exists")


class AppointmentNotFoundError(SchedulingError):
    kind = "not_found"

    def __init__(self, appointment_id: str) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment not found: {appointment_id}")


class SlotConflictError(SchedulingError):
    """Raised when the requested time is already held by another active appointment.

    ``suggestions`` holds ranked free alternatives the caller can offer instead.
    """

    kind = "slot_conflict"

    def __init__(
        self,
        requested_at: dt.datetime,
        suggestions: list[dt.datetime] | None = None,
    ) -> None:
        self.requested_at = requested_at
        self.suggestions = suggestions or []
        super().__init__(f"Slot not available: {requested_at.isoformat()}")

    def with_suggestions(self, suggestions: list[dt.datetime]) -> "SlotConflictError":
        return SlotConflictError(self.requested_at, suggestions)


class IllegalTransitionError(SchedulingError):
    """Raised when a status change is not an edge of the appointment state machine."""

    kind = "illegal_transition"

    def __init__(
        self,
        current: AppointmentStatus,
        requested: AppointmentStatus,
        action: Action | None = None,
    ) -> None:
        self.current = current
        self.requested = requested
        self.action = action
        label = action.value if action else "transition"
        super().__init__(
            f"Illegal transition {current.value} -> {requested.value} ({label})"
        )


class VersionConflictError(SchedulingError):
    """Raised when the stored version has advanced past the one the caller read."""

    kind = "version_conflict"

    def __init__(
        self,
        appointment_id: str,
        expected_version: dt.datetime,
        actual_version: dt.datetime | None = None,
    ) -> None:
        self.appointment_id = appointment_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Appointment {appointment_id} was modified by another process; re-fetch and retry"
        )


class BusinessRuleError(SchedulingError):
    """Raised when an action is not permitted for an appointment at this moment."""

    kind = "business_rule"

    def __init__(self, action: Action, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(reason)


class TooLateToRescheduleError(BusinessRuleError):
    kind = "too_late_to_reschedule"

    def __init__(self, reason: str, cutoff: dt.datetime) -> None:
        self.cutoff = cutoff
        super().__init__(Action.RESCHEDULE, reason)


class CheckInWindowExpiredError(BusinessRuleError):
    kind = "check_in_window_expired"

    def __init__(self, reason: str, window_end: dt.datetime) -> None:
        self.window_end = window_end
        super().__init__(Action.CHECK_IN, reason)


class PartialAdmissionFailureError(SchedulingError):
    """Raised when the patient was created but the appointment was not.

    Callers resume by retrying the appointment with ``patient_id`` instead of
    resubmitting the whole admission, which would duplicate the patient.
    """

    kind = "partial_admission_failure"

    def __init__(self, patient_id: str, reason: str, cause: Exception | None = None) -> None:
        self.patient_id = patient_id
        self.reason = reason
        self.cause = cause
        super().__init__(f"Patient {patient_id} created but appointment was not: {reason}")


class TransientError(SchedulingError):
    """Raised when a read fails for a reason that is safe to retry (network, timeout)."""

    kind = "transient_error"


class UnknownOutcomeError(SchedulingError):
    """Raised when a write timed out; state must be re-read before acting again."""

    kind = "unknown_outcome"
