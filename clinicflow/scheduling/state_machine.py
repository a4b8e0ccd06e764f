from loguru import logger

from clinicflow.domain.exceptions import IllegalTransitionError, ValidationError
from clinicflow.domain.models import ACTION_TO_STATUS, Action, AppointmentStatus

S = AppointmentStatus

# target state -> states it may be entered from
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.CHECKED_IN: frozenset({S.SCHEDULED, S.CONFIRMED}),
    S.IN_CONSULTATION: frozenset({S.CHECKED_IN, S.CONFIRMED}),
    S.COMPLETED: frozenset({S.IN_CONSULTATION, S.CHECKED_IN}),
    S.CANCELLED: frozenset({S.SCHEDULED, S.CONFIRMED}),
    S.NO_SHOW: frozenset({S.SCHEDULED, S.CONFIRMED}),
    S.RESCHEDULED: frozenset({S.SCHEDULED, S.CONFIRMED, S.CANCELLED}),
}

INITIAL_STATUS = S.SCHEDULED
TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {S.COMPLETED, S.CANCELLED, S.NO_SHOW, S.RESCHEDULED}
)

DEFAULT_REASON_MAX_LENGTH = 500


class AppointmentStateMachine:
    """Legal status transitions of an appointment record.

    Rescheduling never moves ``scheduled_at`` in place: the old record goes to
    ``RESCHEDULED`` and a fresh ``SCHEDULED`` record is created, so history is kept.
    ``CANCELLED`` only leaves towards ``RESCHEDULED``.
    """

    def __init__(self, reason_max_length: int = DEFAULT_REASON_MAX_LENGTH) -> None:
        self._reason_max_length = reason_max_length

    def can_transition(self, current: AppointmentStatus, target: AppointmentStatus) -> bool:
        return current in TRANSITIONS.get(target, frozenset())

    def transition(
        self,
        current: AppointmentStatus,
        target: AppointmentStatus,
        *,
        action: Action | None = None,
        reason: str = "",
    ) -> AppointmentStatus:
        """Validate a status change and return the new status.

        Args:
            current: The appointment's status as read from the store.
            target: The requested status.
            action: The front-office action that triggered the change, if any.
            reason: Free-text audit note; only its length is checked.

        Raises:
            ValidationError: If ``reason`` exceeds the configured maximum length.
            IllegalTransitionError: If ``current -> target`` is not a legal edge.
        """
        if len(reason) > self._reason_max_length:
            raise ValidationError(
                f"Reason must be at most {self._reason_max_length} characters", "reason"
            )
        if not self.can_transition(current, target):
            logger.warning(
                "Rejected transition {} -> {} (action={})",
                current.value,
                target.value,
                action.value if action else None,
            )
            raise IllegalTransitionError(current, target, action)
        return target

    def apply_action(
        self, current: AppointmentStatus, action: Action, reason: str = ""
    ) -> AppointmentStatus:
        """Resolve ``action`` to its target status and validate the edge."""
        target = ACTION_TO_STATUS[action]
        if target is None:
            raise ValueError(f"Action {action.value} does not change appointment status")
        return self.transition(current, target, action=action, reason=reason)
