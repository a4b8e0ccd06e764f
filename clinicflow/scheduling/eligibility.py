import datetime as dt
from typing import Callable

from clinicflow.config import ClinicScheduleConfig
from clinicflow.domain.models import Action, ActionAvailability, Appointment, AppointmentStatus
from clinicflow.scheduling.datetime_helpers import minutes_until

S = AppointmentStatus

PENDING_STATUSES = frozenset({S.SCHEDULED, S.CONFIRMED})
COMPLETABLE_STATUSES = frozenset({S.CHECKED_IN, S.IN_CONSULTATION})
RESCHEDULABLE_STATUSES = frozenset({S.SCHEDULED, S.CONFIRMED, S.CANCELLED})

# Getting the patient seen always outranks administrative actions.
PRIMARY_ORDER: tuple[Action, ...] = (
    Action.CHECK_IN,
    Action.COMPLETE,
    Action.NO_SHOW,
    Action.CANCEL,
    Action.RESCHEDULE,
)

CHECK_IN_EXPIRED_REASON = "check-in window expired"

_Rule = Callable[[Appointment, dt.datetime], str | None]


class ActionEligibilityEvaluator:
    """Decides which front-office actions are legal for an appointment right now.

    Each rule returns ``None`` when its action is eligible, otherwise the reason it
    is not. The evaluator holds no state besides the policy; callers that refresh
    a view simply call :meth:`evaluate` again with a new ``now``.
    """

    def __init__(self, config: ClinicScheduleConfig) -> None:
        self._config = config
        self._rules: dict[Action, _Rule] = {
            Action.CHECK_IN: self._check_in,
            Action.START_CONSULT: self._start_consult,
            Action.COMPLETE: self._complete,
            Action.CANCEL: self._cancel,
            Action.NO_SHOW: self._no_show,
            Action.RESCHEDULE: self._reschedule,
            Action.VIEW_HISTORY: self._view_history,
        }
        missing = set(Action) - set(self._rules)
        if missing:
            raise RuntimeError(f"No eligibility rule for: {sorted(a.value for a in missing)}")

    def evaluate(self, appointment: Appointment, now: dt.datetime) -> ActionAvailability:
        eligible: list[Action] = []
        reasons: dict[Action, str] = {}
        for action in Action:
            reason = self.check(action, appointment, now)
            if reason is None:
                eligible.append(action)
            else:
                reasons[action] = reason

        primary = next((a for a in PRIMARY_ORDER if a in eligible), None)
        secondary = [a for a in eligible if a != primary]
        return ActionAvailability(primary=primary, secondary=secondary, reasons=reasons)

    def check(self, action: Action, appointment: Appointment, now: dt.datetime) -> str | None:
        return self._rules[action](appointment, now)

    def check_in_window(self, appointment: Appointment) -> tuple[dt.datetime, dt.datetime]:
        start = appointment.scheduled_at - dt.timedelta(
            minutes=self._config.check_in_window_before_minutes
        )
        end = appointment.scheduled_at + dt.timedelta(
            minutes=self._config.check_in_window_after_minutes
        )
        return start, end

    def reschedule_cutoff(self, appointment: Appointment) -> dt.datetime:
        return appointment.scheduled_at - dt.timedelta(
            hours=self._config.reschedule_min_advance_hours
        )

    def _check_in(self, appointment: Appointment, now: dt.datetime) -> str | None:
        if appointment.status not in PENDING_STATUSES:
            return f"check-in not available from status {appointment.status.value}"
        start, end = self.check_in_window(appointment)
        if now < start:
            return f"available in {minutes_until(start, now)} minutes"
        if now > end:
            return CHECK_IN_EXPIRED_REASON
        return None

    def _start_consult(self, appointment: Appointment, now: dt.datetime) -> str | None:
        if appointment.status != S.CHECKED_IN:
            return "consultation can only start after check-in"
        return None

    def _complete(self, appointment: Appointment, now: dt.datetime) -> str | None:
        if appointment.status not in COMPLETABLE_STATUSES:
            return f"cannot complete from status {appointment.status.value}"
        return None

    def _cancel(self, appointment: Appointment, now: dt.datetime) -> str | None:
        if appointment.status not in PENDING_STATUSES:
            return f"cannot cancel from status {appointment.status.value}"
        return None

    def _no_show(self, appointment: Appointment, now: dt.datetime) -> str | None:
        if appointment.status not in PENDING_STATUSES:
            return f"cannot mark no-show from status {appointment.status.value}"
        _, end = self.check_in_window(appointment)
        if now <= end:
            return f"available in {max(1, minutes_until(end, now))} minutes"
        return None

    def _reschedule(self, appointment: Appointment, now: dt.datetime) -> str | None:
        if appointment.status not in RESCHEDULABLE_STATUSES:
            return f"cannot reschedule from status {appointment.status.value}"
        if now >= self.reschedule_cutoff(appointment):
            hours = self._config.reschedule_min_advance_hours
            return f"too late to reschedule, only {hours} hours advance allowed"
        return None

    def _view_history(self, appointment: Appointment, now: dt.datetime) -> str | None:
        return None
