import datetime as dt
from collections.abc import Sequence

from loguru import logger

from clinicflow.domain.exceptions import SlotConflictError
from clinicflow.domain.models import Appointment
from clinicflow.scheduling.slots import SlotAvailabilityCalculator


class RescheduleConflictResolver:
    """Checks a candidate datetime against the booked appointments and proposes
    alternatives when it is taken.

    ``appointments`` is a snapshot supplied by the caller; it should cover the
    candidate's day and the following ``suggestion_lookahead_days`` so that
    next-day alternatives can be computed.
    """

    def __init__(self, slots: SlotAvailabilityCalculator) -> None:
        self._slots = slots
        self._limit = slots.config.suggestion_limit
        self._lookahead_days = slots.config.suggestion_lookahead_days

    def validate(
        self,
        appointment_id: str | None,
        candidate: dt.datetime,
        appointments: Sequence[Appointment],
    ) -> None:
        """Accept ``candidate`` or raise.

        Args:
            appointment_id: The appointment being moved, ignored when looking for
                conflicts. ``None`` when booking a brand-new appointment.
            candidate: The requested start, timezone-aware.
            appointments: Current appointments around the candidate date.

        Raises:
            ValidationError: If the candidate breaks a schedule rule.
            SlotConflictError: If another active appointment holds that slot.
        """
        self._slots.validate_datetime(candidate)

        local = candidate.astimezone(self._slots.timezone)
        occupied = self._slots.occupied_times(local.date(), appointments, appointment_id)
        if local.time().replace(second=0, microsecond=0) in occupied:
            suggestions = self.suggest(candidate, appointments, appointment_id)
            logger.warning(
                "Slot conflict at {} (appointment={}); offering {} alternative(s)",
                local.isoformat(),
                appointment_id,
                len(suggestions),
            )
            raise SlotConflictError(candidate, suggestions)

    def suggest(
        self,
        requested: dt.datetime,
        appointments: Sequence[Appointment],
        exclude_appointment_id: str | None = None,
    ) -> list[dt.datetime]:
        """Up to ``suggestion_limit`` free slots nearest to ``requested``.

        Same-day slots are preferred. When the requested day has none, the next
        work day with free slots is used instead.
        """
        local = requested.astimezone(self._slots.timezone)
        day = local.date()

        free = self._slots.available_slots(day, appointments, exclude_appointment_id)
        if free:
            return self._nearest(day, free, local)

        for _ in range(self._lookahead_days):
            next_day = self._slots.next_work_day(day)
            if next_day is None:
                break
            day = next_day
            free = self._slots.available_slots(day, appointments, exclude_appointment_id)
            if free:
                target = self._slots.at(day, local.time())
                return self._nearest(day, free, target)
        return []

    def _nearest(
        self, date: dt.date, free: list[dt.time], target: dt.datetime
    ) -> list[dt.datetime]:
        candidates = [self._slots.at(date, t) for t in free]
        candidates.sort(key=lambda slot: (abs(slot - target), slot))
        return candidates[: self._limit]
