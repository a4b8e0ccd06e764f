import datetime as dt
from collections.abc import Iterable

from clinicflow.config import ClinicScheduleConfig
from clinicflow.domain.clock import Clock
from clinicflow.domain.exceptions import ValidationError
from clinicflow.domain.models import Appointment
from clinicflow.scheduling.datetime_helpers import resolve_timezone

_WEEKDAY_LABELS = {1: "Mon", 2: "Tue", 3: "Wed", 4: "Thu", 5: "Fri", 6: "Sat", 7: "Sun"}


class SlotAvailabilityCalculator:
    """Computes which slots of a clinic day can still be booked.

    Pure given its inputs and the injected clock: the appointment snapshot is
    passed in by the caller and the current time only ever comes from ``clock``.
    All dates and times-of-day are expressed in the clinic timezone.
    """

    def __init__(self, config: ClinicScheduleConfig, clock: Clock) -> None:
        self._config = config
        self._clock = clock
        self._tz = resolve_timezone(config.timezone)

    @property
    def config(self) -> ClinicScheduleConfig:
        return self._config

    @property
    def timezone(self) -> dt.tzinfo:
        return self._tz

    def today(self) -> dt.date:
        return self._clock.now().astimezone(self._tz).date()

    def at(self, date: dt.date, time: dt.time) -> dt.datetime:
        """Combine a clinic-local date and time-of-day into an aware datetime."""
        return dt.datetime.combine(date, time, tzinfo=self._tz)

    def candidate_times(self) -> list[dt.time]:
        """Every slot start between opening and closing, lunch excluded."""
        cfg = self._config
        lunch_start = cfg.lunch_start * 60
        lunch_end = cfg.lunch_end * 60
        times: list[dt.time] = []
        for minute in range(cfg.start_hour * 60, cfg.end_hour * 60, cfg.slot_duration_minutes):
            if lunch_start <= minute < lunch_end:
                continue
            times.append(dt.time(minute // 60, minute % 60))
        return times

    def is_bookable_date(self, date: dt.date) -> bool:
        if date.isoweekday() not in self._config.work_days:
            return False
        today = self.today()
        if date < today:
            return False
        return date <= today + dt.timedelta(days=self._config.max_advance_days)

    def occupied_times(
        self,
        date: dt.date,
        appointments: Iterable[Appointment],
        exclude_appointment_id: str | None = None,
    ) -> set[dt.time]:
        occupied: set[dt.time] = set()
        for appointment in appointments:
            if not appointment.is_active or appointment.id == exclude_appointment_id:
                continue
            local = appointment.scheduled_at.astimezone(self._tz)
            if local.date() != date:
                continue
            occupied.add(local.time().replace(second=0, microsecond=0))
        return occupied

    def available_slots(
        self,
        date: dt.date,
        existing_appointments: Iterable[Appointment],
        exclude_appointment_id: str | None = None,
    ) -> list[dt.time]:
        """Return the free slot start times of ``date`` in ascending order.

        Dates that are not work days, already past, or beyond the advance-booking
        horizon yield an empty list rather than an error. For today, slots starting
        within the booking buffer are dropped as well.
        """
        if not self.is_bookable_date(date):
            return []

        occupied = self.occupied_times(date, existing_appointments, exclude_appointment_id)
        slots = [t for t in self.candidate_times() if t not in occupied]

        if date == self.today():
            cutoff = self._clock.now() + dt.timedelta(minutes=self._config.booking_buffer_minutes)
            slots = [t for t in slots if self.at(date, t) > cutoff]

        return slots

    def validate_datetime(self, candidate: dt.datetime) -> None:
        """Check ``candidate`` against the same rules slot generation applies.

        Raises:
            ValidationError: With a reason naming the rule that was broken.
        """
        if candidate.tzinfo is None:
            raise ValidationError("Appointment time must include a timezone", "scheduledAt")

        cfg = self._config
        now = self._clock.now()
        local = candidate.astimezone(self._tz)

        if local <= now:
            raise ValidationError("Appointment time must be in the future", "scheduledAt")
        if local <= now + dt.timedelta(minutes=cfg.booking_buffer_minutes):
            raise ValidationError(
                f"Appointment must start at least {cfg.booking_buffer_minutes} minutes from now",
                "scheduledAt",
            )
        if local.isoweekday() not in cfg.work_days:
            raise ValidationError(
                f"Only work days can be booked ({self.work_days_label()})", "scheduledAt"
            )
        if local.date() > self.today() + dt.timedelta(days=cfg.max_advance_days):
            raise ValidationError(
                f"Exceeds the maximum advance booking of {cfg.max_advance_days} days",
                "scheduledAt",
            )

        minute_of_day = local.hour * 60 + local.minute
        if not cfg.start_hour * 60 <= minute_of_day < cfg.end_hour * 60:
            raise ValidationError(
                f"Outside working hours ({cfg.start_hour:02d}:00-{cfg.end_hour:02d}:00)",
                "scheduledAt",
            )
        if cfg.lunch_start * 60 <= minute_of_day < cfg.lunch_end * 60:
            raise ValidationError(
                f"Not available during lunch ({cfg.lunch_start:02d}:00-{cfg.lunch_end:02d}:00)",
                "scheduledAt",
            )
        if local.minute % cfg.slot_duration_minutes or local.second or local.microsecond:
            raise ValidationError(
                f"Time must align to {cfg.slot_duration_minutes}-minute slots", "scheduledAt"
            )

    def work_days_label(self) -> str:
        return ", ".join(_WEEKDAY_LABELS[d] for d in sorted(self._config.work_days))

    def next_work_day(self, after: dt.date) -> dt.date | None:
        """First bookable date strictly after ``after``, or None past the horizon."""
        horizon = self.today() + dt.timedelta(days=self._config.max_advance_days)
        day = after + dt.timedelta(days=1)
        while day <= horizon:
            if self.is_bookable_date(day):
                return day
            day += dt.timedelta(days=1)
        return None
