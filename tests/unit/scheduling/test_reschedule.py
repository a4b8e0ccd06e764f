import datetime as dt

import pytest
from conftest import TUESDAY, MakeAppointment, at

from clinicflow.domain.exceptions import SlotConflictError, ValidationError
from clinicflow.domain.models import Appointment, AppointmentStatus
from clinicflow.scheduling.reschedule import RescheduleConflictResolver
from clinicflow.scheduling.slots import SlotAvailabilityCalculator

WEDNESDAY = TUESDAY + dt.timedelta(days=1)


@pytest.fixture
def resolver(slots: SlotAvailabilityCalculator) -> RescheduleConflictResolver:
    return RescheduleConflictResolver(slots)


def _fill_day(
    slots: SlotAvailabilityCalculator, make_appointment: MakeAppointment, date: dt.date
) -> list[Appointment]:
    return [make_appointment(slots.at(date, t)) for t in slots.candidate_times()]


class TestValidate:
    def test_free_slot_passes(
        self, resolver: RescheduleConflictResolver, make_appointment: MakeAppointment
    ) -> None:
        moving = make_appointment(at(TUESDAY, 9))

        resolver.validate(moving.id, at(TUESDAY, 11), [moving])

    def test_occupied_slot_offers_nearest_same_day_alternatives(
        self, resolver: RescheduleConflictResolver, make_appointment: MakeAppointment
    ) -> None:
        moving = make_appointment(at(TUESDAY, 14, 30))
        other = make_appointment(at(TUESDAY, 10))

        with pytest.raises(SlotConflictError) as excinfo:
            resolver.validate(moving.id, at(TUESDAY, 10), [moving, other])

        # 09:30 and 10:30 tie on distance; the earlier one wins
        assert excinfo.value.suggestions == [
            at(TUESDAY, 9, 30),
            at(TUESDAY, 10, 30),
            at(TUESDAY, 9),
        ]
        assert excinfo.value.requested_at == at(TUESDAY, 10)

    def test_own_slot_is_not_a_conflict(
        self, resolver: RescheduleConflictResolver, make_appointment: MakeAppointment
    ) -> None:
        moving = make_appointment(at(TUESDAY, 10))

        resolver.validate(moving.id, at(TUESDAY, 10), [moving])

    def test_cancelled_booking_does_not_conflict(
        self, resolver: RescheduleConflictResolver, make_appointment: MakeAppointment
    ) -> None:
        cancelled = make_appointment(at(TUESDAY, 10), AppointmentStatus.CANCELLED)

        resolver.validate(None, at(TUESDAY, 10), [cancelled])

    def test_rule_violation_raised_before_conflict_check(
        self, resolver: RescheduleConflictResolver, make_appointment: MakeAppointment
    ) -> None:
        with pytest.raises(ValidationError, match="lunch"):
            resolver.validate(None, at(TUESDAY, 12), [make_appointment(at(TUESDAY, 12))])

    def test_full_day_falls_back_to_next_work_day(
        self,
        resolver: RescheduleConflictResolver,
        slots: SlotAvailabilityCalculator,
        make_appointment: MakeAppointment,
    ) -> None:
        booked = _fill_day(slots, make_appointment, TUESDAY)

        with pytest.raises(SlotConflictError) as excinfo:
            resolver.validate(None, at(TUESDAY, 10), booked)

        assert excinfo.value.suggestions == [
            at(WEDNESDAY, 10),
            at(WEDNESDAY, 9, 30),
            at(WEDNESDAY, 10, 30),
        ]


class TestSuggest:
    def test_limits_to_three(self, resolver: RescheduleConflictResolver) -> None:
        assert len(resolver.suggest(at(TUESDAY, 13), [])) == 3

    def test_skips_sunday_when_saturday_is_full(
        self,
        resolver: RescheduleConflictResolver,
        slots: SlotAvailabilityCalculator,
        make_appointment: MakeAppointment,
    ) -> None:
        saturday = dt.date(2026, 3, 7)
        booked = _fill_day(slots, make_appointment, saturday)

        suggestions = resolver.suggest(at(saturday, 9), booked)

        assert [s.date() for s in suggestions] == [dt.date(2026, 3, 9)] * 3
        assert suggestions[0] == at(dt.date(2026, 3, 9), 9)

    def test_empty_when_nothing_free_within_lookahead(
        self,
        resolver: RescheduleConflictResolver,
        slots: SlotAvailabilityCalculator,
        make_appointment: MakeAppointment,
    ) -> None:
        booked = [
            appointment
            for offset in range(9)
            for appointment in _fill_day(
                slots, make_appointment, TUESDAY + dt.timedelta(days=offset)
            )
        ]

        assert resolver.suggest(at(TUESDAY, 10), booked) == []

    def test_suggestions_are_in_clinic_timezone(
        self, resolver: RescheduleConflictResolver, slots: SlotAvailabilityCalculator
    ) -> None:
        requested = dt.datetime(2026, 3, 3, 16, 0, tzinfo=dt.timezone.utc)

        suggestions = resolver.suggest(requested, [])

        assert suggestions[0] == at(TUESDAY, 10)
        assert all(s.tzinfo == slots.timezone for s in suggestions)
