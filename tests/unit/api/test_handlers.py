"""Unit tests for the JSON request handlers."""

import datetime as dt
from typing import Any
from unittest.mock import AsyncMock

import pytest
from conftest import NOW, SUNDAY, TUESDAY, MakeAppointment, at

from clinicflow.api.handlers import SchedulingHandlers, error_payload
from clinicflow.domain.clock import FixedClock
from clinicflow.domain.exceptions import (
    PartialAdmissionFailureError,
    SlotConflictError,
    TooLateToRescheduleError,
    UnknownOutcomeError,
)
from clinicflow.domain.models import Appointment, AppointmentStatus
from clinicflow.scheduling.service import SchedulingService
from clinicflow.store.adapters.memory import InMemoryAppointmentStore

# Fixtures (store, service, make_appointment) provided by tests/conftest.py


@pytest.fixture
def handlers(service: SchedulingService) -> SchedulingHandlers:
    return SchedulingHandlers(service)


@pytest.fixture
def booked(store: InMemoryAppointmentStore, make_appointment: MakeAppointment) -> Appointment:
    return store.add_appointment(make_appointment(at(TUESDAY, 10)))


def _admission_payload(**appointment: Any) -> dict[str, Any]:
    return {
        "patient": {
            "name": "Luis",
            "lastName": "Garcia",
            "birthDate": "1970-06-30",
            "primaryDiagnosis": "UMBILICAL_HERNIA",
        },
        "appointment": {
            "scheduledAt": at(TUESDAY, 9).isoformat(),
            "reasonForVisit": "UMBILICAL_HERNIA",
            **appointment,
        },
    }


class TestGetAvailableSlots:
    @pytest.mark.asyncio
    async def test_returns_hhmm_strings(
        self, handlers: SchedulingHandlers, booked: Appointment
    ) -> None:
        result = await handlers.get_available_slots({"date": TUESDAY.isoformat()})

        assert result["success"] is True
        assert result["slots"][:3] == ["09:00", "09:30", "10:30"]
        assert "10:00" not in result["slots"]

    @pytest.mark.asyncio
    async def test_non_work_day_is_empty_not_error(self, handlers: SchedulingHandlers) -> None:
        result = await handlers.get_available_slots({"date": SUNDAY.isoformat()})

        assert result == {"success": True, "date": "2026-03-08", "slots": []}

    @pytest.mark.parametrize("value", ["03/03/2026", None, 20260303], ids=["us", "none", "int"])
    @pytest.mark.asyncio
    async def test_bad_date_is_validation_error(
        self, handlers: SchedulingHandlers, value: Any
    ) -> None:
        result = await handlers.get_available_slots({"date": value})

        assert result["success"] is False
        assert result["error"] == "validation_error"
        assert result["field"] == "date"


class TestGetActionAvailability:
    @pytest.mark.asyncio
    async def test_lists_actions_and_reasons(
        self, handlers: SchedulingHandlers, booked: Appointment
    ) -> None:
        result = await handlers.get_action_availability({"appointmentId": booked.id})

        assert result["success"] is True
        assert result["primary"] == "cancel"
        assert result["secondary"] == ["reschedule", "viewHistory"]
        assert result["reasons"]["checkIn"] == "available in 1530 minutes"

    @pytest.mark.asyncio
    async def test_unknown_id(self, handlers: SchedulingHandlers) -> None:
        result = await handlers.get_action_availability({"appointmentId": "missing"})

        assert result["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_missing_id(self, handlers: SchedulingHandlers) -> None:
        result = await handlers.get_action_availability({})

        assert result["field"] == "appointmentId"


class TestSubmitAdmission:
    @pytest.mark.asyncio
    async def test_success(
        self, handlers: SchedulingHandlers, store: InMemoryAppointmentStore
    ) -> None:
        result = await handlers.submit_admission(_admission_payload())

        assert result["success"] is True
        assert result["patientId"] in store.patients
        assert result["appointmentId"] in store.appointments

    @pytest.mark.asyncio
    async def test_field_errors_are_listed(self, handlers: SchedulingHandlers) -> None:
        payload = _admission_payload()
        payload["patient"]["age"] = 130
        payload["patient"]["email"] = "not-an-email"

        result = await handlers.submit_admission(payload)

        assert result["error"] == "validation_error"
        fields = {f["field"] for f in result["fields"]}
        assert fields == {"patient.age", "patient.email"}

    @pytest.mark.asyncio
    async def test_naive_datetime_is_rejected(self, handlers: SchedulingHandlers) -> None:
        result = await handlers.submit_admission(
            _admission_payload(scheduledAt="2026-03-03T09:00:00")
        )

        assert result["error"] == "validation_error"
        assert result["fields"][0]["field"] == "appointment.scheduledAt"

    @pytest.mark.asyncio
    async def test_taken_slot_includes_suggestions(
        self,
        handlers: SchedulingHandlers,
        store: InMemoryAppointmentStore,
        make_appointment: MakeAppointment,
    ) -> None:
        store.add_appointment(make_appointment(at(TUESDAY, 9)))

        result = await handlers.submit_admission(_admission_payload())

        assert result["error"] == "slot_conflict"
        assert result["suggestions"][0] == at(TUESDAY, 9, 30).isoformat()

    @pytest.mark.asyncio
    async def test_far_future_date_is_validation_error(
        self, handlers: SchedulingHandlers, store: InMemoryAppointmentStore
    ) -> None:
        result = await handlers.submit_admission(
            _admission_payload(scheduledAt="9999-12-30T10:00:00-06:00")
        )

        assert result["error"] == "validation_error"
        assert result["field"] == "scheduledAt"
        assert store.patients == {}

    @pytest.mark.asyncio
    async def test_partial_failure_exposes_patient_id_for_resume(
        self, handlers: SchedulingHandlers, store: InMemoryAppointmentStore
    ) -> None:
        store.fail("create_appointment", UnknownOutcomeError("lost"))

        failed = await handlers.submit_admission(_admission_payload())
        resumed = await handlers.submit_admission(
            {**_admission_payload(), "patientId": failed["patientId"]}
        )

        assert failed["error"] == "partial_admission_failure"
        assert resumed["success"] is True
        assert resumed["patientId"] == failed["patientId"]
        assert len(store.patients) == 1


class TestRequestReschedule:
    @pytest.mark.asyncio
    async def test_success_returns_camel_case_record(
        self, handlers: SchedulingHandlers, booked: Appointment
    ) -> None:
        result = await handlers.request_reschedule(
            {"appointmentId": booked.id, "scheduledAt": at(TUESDAY, 11).isoformat()}
        )

        assert result["success"] is True
        assert result["appointment"]["rescheduledFromId"] == booked.id
        assert result["appointment"]["status"] == "SCHEDULED"

    @pytest.mark.asyncio
    async def test_too_late_reports_cutoff(
        self, handlers: SchedulingHandlers, booked: Appointment, clock: FixedClock
    ) -> None:
        clock.set(at(TUESDAY, 9))

        result = await handlers.request_reschedule(
            {"appointmentId": booked.id, "scheduledAt": at(TUESDAY, 13).isoformat()}
        )

        assert result["error"] == "too_late_to_reschedule"
        assert result["cutoff"] == at(TUESDAY, 8).isoformat()
        assert result["action"] == "reschedule"

    @pytest.mark.asyncio
    async def test_naive_datetime_is_rejected(
        self, handlers: SchedulingHandlers, booked: Appointment
    ) -> None:
        result = await handlers.request_reschedule(
            {"appointmentId": booked.id, "scheduledAt": "2026-03-03T11:00:00"}
        )

        assert result["field"] == "scheduledAt"
        assert "UTC offset" in result["message"]

    @pytest.mark.asyncio
    async def test_far_future_date_is_validation_error(
        self, handlers: SchedulingHandlers, booked: Appointment
    ) -> None:
        result = await handlers.request_reschedule(
            {"appointmentId": booked.id, "scheduledAt": "9999-12-30T10:00:00-06:00"}
        )

        assert result["error"] == "validation_error"
        assert result["field"] == "scheduledAt"


class TestPerformAction:
    @pytest.mark.asyncio
    async def test_cancel(self, handlers: SchedulingHandlers, booked: Appointment) -> None:
        result = await handlers.perform_action(
            {
                "appointmentId": booked.id,
                "action": "cancel",
                "expectedVersion": booked.updated_at.isoformat(),
                "reason": "patient travelling",
            }
        )

        assert result["success"] is True
        assert result["appointment"]["status"] == AppointmentStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_stale_version(self, handlers: SchedulingHandlers, booked: Appointment) -> None:
        result = await handlers.perform_action(
            {
                "appointmentId": booked.id,
                "action": "cancel",
                "expectedVersion": (NOW - dt.timedelta(hours=1)).isoformat(),
            }
        )

        assert result["error"] == "version_conflict"
        assert result["currentVersion"] == NOW.isoformat()

    @pytest.mark.parametrize(
        ("action", "message"),
        [("teleport", "Unknown action"), ("reschedule", "own endpoint")],
        ids=["unknown", "reschedule"],
    )
    @pytest.mark.asyncio
    async def test_rejected_actions(
        self, handlers: SchedulingHandlers, booked: Appointment, action: str, message: str
    ) -> None:
        result = await handlers.perform_action(
            {
                "appointmentId": booked.id,
                "action": action,
                "expectedVersion": NOW.isoformat(),
            }
        )

        assert result["field"] == "action"
        assert message in result["message"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, booked: Appointment) -> None:
        service = AsyncMock(spec=SchedulingService)
        service.perform_action.side_effect = RuntimeError("boom")
        handlers = SchedulingHandlers(service)

        result = await handlers.perform_action(
            {
                "appointmentId": booked.id,
                "action": "cancel",
                "expectedVersion": NOW.isoformat(),
            }
        )

        assert result["error"] == "internal_error"
        assert "boom" not in result["message"]


class TestGetHistory:
    @pytest.mark.asyncio
    async def test_returns_entries(
        self, handlers: SchedulingHandlers, booked: Appointment
    ) -> None:
        await handlers.request_reschedule(
            {"appointmentId": booked.id, "scheduledAt": at(TUESDAY, 11).isoformat()}
        )

        result = await handlers.get_history({"appointmentId": booked.id})

        assert result["history"][0]["fieldChanged"] == "status"
        assert result["history"][0]["valueAfter"] == "RESCHEDULED"


class TestErrorPayload:
    def test_partial_failure_with_slot_conflict(self) -> None:
        conflict = SlotConflictError(at(TUESDAY, 10), [at(TUESDAY, 10, 30)])

        body = error_payload(PartialAdmissionFailureError("p-1", str(conflict), conflict))

        assert body["patientId"] == "p-1"
        assert body["suggestions"] == [at(TUESDAY, 10, 30).isoformat()]

    def test_business_rule_carries_action(self) -> None:
        body = error_payload(TooLateToRescheduleError("too late", at(TUESDAY, 8)))

        assert body == {
            "success": False,
            "error": "too_late_to_reschedule",
            "message": "too late",
            "cutoff": at(TUESDAY, 8).isoformat(),
            "action": "reschedule",
        }
