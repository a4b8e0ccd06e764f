import datetime as dt
from collections.abc import Awaitable, Callable
from typing import Any

import pydantic
from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from clinicflow.domain.exceptions import (
    BusinessRuleError,
    CheckInWindowExpiredError,
    IllegalTransitionError,
    PartialAdmissionFailureError,
    SchedulingError,
    SlotConflictError,
    TooLateToRescheduleError,
    ValidationError,
    VersionConflictError,
)
from clinicflow.domain.models import Action, AppointmentRequest, PatientFields
from clinicflow.scheduling.datetime_helpers import time_to_hhmm
from clinicflow.scheduling.service import SchedulingService

Response = dict[str, Any]


class AdmissionPayload(BaseModel):
    """Body of an admission form submission."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    patient: PatientFields
    appointment: AppointmentRequest
    patient_id: str | None = None


def _parse_iso_date(value: object, field_name: str) -> tuple[dt.date | None, str | None]:
    """Parse an ISO 8601 date string. Returns ``(date, None)`` or ``(None, error_msg)``."""
    if not isinstance(value, str):
        return None, f"Invalid date for '{field_name}': must be a string in YYYY-MM-DD format."
    try:
        return dt.date.fromisoformat(value), None
    except ValueError:
        return None, f"Invalid date for '{field_name}': '{value}'. Expected YYYY-MM-DD."


def _parse_aware_datetime(value: object, field_name: str) -> tuple[dt.datetime | None, str | None]:
    """Parse an ISO 8601 datetime that carries a UTC offset."""
    if not isinstance(value, str):
        return None, f"Invalid datetime for '{field_name}': must be an ISO 8601 string."
    try:
        parsed = dt.datetime.fromisoformat(value)
    except ValueError:
        return None, f"Invalid datetime for '{field_name}': '{value}'."
    if parsed.tzinfo is None:
        return None, f"Datetime for '{field_name}' must include a UTC offset."
    return parsed, None


def _invalid(message: str, field: str | None = None) -> Response:
    body: Response = {"success": False, "error": ValidationError.kind, "message": message}
    if field:
        body["field"] = field
    return body


def _field_errors(exc: pydantic.ValidationError) -> Response:
    return {
        "success": False,
        "error": ValidationError.kind,
        "message": "Invalid request.",
        "fields": [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ],
    }


def error_payload(exc: SchedulingError) -> Response:
    """Render an error as a kind-tagged response the UI can explain to the user."""
    body: Response = {"success": False, "error": exc.kind, "message": str(exc)}

    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    elif isinstance(exc, SlotConflictError):
        body["suggestions"] = [s.isoformat() for s in exc.suggestions]
    elif isinstance(exc, PartialAdmissionFailureError):
        body["patientId"] = exc.patient_id
        if isinstance(exc.cause, SlotConflictError):
            body["suggestions"] = [s.isoformat() for s in exc.cause.suggestions]
    elif isinstance(exc, IllegalTransitionError):
        body["currentStatus"] = exc.current.value
        body["requestedStatus"] = exc.requested.value
    elif isinstance(exc, VersionConflictError) and exc.actual_version:
        body["currentVersion"] = exc.actual_version.isoformat()
    elif isinstance(exc, TooLateToRescheduleError):
        body["cutoff"] = exc.cutoff.isoformat()
    elif isinstance(exc, CheckInWindowExpiredError):
        body["windowEnd"] = exc.window_end.isoformat()

    if isinstance(exc, BusinessRuleError):
        body["action"] = exc.action.value
    return body


class SchedulingHandlers:
    """JSON-in / JSON-out adapters over :class:`SchedulingService`.

    Every handler returns ``{"success": True, ...}`` or a kind-tagged error body;
    nothing raises to the caller.
    """

    def __init__(self, service: SchedulingService) -> None:
        self._service = service

    async def _respond(self, operation: str, call: Callable[[], Awaitable[Response]]) -> Response:
        try:
            return {"success": True, **(await call())}
        except SchedulingError as exc:
            return error_payload(exc)
        except Exception:
            logger.exception("Unexpected error in {}", operation)
            return {
                "success": False,
                "error": "internal_error",
                "message": f"An unexpected error occurred during {operation}.",
            }

    async def get_available_slots(self, payload: dict[str, Any]) -> Response:
        date, err = _parse_iso_date(payload.get("date"), "date")
        if err or date is None:
            return _invalid(err or "Invalid date.", "date")

        async def call() -> Response:
            slots = await self._service.get_available_slots(date)
            return {"date": date.isoformat(), "slots": [time_to_hhmm(t) for t in slots]}

        return await self._respond("get_available_slots", call)

    async def get_action_availability(self, payload: dict[str, Any]) -> Response:
        appointment_id: str = payload.get("appointmentId", "")
        if not appointment_id:
            return _invalid("'appointmentId' is required.", "appointmentId")

        async def call() -> Response:
            availability = await self._service.get_action_availability(appointment_id)
            return {
                "appointmentId": appointment_id,
                **availability.model_dump(mode="json"),
            }

        return await self._respond("get_action_availability", call)

    async def submit_admission(self, payload: dict[str, Any]) -> Response:
        try:
            admission = AdmissionPayload.model_validate(payload)
        except pydantic.ValidationError as exc:
            return _field_errors(exc)

        logger.debug("Handling admission submission")

        async def call() -> Response:
            result = await self._service.submit_admission(
                admission.patient, admission.appointment, patient_id=admission.patient_id
            )
            return result.model_dump(by_alias=True)

        return await self._respond("submit_admission", call)

    async def request_reschedule(self, payload: dict[str, Any]) -> Response:
        appointment_id: str = payload.get("appointmentId", "")
        if not appointment_id:
            return _invalid("'appointmentId' is required.", "appointmentId")
        candidate, err = _parse_aware_datetime(payload.get("scheduledAt"), "scheduledAt")
        if err or candidate is None:
            return _invalid(err or "Invalid datetime.", "scheduledAt")

        async def call() -> Response:
            appointment = await self._service.request_reschedule(appointment_id, candidate)
            return {"appointment": appointment.model_dump(mode="json", by_alias=True)}

        return await self._respond("request_reschedule", call)

    async def perform_action(self, payload: dict[str, Any]) -> Response:
        appointment_id: str = payload.get("appointmentId", "")
        if not appointment_id:
            return _invalid("'appointmentId' is required.", "appointmentId")
        try:
            action = Action(payload.get("action"))
        except ValueError:
            return _invalid(f"Unknown action: {payload.get('action')!r}", "action")
        if action in (Action.RESCHEDULE, Action.VIEW_HISTORY):
            return _invalid(f"'{action.value}' has its own endpoint.", "action")
        version, err = _parse_aware_datetime(payload.get("expectedVersion"), "expectedVersion")
        if err or version is None:
            return _invalid(err or "Invalid version token.", "expectedVersion")
        reason = payload.get("reason") or ""
        if not isinstance(reason, str):
            return _invalid("'reason' must be a string.", "reason")

        async def call() -> Response:
            appointment = await self._service.perform_action(
                appointment_id, action, expected_version=version, reason=reason
            )
            return {"appointment": appointment.model_dump(mode="json", by_alias=True)}

        return await self._respond("perform_action", call)

    async def get_history(self, payload: dict[str, Any]) -> Response:
        appointment_id: str = payload.get("appointmentId", "")
        if not appointment_id:
            return _invalid("'appointmentId' is required.", "appointmentId")

        async def call() -> Response:
            entries = await self._service.get_history(appointment_id)
            return {"history": [e.model_dump(mode="json", by_alias=True) for e in entries]}

        return await self._respond("get_history", call)
