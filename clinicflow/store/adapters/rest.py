import datetime as dt
from typing import Any

import httpx
from loguru import logger

from clinicflow.domain.exceptions import (
    AppointmentNotFoundError,
    DuplicatePatientError,
    IllegalTransitionError,
    SchedulingError,
    SlotConflictError,
    TransientError,
    UnknownOutcomeError,
    ValidationError,
    VersionConflictError,
)
from clinicflow.domain.models import (
    Appointment,
    AppointmentHistoryEntry,
    AppointmentRequest,
    AppointmentStatus,
    PatientFields,
)

_REST_PREFIX = "/rest/v1"


class RestAppointmentStore:
    """Appointment store backed by a PostgREST-style HTTP API.

    Reads go to table endpoints. Writes go to RPC functions that perform the
    uniqueness and version checks inside one database transaction and answer
    with a row of the form ``{"success", "message", "code", ...}``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout_seconds: float = 10.0,
    ) -> None:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout_seconds
        )

    async def _get(self, path: str, params: list[tuple[str, str]]) -> list[dict[str, Any]]:
        try:
            resp = await self._client.get(f"{_REST_PREFIX}/{path}", params=params)
            resp.raise_for_status()
            rows: list[dict[str, Any]] = resp.json()
        except httpx.TimeoutException as exc:
            raise TransientError(f"Store read timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise TransientError(
                f"Store read failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise TransientError(f"Store read failed: {exc}") from exc
        return rows

    async def _rpc(self, function: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.post(f"{_REST_PREFIX}/rpc/{function}", json=payload)
        except httpx.TimeoutException as exc:
            raise UnknownOutcomeError(f"{function} timed out; re-read state") from exc
        except httpx.HTTPError as exc:
            raise UnknownOutcomeError(f"{function} request failed: {exc}") from exc

        if resp.status_code == 409:
            # unique index on active (doctor_id, scheduled_at)
            requested = payload.get("p_scheduled_at") or payload.get("p_new_scheduled_at")
            raise SlotConflictError(dt.datetime.fromisoformat(str(requested)))
        if 400 <= resp.status_code < 500:
            raise ValidationError(self._error_message(resp))
        if resp.status_code >= 500:
            raise UnknownOutcomeError(
                f"{function} failed with status {resp.status_code}; re-read state"
            )

        data: Any = resp.json()
        row: dict[str, Any] = (data[0] if data else {}) if isinstance(data, list) else data
        if not row.get("success"):
            raise self._rpc_error(row, payload)
        return row

    def _error_message(self, resp: httpx.Response) -> str:
        try:
            body: dict[str, Any] = resp.json()
        except ValueError:
            return f"Request rejected with status {resp.status_code}"
        return str(body.get("message") or body.get("error") or "Request rejected")

    def _rpc_error(self, row: dict[str, Any], payload: dict[str, Any]) -> SchedulingError:
        code: str = row.get("code") or ""
        message: str = row.get("message") or "Store rejected the request"
        appointment_id = str(payload.get("p_appointment_id", ""))
        logger.warning("Store RPC rejected request: code={}, message={}", code, message)

        if code == "slot_conflict":
            requested = payload.get("p_scheduled_at") or payload.get("p_new_scheduled_at")
            return SlotConflictError(dt.datetime.fromisoformat(str(requested)))
        if code == "version_conflict":
            actual = row.get("current_version")
            return VersionConflictError(
                appointment_id,
                dt.datetime.fromisoformat(str(payload["p_expected_updated_at"])),
                dt.datetime.fromisoformat(actual) if actual else None,
            )
        if code == "not_found":
            return AppointmentNotFoundError(appointment_id)
        if code == "duplicate_patient":
            return DuplicatePatientError(row.get("existing_patient_id"))
        if code == "invalid_transition" and row.get("current_status"):
            requested_status = payload.get("p_status") or AppointmentStatus.RESCHEDULED.value
            return IllegalTransitionError(
                AppointmentStatus(row["current_status"]), AppointmentStatus(requested_status)
            )
        return ValidationError(message, row.get("field"))

    async def list_appointments(
        self,
        start: dt.datetime,
        end: dt.datetime,
        exclude_statuses: frozenset[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        params = [
            ("scheduled_at", f"gte.{start.isoformat()}"),
            ("scheduled_at", f"lt.{end.isoformat()}"),
            ("order", "scheduled_at.asc"),
        ]
        if exclude_statuses:
            excluded = ",".join(sorted(s.value for s in exclude_statuses))
            params.append(("status", f"not.in.({excluded})"))
        rows = await self._get("appointments", params)
        return [Appointment.model_validate(row) for row in rows]

    async def get_appointment(self, appointment_id: str) -> Appointment:
        rows = await self._get("appointments", [("id", f"eq.{appointment_id}")])
        if not rows:
            raise AppointmentNotFoundError(appointment_id)
        return Appointment.model_validate(rows[0])

    async def list_history(self, appointment_id: str) -> list[AppointmentHistoryEntry]:
        rows = await self._get(
            "appointment_history",
            [("appointment_id", f"eq.{appointment_id}"), ("order", "changed_at.asc")],
        )
        return [AppointmentHistoryEntry.model_validate(row) for row in rows]

    async def create_patient(self, fields: PatientFields) -> str:
        payload = {f"p_{key}": value for key, value in fields.model_dump(mode="json").items()}
        row = await self._rpc("create_patient", payload)
        return str(row["patient_id"])

    async def create_appointment(self, patient_id: str, request: AppointmentRequest) -> str:
        row = await self._rpc(
            "create_appointment",
            {
                "p_patient_id": patient_id,
                "p_scheduled_at": request.scheduled_at.isoformat(),
                "p_reason_for_visit": request.reason_for_visit.value,
                "p_is_first_visit": request.is_first_visit,
                "p_doctor_id": request.doctor_id,
                "p_brief_notes": request.brief_notes,
            },
        )
        return str(row["appointment_id"])

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        reason: str,
        expected_version: dt.datetime,
    ) -> Appointment:
        row = await self._rpc(
            "update_appointment_status",
            {
                "p_appointment_id": appointment_id,
                "p_status": new_status.value,
                "p_reason": reason,
                "p_expected_updated_at": expected_version.isoformat(),
            },
        )
        return Appointment.model_validate(row["appointment"])

    async def reschedule_appointment(
        self,
        appointment_id: str,
        new_datetime: dt.datetime,
        expected_version: dt.datetime,
    ) -> Appointment:
        row = await self._rpc(
            "reschedule_appointment",
            {
                "p_appointment_id": appointment_id,
                "p_new_scheduled_at": new_datetime.isoformat(),
                "p_expected_updated_at": expected_version.isoformat(),
            },
        )
        return Appointment.model_validate(row["appointment"])

    async def health_check(self) -> bool:
        try:
            resp = await self._client.get(f"{_REST_PREFIX}/")
            resp.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.warning("Store health check failed: {}", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("REST appointment store client closed")
