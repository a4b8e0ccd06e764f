import asyncio
import datetime as dt
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from clinicflow.domain.exceptions import SchedulingError, TransientError, UnknownOutcomeError
from clinicflow.domain.models import (
    Appointment,
    AppointmentHistoryEntry,
    AppointmentRequest,
    AppointmentStatus,
    PatientFields,
)
from clinicflow.store.ports import AbstractAppointmentRepository, AppointmentStoreProtocol

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Transient store error on attempt {}, backing off: {}",
        retry_state.attempt_number,
        exc,
    )


class AppointmentRepository(AbstractAppointmentRepository):
    """Repository that delegates to an AppointmentStoreProtocol and enforces the
    failure semantics of the store boundary.

    Every call is bounded by ``timeout_seconds``. Reads that time out or fail
    unexpectedly become :class:`TransientError` and are retried with capped
    exponential backoff. Writes are never retried: a timeout becomes
    :class:`UnknownOutcomeError`, since the write may have been applied.
    """

    def __init__(
        self,
        store: AppointmentStoreProtocol,
        *,
        timeout_seconds: float = 10.0,
        read_retry_attempts: int = 3,
        retry_base_seconds: float = 0.25,
        retry_max_wait_seconds: float = 4.0,
    ) -> None:
        self._store = store
        self._timeout = timeout_seconds
        self._read_attempts = max(1, read_retry_attempts)
        self._retry_base = retry_base_seconds
        self._retry_max_wait = retry_max_wait_seconds

    async def _read(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._read_attempts),
            wait=wait_exponential(multiplier=self._retry_base, max=self._retry_max_wait),
            retry=retry_if_exception_type(TransientError),
            before_sleep=_log_retry,
            reraise=True,
        )
        return await retrying(self._guarded_read, operation, call)

    async def _guarded_read(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self._timeout)
        except TimeoutError as exc:
            raise TransientError(f"{operation} timed out after {self._timeout}s") from exc
        except SchedulingError:
            raise
        except Exception as exc:
            raise TransientError(f"{operation} failed: {exc}") from exc

    async def _write(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self._timeout)
        except TimeoutError as exc:
            logger.warning("{} timed out; outcome unknown until state is re-read", operation)
            raise UnknownOutcomeError(
                f"{operation} timed out after {self._timeout}s; re-read state before retrying"
            ) from exc
        except SchedulingError:
            raise
        except Exception as exc:
            raise UnknownOutcomeError(f"{operation} failed: {exc}") from exc

    async def list_appointments(
        self,
        start: dt.datetime,
        end: dt.datetime,
        exclude_statuses: frozenset[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        return await self._read(
            "List appointments",
            lambda: self._store.list_appointments(start, end, exclude_statuses),
        )

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return await self._read(
            "Get appointment", lambda: self._store.get_appointment(appointment_id)
        )

    async def list_history(self, appointment_id: str) -> list[AppointmentHistoryEntry]:
        return await self._read(
            "List appointment history", lambda: self._store.list_history(appointment_id)
        )

    async def create_patient(self, fields: PatientFields) -> str:
        patient_id = await self._write("Create patient", lambda: self._store.create_patient(fields))
        logger.info("Patient created: id={}", patient_id)
        return patient_id

    async def create_appointment(self, patient_id: str, request: AppointmentRequest) -> str:
        logger.info(
            "Creating appointment: patient={}, scheduled_at={}",
            patient_id,
            request.scheduled_at.isoformat(),
        )
        appointment_id = await self._write(
            "Create appointment",
            lambda: self._store.create_appointment(patient_id, request),
        )
        logger.info("Appointment created: id={}", appointment_id)
        return appointment_id

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        reason: str,
        expected_version: dt.datetime,
    ) -> Appointment:
        appointment = await self._write(
            "Update appointment status",
            lambda: self._store.update_appointment_status(
                appointment_id, new_status, reason, expected_version
            ),
        )
        logger.info("Appointment {} is now {}", appointment_id, appointment.status.value)
        return appointment

    async def reschedule_appointment(
        self,
        appointment_id: str,
        new_datetime: dt.datetime,
        expected_version: dt.datetime,
    ) -> Appointment:
        appointment = await self._write(
            "Reschedule appointment",
            lambda: self._store.reschedule_appointment(
                appointment_id, new_datetime, expected_version
            ),
        )
        logger.info("Appointment {} rescheduled as {}", appointment_id, appointment.id)
        return appointment

    async def health_check(self) -> bool:
        return await self._store.health_check()

    async def close(self) -> None:
        await self._store.close()
