from typing import Callable

from loguru import logger

from clinicflow.config import AppConfig, StoreAdapter
from clinicflow.domain.clock import Clock
from clinicflow.store.adapters.memory import InMemoryAppointmentStore
from clinicflow.store.adapters.rest import RestAppointmentStore
from clinicflow.store.ports import AppointmentStoreProtocol
from clinicflow.store.repository import AppointmentRepository


def _build_memory(config: AppConfig, clock: Clock) -> AppointmentStoreProtocol:
    return InMemoryAppointmentStore(clock)


def _build_rest(config: AppConfig, clock: Clock) -> AppointmentStoreProtocol:
    return RestAppointmentStore(
        config.store.base_url,
        api_key=config.store.api_key,
        timeout_seconds=config.store.timeout_seconds,
    )


_BUILDERS: dict[StoreAdapter, Callable[[AppConfig, Clock], AppointmentStoreProtocol]] = {
    StoreAdapter.MEMORY: _build_memory,
    StoreAdapter.REST: _build_rest,
}


def build_repository(config: AppConfig, clock: Clock) -> AppointmentRepository:
    """Build the appointment repository for the configured store adapter."""
    adapter = config.store.adapter
    logger.info("Building appointment repository with adapter: {}", adapter.value)
    return AppointmentRepository(
        _BUILDERS[adapter](config, clock),
        timeout_seconds=config.store.timeout_seconds,
        read_retry_attempts=config.store.read_retry_attempts,
        retry_max_wait_seconds=config.store.retry_max_wait_seconds,
    )
