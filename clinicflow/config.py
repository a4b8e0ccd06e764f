from enum import Enum
from typing import Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreAdapter(Enum):
    MEMORY = "memory"
    REST = "rest"


class ClinicScheduleConfig(BaseSettings):
    """Working-hours policy of the clinic. Read once at startup, never mutated."""

    model_config = SettingsConfigDict(
        env_prefix="CLINIC_", env_file=".env", extra="ignore", frozen=True
    )

    timezone: str = "America/Mexico_City"
    # ISO weekdays: Monday=1 ... Sunday=7
    work_days: frozenset[int] = frozenset({1, 2, 3, 4, 5, 6})
    start_hour: int = 9
    end_hour: int = 15
    lunch_start: int = 12
    lunch_end: int = 13
    slot_duration_minutes: int = 30
    max_advance_days: int = 60
    check_in_window_before_minutes: int = 30
    check_in_window_after_minutes: int = 15
    reschedule_min_advance_hours: int = 2
    booking_buffer_minutes: int = 30
    reason_max_length: int = 500
    suggestion_limit: int = 3
    suggestion_lookahead_days: int = 7

    @model_validator(mode="after")
    def _check_policy(self) -> Self:
        if not self.work_days:
            raise ValueError("work_days must contain at least one weekday")
        if any(day < 1 or day > 7 for day in self.work_days):
            raise ValueError("work_days must be ISO weekdays (1=Monday ... 7=Sunday)")
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError("start_hour must be before end_hour, both within 0-24")
        if not self.start_hour <= self.lunch_start <= self.lunch_end <= self.end_hour:
            raise ValueError("lunch break must fall inside working hours")
        if self.slot_duration_minutes <= 0 or 60 % self.slot_duration_minutes:
            raise ValueError("slot_duration_minutes must evenly divide an hour")
        if self.max_advance_days < 0:
            raise ValueError("max_advance_days cannot be negative")
        return self


class StoreConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORE_", env_file=".env", extra="ignore")

    adapter: StoreAdapter = StoreAdapter.MEMORY
    base_url: str = "http://localhost:54321"
    api_key: str = ""
    timeout_seconds: float = 10.0
    read_retry_attempts: int = 3
    retry_max_wait_seconds: float = 4.0


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    schedule: ClinicScheduleConfig = Field(default_factory=lambda: ClinicScheduleConfig())
    store: StoreConfig = Field(default_factory=lambda: StoreConfig())
