import datetime as dt
from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment record."""

    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    IN_CONSULTATION = "IN_CONSULTATION"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


# Statuses that release the slot they were booked on.
NON_BLOCKING_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)


class PatientState(str, Enum):
    AWAITING_CONSULT = "awaiting_consult"
    CONSULTED = "consulted"
    IN_FOLLOW_UP = "in_follow_up"
    OPERATED = "operated"
    NOT_OPERATED = "not_operated"
    UNDECIDED = "undecided"


class Diagnosis(str, Enum):
    """Closed set of clinical categories used for diagnoses and visit reasons."""

    INGUINAL_HERNIA = "INGUINAL_HERNIA"
    UMBILICAL_HERNIA = "UMBILICAL_HERNIA"
    INCISIONAL_HERNIA = "INCISIONAL_HERNIA"
    EPIGASTRIC_HERNIA = "EPIGASTRIC_HERNIA"
    HIATAL_HERNIA = "HIATAL_HERNIA"
    CHOLELITHIASIS = "CHOLELITHIASIS"
    ACUTE_CHOLECYSTITIS = "ACUTE_CHOLECYSTITIS"
    CHRONIC_CHOLECYSTITIS = "CHRONIC_CHOLECYSTITIS"
    CHOLEDOCHOLITHIASIS = "CHOLEDOCHOLITHIASIS"
    GALLBLADDER_POLYPS = "GALLBLADDER_POLYPS"
    OTHER = "OTHER"
    NO_DIAGNOSIS = "NO_DIAGNOSIS"


class Action(str, Enum):
    """Front-office actions that can be offered for an appointment."""

    CHECK_IN = "checkIn"
    START_CONSULT = "startConsult"
    COMPLETE = "complete"
    CANCEL = "cancel"
    NO_SHOW = "noShow"
    RESCHEDULE = "reschedule"
    VIEW_HISTORY = "viewHistory"


ACTION_TO_STATUS: dict[Action, AppointmentStatus | None] = {
    Action.CHECK_IN: AppointmentStatus.CHECKED_IN,
    Action.START_CONSULT: AppointmentStatus.IN_CONSULTATION,
    Action.COMPLETE: AppointmentStatus.COMPLETED,
    Action.CANCEL: AppointmentStatus.CANCELLED,
    Action.NO_SHOW: AppointmentStatus.NO_SHOW,
    Action.RESCHEDULE: AppointmentStatus.RESCHEDULED,
    Action.VIEW_HISTORY: None,
}


class PatientFields(BaseModel):
    """Demographic data captured by the admission form."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
    email: str | None = Field(default=None, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    age: int | None = Field(default=None, ge=0, le=120)
    birth_date: dt.date | None = None
    primary_diagnosis: Diagnosis
    patient_state: PatientState = PatientState.AWAITING_CONSULT
    registration_notes: str | None = Field(default=None, max_length=1000)

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.last_name}"


class Patient(PatientFields):
    """A registered patient."""

    id: str
    registered_at: AwareDatetime


class AppointmentRequest(BaseModel):
    """The time and motive of an appointment to be booked."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    scheduled_at: AwareDatetime
    reason_for_visit: Diagnosis
    is_first_visit: bool = True
    doctor_id: str | None = None
    brief_notes: str | None = Field(default=None, max_length=500)


class Appointment(BaseModel):
    """An appointment record. ``updated_at`` doubles as the version token."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    patient_id: str
    scheduled_at: AwareDatetime
    reason_for_visit: Diagnosis
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    is_first_visit: bool = False
    updated_at: AwareDatetime
    brief_notes: str | None = None
    doctor_id: str | None = None
    rescheduled_from_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status not in NON_BLOCKING_STATUSES


class AppointmentHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    appointment_id: str
    field_changed: str
    value_before: str | None = None
    value_after: str | None = None
    change_reason: str = ""
    changed_at: AwareDatetime


class ActionAvailability(BaseModel):
    """Actions currently legal for one appointment at one instant.

    Computed per request and never cached: eligibility depends on wall-clock time.
    """

    model_config = ConfigDict(frozen=True)

    primary: Action | None = None
    secondary: list[Action] = Field(default_factory=list)
    reasons: dict[Action, str] = Field(default_factory=dict)

    def is_allowed(self, action: Action) -> bool:
        return action == self.primary or action in self.secondary


class AdmissionResult(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    patient_id: str
    appointment_id: str
