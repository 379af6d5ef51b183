"""Pydantic models for the reservation core.

These models define practitioners, slot instances, slot locks and
appointments as they flow between storage, protocol and transports.
"""

import re
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from slotguard.config import (
    CODE_DIGITS,
    CODE_TTL_MINUTES,
    ELIGIBILITY_HOURS,
    LOCK_TTL_MINUTES,
)
from slotguard.constants import (
    ActorRole,
    AppointmentStatus,
    BookingType,
    ConsultationMode,
    LockStatus,
    RefundStatus,
    Weekday,
)

_HHMM = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def normalize_hhmm(value: str) -> str:
    """Validate an HH:MM time-of-day string and zero-pad it.

    Args:
        value: Time string such as "9:00" or "09:00"

    Returns:
        Zero-padded "HH:MM" string

    Raises:
        ValueError: If the string is not a valid 24h time
    """
    match = _HHMM.match(value.strip())
    if match is None:
        raise ValueError(f"Time must be in HH:MM format, got {value!r}")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


# =============================================================================
# Error Types
# =============================================================================


class ErrorKind(str, Enum):
    """Types of errors the reservation core reports."""

    SLOT_UNAVAILABLE = "slot_unavailable"  # Locked or booked by someone else
    INVALID_CODE = "invalid_code"  # Wrong verification code, retryable
    CODE_EXPIRED = "code_expired"
    LOCK_EXPIRED = "lock_expired"
    UNAUTHORIZED = "unauthorized"  # Requester does not own the lock
    INVALID_STATE = "invalid_state"  # e.g. double confirmation
    CANNOT_CANCEL = "cannot_cancel"
    CANNOT_RESCHEDULE = "cannot_reschedule"
    LOCK_NOT_FOUND = "lock_not_found"
    APPOINTMENT_NOT_FOUND = "appointment_not_found"
    PRACTITIONER_NOT_FOUND = "practitioner_not_found"
    SLOT_NOT_OFFERED = "slot_not_offered"
    INVALID_TEMPLATE = "invalid_template"


class ReservationErrorInfo(BaseModel):
    """Structured error information returned to callers."""

    kind: ErrorKind = Field(description="Category of error")
    message: str = Field(description="Human-readable error message")
    retryable: bool = Field(default=False, description="Whether retrying can succeed")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    details: dict[str, Any] = Field(default_factory=dict, description="Additional context")


# =============================================================================
# Availability
# =============================================================================


class SlotRange(BaseModel):
    """A time-of-day range offered in one consultation mode."""

    model_config = ConfigDict(frozen=True)

    start: str = Field(description="Start time, HH:MM")
    end: str = Field(description="End time, HH:MM")
    mode: ConsultationMode

    @field_validator("start", "end")
    @classmethod
    def _normalize_time(cls, value: str) -> str:
        return normalize_hhmm(value)

    @model_validator(mode="after")
    def _check_order(self) -> "SlotRange":
        if self.start >= self.end:
            raise ValueError(f"Slot start {self.start} must be before end {self.end}")
        return self

    def overlaps(self, other: "SlotRange") -> bool:
        """Check whether two ranges of the same mode overlap."""
        return self.mode == other.mode and self.start < other.end and other.start < self.end


class Practitioner(BaseModel):
    """The slice of a practitioner profile the reservation core reads."""

    id: str
    name: str
    timezone: str = "UTC"
    is_active: bool = True
    consultation_modes: list[ConsultationMode] = Field(default_factory=list)
    fees: dict[ConsultationMode, float] = Field(
        default_factory=dict, description="Consultation fee per mode"
    )
    availability: dict[Weekday, list[SlotRange]] = Field(
        default_factory=dict, description="Weekly template"
    )
    created_at: datetime | None = None

    @field_validator("fees")
    @classmethod
    def _non_negative_fees(cls, value: dict) -> dict:
        for mode, fee in value.items():
            if fee < 0:
                raise ValueError(f"Fee for {mode} cannot be negative")
        return value

    def offers(self, mode: ConsultationMode) -> bool:
        """Check whether the practitioner consults in the given mode."""
        return mode in self.consultation_modes

    def fee_for(self, mode: ConsultationMode) -> float:
        """Look up the current fee for a mode (0 when unpriced)."""
        return float(self.fees.get(mode, 0.0))


class SlotInstance(BaseModel):
    """One concrete bookable unit: practitioner, date, time range, mode.

    Two instances are the same slot iff all five fields are equal.
    """

    model_config = ConfigDict(frozen=True)

    practitioner_id: str
    slot_date: date
    start: str
    end: str
    mode: ConsultationMode

    @field_validator("start", "end")
    @classmethod
    def _normalize_time(cls, value: str) -> str:
        return normalize_hhmm(value)

    @model_validator(mode="after")
    def _check_order(self) -> "SlotInstance":
        if self.start >= self.end:
            raise ValueError(f"Slot start {self.start} must be before end {self.end}")
        return self

    @property
    def range(self) -> SlotRange:
        return SlotRange(start=self.start, end=self.end, mode=self.mode)

    def key(self) -> tuple[str, str, str, str, str]:
        """Return the tuple the storage uniqueness indexes are built on."""
        return (
            self.practitioner_id,
            self.slot_date.isoformat(),
            self.start,
            self.end,
            self.mode.value,
        )

    def __str__(self) -> str:
        return (
            f"{self.practitioner_id} {self.slot_date.isoformat()} "
            f"{self.start}-{self.end} {self.mode.value}"
        )


class SlotAvailability(BaseModel):
    """A template slot on a concrete date, marked free or taken."""

    start: str
    end: str
    mode: ConsultationMode
    available: bool


# =============================================================================
# Locks
# =============================================================================


class SlotLock(BaseModel):
    """A time-boxed provisional claim on a slot pending code verification."""

    id: str
    practitioner_id: str
    requester_id: str
    slot_date: date
    start: str
    end: str
    mode: ConsultationMode
    verification_code: str = Field(repr=False, exclude=True)
    consultation_fee: float = Field(description="Fee captured when the lock was taken")
    status: LockStatus = LockStatus.LOCKED
    lock_expires_at: datetime
    code_expires_at: datetime
    created_at: datetime
    confirmed_at: datetime | None = None
    appointment_id: str | None = None

    @property
    def slot(self) -> SlotInstance:
        return SlotInstance(
            practitioner_id=self.practitioner_id,
            slot_date=self.slot_date,
            start=self.start,
            end=self.end,
            mode=self.mode,
        )


class LockReceipt(BaseModel):
    """What a requester gets back from reserving a slot."""

    lock_id: str
    expires_at: datetime
    code_expires_at: datetime
    consultation_fee: float
    verification_code: str | None = Field(
        default=None,
        description="Only populated when codes are exposed for development",
    )


# =============================================================================
# Appointments
# =============================================================================


class CancellationInfo(BaseModel):
    """Audit record of a cancellation."""

    cancelled_by: ActorRole
    cancelled_at: datetime
    reason: str | None = None
    refund_amount: float = 0.0
    refund_status: RefundStatus = RefundStatus.PENDING


class ReschedulingInfo(BaseModel):
    """Where an appointment was before it was moved."""

    original_date: date
    original_start: str
    original_end: str
    original_mode: ConsultationMode
    rescheduled_by: ActorRole
    rescheduled_at: datetime
    reason: str | None = None


class Appointment(BaseModel):
    """A durable committed booking."""

    id: str
    patient_id: str
    practitioner_id: str
    appointment_date: date
    start: str
    end: str
    mode: ConsultationMode
    consultation_fee: float
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    booking_type: BookingType = BookingType.NEW
    original_appointment_id: str | None = None
    lock_id: str | None = None
    created_at: datetime
    updated_at: datetime
    cancellation: CancellationInfo | None = None
    rescheduling: ReschedulingInfo | None = None

    @property
    def slot(self) -> SlotInstance:
        return SlotInstance(
            practitioner_id=self.practitioner_id,
            slot_date=self.appointment_date,
            start=self.start,
            end=self.end,
            mode=self.mode,
        )

    @property
    def is_active(self) -> bool:
        return self.status.value in AppointmentStatus.active()


class AppointmentView(Appointment):
    """Appointment plus the eligibility flags computed at read time."""

    can_cancel: bool = False
    can_reschedule: bool = False


# =============================================================================
# Policy
# =============================================================================


class ReservationPolicy(BaseModel):
    """Timings that govern locks, codes and the eligibility window.

    Defaults come from the environment (see slotguard.config).
    """

    lock_ttl_minutes: int = Field(default=LOCK_TTL_MINUTES, gt=0)
    code_ttl_minutes: int = Field(default=CODE_TTL_MINUTES, gt=0)
    code_digits: int = Field(default=CODE_DIGITS, ge=4, le=12)
    eligibility_hours: int = Field(default=ELIGIBILITY_HOURS, ge=0)

    @property
    def lock_ttl(self) -> timedelta:
        return timedelta(minutes=self.lock_ttl_minutes)

    @property
    def code_ttl(self) -> timedelta:
        return timedelta(minutes=self.code_ttl_minutes)
