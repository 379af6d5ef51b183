"""Request models for the reservation HTTP API.

Response bodies reuse the core models (slotguard.models) except for locks,
which are shown without their verification code.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from slotguard.constants import ActorRole, ConsultationMode, LockStatus
from slotguard.models import SlotRange


class ReserveRequest(BaseModel):
    """Request to lock a slot."""

    practitioner_id: str
    slot_date: date
    start: str = Field(description="HH:MM")
    end: str = Field(description="HH:MM")
    mode: ConsultationMode
    requester_id: str


class ConfirmRequest(BaseModel):
    """Request to confirm a lock with its verification code."""

    code: str
    requester_id: str


class BookRequest(BaseModel):
    """Request to book a slot directly, without a lock."""

    practitioner_id: str
    slot_date: date
    start: str
    end: str
    mode: ConsultationMode
    patient_id: str


class CancelRequest(BaseModel):
    """Request to cancel an appointment."""

    actor_role: ActorRole
    reason: str | None = None


class RescheduleRequest(BaseModel):
    """Request to move an appointment to another slot."""

    new_date: date
    new_slot: SlotRange
    actor_role: ActorRole
    reason: str | None = None


class SweepResult(BaseModel):
    """Outcome of a manual lock sweep."""

    released: int


class LockView(BaseModel):
    """A slot lock as shown to clients, without its verification code."""

    id: str
    practitioner_id: str
    requester_id: str
    slot_date: date
    start: str
    end: str
    mode: ConsultationMode
    consultation_fee: float
    status: LockStatus
    lock_expires_at: datetime
    code_expires_at: datetime
    created_at: datetime
    confirmed_at: datetime | None = None
    appointment_id: str | None = None
