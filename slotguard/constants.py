"""Type-safe constants for the reservation core.

Provides enums for consultation modes, record states, actor roles and
weekdays so magic strings stay out of the storage and protocol code.
"""

from enum import StrEnum


class ConsultationMode(StrEnum):
    """Ways a practitioner can hold a consultation."""

    ONLINE = "online"
    IN_PERSON = "in-person"


class LockStatus(StrEnum):
    """States of a slot lock."""

    LOCKED = "locked"
    CONFIRMED = "confirmed"  # terminal
    EXPIRED = "expired"  # terminal

    @classmethod
    def terminal(cls) -> set[str]:
        """Return lock states with no outgoing transition."""
        return {cls.CONFIRMED.value, cls.EXPIRED.value}


class AppointmentStatus(StrEnum):
    """States of a committed appointment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

    @classmethod
    def active(cls) -> tuple[str, ...]:
        """Return states that hold a slot.

        Returns:
            Tuple of status strings covered by the slot uniqueness index
        """
        return (cls.PENDING.value, cls.CONFIRMED.value)


class BookingType(StrEnum):
    """How an appointment row came to exist."""

    NEW = "new"
    RESCHEDULED = "rescheduled"


class ActorRole(StrEnum):
    """Who performed a cancel or reschedule."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class RefundStatus(StrEnum):
    """Refund progress recorded on cancellation."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class Weekday(StrEnum):
    """Weekday names used by availability templates."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        """Map ``date.weekday()`` (Monday=0) to a Weekday."""
        return list(cls)[index]


__all__ = [
    "ActorRole",
    "AppointmentStatus",
    "BookingType",
    "ConsultationMode",
    "LockStatus",
    "RefundStatus",
    "Weekday",
]
