"""Exceptions raised by the reservation core.

Every failure a caller can act on is a ReservationError subclass with a
stable ``kind``. Transports (HTTP, CLI) translate the kind, never the class
name.
"""

from slotguard.models import ErrorKind, ReservationErrorInfo


class ReservationError(Exception):
    """Base class for typed reservation failures."""

    kind: ErrorKind = ErrorKind.INVALID_STATE
    retryable: bool = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_error(self) -> ReservationErrorInfo:
        """Convert to the serializable error model."""
        return ReservationErrorInfo(
            kind=self.kind,
            message=self.message,
            retryable=self.retryable,
            details=self.details,
        )


class SlotUnavailable(ReservationError):
    """Slot already locked or booked. Re-query availability and pick again."""

    kind = ErrorKind.SLOT_UNAVAILABLE
    retryable = True


class InvalidCode(ReservationError):
    """Wrong verification code. May be retried until the lock expires."""

    kind = ErrorKind.INVALID_CODE
    retryable = True


class CodeExpired(ReservationError):
    kind = ErrorKind.CODE_EXPIRED


class LockExpired(ReservationError):
    kind = ErrorKind.LOCK_EXPIRED


class Unauthorized(ReservationError):
    kind = ErrorKind.UNAUTHORIZED


class InvalidState(ReservationError):
    kind = ErrorKind.INVALID_STATE


class CannotCancel(ReservationError):
    kind = ErrorKind.CANNOT_CANCEL


class CannotReschedule(ReservationError):
    kind = ErrorKind.CANNOT_RESCHEDULE


class LockNotFound(ReservationError):
    kind = ErrorKind.LOCK_NOT_FOUND


class AppointmentNotFound(ReservationError):
    kind = ErrorKind.APPOINTMENT_NOT_FOUND


class PractitionerNotFound(ReservationError):
    kind = ErrorKind.PRACTITIONER_NOT_FOUND


class SlotNotOffered(ReservationError):
    """Requested range/mode is not part of the practitioner's template."""

    kind = ErrorKind.SLOT_NOT_OFFERED


class InvalidTemplate(ReservationError):
    """Availability template breaks the non-overlap rule."""

    kind = ErrorKind.INVALID_TEMPLATE


__all__ = [
    "AppointmentNotFound",
    "CannotCancel",
    "CannotReschedule",
    "CodeExpired",
    "InvalidCode",
    "InvalidState",
    "InvalidTemplate",
    "LockExpired",
    "LockNotFound",
    "PractitionerNotFound",
    "ReservationError",
    "SlotNotOffered",
    "SlotUnavailable",
    "Unauthorized",
]
