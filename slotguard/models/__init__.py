"""Models for the reservation core."""

from slotguard.models.schemas import (
    Appointment,
    AppointmentView,
    CancellationInfo,
    ErrorKind,
    LockReceipt,
    Practitioner,
    ReschedulingInfo,
    ReservationErrorInfo,
    ReservationPolicy,
    SlotAvailability,
    SlotInstance,
    SlotLock,
    SlotRange,
    normalize_hhmm,
)

__all__ = [
    # Errors
    "ErrorKind",
    "ReservationErrorInfo",
    # Availability
    "Practitioner",
    "SlotAvailability",
    "SlotInstance",
    "SlotRange",
    "normalize_hhmm",
    # Locks
    "LockReceipt",
    "SlotLock",
    # Appointments
    "Appointment",
    "AppointmentView",
    "CancellationInfo",
    "ReschedulingInfo",
    # Policy
    "ReservationPolicy",
]
