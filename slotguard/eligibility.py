"""Cancel / reschedule eligibility.

An appointment may be cancelled or rescheduled while it is pending or
confirmed and still in the future, and either:

- it was booked less than ``window_hours`` ago (booking grace), or
- it starts at least ``window_hours`` from now.
"""

from datetime import datetime, timedelta

from slotguard.config import ELIGIBILITY_HOURS
from slotguard.models import Appointment


def modification_blocker(
    appointment: Appointment,
    start_at: datetime,
    now: datetime,
    window_hours: int = ELIGIBILITY_HOURS,
) -> str | None:
    """Explain why an appointment cannot be changed.

    Args:
        appointment: Appointment to check
        start_at: Aware start instant of the appointment
        now: Aware current instant
        window_hours: Grace window and minimum notice, in hours

    Returns:
        Reason string, or None if the appointment may be changed
    """
    if not appointment.is_active:
        return f"Appointment is {appointment.status.value}"

    if start_at <= now:
        return "Appointment has already started"

    window = timedelta(hours=window_hours)
    if now - appointment.created_at < window:
        return None

    if start_at - now < window:
        return f"Changes require at least {window_hours}h notice"

    return None


def can_modify(
    appointment: Appointment,
    start_at: datetime,
    now: datetime,
    window_hours: int = ELIGIBILITY_HOURS,
) -> bool:
    """True if the appointment may be cancelled or rescheduled now."""
    return modification_blocker(appointment, start_at, now, window_hours) is None
