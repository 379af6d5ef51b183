"""Availability Model - weekly templates expanded to concrete slots.

A practitioner's template maps weekday names to time ranges, each in one
consultation mode. Slots for a date are the template entries for that
date's weekday. Times are wall-clock times in the practitioner's timezone.
"""

import logging
from datetime import date, datetime, time

import pytz

from slotguard.config import DEFAULT_TIMEZONE
from slotguard.constants import ConsultationMode, Weekday
from slotguard.errors import InvalidTemplate
from slotguard.models import Practitioner, SlotInstance, SlotRange
from slotguard.storage import SlotGuardDB

logger = logging.getLogger(__name__)


def validate_schedule(availability: dict[Weekday, list[SlotRange]]) -> None:
    """Reject templates where same-mode ranges overlap within a weekday.

    Raises:
        InvalidTemplate: On the first overlapping pair found
    """
    for weekday, ranges in availability.items():
        ordered = sorted(ranges, key=lambda r: (r.mode.value, r.start))
        for previous, current in zip(ordered, ordered[1:]):
            if previous.overlaps(current):
                raise InvalidTemplate(
                    f"{weekday.value}: {previous.start}-{previous.end} overlaps "
                    f"{current.start}-{current.end} ({current.mode.value})",
                    weekday=weekday.value,
                    mode=current.mode.value,
                )


def validate_practitioner(practitioner: Practitioner) -> None:
    """Check a practitioner profile before it is stored.

    Raises:
        InvalidTemplate: Overlapping ranges, unknown timezone, or a template
            entry in a mode the practitioner does not offer
    """
    try:
        pytz.timezone(practitioner.timezone or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError as e:
        raise InvalidTemplate(
            f"Unknown timezone: {practitioner.timezone}",
            timezone=practitioner.timezone,
        ) from e

    for weekday, ranges in practitioner.availability.items():
        for r in ranges:
            if not practitioner.offers(r.mode):
                raise InvalidTemplate(
                    f"{weekday.value} {r.start}-{r.end}: mode {r.mode.value} "
                    "is not offered",
                    weekday=weekday.value,
                    mode=r.mode.value,
                )

    validate_schedule(practitioner.availability)


def slots_for_date(
    practitioner: Practitioner,
    slot_date: date,
    mode: ConsultationMode | None = None,
) -> list[SlotRange]:
    """Template ranges for the weekday of ``slot_date``, by start then mode."""
    weekday = Weekday.from_index(slot_date.weekday())
    ranges = practitioner.availability.get(weekday, [])
    if mode is not None:
        ranges = [r for r in ranges if r.mode == mode]
    return sorted(ranges, key=lambda r: (r.start, r.mode.value))


def is_offered(practitioner: Practitioner, slot: SlotInstance) -> bool:
    """Check whether the slot is an exact entry of the practitioner's template."""
    return slot.range in slots_for_date(practitioner, slot.slot_date, slot.mode)


def localize(slot_date: date, hhmm: str, timezone: str | None) -> datetime:
    """Turn a wall-clock date + HH:MM in ``timezone`` into an aware UTC datetime."""
    tz = pytz.timezone(timezone or DEFAULT_TIMEZONE)
    hour, minute = (int(part) for part in hhmm.split(":"))
    local = tz.localize(datetime.combine(slot_date, time(hour, minute)))
    return local.astimezone(pytz.utc)


def slot_start(slot: SlotInstance, timezone: str | None) -> datetime:
    """Start instant of a slot, in UTC."""
    return localize(slot.slot_date, slot.start, timezone)


class AvailabilityModel:
    """Reads practitioner templates from storage and expands them by date."""

    def __init__(self, db: SlotGuardDB):
        self.db = db

    def get_practitioner(self, practitioner_id: str) -> Practitioner | None:
        """Get a practitioner who can currently take bookings."""
        practitioner = self.db.get_practitioner(practitioner_id)
        if practitioner is None or not practitioner.is_active:
            return None
        return practitioner

    def get_slots_for_date(
        self,
        practitioner_id: str,
        slot_date: date,
        mode: ConsultationMode | None = None,
    ) -> list[SlotRange]:
        """Template slots for a date.

        Unknown or inactive practitioners and days without a template
        entry yield an empty list.
        """
        practitioner = self.get_practitioner(practitioner_id)
        if practitioner is None:
            logger.debug(f"No active practitioner {practitioner_id}")
            return []
        return slots_for_date(practitioner, slot_date, mode)
