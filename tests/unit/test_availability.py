"""Tests for slotguard.availability module."""

from datetime import UTC, date, datetime

import pytest

from slotguard.availability import (
    AvailabilityModel,
    is_offered,
    localize,
    slots_for_date,
    validate_practitioner,
    validate_schedule,
)
from slotguard.constants import ConsultationMode, Weekday
from slotguard.errors import InvalidTemplate
from slotguard.models import SlotInstance, SlotRange

MONDAY = date(2026, 3, 2)
WEDNESDAY = date(2026, 3, 4)


def _range(start: str, end: str, mode: str = "online") -> SlotRange:
    return SlotRange(start=start, end=end, mode=mode)


class TestSlotsForDate:
    """Tests for expanding a weekly template to a date."""

    def test_ordered_by_start_then_mode(self, practitioner):
        """Monday slots should be sorted by start time, then mode."""
        slots = slots_for_date(practitioner, MONDAY)

        assert [(s.start, s.mode.value) for s in slots] == [
            ("09:00", "in-person"),
            ("09:00", "online"),
            ("09:30", "online"),
        ]

    def test_mode_filter(self, practitioner):
        """Only slots in the requested mode should be returned."""
        slots = slots_for_date(practitioner, MONDAY, ConsultationMode.IN_PERSON)

        assert len(slots) == 1
        assert slots[0].mode == ConsultationMode.IN_PERSON

    def test_day_without_template_is_empty(self, practitioner):
        """A weekday with no entries yields an empty list, not an error."""
        assert slots_for_date(practitioner, WEDNESDAY) == []

    def test_is_offered_exact_match(self, practitioner):
        """A slot is offered only if it matches a template entry exactly."""
        offered = SlotInstance(
            practitioner_id="dr-lee", slot_date=MONDAY, start="09:30", end="10:00", mode="online"
        )
        shifted = SlotInstance(
            practitioner_id="dr-lee", slot_date=MONDAY, start="09:15", end="09:45", mode="online"
        )

        assert is_offered(practitioner, offered)
        assert not is_offered(practitioner, shifted)


class TestValidateSchedule:
    """Tests for template validation."""

    def test_overlap_same_mode_rejected(self):
        """Overlapping ranges in the same mode should raise InvalidTemplate."""
        with pytest.raises(InvalidTemplate) as exc_info:
            validate_schedule(
                {Weekday.MONDAY: [_range("09:00", "10:00"), _range("09:30", "10:30")]}
            )

        assert "monday" in exc_info.value.message

    def test_overlap_different_modes_allowed(self):
        """Overlap across modes is allowed."""
        validate_schedule(
            {
                Weekday.MONDAY: [
                    _range("09:00", "10:00", "online"),
                    _range("09:30", "10:30", "in-person"),
                ]
            }
        )

    def test_adjacent_ranges_allowed(self):
        """Back-to-back ranges do not overlap."""
        validate_schedule(
            {Weekday.FRIDAY: [_range("09:00", "09:30"), _range("09:30", "10:00")]}
        )

    def test_unknown_timezone_rejected(self, practitioner):
        """An unknown timezone name should raise InvalidTemplate."""
        practitioner.timezone = "Mars/Olympus"

        with pytest.raises(InvalidTemplate, match="timezone"):
            validate_practitioner(practitioner)

    def test_unoffered_mode_rejected(self, practitioner):
        """Template entries must use a mode the practitioner offers."""
        practitioner.consultation_modes = [ConsultationMode.ONLINE]

        with pytest.raises(InvalidTemplate, match="in-person"):
            validate_practitioner(practitioner)


class TestSlotRange:
    """Tests for SlotRange validation."""

    def test_zero_pads_times(self):
        """Single-digit hours should be normalized to HH:MM."""
        assert _range("9:00", "9:30").start == "09:00"

    def test_start_must_precede_end(self):
        """A range ending before it starts is invalid."""
        with pytest.raises(ValueError):
            _range("10:00", "09:00")

    def test_rejects_bad_format(self):
        """Non-time strings are invalid."""
        with pytest.raises(ValueError):
            _range("25:00", "26:00")


class TestLocalize:
    """Tests for wall-clock to UTC conversion."""

    def test_utc(self):
        """UTC wall clock maps to the same instant."""
        assert localize(MONDAY, "09:00", "UTC") == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def test_practitioner_timezone(self):
        """Helsinki is UTC+2 in early March."""
        assert localize(MONDAY, "09:00", "Europe/Helsinki") == datetime(
            2026, 3, 2, 7, 0, tzinfo=UTC
        )


class TestAvailabilityModel:
    """Tests for AvailabilityModel backed by storage."""

    def test_registered_practitioner(self, service):
        """Slots come from the stored template."""
        model = AvailabilityModel(service.db)

        assert len(model.get_slots_for_date("dr-lee", MONDAY)) == 3

    def test_unknown_practitioner_is_empty(self, temp_db):
        """Unknown practitioners have no slots."""
        assert AvailabilityModel(temp_db).get_slots_for_date("nobody", MONDAY) == []

    def test_inactive_practitioner_is_empty(self, temp_db, practitioner):
        """Inactive practitioners have no slots."""
        practitioner.is_active = False
        temp_db.save_practitioner(practitioner)

        assert AvailabilityModel(temp_db).get_slots_for_date("dr-lee", MONDAY) == []
