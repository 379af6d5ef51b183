"""Tests for slotguard.protocol module."""

from datetime import UTC, date, datetime
from unittest.mock import MagicMock

import pytest

from slotguard.constants import AppointmentStatus, BookingType, ConsultationMode
from slotguard.errors import (
    CannotCancel,
    PractitionerNotFound,
    SlotNotOffered,
    SlotUnavailable,
)
from slotguard.models import SlotRange
from slotguard.protocol import ReservationService

MONDAY = date(2026, 3, 2)
TUESDAY = date(2026, 3, 3)


def _availability(slots) -> dict:
    return {(s.start, s.mode.value): s.available for s in slots}


class TestListAvailableSlots:
    """Tests for ReservationService.list_available_slots."""

    def test_all_free(self, service):
        """With no locks or bookings every template slot is free."""
        slots = service.list_available_slots("dr-lee", MONDAY)

        assert len(slots) == 3
        assert all(s.available for s in slots)

    def test_locked_and_booked_marked_taken(self, service, reserve_monday):
        """Live locks and active appointments make slots unavailable."""
        reserve_monday()
        service.book_directly("patient-2", "dr-lee", MONDAY, "09:30", "10:00", "online")

        slots = _availability(service.list_available_slots("dr-lee", MONDAY))

        assert slots == {
            ("09:00", "in-person"): True,
            ("09:00", "online"): False,
            ("09:30", "online"): False,
        }

    def test_expired_lock_frees_slot(self, service, reserve_monday, clock):
        """A lock past expiry no longer hides the slot, even before a sweep."""
        reserve_monday()
        clock.advance(minutes=5)

        slots = _availability(service.list_available_slots("dr-lee", MONDAY))

        assert slots[("09:00", "online")] is True

    def test_cancelled_slot_taken_until_lock_lapses(self, service, reserve_monday, clock):
        """A slot confirmed then cancelled stays taken for the rest of its lock window."""
        receipt = reserve_monday()
        appt = service.confirm_reservation(receipt.lock_id, receipt.verification_code, "patient-1")
        service.cancel_appointment(appt.id, "patient")

        slots = _availability(service.list_available_slots("dr-lee", MONDAY))
        assert slots[("09:00", "online")] is False

        clock.advance(minutes=5)
        slots = _availability(service.list_available_slots("dr-lee", MONDAY))
        assert slots[("09:00", "online")] is True

    def test_mode_filter(self, service):
        """Only slots in the requested mode are listed."""
        slots = service.list_available_slots("dr-lee", MONDAY, "in-person")

        assert [s.mode for s in slots] == [ConsultationMode.IN_PERSON]

    def test_started_slots_unavailable(self, service, clock):
        """Slots that already started are not available."""
        clock.set(datetime(2026, 3, 2, 9, 15, tzinfo=UTC))

        slots = _availability(service.list_available_slots("dr-lee", MONDAY))

        assert slots[("09:00", "online")] is False
        assert slots[("09:30", "online")] is True

    def test_unknown_practitioner(self, service):
        """Unknown practitioners have no slots."""
        assert service.list_available_slots("nobody", MONDAY) == []


class TestReserveSlot:
    """Tests for ReservationService.reserve_slot."""

    def test_receipt(self, service, reserve_monday, clock):
        """The receipt carries lock id, expiry and captured fee."""
        receipt = reserve_monday()

        assert receipt.lock_id.startswith("lock_")
        assert receipt.consultation_fee == 40.0
        assert receipt.verification_code is not None
        assert (receipt.expires_at - clock()).total_seconds() == 300

    def test_code_hidden_by_default(self, service, clock):
        """Without expose_codes the receipt does not include the code."""
        quiet = ReservationService(service.db, clock=clock)

        receipt = quiet.reserve_slot("dr-lee", MONDAY, "09:00", "09:30", "online", "p1")

        assert receipt.verification_code is None

    def test_code_delivered(self, service, clock):
        """The delivery hook gets the lock and its code."""
        deliver = MagicMock()
        svc = ReservationService(service.db, clock=clock, deliver_code=deliver)

        receipt = svc.reserve_slot("dr-lee", MONDAY, "09:00", "09:30", "online", "p1")

        lock, code = deliver.call_args.args
        assert lock.id == receipt.lock_id
        assert len(code) == 6

    def test_delivery_failure_keeps_lock(self, service, clock):
        """A failing delivery hook does not undo the lock."""
        svc = ReservationService(
            service.db, clock=clock, deliver_code=MagicMock(side_effect=RuntimeError("smtp"))
        )

        receipt = svc.reserve_slot("dr-lee", MONDAY, "09:00", "09:30", "online", "p1")

        assert service.get_lock(receipt.lock_id).requester_id == "p1"

    def test_range_not_in_template(self, service):
        """A range the practitioner does not offer that day is rejected."""
        with pytest.raises(SlotNotOffered):
            service.reserve_slot("dr-lee", MONDAY, "10:00", "10:30", "online", "p1")

    def test_mode_not_in_template(self, service):
        """A mode not offered for that range is rejected."""
        with pytest.raises(SlotNotOffered):
            service.reserve_slot("dr-lee", MONDAY, "09:30", "10:00", "in-person", "p1")

    def test_invalid_time(self, service):
        """Malformed times are rejected as not offered."""
        with pytest.raises(SlotNotOffered):
            service.reserve_slot("dr-lee", MONDAY, "9am", "10am", "online", "p1")

    def test_past_slot(self, service, clock):
        """A slot that already started cannot be reserved."""
        clock.set(datetime(2026, 3, 2, 9, 0, tzinfo=UTC))

        with pytest.raises(SlotNotOffered, match="past"):
            service.reserve_slot("dr-lee", MONDAY, "09:00", "09:30", "online", "p1")

    def test_unknown_practitioner(self, service):
        """Reserving with an unknown practitioner fails."""
        with pytest.raises(PractitionerNotFound):
            service.reserve_slot("nobody", MONDAY, "09:00", "09:30", "online", "p1")

    def test_fee_frozen_at_lock_time(self, service, practitioner, reserve_monday):
        """A fee change after locking does not affect the appointment."""
        receipt = reserve_monday()
        practitioner.fees[ConsultationMode.ONLINE] = 99.0
        service.register_practitioner(practitioner)

        appt = service.confirm_reservation(
            receipt.lock_id, receipt.verification_code, "patient-1"
        )

        assert appt.consultation_fee == 40.0


class TestExampleScenario:
    """Two patients race for Monday 09:00 online."""

    def test_first_patient_wins(self, service, reserve_monday):
        """P2 is refused while P1 holds the lock and after P1 confirms."""
        receipt = reserve_monday("P1")

        with pytest.raises(SlotUnavailable):
            reserve_monday("P2")

        appt = service.confirm_reservation(receipt.lock_id, receipt.verification_code, "P1")
        assert appt.status == AppointmentStatus.CONFIRMED

        with pytest.raises(SlotUnavailable, match="booked"):
            reserve_monday("P2")


class TestLifecycle:
    """Tests for cancel, reschedule, complete and views."""

    def test_cancel_in_grace_window(self, service, clock):
        """Booked at T for T+2h, cancelled at T+1h: allowed."""
        clock.set(datetime(2026, 3, 2, 7, 0, tzinfo=UTC))
        appt = service.book_directly("patient-1", "dr-lee", MONDAY, "09:00", "09:30", "online")
        clock.advance(hours=1)

        cancelled = service.cancel_appointment(appt.id, "patient", "Conflict")

        assert cancelled.status == AppointmentStatus.CANCELLED

    def test_cancel_too_late(self, service, clock):
        """Booked long ago, 30 minutes before start: refused."""
        appt = service.book_directly("patient-1", "dr-lee", MONDAY, "09:00", "09:30", "online")
        clock.set(datetime(2026, 3, 2, 8, 30, tzinfo=UTC))

        with pytest.raises(CannotCancel):
            service.cancel_appointment(appt.id, "patient")

    def test_reschedule(self, service):
        """Rescheduling validates the new slot against the template."""
        appt = service.book_directly("patient-1", "dr-lee", MONDAY, "09:00", "09:30", "online")

        moved = service.reschedule_appointment(
            appt.id, TUESDAY, SlotRange(start="10:00", end="10:30", mode="online"), "doctor"
        )

        assert moved.booking_type == BookingType.RESCHEDULED
        assert moved.appointment_date == TUESDAY

    def test_reschedule_to_unoffered_slot(self, service):
        """The new slot must exist in the practitioner's template."""
        appt = service.book_directly("patient-1", "dr-lee", MONDAY, "09:00", "09:30", "online")

        with pytest.raises(SlotNotOffered):
            service.reschedule_appointment(
                appt.id, TUESDAY, SlotRange(start="09:00", end="09:30", mode="online"), "patient"
            )

    def test_view_flags(self, service, clock):
        """Views expose whether cancel/reschedule are currently allowed."""
        appt = service.book_directly("patient-1", "dr-lee", MONDAY, "09:00", "09:30", "online")

        assert service.get_appointment(appt.id).can_cancel is True

        clock.set(datetime(2026, 3, 2, 8, 30, tzinfo=UTC))
        view = service.get_appointment(appt.id)
        assert view.can_cancel is False
        assert view.can_reschedule is False

    def test_list_filters(self, service):
        """Listings filter by patient and status."""
        a = service.book_directly("patient-1", "dr-lee", MONDAY, "09:00", "09:30", "online")
        service.book_directly("patient-2", "dr-lee", MONDAY, "09:30", "10:00", "online")
        service.cancel_appointment(a.id, "patient")

        assert [v.id for v in service.list_appointments(patient_id="patient-1")] == [a.id]
        assert len(service.list_appointments(status="confirmed")) == 1
        assert len(service.list_appointments(practitioner_id="dr-lee")) == 2

    def test_sweep(self, service, reserve_monday, clock):
        """Sweeping reports how many locks expired."""
        reserve_monday()
        clock.advance(minutes=10)

        assert service.sweep_expired_locks() == 1
        assert service.sweep_expired_locks() == 0
