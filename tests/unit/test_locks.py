"""Tests for slotguard.locks module."""

from datetime import timedelta

import pytest

from slotguard.constants import ActorRole, AppointmentStatus, LockStatus
from slotguard.errors import (
    CodeExpired,
    InvalidCode,
    InvalidState,
    LockExpired,
    LockNotFound,
    PractitionerNotFound,
    SlotUnavailable,
    Unauthorized,
)
from slotguard.locks import generate_verification_code
from slotguard.models import ReservationPolicy
from slotguard.protocol import ReservationService


def _wrong(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


class TestGenerateVerificationCode:
    """Tests for verification code generation."""

    def test_six_digits(self):
        """Codes should be six decimal digits by default."""
        code = generate_verification_code()

        assert len(code) == 6
        assert code.isdigit()

    def test_zero_padded(self, monkeypatch):
        """Small draws should keep leading zeros."""
        monkeypatch.setattr("slotguard.locks.secrets.randbelow", lambda n: 42)

        assert generate_verification_code() == "000042"
        assert generate_verification_code(digits=8) == "00000042"


class TestTryLock:
    """Tests for SlotLockManager.try_lock."""

    def test_creates_lock(self, service, monday_slot, clock):
        """A lock should capture fee, code and both expiries."""
        lock = service.locks.try_lock(monday_slot, "patient-1")

        assert lock.status == LockStatus.LOCKED
        assert lock.consultation_fee == 40.0
        assert len(lock.verification_code) == 6
        assert lock.lock_expires_at == clock() + timedelta(minutes=5)
        assert lock.code_expires_at == clock() + timedelta(minutes=10)
        assert service.db.get_lock(lock.id).status == LockStatus.LOCKED

    def test_second_requester_refused(self, service, monday_slot):
        """A live lock blocks other requesters."""
        service.locks.try_lock(monday_slot, "patient-1")

        with pytest.raises(SlotUnavailable) as exc_info:
            service.locks.try_lock(monday_slot, "patient-2")

        assert exc_info.value.retryable is True

    def test_same_requester_refused(self, service, monday_slot):
        """Holding a lock does not allow a second one on the same slot."""
        service.locks.try_lock(monday_slot, "patient-1")

        with pytest.raises(SlotUnavailable):
            service.locks.try_lock(monday_slot, "patient-1")

    def test_stale_lock_replaced(self, service, monday_slot, clock):
        """After expiry another requester can lock; the old lock is expired."""
        first = service.locks.try_lock(monday_slot, "patient-1")
        clock.advance(minutes=5, seconds=1)

        second = service.locks.try_lock(monday_slot, "patient-2")

        assert second.requester_id == "patient-2"
        assert service.db.get_lock(first.id).status == LockStatus.EXPIRED

    def test_booked_slot_refused(self, service, monday_slot):
        """An active appointment blocks new locks."""
        service.ledger.create("patient-9", monday_slot, 40.0)

        with pytest.raises(SlotUnavailable, match="booked"):
            service.locks.try_lock(monday_slot, "patient-1")

    def test_confirmed_lock_holds_after_cancel(self, service, monday_slot, clock):
        """Cancelling inside the lock window does not free the slot early."""
        lock = service.locks.try_lock(monday_slot, "patient-1")
        appt = service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")
        clock.advance(minutes=1)
        service.ledger.cancel(appt.id, ActorRole.PATIENT)

        with pytest.raises(SlotUnavailable, match="confirmed lock"):
            service.locks.try_lock(monday_slot, "patient-2")
        with pytest.raises(SlotUnavailable):
            service.ledger.create("patient-2", monday_slot, 40.0)

        assert service.db.list_locks(status=LockStatus.LOCKED) == []

    def test_slot_reopens_when_confirmed_lock_lapses(self, service, monday_slot, clock):
        """Once the confirmed lock's window ends a cancelled slot can be locked."""
        lock = service.locks.try_lock(monday_slot, "patient-1")
        appt = service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")
        service.ledger.cancel(appt.id, ActorRole.PATIENT)
        clock.advance(minutes=5)

        second = service.locks.try_lock(monday_slot, "patient-2")

        assert second.requester_id == "patient-2"
        assert service.db.get_lock(lock.id).status == LockStatus.CONFIRMED

    def test_unknown_practitioner(self, service, monday_slot):
        """Locking a slot of an unknown practitioner fails."""
        slot = monday_slot.model_copy(update={"practitioner_id": "nobody"})

        with pytest.raises(PractitionerNotFound):
            service.locks.try_lock(slot, "patient-1")


class TestVerifyAndConfirm:
    """Tests for SlotLockManager.verify_and_confirm."""

    def test_confirms(self, service, monday_slot):
        """The right code turns the lock into a confirmed appointment."""
        lock = service.locks.try_lock(monday_slot, "patient-1")

        appt = service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")

        assert appt.status == AppointmentStatus.CONFIRMED
        assert appt.patient_id == "patient-1"
        assert appt.slot == monday_slot
        assert appt.lock_id == lock.id
        assert appt.consultation_fee == 40.0
        stored = service.db.get_lock(lock.id)
        assert stored.status == LockStatus.CONFIRMED
        assert stored.appointment_id == appt.id
        assert stored.confirmed_at is not None

    def test_wrong_code_is_retryable(self, service, monday_slot):
        """A wrong code leaves the lock usable."""
        lock = service.locks.try_lock(monday_slot, "patient-1")

        with pytest.raises(InvalidCode) as exc_info:
            service.locks.verify_and_confirm(lock.id, _wrong(lock.verification_code), "patient-1")

        assert exc_info.value.retryable is True
        assert service.db.get_lock(lock.id).status == LockStatus.LOCKED
        appt = service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")
        assert appt.status == AppointmentStatus.CONFIRMED

    @pytest.mark.parametrize("code", ["12345é", "١٢٣٤٥٦", "１２３４５６"])
    def test_non_ascii_code_is_invalid(self, service, monday_slot, code):
        """Codes outside ASCII are rejected like any other wrong code."""
        lock = service.locks.try_lock(monday_slot, "patient-1")

        with pytest.raises(InvalidCode):
            service.locks.verify_and_confirm(lock.id, code, "patient-1")

        assert service.db.get_lock(lock.id).status == LockStatus.LOCKED

    def test_other_requester_unauthorized(self, service, monday_slot):
        """Only the lock owner can confirm."""
        lock = service.locks.try_lock(monday_slot, "patient-1")

        with pytest.raises(Unauthorized):
            service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-2")

    def test_unknown_lock(self, service):
        """Confirming an unknown lock fails with LockNotFound."""
        with pytest.raises(LockNotFound):
            service.locks.verify_and_confirm("lock_missing", "000000", "patient-1")

    def test_double_confirm(self, service, monday_slot):
        """A second confirmation is an invalid state transition."""
        lock = service.locks.try_lock(monday_slot, "patient-1")
        service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")

        with pytest.raises(InvalidState):
            service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")

        assert len(service.db.list_appointments(patient_id="patient-1")) == 1

    def test_lock_expiry_is_binding(self, service, monday_slot, clock):
        """At T+5m01s the lock is expired even though the code is still valid."""
        lock = service.locks.try_lock(monday_slot, "patient-1")
        clock.advance(minutes=5, seconds=1)

        with pytest.raises(LockExpired):
            service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")

        assert service.db.get_lock(lock.id).status == LockStatus.EXPIRED
        # Slot is immediately reservable by someone else
        other = service.locks.try_lock(monday_slot, "patient-2")
        assert other.status == LockStatus.LOCKED

    def test_expired_state_reported_before_code(self, service, monday_slot, clock):
        """An expired lock reports LockExpired even for a wrong code."""
        lock = service.locks.try_lock(monday_slot, "patient-1")
        clock.advance(minutes=6)
        service.locks.release_expired()

        with pytest.raises(LockExpired):
            service.locks.verify_and_confirm(lock.id, "bad", "patient-1")

    def test_just_before_expiry(self, service, monday_slot, clock):
        """Confirming at T+4m59s succeeds."""
        lock = service.locks.try_lock(monday_slot, "patient-1")
        clock.advance(minutes=4, seconds=59)

        appt = service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")

        assert appt.status == AppointmentStatus.CONFIRMED

    def test_code_expired(self, service, monday_slot, clock):
        """With a lock outliving its code, the code expiry is reported."""
        long_locks = ReservationService(
            service.db,
            policy=ReservationPolicy(lock_ttl_minutes=15, code_ttl_minutes=10),
            clock=clock,
        )
        lock = long_locks.locks.try_lock(monday_slot, "patient-1")
        clock.advance(minutes=10, seconds=1)

        with pytest.raises(CodeExpired):
            long_locks.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")

        assert service.db.get_lock(lock.id).status == LockStatus.LOCKED


class TestReleaseExpired:
    """Tests for SlotLockManager.release_expired."""

    def test_releases_only_expired(self, service, monday_slot, clock):
        """Only locks past expiry are released, and only once."""
        service.locks.try_lock(monday_slot, "patient-1")
        later = monday_slot.model_copy(update={"start": "09:30", "end": "10:00"})
        clock.advance(minutes=3)
        fresh = service.locks.try_lock(later, "patient-2")
        clock.advance(minutes=2, seconds=30)

        assert service.locks.release_expired() == 1
        assert service.locks.release_expired() == 0
        assert service.db.get_lock(fresh.id).status == LockStatus.LOCKED

    def test_confirmed_locks_untouched(self, service, monday_slot, clock):
        """Confirmed locks never become expired."""
        lock = service.locks.try_lock(monday_slot, "patient-1")
        service.locks.verify_and_confirm(lock.id, lock.verification_code, "patient-1")
        clock.advance(hours=1)

        assert service.locks.release_expired() == 0
        assert service.db.get_lock(lock.id).status == LockStatus.CONFIRMED
