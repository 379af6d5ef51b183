"""Slot Lock Manager - time-boxed provisional claims on slots.

A lock is created in state ``locked`` and moves exactly once, either to
``confirmed`` (correct code before the lock expires) or to ``expired``.
Lock expiry bounds the whole reservation: once it passes, a still-valid
code no longer helps.
"""

import hmac
import logging
import secrets
import sqlite3
from datetime import datetime
from typing import Callable

from slotguard.constants import LockStatus
from slotguard.errors import (
    CodeExpired,
    InvalidCode,
    InvalidState,
    LockExpired,
    LockNotFound,
    PractitionerNotFound,
    ReservationError,
    SlotUnavailable,
    Unauthorized,
)
from slotguard.ledger import AppointmentLedger
from slotguard.models import Appointment, ReservationPolicy, SlotInstance, SlotLock
from slotguard.storage import SlotGuardDB, generate_id, is_unique_violation, utc_now

logger = logging.getLogger(__name__)


def generate_verification_code(digits: int = 6) -> str:
    """Zero-padded numeric code drawn uniformly from a CSPRNG."""
    return f"{secrets.randbelow(10**digits):0{digits}d}"


class SlotLockManager:
    """Acquires, confirms and expires slot locks."""

    def __init__(
        self,
        db: SlotGuardDB,
        ledger: AppointmentLedger,
        policy: ReservationPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.ledger = ledger
        self.policy = policy or ReservationPolicy()
        self.clock = clock

    def try_lock(self, slot: SlotInstance, requester_id: str) -> SlotLock:
        """Claim a slot for ``requester_id``.

        Stale locks on the slot are expired first. A live ``locked`` or
        ``confirmed`` lock on the slot refuses the claim, otherwise the lock
        is inserted. The fee is read from the practitioner's current schedule
        and frozen on the lock.

        Raises:
            PractitionerNotFound: Unknown or inactive practitioner
            SlotUnavailable: Slot is booked or held by a live lock
        """
        now = self.clock()
        with self.db.immediate() as conn:
            practitioner = self.db.get_practitioner(slot.practitioner_id, conn)
            if practitioner is None or not practitioner.is_active:
                raise PractitionerNotFound(
                    f"Practitioner {slot.practitioner_id} not found",
                    practitioner_id=slot.practitioner_id,
                )

            released = self.db.expire_locks(conn, now, slot)
            if released:
                logger.info(f"Expired {released} stale lock(s) on {slot}")

            if self.db.find_active_appointment(conn, slot) is not None:
                raise SlotUnavailable(f"Slot {slot} is already booked", slot=str(slot))

            # A confirmed lock keeps its claim until its own expiry, even if
            # its appointment was cancelled meanwhile
            holder = self.db.find_live_lock(conn, slot, now)
            if holder is not None:
                raise SlotUnavailable(
                    f"Slot {slot} is held by {holder.status.value} lock {holder.id}",
                    slot=str(slot),
                )

            lock = SlotLock(
                id=generate_id("lock"),
                practitioner_id=slot.practitioner_id,
                requester_id=requester_id,
                slot_date=slot.slot_date,
                start=slot.start,
                end=slot.end,
                mode=slot.mode,
                verification_code=generate_verification_code(self.policy.code_digits),
                consultation_fee=practitioner.fee_for(slot.mode),
                lock_expires_at=now + self.policy.lock_ttl,
                code_expires_at=now + self.policy.code_ttl,
                created_at=now,
            )
            try:
                self.db.insert_lock(conn, lock)
            except sqlite3.IntegrityError as e:
                if not is_unique_violation(e):
                    raise
                raise SlotUnavailable(
                    f"Slot {slot} is locked by another requester", slot=str(slot)
                ) from e

        logger.info(f"Lock {lock.id} on {slot} for {requester_id}")
        return lock

    def _confirm_failure(
        self,
        lock: SlotLock | None,
        lock_id: str,
        code: str,
        requester_id: str,
        now: datetime,
    ) -> ReservationError | None:
        """First reason the lock cannot be confirmed, checked in a fixed order."""
        if lock is None:
            return LockNotFound(f"Lock {lock_id} not found", lock_id=lock_id)
        if lock.requester_id != requester_id:
            return Unauthorized(
                f"Lock {lock_id} belongs to another requester", lock_id=lock_id
            )
        if lock.status == LockStatus.CONFIRMED:
            return InvalidState(
                f"Lock {lock_id} is already confirmed",
                lock_id=lock_id,
                appointment_id=lock.appointment_id,
            )
        if lock.status == LockStatus.EXPIRED or now >= lock.lock_expires_at:
            return LockExpired(f"Lock {lock_id} has expired", lock_id=lock_id)
        if now >= lock.code_expires_at:
            return CodeExpired(
                f"Verification code for lock {lock_id} has expired", lock_id=lock_id
            )
        if not hmac.compare_digest(
            str(code).strip().encode(), lock.verification_code.encode()
        ):
            return InvalidCode("Verification code does not match", lock_id=lock_id)
        return None

    def verify_and_confirm(
        self, lock_id: str, code: str, requester_id: str
    ) -> Appointment:
        """Check the code and turn the lock into a confirmed appointment.

        A wrong code leaves the lock untouched so the requester may retry
        until it expires. A lock found past its expiry is moved to
        ``expired`` and that transition is kept.

        Raises:
            LockNotFound, Unauthorized, InvalidState, LockExpired,
            CodeExpired, InvalidCode: in that order of precedence
            SlotUnavailable: Slot was booked through another path meanwhile
        """
        now = self.clock()
        with self.db.immediate() as conn:
            lock = self.db.get_lock(lock_id, conn)
            failure = self._confirm_failure(lock, lock_id, code, requester_id, now)

            if failure is None:
                appointment = self.ledger.new_appointment(
                    lock.requester_id,
                    lock.slot,
                    lock.consultation_fee,
                    now,
                    lock_id=lock.id,
                )
                if not self.db.mark_lock_confirmed(conn, lock_id, appointment.id, now):
                    raise InvalidState(
                        f"Lock {lock_id} changed concurrently", lock_id=lock_id
                    )
                self.ledger.record(conn, appointment)
            elif isinstance(failure, LockExpired) and lock.status == LockStatus.LOCKED:
                self.db.mark_lock_expired(conn, lock_id)

        if failure is not None:
            logger.info(f"Confirmation of lock {lock_id} refused: {failure.kind.value}")
            raise failure

        logger.info(f"Lock {lock_id} confirmed as appointment {appointment.id}")
        return appointment

    def release_expired(self) -> int:
        """Expire every ``locked`` lock past its expiry. Safe to repeat."""
        now = self.clock()
        with self.db.immediate() as conn:
            count = self.db.expire_locks(conn, now)
        if count:
            logger.info(f"Released {count} expired lock(s)")
        return count

    def get(self, lock_id: str) -> SlotLock:
        """Get a lock or raise LockNotFound."""
        lock = self.db.get_lock(lock_id)
        if lock is None:
            raise LockNotFound(f"Lock {lock_id} not found", lock_id=lock_id)
        return lock
