"""Appointment Ledger - durable committed bookings.

Every appointment row enters through ``record`` so the uniqueness index on
active appointments is the single gate for both direct bookings and lock
confirmations. Rows are never deleted; cancel and reschedule only move
status forward and attach audit metadata.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Callable

from slotguard.availability import slot_start
from slotguard.config import DEFAULT_TIMEZONE
from slotguard.constants import ActorRole, AppointmentStatus, BookingType
from slotguard.eligibility import modification_blocker
from slotguard.errors import (
    AppointmentNotFound,
    CannotCancel,
    CannotReschedule,
    InvalidState,
    SlotUnavailable,
)
from slotguard.models import (
    Appointment,
    CancellationInfo,
    ReschedulingInfo,
    ReservationPolicy,
    SlotInstance,
)
from slotguard.storage import SlotGuardDB, generate_id, is_unique_violation, utc_now

logger = logging.getLogger(__name__)


class AppointmentLedger:
    """Creates, cancels, reschedules and completes appointments."""

    def __init__(
        self,
        db: SlotGuardDB,
        policy: ReservationPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.policy = policy or ReservationPolicy()
        self.clock = clock

    # -------------------------------------------------------------------------
    # Inserts
    # -------------------------------------------------------------------------

    def record(self, conn: sqlite3.Connection, appointment: Appointment) -> Appointment:
        """Insert an appointment inside the caller's transaction.

        Raises:
            SlotUnavailable: An active appointment already holds the slot
        """
        try:
            self.db.insert_appointment(conn, appointment)
        except sqlite3.IntegrityError as e:
            if not is_unique_violation(e):
                raise
            raise SlotUnavailable(
                f"Slot {appointment.slot} is already booked",
                slot=str(appointment.slot),
            ) from e
        return appointment

    def new_appointment(
        self,
        patient_id: str,
        slot: SlotInstance,
        fee: float,
        now: datetime,
        **fields,
    ) -> Appointment:
        """Build an unsaved appointment for a slot."""
        return Appointment(
            id=generate_id("appt"),
            patient_id=patient_id,
            practitioner_id=slot.practitioner_id,
            appointment_date=slot.slot_date,
            start=slot.start,
            end=slot.end,
            mode=slot.mode,
            consultation_fee=fee,
            created_at=now,
            updated_at=now,
            **fields,
        )

    def create(
        self,
        patient_id: str,
        slot: SlotInstance,
        fee: float,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    ) -> Appointment:
        """Book a slot directly, without a lock.

        Refuses while another requester holds a live lock on the slot.

        Raises:
            SlotUnavailable: Slot locked by someone else or already booked
        """
        now = self.clock()
        with self.db.immediate() as conn:
            holder = self.db.find_live_lock(conn, slot, now, exclude_requester=patient_id)
            if holder is not None:
                raise SlotUnavailable(
                    f"Slot {slot} is locked by another requester", slot=str(slot)
                )
            appointment = self.record(
                conn, self.new_appointment(patient_id, slot, fee, now, status=status)
            )

        logger.info(f"Appointment {appointment.id} booked directly for {slot}")
        return appointment

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, appointment_id: str, conn: sqlite3.Connection | None = None) -> Appointment:
        """Get an appointment or raise AppointmentNotFound."""
        appointment = self.db.get_appointment(appointment_id, conn)
        if appointment is None:
            raise AppointmentNotFound(
                f"Appointment {appointment_id} not found", appointment_id=appointment_id
            )
        return appointment

    def list_appointments(
        self,
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        status: AppointmentStatus | None = None,
        limit: int = 100,
    ) -> list[Appointment]:
        return self.db.list_appointments(patient_id, practitioner_id, status, limit)

    def start_at(
        self, appointment: Appointment, conn: sqlite3.Connection | None = None
    ) -> datetime:
        """Start instant of an appointment in its practitioner's timezone."""
        practitioner = self.db.get_practitioner(appointment.practitioner_id, conn)
        timezone = practitioner.timezone if practitioner else DEFAULT_TIMEZONE
        return slot_start(appointment.slot, timezone)

    def blocker(
        self,
        appointment: Appointment,
        now: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> str | None:
        """Reason the appointment cannot be cancelled/rescheduled now, if any."""
        return modification_blocker(
            appointment,
            self.start_at(appointment, conn),
            now,
            self.policy.eligibility_hours,
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def cancel(
        self,
        appointment_id: str,
        actor_role: ActorRole,
        reason: str | None = None,
    ) -> Appointment:
        """Cancel an appointment, freeing its slot.

        Raises:
            AppointmentNotFound: Unknown appointment
            CannotCancel: Outside the eligibility window or not active
        """
        now = self.clock()
        with self.db.immediate() as conn:
            appointment = self.get(appointment_id, conn)
            blocker = self.blocker(appointment, now, conn)
            if blocker is not None:
                raise CannotCancel(blocker, appointment_id=appointment_id)

            info = CancellationInfo(
                cancelled_by=actor_role,
                cancelled_at=now,
                reason=reason,
                refund_amount=appointment.consultation_fee,
            )
            if not self.db.cancel_appointment(conn, appointment_id, info):
                raise InvalidState(
                    f"Appointment {appointment_id} changed concurrently",
                    appointment_id=appointment_id,
                )
            cancelled = self.get(appointment_id, conn)

        logger.info(f"Appointment {appointment_id} cancelled by {actor_role.value}")
        return cancelled

    def reschedule(
        self,
        appointment_id: str,
        new_slot: SlotInstance,
        actor_role: ActorRole,
        reason: str | None = None,
    ) -> Appointment:
        """Move an appointment to another slot.

        The original row becomes ``rescheduled`` and a linked row is booked
        on the new slot with the same fee. Both happen in one transaction;
        if the new slot is taken nothing changes.

        Raises:
            AppointmentNotFound: Unknown appointment
            CannotReschedule: Outside the eligibility window, not active,
                or the new slot is the current one
            SlotUnavailable: New slot booked or locked by someone else
        """
        now = self.clock()
        with self.db.immediate() as conn:
            original = self.get(appointment_id, conn)
            blocker = self.blocker(original, now, conn)
            if blocker is not None:
                raise CannotReschedule(blocker, appointment_id=appointment_id)
            if new_slot == original.slot:
                raise CannotReschedule(
                    "New slot is the current slot", appointment_id=appointment_id
                )

            holder = self.db.find_live_lock(
                conn, new_slot, now, exclude_requester=original.patient_id
            )
            if holder is not None:
                raise SlotUnavailable(
                    f"Slot {new_slot} is locked by another requester",
                    slot=str(new_slot),
                )

            if not self.db.mark_rescheduled(conn, appointment_id, now):
                raise InvalidState(
                    f"Appointment {appointment_id} changed concurrently",
                    appointment_id=appointment_id,
                )

            moved = self.record(
                conn,
                self.new_appointment(
                    original.patient_id,
                    new_slot,
                    original.consultation_fee,
                    now,
                    status=AppointmentStatus.CONFIRMED,
                    booking_type=BookingType.RESCHEDULED,
                    original_appointment_id=original.original_appointment_id
                    or original.id,
                    rescheduling=ReschedulingInfo(
                        original_date=original.appointment_date,
                        original_start=original.start,
                        original_end=original.end,
                        original_mode=original.mode,
                        rescheduled_by=actor_role,
                        rescheduled_at=now,
                        reason=reason,
                    ),
                ),
            )

        logger.info(
            f"Appointment {appointment_id} rescheduled to {new_slot} as {moved.id}"
        )
        return moved

    def complete(self, appointment_id: str) -> Appointment:
        """Mark a confirmed appointment as held.

        Raises:
            AppointmentNotFound: Unknown appointment
            InvalidState: Appointment is not confirmed
        """
        now = self.clock()
        with self.db.immediate() as conn:
            appointment = self.get(appointment_id, conn)
            if not self.db.mark_completed(conn, appointment_id, now):
                raise InvalidState(
                    f"Appointment {appointment_id} is {appointment.status.value}, "
                    "only confirmed appointments can be completed",
                    appointment_id=appointment_id,
                )
            completed = self.get(appointment_id, conn)

        logger.info(f"Appointment {appointment_id} completed")
        return completed
