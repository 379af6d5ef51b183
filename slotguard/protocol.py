"""Reservation Protocol - the external operations of the reservation core.

ReservationService wires the availability model, lock manager and ledger
together behind one object. Transports (HTTP, CLI) call only this class.

Typical flow:
    service = ReservationService(db)
    receipt = service.reserve_slot("dr-1", date(2026, 3, 2), "09:00", "09:30",
                                   "online", requester_id="patient-1")
    # code reaches the patient out of band
    appointment = service.confirm_reservation(receipt.lock_id, code, "patient-1")
"""

import logging
from datetime import date, datetime
from typing import Callable

from pydantic import ValidationError

from slotguard.availability import (
    AvailabilityModel,
    is_offered,
    slot_start,
    validate_practitioner,
)
from slotguard.config import EXPOSE_CODES
from slotguard.constants import ActorRole, AppointmentStatus, ConsultationMode, LockStatus
from slotguard.errors import PractitionerNotFound, SlotNotOffered
from slotguard.ledger import AppointmentLedger
from slotguard.locks import SlotLockManager
from slotguard.models import (
    Appointment,
    AppointmentView,
    LockReceipt,
    Practitioner,
    ReservationPolicy,
    SlotAvailability,
    SlotInstance,
    SlotLock,
    SlotRange,
)
from slotguard.storage import SlotGuardDB, utc_now

logger = logging.getLogger(__name__)

# Called with (lock, code) right after a lock is taken
CodeDelivery = Callable[[SlotLock, str], None]


class ReservationService:
    """Reserve, confirm, cancel and reschedule practitioner slots."""

    def __init__(
        self,
        db: SlotGuardDB | None = None,
        policy: ReservationPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        deliver_code: CodeDelivery | None = None,
        expose_codes: bool = EXPOSE_CODES,
    ):
        """Initialize the service.

        Args:
            db: Storage (default: SlotGuardDB at the configured path)
            policy: Lock/code timings and eligibility window
            clock: Returns the current aware time (default: UTC wall clock)
            deliver_code: Sends the verification code to the requester
            expose_codes: Include the code in LockReceipt (development only)
        """
        self.db = db or SlotGuardDB()
        self.policy = policy or ReservationPolicy()
        self.clock = clock or utc_now
        self.deliver_code = deliver_code
        self.expose_codes = expose_codes

        self.availability = AvailabilityModel(self.db)
        self.ledger = AppointmentLedger(self.db, self.policy, self.clock)
        self.locks = SlotLockManager(self.db, self.ledger, self.policy, self.clock)

    # =========================================================================
    # Practitioners
    # =========================================================================

    def register_practitioner(self, practitioner: Practitioner) -> Practitioner:
        """Validate and store a practitioner profile with its weekly template.

        Raises:
            InvalidTemplate: Overlapping ranges, unknown timezone, or unoffered mode
        """
        validate_practitioner(practitioner)
        saved = self.db.save_practitioner(practitioner)
        logger.info(f"Registered practitioner {practitioner.id}")
        return saved

    def get_practitioner(self, practitioner_id: str) -> Practitioner:
        """Get an active practitioner or raise PractitionerNotFound."""
        practitioner = self.availability.get_practitioner(practitioner_id)
        if practitioner is None:
            raise PractitionerNotFound(
                f"Practitioner {practitioner_id} not found",
                practitioner_id=practitioner_id,
            )
        return practitioner

    def list_practitioners(self) -> list[Practitioner]:
        return self.db.list_practitioners()

    # =========================================================================
    # Availability
    # =========================================================================

    def list_available_slots(
        self,
        doctor_id: str,
        slot_date: date,
        mode: ConsultationMode | str | None = None,
    ) -> list[SlotAvailability]:
        """Template slots for a date, each marked free or taken.

        A slot is taken when an active appointment or a live lock holds it,
        or when it has already started.
        """
        mode = ConsultationMode(mode) if mode else None
        practitioner = self.availability.get_practitioner(doctor_id)
        if practitioner is None:
            return []

        ranges = self.availability.get_slots_for_date(doctor_id, slot_date, mode)
        if not ranges:
            return []

        now = self.clock()
        taken = self.db.taken_slots(doctor_id, slot_date, now)
        result = []
        for r in ranges:
            started = slot_start(
                SlotInstance(
                    practitioner_id=doctor_id,
                    slot_date=slot_date,
                    start=r.start,
                    end=r.end,
                    mode=r.mode,
                ),
                practitioner.timezone,
            ) <= now
            result.append(
                SlotAvailability(
                    start=r.start,
                    end=r.end,
                    mode=r.mode,
                    available=not started and (r.start, r.end, r.mode.value) not in taken,
                )
            )
        return result

    def _resolve_slot(
        self,
        doctor_id: str,
        slot_date: date,
        start: str,
        end: str,
        mode: ConsultationMode | str,
    ) -> tuple[Practitioner, SlotInstance]:
        """Check that a requested slot exists in the template and is upcoming."""
        practitioner = self.get_practitioner(doctor_id)
        try:
            slot = SlotInstance(
                practitioner_id=doctor_id,
                slot_date=slot_date,
                start=start,
                end=end,
                mode=mode,
            )
        except ValidationError as e:
            raise SlotNotOffered(
                f"Invalid slot {start}-{end} {mode}: {e.errors()[0]['msg']}",
                practitioner_id=doctor_id,
            ) from e

        if not practitioner.offers(slot.mode):
            raise SlotNotOffered(
                f"Practitioner {doctor_id} does not offer {slot.mode.value} consultations",
                practitioner_id=doctor_id,
                mode=slot.mode.value,
            )
        if not is_offered(practitioner, slot):
            raise SlotNotOffered(
                f"Slot {slot} is not in the practitioner's schedule", slot=str(slot)
            )
        if slot_start(slot, practitioner.timezone) <= self.clock():
            raise SlotNotOffered(f"Slot {slot} is in the past", slot=str(slot))
        return practitioner, slot

    # =========================================================================
    # Reservation
    # =========================================================================

    def reserve_slot(
        self,
        doctor_id: str,
        slot_date: date,
        start: str,
        end: str,
        mode: ConsultationMode | str,
        requester_id: str,
    ) -> LockReceipt:
        """Lock a slot for the requester and dispatch the verification code.

        Raises:
            PractitionerNotFound: Unknown or inactive practitioner
            SlotNotOffered: Slot not in the template, mode not offered, or past
            SlotUnavailable: Slot booked or held by a live lock
        """
        _, slot = self._resolve_slot(doctor_id, slot_date, start, end, mode)
        lock = self.locks.try_lock(slot, requester_id)

        if self.deliver_code is not None:
            try:
                self.deliver_code(lock, lock.verification_code)
            except Exception:
                # The lock stands; the requester can re-reserve after expiry
                logger.exception(f"Code delivery failed for lock {lock.id}")

        return LockReceipt(
            lock_id=lock.id,
            expires_at=lock.lock_expires_at,
            code_expires_at=lock.code_expires_at,
            consultation_fee=lock.consultation_fee,
            verification_code=lock.verification_code if self.expose_codes else None,
        )

    def confirm_reservation(
        self, lock_id: str, code: str, requester_id: str
    ) -> Appointment:
        """Turn a lock into a confirmed appointment.

        Raises:
            LockNotFound, Unauthorized, InvalidState, LockExpired,
            CodeExpired, InvalidCode, SlotUnavailable
        """
        return self.locks.verify_and_confirm(lock_id, code, requester_id)

    def book_directly(
        self,
        patient_id: str,
        doctor_id: str,
        slot_date: date,
        start: str,
        end: str,
        mode: ConsultationMode | str,
    ) -> Appointment:
        """Book without the lock/code step, at the practitioner's current fee.

        Raises:
            PractitionerNotFound, SlotNotOffered, SlotUnavailable
        """
        practitioner, slot = self._resolve_slot(doctor_id, slot_date, start, end, mode)
        return self.ledger.create(patient_id, slot, practitioner.fee_for(slot.mode))

    def get_lock(self, lock_id: str) -> SlotLock:
        return self.locks.get(lock_id)

    def list_locks(
        self,
        requester_id: str | None = None,
        status: LockStatus | str | None = None,
        limit: int = 100,
    ) -> list[SlotLock]:
        status = LockStatus(status) if status else None
        return self.db.list_locks(requester_id, status, limit)

    # =========================================================================
    # Appointment lifecycle
    # =========================================================================

    def cancel_appointment(
        self,
        appointment_id: str,
        actor_role: ActorRole | str,
        reason: str | None = None,
    ) -> Appointment:
        """Cancel an appointment within the eligibility window.

        Raises:
            AppointmentNotFound, CannotCancel
        """
        return self.ledger.cancel(appointment_id, ActorRole(actor_role), reason)

    def reschedule_appointment(
        self,
        appointment_id: str,
        new_date: date,
        new_slot: SlotRange,
        actor_role: ActorRole | str,
        reason: str | None = None,
    ) -> Appointment:
        """Move an appointment to another slot of the same practitioner.

        Returns:
            The new linked appointment

        Raises:
            AppointmentNotFound, CannotReschedule, SlotNotOffered, SlotUnavailable
        """
        original = self.ledger.get(appointment_id)
        _, slot = self._resolve_slot(
            original.practitioner_id,
            new_date,
            new_slot.start,
            new_slot.end,
            new_slot.mode,
        )
        return self.ledger.reschedule(appointment_id, slot, ActorRole(actor_role), reason)

    def complete_appointment(self, appointment_id: str) -> Appointment:
        """Mark a confirmed appointment as completed.

        Raises:
            AppointmentNotFound, InvalidState
        """
        return self.ledger.complete(appointment_id)

    def sweep_expired_locks(self) -> int:
        """Expire stale locks. Returns how many were expired."""
        return self.locks.release_expired()

    # =========================================================================
    # Views
    # =========================================================================

    def view(self, appointment: Appointment) -> AppointmentView:
        """Attach can_cancel / can_reschedule flags as of now."""
        allowed = self.ledger.blocker(appointment, self.clock()) is None
        return AppointmentView(
            **appointment.model_dump(),
            can_cancel=allowed,
            can_reschedule=allowed,
        )

    def get_appointment(self, appointment_id: str) -> AppointmentView:
        """Raises AppointmentNotFound."""
        return self.view(self.ledger.get(appointment_id))

    def list_appointments(
        self,
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        status: AppointmentStatus | str | None = None,
        limit: int = 100,
    ) -> list[AppointmentView]:
        status = AppointmentStatus(status) if status else None
        return [
            self.view(a)
            for a in self.ledger.list_appointments(patient_id, practitioner_id, status, limit)
        ]
