"""Slotguard - practitioner slot reservation core.

Time-boxed slot locks confirmed with a verification code, backed by a
SQLite ledger that never holds two active appointments for one slot.
"""

from slotguard.errors import ReservationError
from slotguard.ledger import AppointmentLedger
from slotguard.locks import SlotLockManager
from slotguard.models import (
    Appointment,
    LockReceipt,
    Practitioner,
    ReservationPolicy,
    SlotInstance,
    SlotLock,
    SlotRange,
)
from slotguard.protocol import ReservationService
from slotguard.storage import SlotGuardDB
from slotguard.sweeper import ExpirySweeper

__all__ = [
    # Service
    "ReservationService",
    "ReservationPolicy",
    "ExpirySweeper",
    # Components
    "AppointmentLedger",
    "SlotLockManager",
    "SlotGuardDB",
    # Models
    "Appointment",
    "LockReceipt",
    "Practitioner",
    "SlotInstance",
    "SlotLock",
    "SlotRange",
    # Errors
    "ReservationError",
]
