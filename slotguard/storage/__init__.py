"""Storage utilities for slot locks, appointments and practitioners."""

from slotguard.storage.database import (
    ConnectionPool,
    SlotGuardDB,
    from_db_timestamp,
    generate_id,
    is_unique_violation,
    to_db_timestamp,
    utc_now,
)

__all__ = [
    "ConnectionPool",
    "SlotGuardDB",
    "from_db_timestamp",
    "generate_id",
    "is_unique_violation",
    "to_db_timestamp",
    "utc_now",
]
