"""SQLite Storage - Durable store for practitioners, slot locks and appointments.

All slot-claiming writes run inside ``BEGIN IMMEDIATE`` transactions, and the
two partial unique indexes below are the final word on slot ownership:

- ``uq_slot_locks_active``: one ``locked`` lock per slot tuple
- ``uq_appointments_active``: one ``pending``/``confirmed`` appointment per slot tuple

A losing writer gets ``sqlite3.IntegrityError``; callers translate it.

Supports optional connection pooling for high-throughput scenarios.
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import UTC, date, datetime
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Iterator

from slotguard.config import DATABASE_PATH, DB_TIMEOUT
from slotguard.constants import AppointmentStatus, LockStatus
from slotguard.models import (
    Appointment,
    CancellationInfo,
    Practitioner,
    ReschedulingInfo,
    SlotInstance,
    SlotLock,
    SlotRange,
)

logger = logging.getLogger(__name__)

_ACTIVE_APPOINTMENT_SQL = "('pending', 'confirmed')"

# Lock states that claim their slot until lock_expires_at
_LIVE_LOCK_SQL = "('locked', 'confirmed')"

SCHEMA = f"""
    -- Practitioners (only what the reservation core reads)
    CREATE TABLE IF NOT EXISTS practitioners (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        timezone TEXT NOT NULL DEFAULT 'UTC',
        is_active INTEGER NOT NULL DEFAULT 1,
        consultation_modes TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS practitioner_fees (
        practitioner_id TEXT NOT NULL REFERENCES practitioners(id) ON DELETE CASCADE,
        mode TEXT NOT NULL CHECK(mode IN ('online', 'in-person')),
        fee REAL NOT NULL CHECK(fee >= 0),
        PRIMARY KEY (practitioner_id, mode)
    );

    -- Weekly availability template
    CREATE TABLE IF NOT EXISTS availability_slots (
        practitioner_id TEXT NOT NULL REFERENCES practitioners(id) ON DELETE CASCADE,
        weekday TEXT NOT NULL CHECK(weekday IN (
            'monday', 'tuesday', 'wednesday', 'thursday',
            'friday', 'saturday', 'sunday'
        )),
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        mode TEXT NOT NULL CHECK(mode IN ('online', 'in-person')),
        PRIMARY KEY (practitioner_id, weekday, start_time, end_time, mode)
    );

    -- Provisional claims
    CREATE TABLE IF NOT EXISTS slot_locks (
        id TEXT PRIMARY KEY,
        practitioner_id TEXT NOT NULL REFERENCES practitioners(id),
        requester_id TEXT NOT NULL,
        slot_date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        mode TEXT NOT NULL CHECK(mode IN ('online', 'in-person')),
        verification_code TEXT NOT NULL,
        consultation_fee REAL NOT NULL CHECK(consultation_fee >= 0),
        status TEXT NOT NULL DEFAULT 'locked'
            CHECK(status IN ('locked', 'confirmed', 'expired')),
        lock_expires_at TEXT NOT NULL,
        code_expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL,
        confirmed_at TEXT,
        appointment_id TEXT
    );
    CREATE UNIQUE INDEX IF NOT EXISTS uq_slot_locks_active
        ON slot_locks(practitioner_id, slot_date, start_time, end_time, mode)
        WHERE status = 'locked';
    CREATE INDEX IF NOT EXISTS idx_slot_locks_expiry
        ON slot_locks(status, lock_expires_at);
    CREATE INDEX IF NOT EXISTS idx_slot_locks_requester
        ON slot_locks(requester_id, status);

    -- Committed bookings, never deleted
    CREATE TABLE IF NOT EXISTS appointments (
        id TEXT PRIMARY KEY,
        patient_id TEXT NOT NULL,
        practitioner_id TEXT NOT NULL REFERENCES practitioners(id),
        appointment_date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        mode TEXT NOT NULL CHECK(mode IN ('online', 'in-person')),
        consultation_fee REAL NOT NULL CHECK(consultation_fee >= 0),
        status TEXT NOT NULL DEFAULT 'confirmed' CHECK(status IN (
            'pending', 'confirmed', 'completed', 'cancelled', 'rescheduled'
        )),
        booking_type TEXT NOT NULL DEFAULT 'new'
            CHECK(booking_type IN ('new', 'rescheduled')),
        original_appointment_id TEXT REFERENCES appointments(id),
        lock_id TEXT REFERENCES slot_locks(id),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        cancelled_by TEXT,
        cancelled_at TEXT,
        cancellation_reason TEXT,
        refund_amount REAL,
        refund_status TEXT,
        original_date TEXT,
        original_start_time TEXT,
        original_end_time TEXT,
        original_mode TEXT,
        rescheduled_by TEXT,
        rescheduled_at TEXT,
        reschedule_reason TEXT
    );
    CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active
        ON appointments(practitioner_id, appointment_date, start_time, end_time, mode)
        WHERE status IN {_ACTIVE_APPOINTMENT_SQL};
    CREATE INDEX IF NOT EXISTS idx_appointments_patient
        ON appointments(patient_id, appointment_date);
    CREATE INDEX IF NOT EXISTS idx_appointments_practitioner
        ON appointments(practitioner_id, appointment_date);
"""


def generate_id(prefix: str) -> str:
    """Generate a prefixed UUID."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    """Default clock: aware current time in UTC."""
    return datetime.now(UTC)


def to_db_timestamp(value: datetime) -> str:
    """Serialize a datetime as a fixed-width UTC ISO string.

    Fixed width keeps lexical comparison in SQL equal to time ordering.
    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a timestamp written by to_db_timestamp."""
    if value is None:
        return None
    return datetime.fromisoformat(value)


def is_unique_violation(error: sqlite3.IntegrityError) -> bool:
    """Check whether an IntegrityError came from a UNIQUE constraint."""
    return "UNIQUE constraint failed" in str(error)


class ConnectionPool:
    """Thread-safe SQLite connection pool.

    Maintains a pool of reusable connections for high-throughput scenarios.
    Connections are returned to the pool after use instead of being closed.
    """

    def __init__(self, db_path: Path, pool_size: int = 5, timeout: float = DB_TIMEOUT):
        """Initialize connection pool.

        Args:
            db_path: Path to SQLite database
            pool_size: Maximum number of connections to maintain
            timeout: Busy timeout applied to each connection, in seconds
        """
        self._db_path = db_path
        self._pool_size = pool_size
        self._timeout = timeout
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=pool_size)
        self._lock = threading.Lock()
        self._total_connections = 0

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection."""
        return _connect(self._db_path, self._timeout)

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a connection from the pool.

        Creates a new connection if pool is empty and under limit.

        Yields:
            Database connection (returned to pool on exit)
        """
        conn = None
        try:
            try:
                conn = self._pool.get_nowait()
            except Empty:
                with self._lock:
                    if self._total_connections < self._pool_size:
                        conn = self._create_connection()
                        self._total_connections += 1

                if conn is None:
                    conn = self._pool.get(timeout=self._timeout)

            yield conn

        finally:
            if conn is not None:
                try:
                    self._pool.put_nowait(conn)
                except Full:
                    conn.close()
                    with self._lock:
                        self._total_connections -= 1

    def close_all(self) -> None:
        """Close all connections in the pool."""
        while True:
            try:
                conn = self._pool.get_nowait()
                conn.close()
            except Empty:
                break
        with self._lock:
            self._total_connections = 0


def _connect(db_path: Path, timeout: float) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are explicit."""
    conn = sqlite3.connect(
        db_path, timeout=timeout, isolation_level=None, check_same_thread=False
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


class SlotGuardDB:
    """SQLite wrapper for the reservation store.

    Supports two connection modes:
    - Default: Creates new connection per operation (simple, safe)
    - Pooled: Reuses connections from pool (high-throughput)

    Methods that take ``conn`` participate in the caller's transaction;
    when ``conn`` is None they run on their own connection.

    Example:
        db = SlotGuardDB("outputs/slotguard.db")
        with db.immediate() as conn:
            db.insert_lock(conn, lock)
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        use_pool: bool = False,
        pool_size: int = 5,
        timeout: float = DB_TIMEOUT,
    ):
        """Initialize database.

        Args:
            db_path: Path to SQLite database file (default: outputs/slotguard.db)
            use_pool: Enable connection pooling for high-throughput scenarios
            pool_size: Maximum connections in pool (only used if use_pool=True)
            timeout: Seconds a writer waits for the database write lock
        """
        if db_path is None:
            db_path = DATABASE_PATH
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

        self._pool: ConnectionPool | None = None
        if use_pool:
            self._pool = ConnectionPool(self.db_path, pool_size, timeout)

        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Uses pool if enabled, otherwise creates new connection.
        """
        if self._pool is not None:
            with self._pool.get_connection() as conn:
                yield conn
        else:
            conn = _connect(self.db_path, self.timeout)
            try:
                yield conn
            finally:
                conn.close()

    @contextmanager
    def _use(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
        else:
            with self._get_connection() as own:
                yield own

    @contextmanager
    def immediate(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside a ``BEGIN IMMEDIATE`` transaction.

        SQLite grants the write lock at BEGIN, so reads made inside the block
        cannot be invalidated by another writer before COMMIT. Any exception
        rolls back every change made in the block.
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def close(self) -> None:
        """Close database connections.

        For pooled mode, closes all connections in pool.
        """
        if self._pool is not None:
            self._pool.close_all()

    def _init_db(self) -> None:
        """Initialize database tables and indexes."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)

    # =========================================================================
    # Practitioner operations
    # =========================================================================

    def save_practitioner(self, practitioner: Practitioner) -> Practitioner:
        """Insert or replace a practitioner with fees and weekly template."""
        created_at = practitioner.created_at or utc_now()
        with self.immediate() as conn:
            conn.execute(
                """INSERT INTO practitioners
                   (id, name, timezone, is_active, consultation_modes, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name,
                       timezone = excluded.timezone,
                       is_active = excluded.is_active,
                       consultation_modes = excluded.consultation_modes""",
                (
                    practitioner.id,
                    practitioner.name,
                    practitioner.timezone,
                    int(practitioner.is_active),
                    json.dumps([m.value for m in practitioner.consultation_modes]),
                    to_db_timestamp(created_at),
                ),
            )
            conn.execute(
                "DELETE FROM practitioner_fees WHERE practitioner_id = ?",
                (practitioner.id,),
            )
            conn.executemany(
                "INSERT INTO practitioner_fees (practitioner_id, mode, fee) VALUES (?, ?, ?)",
                [(practitioner.id, mode.value, fee) for mode, fee in practitioner.fees.items()],
            )
            conn.execute(
                "DELETE FROM availability_slots WHERE practitioner_id = ?",
                (practitioner.id,),
            )
            conn.executemany(
                """INSERT INTO availability_slots
                   (practitioner_id, weekday, start_time, end_time, mode)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (practitioner.id, weekday.value, r.start, r.end, r.mode.value)
                    for weekday, ranges in practitioner.availability.items()
                    for r in ranges
                ],
            )
        return practitioner.model_copy(update={"created_at": created_at})

    def get_practitioner(
        self, practitioner_id: str, conn: sqlite3.Connection | None = None
    ) -> Practitioner | None:
        """Get practitioner by ID, with fees and template."""
        with self._use(conn) as c:
            row = c.execute(
                "SELECT * FROM practitioners WHERE id = ?", (practitioner_id,)
            ).fetchone()
            if row is None:
                return None
            fees = c.execute(
                "SELECT mode, fee FROM practitioner_fees WHERE practitioner_id = ?",
                (practitioner_id,),
            ).fetchall()
            slots = c.execute(
                """SELECT weekday, start_time, end_time, mode FROM availability_slots
                   WHERE practitioner_id = ?
                   ORDER BY start_time, mode""",
                (practitioner_id,),
            ).fetchall()

        availability: dict[str, list[SlotRange]] = {}
        for slot in slots:
            availability.setdefault(slot["weekday"], []).append(
                SlotRange(start=slot["start_time"], end=slot["end_time"], mode=slot["mode"])
            )

        return Practitioner(
            id=row["id"],
            name=row["name"],
            timezone=row["timezone"],
            is_active=bool(row["is_active"]),
            consultation_modes=json.loads(row["consultation_modes"]),
            fees={f["mode"]: f["fee"] for f in fees},
            availability=availability,
            created_at=from_db_timestamp(row["created_at"]),
        )

    def list_practitioners(self) -> list[Practitioner]:
        """List all practitioners ordered by name."""
        with self._get_connection() as conn:
            ids = [
                row["id"]
                for row in conn.execute("SELECT id FROM practitioners ORDER BY name")
            ]
            return [self.get_practitioner(pid, conn) for pid in ids]

    # =========================================================================
    # Slot lock operations
    # =========================================================================

    def insert_lock(self, conn: sqlite3.Connection, lock: SlotLock) -> None:
        """Insert a lock. Raises sqlite3.IntegrityError if the slot is locked."""
        conn.execute(
            """INSERT INTO slot_locks
               (id, practitioner_id, requester_id, slot_date, start_time, end_time,
                mode, verification_code, consultation_fee, status,
                lock_expires_at, code_expires_at, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                lock.id,
                lock.practitioner_id,
                lock.requester_id,
                lock.slot_date.isoformat(),
                lock.start,
                lock.end,
                lock.mode.value,
                lock.verification_code,
                lock.consultation_fee,
                lock.status.value,
                to_db_timestamp(lock.lock_expires_at),
                to_db_timestamp(lock.code_expires_at),
                to_db_timestamp(lock.created_at),
            ),
        )

    def get_lock(
        self, lock_id: str, conn: sqlite3.Connection | None = None
    ) -> SlotLock | None:
        """Get lock by ID."""
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM slot_locks WHERE id = ?", (lock_id,)).fetchone()
        return _row_to_lock(row) if row is not None else None

    def list_locks(
        self,
        requester_id: str | None = None,
        status: LockStatus | None = None,
        limit: int = 100,
    ) -> list[SlotLock]:
        """List locks with optional filters, newest first."""
        query = "SELECT * FROM slot_locks WHERE 1=1"
        params: list = []

        if requester_id:
            query += " AND requester_id = ?"
            params.append(requester_id)

        if status:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_lock(row) for row in rows]

    def find_live_lock(
        self,
        conn: sqlite3.Connection,
        slot: SlotInstance,
        now: datetime,
        exclude_requester: str | None = None,
    ) -> SlotLock | None:
        """Find a lock still claiming the slot: ``locked`` or ``confirmed``, unexpired."""
        query = f"""SELECT * FROM slot_locks
                   WHERE practitioner_id = ? AND slot_date = ? AND start_time = ?
                     AND end_time = ? AND mode = ?
                     AND status IN {_LIVE_LOCK_SQL} AND lock_expires_at > ?"""
        params: list = [*slot.key(), to_db_timestamp(now)]
        if exclude_requester is not None:
            query += " AND requester_id != ?"
            params.append(exclude_requester)
        row = conn.execute(query, params).fetchone()
        return _row_to_lock(row) if row is not None else None

    def expire_locks(
        self,
        conn: sqlite3.Connection,
        now: datetime,
        slot: SlotInstance | None = None,
    ) -> int:
        """Flip ``locked`` locks whose expiry has passed to ``expired``.

        Args:
            conn: Connection inside the caller's transaction
            now: Reference time
            slot: Restrict to one slot tuple (default: all slots)

        Returns:
            Number of locks expired
        """
        query = """UPDATE slot_locks SET status = 'expired'
                   WHERE status = 'locked' AND lock_expires_at <= ?"""
        params: list = [to_db_timestamp(now)]
        if slot is not None:
            query += """ AND practitioner_id = ? AND slot_date = ? AND start_time = ?
                         AND end_time = ? AND mode = ?"""
            params.extend(slot.key())
        return conn.execute(query, params).rowcount

    def mark_lock_expired(self, conn: sqlite3.Connection, lock_id: str) -> bool:
        """Expire one lock if it is still ``locked``."""
        cursor = conn.execute(
            "UPDATE slot_locks SET status = 'expired' WHERE id = ? AND status = 'locked'",
            (lock_id,),
        )
        return cursor.rowcount > 0

    def mark_lock_confirmed(
        self,
        conn: sqlite3.Connection,
        lock_id: str,
        appointment_id: str,
        now: datetime,
    ) -> bool:
        """Compare-and-swap a lock from ``locked`` to ``confirmed``.

        Returns:
            True if this call performed the transition
        """
        cursor = conn.execute(
            """UPDATE slot_locks
               SET status = 'confirmed', confirmed_at = ?, appointment_id = ?
               WHERE id = ? AND status = 'locked' AND lock_expires_at > ?""",
            (to_db_timestamp(now), appointment_id, lock_id, to_db_timestamp(now)),
        )
        return cursor.rowcount > 0

    # =========================================================================
    # Appointment operations
    # =========================================================================

    def insert_appointment(self, conn: sqlite3.Connection, appt: Appointment) -> None:
        """Insert an appointment.

        Raises sqlite3.IntegrityError if an active appointment holds the slot.
        """
        cancellation = appt.cancellation
        rescheduling = appt.rescheduling
        conn.execute(
            """INSERT INTO appointments
               (id, patient_id, practitioner_id, appointment_date, start_time,
                end_time, mode, consultation_fee, status, booking_type,
                original_appointment_id, lock_id, created_at, updated_at,
                cancelled_by, cancelled_at, cancellation_reason, refund_amount,
                refund_status, original_date, original_start_time,
                original_end_time, original_mode, rescheduled_by, rescheduled_at,
                reschedule_reason)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                       ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                appt.id,
                appt.patient_id,
                appt.practitioner_id,
                appt.appointment_date.isoformat(),
                appt.start,
                appt.end,
                appt.mode.value,
                appt.consultation_fee,
                appt.status.value,
                appt.booking_type.value,
                appt.original_appointment_id,
                appt.lock_id,
                to_db_timestamp(appt.created_at),
                to_db_timestamp(appt.updated_at),
                cancellation.cancelled_by.value if cancellation else None,
                to_db_timestamp(cancellation.cancelled_at) if cancellation else None,
                cancellation.reason if cancellation else None,
                cancellation.refund_amount if cancellation else None,
                cancellation.refund_status.value if cancellation else None,
                rescheduling.original_date.isoformat() if rescheduling else None,
                rescheduling.original_start if rescheduling else None,
                rescheduling.original_end if rescheduling else None,
                rescheduling.original_mode.value if rescheduling else None,
                rescheduling.rescheduled_by.value if rescheduling else None,
                to_db_timestamp(rescheduling.rescheduled_at) if rescheduling else None,
                rescheduling.reason if rescheduling else None,
            ),
        )

    def get_appointment(
        self, appointment_id: str, conn: sqlite3.Connection | None = None
    ) -> Appointment | None:
        """Get appointment by ID."""
        with self._use(conn) as c:
            row = c.execute(
                "SELECT * FROM appointments WHERE id = ?", (appointment_id,)
            ).fetchone()
        return _row_to_appointment(row) if row is not None else None

    def list_appointments(
        self,
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        status: AppointmentStatus | None = None,
        limit: int = 100,
    ) -> list[Appointment]:
        """List appointments with optional filters, latest date first."""
        query = "SELECT * FROM appointments WHERE 1=1"
        params: list = []

        if patient_id:
            query += " AND patient_id = ?"
            params.append(patient_id)

        if practitioner_id:
            query += " AND practitioner_id = ?"
            params.append(practitioner_id)

        if status:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY appointment_date DESC, start_time LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_appointment(row) for row in rows]

    def find_active_appointment(
        self, conn: sqlite3.Connection, slot: SlotInstance
    ) -> Appointment | None:
        """Find the pending/confirmed appointment holding the slot, if any."""
        row = conn.execute(
            f"""SELECT * FROM appointments
                WHERE practitioner_id = ? AND appointment_date = ? AND start_time = ?
                  AND end_time = ? AND mode = ?
                  AND status IN {_ACTIVE_APPOINTMENT_SQL}""",
            slot.key(),
        ).fetchone()
        return _row_to_appointment(row) if row is not None else None

    def taken_slots(
        self, practitioner_id: str, slot_date: date, now: datetime
    ) -> set[tuple[str, str, str]]:
        """Return (start, end, mode) of slots held by a live lock or appointment."""
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""SELECT start_time, end_time, mode FROM appointments
                    WHERE practitioner_id = ? AND appointment_date = ?
                      AND status IN {_ACTIVE_APPOINTMENT_SQL}
                    UNION
                    SELECT start_time, end_time, mode FROM slot_locks
                    WHERE practitioner_id = ? AND slot_date = ?
                      AND status IN {_LIVE_LOCK_SQL} AND lock_expires_at > ?""",
                (
                    practitioner_id,
                    slot_date.isoformat(),
                    practitioner_id,
                    slot_date.isoformat(),
                    to_db_timestamp(now),
                ),
            ).fetchall()
        return {(row["start_time"], row["end_time"], row["mode"]) for row in rows}

    def cancel_appointment(
        self,
        conn: sqlite3.Connection,
        appointment_id: str,
        info: CancellationInfo,
    ) -> bool:
        """Move an active appointment to ``cancelled`` with its audit record."""
        cursor = conn.execute(
            f"""UPDATE appointments
                SET status = 'cancelled', updated_at = ?, cancelled_by = ?,
                    cancelled_at = ?, cancellation_reason = ?, refund_amount = ?,
                    refund_status = ?
                WHERE id = ? AND status IN {_ACTIVE_APPOINTMENT_SQL}""",
            (
                to_db_timestamp(info.cancelled_at),
                info.cancelled_by.value,
                to_db_timestamp(info.cancelled_at),
                info.reason,
                info.refund_amount,
                info.refund_status.value,
                appointment_id,
            ),
        )
        return cursor.rowcount > 0

    def mark_rescheduled(
        self, conn: sqlite3.Connection, appointment_id: str, now: datetime
    ) -> bool:
        """Retire an active appointment that has been moved elsewhere."""
        cursor = conn.execute(
            f"""UPDATE appointments SET status = 'rescheduled', updated_at = ?
                WHERE id = ? AND status IN {_ACTIVE_APPOINTMENT_SQL}""",
            (to_db_timestamp(now), appointment_id),
        )
        return cursor.rowcount > 0

    def mark_completed(
        self, conn: sqlite3.Connection, appointment_id: str, now: datetime
    ) -> bool:
        """Move a confirmed appointment to ``completed``."""
        cursor = conn.execute(
            """UPDATE appointments SET status = 'completed', updated_at = ?
               WHERE id = ? AND status = 'confirmed'""",
            (to_db_timestamp(now), appointment_id),
        )
        return cursor.rowcount > 0


# =============================================================================
# Row mapping
# =============================================================================


def _row_to_lock(row: sqlite3.Row) -> SlotLock:
    return SlotLock(
        id=row["id"],
        practitioner_id=row["practitioner_id"],
        requester_id=row["requester_id"],
        slot_date=date.fromisoformat(row["slot_date"]),
        start=row["start_time"],
        end=row["end_time"],
        mode=row["mode"],
        verification_code=row["verification_code"],
        consultation_fee=row["consultation_fee"],
        status=row["status"],
        lock_expires_at=from_db_timestamp(row["lock_expires_at"]),
        code_expires_at=from_db_timestamp(row["code_expires_at"]),
        created_at=from_db_timestamp(row["created_at"]),
        confirmed_at=from_db_timestamp(row["confirmed_at"]),
        appointment_id=row["appointment_id"],
    )


def _row_to_appointment(row: sqlite3.Row) -> Appointment:
    cancellation = None
    if row["cancelled_by"] is not None:
        cancellation = CancellationInfo(
            cancelled_by=row["cancelled_by"],
            cancelled_at=from_db_timestamp(row["cancelled_at"]),
            reason=row["cancellation_reason"],
            refund_amount=row["refund_amount"] or 0.0,
            refund_status=row["refund_status"],
        )

    rescheduling = None
    if row["rescheduled_by"] is not None:
        rescheduling = ReschedulingInfo(
            original_date=date.fromisoformat(row["original_date"]),
            original_start=row["original_start_time"],
            original_end=row["original_end_time"],
            original_mode=row["original_mode"],
            rescheduled_by=row["rescheduled_by"],
            rescheduled_at=from_db_timestamp(row["rescheduled_at"]),
            reason=row["reschedule_reason"],
        )

    return Appointment(
        id=row["id"],
        patient_id=row["patient_id"],
        practitioner_id=row["practitioner_id"],
        appointment_date=date.fromisoformat(row["appointment_date"]),
        start=row["start_time"],
        end=row["end_time"],
        mode=row["mode"],
        consultation_fee=row["consultation_fee"],
        status=row["status"],
        booking_type=row["booking_type"],
        original_appointment_id=row["original_appointment_id"],
        lock_id=row["lock_id"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
        cancellation=cancellation,
        rescheduling=rescheduling,
    )
