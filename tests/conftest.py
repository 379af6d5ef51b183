"""Shared test fixtures for slotguard tests."""

import threading
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest

from slotguard.constants import ConsultationMode, Weekday
from slotguard.models import Practitioner, SlotInstance, SlotRange
from slotguard.protocol import ReservationService
from slotguard.storage import SlotGuardDB

# Sunday 08:00 UTC; the next Monday 09:00 is 25 hours away
START_TIME = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
MONDAY = date(2026, 3, 2)
TUESDAY = date(2026, 3, 3)


class FakeClock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs) and return the new time."""
        with self._lock:
            self.now += timedelta(**kwargs)
            return self.now

    def set(self, now: datetime) -> None:
        with self._lock:
            self.now = now


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at Sunday 2026-03-01 08:00 UTC."""
    return FakeClock()


@pytest.fixture
def temp_db(tmp_path: Path) -> Generator[SlotGuardDB, None, None]:
    """Temporary database for testing."""
    db_path = tmp_path / "test.db"
    db = SlotGuardDB(db_path=db_path)
    yield db
    db.close()


@pytest.fixture
def practitioner() -> Practitioner:
    """Practitioner with Monday morning slots in both modes."""
    return Practitioner(
        id="dr-lee",
        name="Dr. Lee",
        timezone="UTC",
        consultation_modes=[ConsultationMode.ONLINE, ConsultationMode.IN_PERSON],
        fees={ConsultationMode.ONLINE: 40.0, ConsultationMode.IN_PERSON: 60.0},
        availability={
            Weekday.MONDAY: [
                SlotRange(start="09:00", end="09:30", mode=ConsultationMode.ONLINE),
                SlotRange(start="09:30", end="10:00", mode=ConsultationMode.ONLINE),
                SlotRange(start="09:00", end="09:30", mode=ConsultationMode.IN_PERSON),
            ],
            Weekday.TUESDAY: [
                SlotRange(start="10:00", end="10:30", mode=ConsultationMode.ONLINE),
            ],
        },
    )


@pytest.fixture
def service(temp_db, clock, practitioner) -> ReservationService:
    """Service on a temp DB with the fake clock and one registered practitioner."""
    svc = ReservationService(temp_db, clock=clock, expose_codes=True)
    svc.register_practitioner(practitioner)
    return svc


@pytest.fixture
def monday_slot() -> SlotInstance:
    """Monday 09:00-09:30 online slot of dr-lee."""
    return SlotInstance(
        practitioner_id="dr-lee",
        slot_date=MONDAY,
        start="09:00",
        end="09:30",
        mode=ConsultationMode.ONLINE,
    )


@pytest.fixture
def reserve_monday(service):
    """Reserve the Monday 09:00 online slot for a requester."""

    def _reserve(requester_id: str = "patient-1"):
        return service.reserve_slot(
            "dr-lee", MONDAY, "09:00", "09:30", "online", requester_id
        )

    return _reserve
