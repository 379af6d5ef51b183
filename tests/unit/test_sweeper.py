"""Tests for slotguard.sweeper module."""

from unittest.mock import MagicMock

from slotguard.constants import LockStatus
from slotguard.sweeper import JOB_ID, ExpirySweeper


class TestRunOnce:
    """Tests for a single sweep."""

    def test_releases_expired_locks(self, service, clock, reserve_monday):
        """Expired locks are released and counted."""
        receipt = reserve_monday()
        sweeper = ExpirySweeper(service, interval_seconds=60)

        assert sweeper.run_once() == 0

        clock.advance(minutes=6)
        assert sweeper.run_once() == 1
        assert service.get_lock(receipt.lock_id).status == LockStatus.EXPIRED

    def test_accumulates_total(self):
        """total_released sums every sweep."""
        service = MagicMock()
        service.sweep_expired_locks.side_effect = [2, 0, 3]
        sweeper = ExpirySweeper(service, interval_seconds=60)

        for _ in range(3):
            sweeper.run_once()

        assert sweeper.total_released == 5

    def test_failure_is_logged_not_raised(self, caplog):
        """A failing sweep returns 0 so the schedule keeps running."""
        service = MagicMock()
        service.sweep_expired_locks.side_effect = RuntimeError("database is locked")
        sweeper = ExpirySweeper(service, interval_seconds=60)

        assert sweeper.run_once() == 0
        assert "Lock sweep failed" in caplog.text


class TestSchedule:
    """Tests for start/stop of the background job."""

    def test_start_registers_job(self):
        service = MagicMock()
        service.sweep_expired_locks.return_value = 0
        sweeper = ExpirySweeper(service, interval_seconds=3600)

        sweeper.start()
        try:
            assert sweeper.is_running
            job = sweeper.scheduler.get_job(JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
        finally:
            sweeper.stop()

        assert not sweeper.is_running

    def test_start_is_idempotent(self):
        """Starting twice keeps a single job."""
        sweeper = ExpirySweeper(MagicMock(), interval_seconds=3600)

        sweeper.start()
        sweeper.start()
        try:
            assert len(sweeper.scheduler.get_jobs()) == 1
        finally:
            sweeper.stop()

    def test_stop_without_start(self):
        """Stopping an idle sweeper is a no-op."""
        sweeper = ExpirySweeper(MagicMock(), interval_seconds=60)

        sweeper.stop()

        assert not sweeper.is_running
