"""Expiry Sweeper - scheduled release of abandoned slot locks.

Locks also expire lazily when someone touches their slot, so the sweeper
only keeps the store tidy and availability listings accurate between
touches. Running it twice, or concurrently with confirmations, is safe.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from slotguard.config import SWEEP_INTERVAL_SECONDS
from slotguard.protocol import ReservationService

logger = logging.getLogger(__name__)

JOB_ID = "slotguard_lock_sweep"


class ExpirySweeper:
    """Runs ``sweep_expired_locks`` on a fixed interval in a background thread."""

    def __init__(
        self,
        service: ReservationService,
        interval_seconds: int = SWEEP_INTERVAL_SECONDS,
    ):
        """Initialize the sweeper.

        Args:
            service: Service whose expired locks are released
            interval_seconds: Seconds between sweeps
        """
        self.service = service
        self.interval_seconds = interval_seconds
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.is_running = False
        self.total_released = 0

    def run_once(self) -> int:
        """Sweep now. Errors are logged, not raised, so the schedule survives."""
        try:
            released = self.service.sweep_expired_locks()
        except Exception:
            logger.exception("Lock sweep failed")
            return 0
        self.total_released += released
        return released

    def start(self) -> None:
        """Start sweeping in the background."""
        if self.is_running:
            return

        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Expired slot lock sweep",
            misfire_grace_time=self.interval_seconds,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.start()
        self.is_running = True
        logger.info(f"Lock sweeper started (every {self.interval_seconds}s)")

    def stop(self) -> None:
        """Stop sweeping; an in-flight sweep is not waited for."""
        if not self.is_running:
            return
        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("Lock sweeper stopped")
