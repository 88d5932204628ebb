"""
Per-job quota tracking.
Gates scraping on a rolling 24h save count and the account's credits.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from leadrunner.models import Account
    from leadrunner.scheduler import Job

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=24)


class QuotaController:
    """Decides whether a job may keep saving leads."""

    def __init__(self, daily_limit: int = 500, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the controller.

        Args:
            daily_limit: Leads a job may save per 24h window
            clock: Returns the current time
        """
        self.daily_limit = daily_limit
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def open_window(self, job: "Job"):
        """Start the job's 24h save window if it is not open yet."""
        if job.started_at is None:
            job.started_at = self.now()
            job.saved_today = 0

    def is_done_for_today(self, job: "Job", daily_limit: Optional[int] = None) -> bool:
        """
        Check whether the job used up its daily quota.

        When the quota is used up inside the current window, the window is
        reset so it opens afresh on the next run. A window that has fully
        elapsed is reset too, without blocking the job.

        Args:
            job: Job to check
            daily_limit: Overrides the controller's limit

        Returns:
            True if the job saved its limit within the last 24h
        """
        if job.started_at is None:
            return False

        limit = self.daily_limit if daily_limit is None else daily_limit
        within_window = self.now() < job.started_at + WINDOW

        if within_window and job.saved_today >= limit:
            job.reset_window()
            return True

        if not within_window:
            logger.debug("Save window for %s elapsed, resetting", job.account.email)
            job.reset_window()

        return False

    def can_scrape(self, account: "Account") -> bool:
        """An account can keep saving while it has credits left."""
        return account.credits > 0

    def record_save(self, job: "Job", count: int):
        """
        Record a saved batch against the job and its account.

        Args:
            job: Job that saved the batch
            count: Number of leads saved
        """
        if count <= 0:
            return
        job.account.increment(count)
        job.account.use_credits(count)
        job.saved_today += count

    def mark_daily_limit_hit(self, account: "Account"):
        """Put the account on a 24h cooldown."""
        account.set_timeout(self.now() + WINDOW)

    def get_stats(self, job: "Job") -> dict:
        """
        Get quota statistics for a job.

        Returns:
            Dict with current quota state
        """
        return {
            'saved_today': job.saved_today,
            'daily_limit': self.daily_limit,
            'window_started': job.started_at.isoformat() if job.started_at else None,
            'credits': job.account.credits,
            'saved': job.account.saved,
            'target': job.account.target
        }
