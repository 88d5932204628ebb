"""
Round-robin scheduler for scrape jobs.
Coordinates the tunnel, the scraping capability, quotas and checkpointing.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Optional

from leadrunner.capability import ScrapingCapability
from leadrunner.config import RunnerConfig
from leadrunner.errors import (
    DailyLimit, EmptyQueue, JobOutcome, ListEnd, NoCredits, NoProcess,
    NoUnusedConfigs, SecurityChallenge, TargetReached, TunnelStopError, VPNError
)
from leadrunner.models import Account, RunResult
from leadrunner.openvpn import OpenVPNManager
from leadrunner.resilience import ProgressTracker, QuotaController, RetryHandler
from leadrunner.storage import LeadWriter
from leadrunner.utils import default_list_name

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Job:
    """One account plus the state of its current 24h save window."""
    account: Account
    started_at: Optional[datetime] = None
    saved_today: int = 0

    def reset_window(self):
        self.started_at = None
        self.saved_today = 0


class JobQueue:
    """
    Ordered jobs with round-robin rotation.

    The front job is the one to run next. Jobs are rotated to the back
    with requeue() or dropped with remove_front(); iterating never
    changes the order.
    """

    def __init__(self, jobs: Iterable[Job] = ()):
        self._jobs = deque()
        for job in jobs:
            self.append(job)

    @classmethod
    def from_accounts(cls, accounts: Iterable[Account], vpn: Optional[OpenVPNManager] = None) -> "JobQueue":
        """
        Build a queue with one job per account.

        Accounts without a destination list get a generated one. When a
        VPN manager is given, accounts without a config are assigned one.
        """
        accounts = list(accounts)
        for account in accounts:
            if not account.list:
                account.list = default_list_name(account.email)

        if vpn is not None:
            vpn.assign(accounts)

        return cls(Job(account) for account in accounts)

    def append(self, job: Job):
        """
        Add a job at the back.

        Raises:
            ValueError: If the job or its account is already queued
        """
        for queued in self._jobs:
            if queued is job or queued.account.email == job.account.email:
                raise ValueError(f"{job.account.email} is already queued")
        self._jobs.append(job)

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._jobs))

    def is_empty(self) -> bool:
        return not self._jobs

    def front(self) -> Job:
        if not self._jobs:
            raise EmptyQueue()
        return self._jobs[0]

    def requeue(self):
        """Move the front job to the back."""
        if not self._jobs:
            raise EmptyQueue()
        self._jobs.rotate(-1)

    def remove_front(self) -> Job:
        if not self._jobs:
            raise EmptyQueue()
        return self._jobs.popleft()

    def sort_by_cooldown(self):
        """Order jobs by cooldown deadline; jobs without one come first."""
        logger.debug("Rearranging jobs by cooldown")
        jobs = sorted(self._jobs, key=lambda j: (j.account.timeout is not None, j.account.timeout or datetime.min))
        self._jobs = deque(jobs)

    @property
    def accounts(self) -> List[Account]:
        return [job.account for job in self._jobs]


class Scheduler:
    """Runs queued jobs one at a time until every job is retired."""

    # Longest single sleep while waiting for a cooldown, so stop() is noticed
    SLEEP_INTERVAL = 60.0

    def __init__(
        self,
        config: RunnerConfig,
        capability: ScrapingCapability,
        vpn: Optional[OpenVPNManager] = None,
        progress: Optional[ProgressTracker] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize scheduler with its collaborators.

        Args:
            config: RunnerConfig for the run
            capability: Browser layer used to log in, save and scrape
            vpn: Tunnel manager, or None to run without a VPN
            progress: Checkpoint writer; built from config when omitted
                and config.save_progress is set
            sleep: Sleep function for cooldowns and retry backoff
            clock: Returns the current time
        """
        self.config = config
        self.capability = capability
        self.vpn = vpn
        self._sleep = sleep
        self._clock = clock

        self.quota = QuotaController(daily_limit=config.daily_limit, clock=clock)
        self.retry_handler = RetryHandler(config=config.retry, sleep=sleep)
        if progress is None and config.save_progress:
            progress = ProgressTracker(config.output_dir, config.output_format)
        self.progress = progress

        self._queue: Optional[JobQueue] = None
        self._stopped = False

    def stop(self):
        """Finish the current unit of work, then end the run."""
        logger.info("Stopping after the current job...")
        self._stopped = True

    def get_status(self) -> dict:
        """
        Get current run status and statistics.

        Returns:
            Dict with per-job quota state and component stats
        """
        jobs = list(self._queue) if self._queue is not None else []
        return {
            'jobs': {job.account.email: self.quota.get_stats(job) for job in jobs},
            'retry': self.retry_handler.get_stats(),
            'progress': self.progress.get_stats() if self.progress else None,
            'tunnel': self.vpn.active_config if self.vpn else None,
            'stopped': self._stopped
        }

    def run(self, queue: JobQueue) -> RunResult:
        """
        Process the queue until it is empty or the run is stopped.

        Args:
            queue: Jobs to run; it is consumed as jobs retire

        Returns:
            RunResult summarizing the run

        Raises:
            NoUnusedConfigs: If a failed tunnel could not be replaced
        """
        self._queue = queue
        self._stopped = False
        started_at = self._clock()
        completed: List[str] = []
        challenged: List[str] = []
        iterations = 0
        skipped = 0

        logger.info("Starting run with %d jobs", len(queue))

        try:
            while not self._stopped:
                if queue.is_empty():
                    logger.info("Finished all scraping jobs")
                    break

                job = queue.front()
                account = job.account

                if account.is_timed_out(self._clock()):
                    if skipped < len(queue):
                        skipped += 1
                        queue.requeue()
                        continue

                    # Every job is cooling down
                    self._wait_for_cooldown(queue)
                    skipped = 0
                    if self._stopped:
                        break
                    job = queue.front()
                    account = job.account
                    account.timeout = None

                skipped = 0
                iterations += 1
                outcome = self._run_job(queue, job)
                if outcome == 'completed':
                    completed.append(account.email)
                elif outcome == 'challenged':
                    challenged.append(account.email)

                self._checkpoint()
        finally:
            self._stop_tunnel()
            self._checkpoint()

        completed_at = self._clock()
        return RunResult(
            started_at=started_at.isoformat(),
            completed_at=completed_at.isoformat(),
            completed=completed,
            failed=self.retry_handler.get_failures(),
            challenged=challenged,
            remaining=len(queue),
            iterations=iterations,
            stopped=self._stopped,
            duration_seconds=(completed_at - started_at).total_seconds()
        )

    def _run_job(self, queue: JobQueue, job: Job) -> str:
        """
        Run the front job and act on how it ended.

        Returns:
            'completed', 'challenged', 'requeued' or 'interrupted'
        """
        account = job.account
        logger.info("Running job for %s", account.email)

        try:
            self._connect_tunnel(account)
            self._save_leads(job)

        except DailyLimit:
            logger.warning("%s hit the daily save limit, cooling down for 24h", account.email)
            self.quota.mark_daily_limit_hit(account)
            queue.requeue()
            return 'requeued'

        except NoCredits:
            logger.warning("%s is out of credits", account.email)
            queue.requeue()
            return 'requeued'

        except (TargetReached, ListEnd) as e:
            logger.info("Scraping completed for %s: %s", account.email, e)
            queue.remove_front()
            self.retry_handler.clear_failure(account.email)
            return 'completed'

        except SecurityChallenge as e:
            logger.error("Security challenge for %s, dropping the job: %s", account.email, e)
            queue.remove_front()
            return 'challenged'

        except NoUnusedConfigs:
            raise

        except Exception as e:
            logger.error("Scraping error for %s: %s", account.email, e)
            self.retry_handler.record_failure(account.email, str(e))
            queue.requeue()
            return 'requeued'

        return 'interrupted'

    def _connect_tunnel(self, account: Account):
        """
        Make sure the account's tunnel is the active one.

        A failed config is replaced with a backup, which is then stored
        on the account.

        Raises:
            NoUnusedConfigs: If no backup config is left
            VPNTimeout: If no backup config came up in time
            TunnelStopError: If the previous tunnel could not be stopped
        """
        if self.vpn is None:
            return

        if not account.vpn:
            self.vpn.assign([account])

        if self.vpn.active_config == account.vpn and self.vpn.is_running():
            logger.debug("Reusing openvpn tunnel %s for %s", account.vpn, account.email)
            return

        try:
            self.vpn.restart(account.vpn)
            logger.debug("Connected openvpn tunnel %s for %s", account.vpn, account.email)
        except TunnelStopError:
            raise
        except VPNError as e:
            logger.warning("Openvpn config %s failed for %s: %s", account.vpn, account.email, e)
            account.vpn = self.vpn.backup()
            logger.warning("Switched %s to openvpn config %s", account.email, account.vpn)

    def _stop_tunnel(self):
        if self.vpn is None:
            return
        try:
            self.vpn.stop()
        except NoProcess:
            logger.debug("No openvpn tunnel to stop")
        except VPNError as e:
            logger.warning("Failed to stop openvpn: %s", e)

    def _wait_for_cooldown(self, queue: JobQueue):
        """Sleep until the earliest cooldown in the queue has passed."""
        queue.sort_by_cooldown()
        deadline = queue.front().account.timeout
        if deadline is None:
            return

        self._stop_tunnel()
        logger.warning("All jobs are cooling down, pausing until %s", deadline.isoformat(timespec='seconds'))

        while not self._stopped:
            remaining = (deadline - self._clock()).total_seconds()
            if remaining <= 0:
                break
            self._sleep(min(remaining, self.SLEEP_INTERVAL))

    def _save_leads(self, job: Job):
        """
        Log in and work through the job until it reaches an outcome.

        Returns only when the run was stopped; otherwise raises a
        JobOutcome or the error that ended the job.
        """
        account = job.account
        session, cookies = self.retry_handler.execute_with_retry(self.capability.login, account)
        if cookies:
            account.login_cookies = list(cookies)

        try:
            self._work(session, job)
        except JobOutcome:
            raise
        except Exception:
            self._grab_error_snapshot(session, account)
            raise
        finally:
            self.capability.close(session)

    def _work(self, session: Any, job: Job):
        account = job.account

        if self.config.fetch_credits:
            credits, refresh = self.retry_handler.execute_with_retry(self.capability.fetch_quota, session)
            account.credits, account.credit_refresh = credits, refresh
            logger.info("%s has %d credits left", account.email, credits)

        self.quota.open_window(job)
        self.retry_handler.execute_with_retry(self.capability.select_tab, session, self.config.tab_name)
        logger.debug("Selected tab %s", self.config.tab_name)

        while not self._stopped:
            if account.is_done():
                logger.info("Finished saving leads to %s for %s", account.list, account.email)
                self._scrape_leads(session, job)
                if self._stopped:
                    return
                if account.done:
                    raise ListEnd()
                raise TargetReached()

            if self.quota.is_done_for_today(job):
                raise DailyLimit()
            self.quota.open_window(job)

            if not self.quota.can_scrape(account):
                raise NoCredits()

            try:
                count = self.retry_handler.execute_with_retry(self.capability.save_batch, session, account.list)
            except ListEnd:
                count = 0

            if count <= 0:
                logger.info("No more leads to save for %s", account.email)
                account.done = True
                continue

            self.quota.record_save(job, count)
            logger.info("Saved %d leads to %s for %s (%d total)", count, account.list, account.email, account.saved)
            self._checkpoint()

    def _scrape_leads(self, session: Any, job: Job) -> int:
        """
        Scrape the account's list into <output_dir>/<list><ext>.

        Every attempt starts from an empty file; a partially written file
        is removed when scraping fails.

        Returns:
            Number of leads written
        """
        account = job.account
        writer = LeadWriter(Path(self.config.output_dir) / f"{account.list}{self.config.output_format}")
        if writer.path.exists():
            logger.warning("Discarding leftover output %s", writer.path)
            writer.path.unlink()
        logger.info("Scraping leads for %s", account.email)

        try:
            while not self._stopped:
                try:
                    records = self.retry_handler.execute_with_retry(
                        self.capability.scrape_batch, session, self.config.tab_name
                    )
                except ListEnd:
                    break
                if not records:
                    break
                writer.write_leads(records)
                logger.info("Scraped %d leads for %s", writer.written, account.email)
        except Exception:
            if writer.written and writer.path.exists():
                logger.warning("Removing partial output %s", writer.path)
                writer.path.unlink()
            raise

        return writer.written

    def _grab_error_snapshot(self, session: Any, account: Account):
        try:
            self.capability.grab_error_snapshot(session, account, self.config.error_dir)
        except Exception as e:
            logger.warning("Failed to grab error snapshot for %s: %s", account.email, e)

    def _checkpoint(self):
        if self.progress is None or self._queue is None:
            return
        self.progress.checkpoint(self._queue.accounts)
