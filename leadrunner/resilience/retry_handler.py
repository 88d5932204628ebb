"""
Retry handling with exponential backoff.
Retries transient failures and keeps a record of jobs that ran out of retries.
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple, Type

from leadrunner.config import RetryConfig
from leadrunner.errors import JobOutcome, SecurityChallenge

logger = logging.getLogger(__name__)


class RetryHandler:
    """Manages retry logic with exponential backoff and failure tracking."""

    # Never retried: they describe the job's state, not a glitch
    PASSTHROUGH: Tuple[Type[BaseException], ...] = (JobOutcome, SecurityChallenge)

    def __init__(self, config: Optional[RetryConfig] = None, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize retry handler.

        Args:
            config: RetryConfig instance, uses defaults if None
            sleep: Sleep function used between attempts
        """
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._failures: List[dict] = []

    def execute_with_retry(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Whatever func returned on the first successful attempt

        Raises:
            JobOutcome, SecurityChallenge: Immediately, without retrying
            Exception: The last error once max_retries attempts failed
        """
        last_error: Optional[BaseException] = None
        delay = self.config.base_delay
        attempts = max(1, self.config.max_retries)

        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except self.PASSTHROUGH:
                raise
            except Exception as e:
                last_error = e
                logger.warning("Attempt %d/%d failed: %s", attempt, attempts, e)

            # Don't sleep after last attempt
            if attempt < attempts:
                sleep_time = min(delay, self.config.max_delay)
                if sleep_time > 0:
                    logger.debug("Retrying in %.1fs...", sleep_time)
                    self._sleep(sleep_time)
                delay *= self.config.backoff_factor

        raise last_error

    def record_failure(self, email: str, reason: str):
        """
        Record a job that failed all retries.

        Args:
            email: Account email of the job
            reason: Failure reason
        """
        for failure in self._failures:
            if failure['email'] == email:
                failure['reason'] = reason
                failure['attempts'] += 1
                failure['last_attempt'] = datetime.now().isoformat()
                return

        self._failures.append({
            'email': email,
            'reason': reason,
            'attempts': 1,
            'last_attempt': datetime.now().isoformat()
        })

    def get_failures(self) -> List[dict]:
        """
        Get jobs that failed with reasons.

        Returns:
            List of dicts with email, reason, attempts, last_attempt
        """
        return [dict(f) for f in self._failures]

    def clear_failure(self, email: str):
        """Forget a failure once the job succeeded on a later pass."""
        self._failures = [f for f in self._failures if f['email'] != email]

    def get_stats(self) -> dict:
        return {
            'total_failed': len(self._failures),
            'max_retries': self.config.max_retries,
            'base_delay': self.config.base_delay
        }
