"""
Progress checkpointing for resumable runs.
Persists account progress and login cookies to the output directory.
"""

import csv
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from leadrunner.models import Account
from leadrunner.storage import read_accounts, read_records, save_accounts, save_records

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "leadrunner-progress"
COOKIES_FILENAME = "leadrunner-cookies.json"


def load_cookies(path: str) -> Dict[str, List[dict]]:
    """
    Read a cookie file mapping account emails to browser cookies.

    Raises:
        ValueError: If the file is not a JSON object
    """
    data = read_records(path)
    if not isinstance(data, dict):
        raise ValueError(f"cookie file {path} must contain an object keyed by email")
    return data


def apply_cookies(accounts: Iterable[Account], cookies: Dict[str, List[dict]]) -> int:
    """
    Attach persisted cookies to matching accounts.

    Returns:
        Number of accounts that received cookies
    """
    count = 0
    for account in accounts:
        if cookies.get(account.email):
            account.login_cookies = list(cookies[account.email])
            count += 1
    return count


class ProgressTracker:
    """Writes account progress and cookies after every unit of work."""

    def __init__(self, output_dir: str, output_format: str = ".csv"):
        """
        Initialize tracker with the output directory.

        Args:
            output_dir: Directory to store progress files
            output_format: ".csv" or ".json" for the progress file
        """
        self.output_dir = Path(output_dir)
        self.progress_file = self.output_dir / f"{PROGRESS_PREFIX}{output_format}"
        self.cookies_file = self.output_dir / COOKIES_FILENAME
        self._saves = 0
        self._failures = 0
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def save(self, accounts: Iterable[Account]):
        """
        Persist progress for the given accounts.

        Raises:
            OSError, UnsupportedFileFormat: If writing fails
        """
        accounts = list(accounts)
        cookies = {a.email: a.login_cookies for a in accounts if a.login_cookies}

        logger.debug("Saving cookies to %s", self.cookies_file)
        save_records(self.cookies_file, cookies)

        logger.debug("Saving progress to %s", self.progress_file)
        save_accounts(self.progress_file, accounts)
        self._saves += 1

    def checkpoint(self, accounts: Iterable[Account]) -> bool:
        """
        Persist progress, logging instead of raising on failure.

        Returns:
            True if the checkpoint was written
        """
        try:
            self.save(accounts)
            return True
        except Exception as e:
            self._failures += 1
            logger.warning("Failed to save progress: %s", e)
            return False

    def load_progress(self) -> Optional[List[Account]]:
        """
        Load accounts from a previous checkpoint.

        Returns:
            Accounts if a valid checkpoint exists, None otherwise
        """
        if not self.progress_file.exists():
            return None

        try:
            accounts = read_accounts(self.progress_file)
        except (json.JSONDecodeError, csv.Error, ValueError, KeyError, TypeError) as e:
            logger.error("Progress file corrupted: %s", e)
            self._backup_corrupted()
            return None

        if self.cookies_file.exists():
            try:
                apply_cookies(accounts, load_cookies(str(self.cookies_file)))
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning("Ignoring unreadable cookie file %s: %s", self.cookies_file, e)

        return accounts

    def _backup_corrupted(self):
        """Create backup of corrupted progress file."""
        if self.progress_file.exists():
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = self.output_dir / f"{PROGRESS_PREFIX}.corrupted.{timestamp}{self.progress_file.suffix}"
            try:
                shutil.copy2(self.progress_file, backup_path)
                logger.info("Backed up corrupted progress to %s", backup_path)
            except OSError as e:
                logger.warning("Failed to backup corrupted progress: %s", e)

    def get_stats(self) -> dict:
        return {
            'saves': self._saves,
            'failures': self._failures,
            'progress_file': str(self.progress_file)
        }
