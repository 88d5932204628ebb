"""
Scraping capability used by the scheduler.

ScrapingCapability is the contract for the site-specific browser layer.
BrowserScraper implements the site-independent half: it owns the
SeleniumBase driver for one job, restores cookies and grabs error
snapshots. Subclasses supply the actual navigation.
"""

import importlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple

from seleniumbase import Driver

from leadrunner.config import RunnerConfig
from leadrunner.models import Account

logger = logging.getLogger(__name__)


class ScrapingCapability(ABC):
    """Operations the scheduler needs from the browser layer."""

    @classmethod
    def from_config(cls, config: RunnerConfig) -> "ScrapingCapability":
        return cls()

    @abstractmethod
    def login(self, account: Account) -> Tuple[Any, List[dict]]:
        """
        Log into the target site.

        Returns:
            Tuple of (session, cookies)

        Raises:
            SecurityChallenge: If the site demands a challenge
        """

    @abstractmethod
    def select_tab(self, session: Any, tab: str):
        """Open the results tab with the given label."""

    @abstractmethod
    def fetch_quota(self, session: Any) -> Tuple[int, Optional[datetime]]:
        """
        Read the account's credit balance.

        Returns:
            Tuple of (credits remaining, credit refresh time)
        """

    @abstractmethod
    def save_batch(self, session: Any, list_name: str) -> int:
        """
        Save the current page of results to a list.

        Returns:
            Number of leads saved

        Raises:
            ListEnd: If there is nothing left to save
        """

    @abstractmethod
    def scrape_batch(self, session: Any, tab: str) -> List[dict]:
        """
        Scrape the current page of a saved list and advance to the next.

        Returns:
            Lead records for the page

        Raises:
            ListEnd: If the list has no more pages
        """

    def close(self, session: Any):
        """Release the session."""

    def grab_error_snapshot(self, session: Any, account: Account, directory: str):
        """Save debugging artifacts for a failed job."""


class BrowserScraper(ScrapingCapability):
    """SeleniumBase-backed base class for scraping capabilities."""

    BASE_URL = ""

    def __init__(self, headless: bool = True, stealth: bool = False, timeout: float = 60.0):
        self.headless = headless
        self.stealth = stealth
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: RunnerConfig) -> "BrowserScraper":
        return cls(headless=config.headless, stealth=config.stealth, timeout=config.timeout)

    def _new_driver(self):
        """Start a browser; UC mode when stealth is requested."""
        logger.debug("Starting a new browser instance (headless=%s, stealth=%s)", self.headless, self.stealth)
        return Driver(uc=self.stealth, headless=self.headless)

    @abstractmethod
    def _sign_in(self, driver, account: Account):
        """Perform the site's login flow on the driver."""

    def _restore_cookies(self, driver, account: Account) -> bool:
        if not account.cookies_valid():
            return False
        if not self.BASE_URL:
            logger.warning("%s has no BASE_URL, signing in %s without saved cookies", type(self).__name__, account.email)
            return False

        driver.get(self.BASE_URL)
        restored = 0
        for cookie in account.login_cookies:
            try:
                driver.add_cookie(cookie)
                restored += 1
            except Exception as e:
                logger.debug("Skipping cookie %s: %s", cookie.get('name'), e)

        logger.info("Restored %d cookies for %s", restored, account.email)
        return restored > 0

    def login(self, account: Account) -> Tuple[Any, List[dict]]:
        driver = self._new_driver()
        try:
            self._restore_cookies(driver, account)
            self._sign_in(driver, account)
            cookies = driver.get_cookies()
        except Exception:
            self.close(driver)
            raise

        logger.info("Logged in as %s", account.email)
        return driver, cookies

    def is_alive(self, driver) -> bool:
        """Check that the browser still responds."""
        if driver is None:
            return False
        try:
            driver.current_url
            return True
        except Exception as e:
            logger.debug("Browser unresponsive (%s: %s)", type(e).__name__, e)
            return False

    def close(self, session: Any):
        if session is None:
            return
        try:
            session.quit()
            logger.debug("Closed browser instance")
        except Exception as e:
            logger.debug("Browser quit failed: %s", e)

    def grab_error_snapshot(self, session: Any, account: Account, directory: str):
        """Write a screenshot and the rendered HTML named after the account."""
        if not self.is_alive(session):
            logger.debug("Browser for %s is gone, no error snapshot", account.email)
            return

        out = Path(directory)
        out.mkdir(parents=True, exist_ok=True)

        session.save_screenshot(str(out / f"{account.email}.png"))
        (out / f"{account.email}.html").write_text(session.page_source, encoding='utf-8')
        logger.debug("Saved error snapshot for %s to %s", account.email, out)


def load_capability(path: str, config: RunnerConfig) -> ScrapingCapability:
    """
    Instantiate a capability from a "module:Class" path.

    Raises:
        ValueError: If the path is malformed
        ImportError, AttributeError: If the class cannot be found
        TypeError: If the class is not a ScrapingCapability
    """
    module_name, sep, class_name = path.partition(':')
    if not sep or not module_name or not class_name:
        raise ValueError(f"capability must look like 'module:Class', got {path!r}")

    cls = getattr(importlib.import_module(module_name), class_name)
    if not (isinstance(cls, type) and issubclass(cls, ScrapingCapability)):
        raise TypeError(f"{path} is not a ScrapingCapability")

    return cls.from_config(config)
