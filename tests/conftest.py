"""
Shared fixtures: a controllable clock, an in-memory scraping capability
and a stand-in for the OpenVPN manager.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from leadrunner.capability import ScrapingCapability
from leadrunner.config import RetryConfig, RunnerConfig
from leadrunner.errors import ListEnd, NoProcess, NoUnusedConfigs, TunnelStopError, VPNTimeout


class FakeClock:
    def __init__(self, start=datetime(2025, 3, 4, 9, 0, 0)):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)


class FakeCapability(ScrapingCapability):
    """
    Scripted capability.

    plans maps an email to a dict with optional keys:
        save: list of ints or exceptions returned/raised by save_batch
        scrape: list of record lists or exceptions for scrape_batch
        login_error: exception raised by login
        quota: (credits, refresh) returned by fetch_quota
    An exhausted save or scrape list raises ListEnd.
    """

    def __init__(self, plans=None):
        self.plans = plans or {}
        self.calls = []
        self.closed = 0
        self.snapshots = []
        self.on_login = None

    def _plan(self, email):
        return self.plans.setdefault(email, {})

    def login(self, account):
        self.calls.append(('login', account.email))
        if self.on_login:
            self.on_login(account.email)
        error = self._plan(account.email).get('login_error')
        if error:
            raise error
        session = SimpleNamespace(account=account, tab=None)
        return session, [{'name': 'sid', 'value': account.email}]

    def select_tab(self, session, tab):
        session.tab = tab

    def fetch_quota(self, session):
        return self._plan(session.account.email)['quota']

    def save_batch(self, session, list_name):
        email = session.account.email
        self.calls.append(('save', email))
        pending = self._plan(email).setdefault('save', [])
        if not pending:
            raise ListEnd()
        item = pending.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def scrape_batch(self, session, tab):
        email = session.account.email
        self.calls.append(('scrape', email))
        pending = self._plan(email).setdefault('scrape', [])
        if not pending:
            raise ListEnd()
        item = pending.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self, session):
        self.closed += 1

    def grab_error_snapshot(self, session, account, directory):
        self.snapshots.append((account.email, directory))

    def logins(self):
        return [email for op, email in self.calls if op == 'login']


class FakeVPN:
    """Stands in for OpenVPNManager inside the scheduler."""

    def __init__(self, failing=(), backups=('cfgY',), stuck=()):
        self.failing = set(failing)
        # Configs whose restart fails once because the old tunnel will not stop
        self.stuck = set(stuck)
        self.backups = list(backups)
        self.active_config = None
        self.running = False
        self.restarts = []
        self.stops = 0

    def assign(self, accounts):
        for account in accounts:
            if not account.vpn:
                account.vpn = 'cfgA'

    def is_running(self):
        return self.running

    def restart(self, config):
        self.restarts.append(config)
        if config in self.stuck:
            self.stuck.discard(config)
            raise TunnelStopError([OSError("operation not permitted")])
        self.running, self.active_config = False, None
        if config in self.failing:
            raise VPNTimeout("AUTH\nTLS")
        self.running, self.active_config = True, config

    def backup(self):
        if not self.backups:
            raise NoUnusedConfigs()
        config = self.backups.pop(0)
        self.running, self.active_config = True, config
        return config

    def stop(self):
        if not self.running:
            raise NoProcess()
        self.running, self.active_config = False, None
        self.stops += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps(clock):
    """Sleep function that advances the fake clock and records durations."""
    recorded = []

    def sleep(seconds):
        recorded.append(seconds)
        clock.advance(seconds)

    sleep.recorded = recorded
    return sleep


@pytest.fixture
def runner_config(tmp_path):
    return RunnerConfig(
        daily_limit=500,
        output_dir=str(tmp_path / "out"),
        retry=RetryConfig(max_retries=2, base_delay=0.0)
    )


@pytest.fixture
def capability():
    return FakeCapability()


@pytest.fixture
def make_vpn():
    return FakeVPN
