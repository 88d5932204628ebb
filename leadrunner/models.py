"""
Data models for the lead runner.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import List, Optional

from leadrunner.utils import format_time, parse_time, parse_int


@dataclass
class Account:
    """A scrape account plus its persisted scrape progress."""
    email: str
    password: str = ''
    url: str = ''
    list: str = ''
    vpn: Optional[str] = None
    credits: int = 0
    credit_refresh: Optional[datetime] = None
    timeout: Optional[datetime] = None
    target: int = 0
    saved: int = 0
    done: bool = False
    # `list` is shadowed by the field above
    login_cookies: List[dict] = field(default_factory=lambda: [], repr=False, compare=False)

    def is_done(self) -> bool:
        """
        Check whether the account has nothing left to save.

        A target of 0 means "no target": the account only finishes when
        the upstream list runs out.
        """
        return self.done or (self.target > 0 and self.saved >= self.target)

    def increment(self, amount: int):
        """Record newly saved leads."""
        if amount < 0:
            raise ValueError(f"saved count cannot decrease (got {amount})")
        self.saved += amount

    def use_credits(self, amount: int):
        self.credits -= amount

    def set_timeout(self, until: datetime):
        self.timeout = until

    def is_timed_out(self, now: Optional[datetime] = None) -> bool:
        """
        Check whether the account is still cooling down.

        An expired cooldown is cleared as a side effect.

        Args:
            now: Reference time, defaults to datetime.now()

        Returns:
            True if the cooldown deadline is in the future
        """
        if self.timeout is None:
            return False

        now = now or datetime.now()
        if now < self.timeout:
            return True

        self.timeout = None
        return False

    def cookies_valid(self, now: Optional[datetime] = None) -> bool:
        """
        Check whether the stored login cookies can be reused.

        Session cookies (no expiry) never expire on their own.
        """
        if not self.login_cookies:
            return False

        ts = (now or datetime.now()).timestamp()
        for cookie in self.login_cookies:
            expiry = cookie.get('expiry')
            if expiry and expiry < ts:
                return False
        return True

    def to_record(self) -> dict:
        """Serialize to a flat record using the external column names."""
        return {
            'email': self.email,
            'password': self.password,
            'url': self.url,
            'list': self.list,
            'vpn': self.vpn or '',
            'credits': self.credits,
            'credit-refresh': format_time(self.credit_refresh),
            'timeout': format_time(self.timeout),
            'target': self.target,
            'saved': self.saved,
            'done': self.done,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Account":
        """
        Build an account from a CSV/JSON record.

        Args:
            record: Dict keyed by the external column names

        Raises:
            ValueError: If the email is missing or a column cannot be parsed
        """
        email = (record.get('email') or '').strip()
        if not email:
            raise ValueError(f"account record without email: {record!r}")

        done = record.get('done', False)
        if isinstance(done, str):
            done = done.strip().lower() in ('true', '1', 'yes')

        return cls(
            email=email,
            password=record.get('password') or '',
            url=record.get('url') or '',
            list=record.get('list') or '',
            vpn=(record.get('vpn') or record.get('vpn-file') or None),
            credits=parse_int(record.get('credits')),
            credit_refresh=parse_time(record.get('credit-refresh')),
            timeout=parse_time(record.get('timeout')),
            target=parse_int(record.get('target')),
            saved=parse_int(record.get('saved')),
            done=bool(done),
        )


@dataclass
class Lead:
    """A scraped lead."""
    name: str = ''
    title: str = ''
    company: str = ''
    location: str = ''
    employees: str = ''
    industry: str = ''
    keywords: str = ''
    links: str = ''
    email: str = ''
    phone: str = ''

    @classmethod
    def from_record(cls, record: dict) -> "Lead":
        """Build a lead from capability output, ignoring unknown keys."""
        values = {}
        for f in fields(cls):
            value = record.get(f.name, '')
            if isinstance(value, (list, tuple)):
                value = ';'.join(str(v) for v in value)
            values[f.name] = '' if value is None else str(value)
        return cls(**values)

    def to_record(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class RunResult:
    """Result of a scheduler run."""
    started_at: str
    completed_at: str
    completed: List[str] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)
    challenged: List[str] = field(default_factory=list)
    remaining: int = 0
    iterations: int = 0
    stopped: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.stopped and self.remaining == 0 and not self.challenged
