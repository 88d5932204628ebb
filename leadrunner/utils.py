"""
Shared utility functions for the lead runner.
"""

from datetime import datetime
from typing import Optional, Union

# Layout the target site uses when displaying credit renewal times
# (e.g. "Mar 04, 2025 3:30 PM").
DISPLAY_TIME_FORMAT = "%b %d, %Y %I:%M %p"


def format_time(value: Optional[datetime]) -> str:
    """
    Format a timestamp for persistence.

    Args:
        value: Timestamp or None

    Returns:
        ISO-8601 string, or an empty string for None
    """
    if value is None:
        return ''
    return value.isoformat(timespec='seconds')


def parse_time(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a persisted or displayed timestamp.

    Accepts ISO-8601 (as written by format_time) and the site's display
    layout. Empty values mean "unset".

    Args:
        value: Raw value from a CSV/JSON record

    Returns:
        Parsed datetime or None

    Raises:
        ValueError: If the value matches neither layout
    """
    if value is None or isinstance(value, datetime):
        return value

    value = value.strip()
    if not value:
        return None

    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass

    return datetime.strptime(value, DISPLAY_TIME_FORMAT)


def default_list_name(email: str) -> str:
    """
    Build the destination list name for an account without one.

    Args:
        email: Account email (e.g. jane@example.com)

    Returns:
        List name (e.g. leadrunner-run-jane_example.com)
    """
    return "leadrunner-run-" + email.replace('@', '_')


def parse_int(value, default: int = 0) -> int:
    """Parse an integer column, treating blanks as the default."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    value = str(value).strip().replace(',', '')
    return int(value) if value else default
