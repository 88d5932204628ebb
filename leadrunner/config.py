"""
Configuration dataclasses for the lead runner.
"""

import os
import shlex
from dataclasses import dataclass, field
from typing import Optional, List


TABS = {
    'new': 'Net New',
    'saved': 'Saved',
    'total': 'Total',
}

OUTPUT_FORMATS = ('.csv', '.json')


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 5
    base_delay: float = 2.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0


@dataclass
class VpnConfig:
    """Configuration for the OpenVPN tunnel pool."""
    configs_dir: str
    auth_file: str
    extra_args: List[str] = field(default_factory=list)
    executable: str = "openvpn"

    # Seconds to wait for "Initialization Sequence Completed"
    start_timeout: float = 20.0
    stop_timeout: float = 10.0

    # Wall-clock budget for finding a working backup config
    backup_budget: float = 60.0


@dataclass
class RunnerConfig:
    """Main configuration for a scheduler run."""
    # Quota
    daily_limit: int = 500

    # Seconds allowed for a single browser action
    timeout: float = 60.0

    # Output
    output_format: str = ".csv"
    output_dir: str = "./scrape-results"
    save_progress: bool = True

    # Browser settings
    headless: bool = True
    stealth: bool = False
    debug: bool = False
    cookie_file: Optional[str] = None

    # Scrape behaviour
    fetch_credits: bool = False
    tab: str = "new"

    retry: RetryConfig = field(default_factory=RetryConfig)
    vpn: Optional[VpnConfig] = None

    def __post_init__(self):
        if self.daily_limit < 1:
            raise ValueError(f"daily_limit must be positive, got {self.daily_limit}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"Invalid output format: {self.output_format}. Must be one of {OUTPUT_FORMATS}")
        if self.tab not in TABS:
            raise ValueError(f"Invalid tab: {self.tab}. Must be one of {list(TABS)}")

    @property
    def tab_name(self) -> str:
        """Label of the results tab as shown on the target site."""
        return TABS[self.tab]

    @property
    def error_dir(self) -> str:
        return os.path.join(self.output_dir, "errors")

    @classmethod
    def from_env(cls) -> "RunnerConfig":
        """
        Build a configuration from LEADRUNNER_* environment variables.

        Unset variables fall back to the dataclass defaults. The VPN
        section is only enabled when both the configs directory and the
        credentials file are set.
        """
        env = os.environ
        vpn = None
        if env.get("LEADRUNNER_VPN_CONFIGS_DIR") and env.get("LEADRUNNER_VPN_CREDENTIALS"):
            vpn = VpnConfig(
                configs_dir=env["LEADRUNNER_VPN_CONFIGS_DIR"],
                auth_file=env["LEADRUNNER_VPN_CREDENTIALS"],
                extra_args=shlex.split(env.get("LEADRUNNER_VPN_ARGS", "")),
                executable=env.get("LEADRUNNER_VPN_EXECUTABLE", "openvpn"),
            )

        return cls(
            daily_limit=int(env.get("LEADRUNNER_DAILY_LIMIT", "500")),
            timeout=float(env.get("LEADRUNNER_TIMEOUT", "60")),
            output_format=env.get("LEADRUNNER_OUTPUT_FORMAT", ".csv"),
            output_dir=env.get("LEADRUNNER_OUTPUT_DIR", "./scrape-results"),
            headless=env.get("LEADRUNNER_HEADLESS", "true").lower() == "true",
            stealth=env.get("LEADRUNNER_STEALTH", "false").lower() == "true",
            debug=env.get("LEADRUNNER_DEBUG", "false").lower() == "true",
            cookie_file=env.get("LEADRUNNER_COOKIE_FILE") or None,
            fetch_credits=env.get("LEADRUNNER_FETCH_CREDITS", "false").lower() == "true",
            tab=env.get("LEADRUNNER_TAB", "new"),
            vpn=vpn,
        )
