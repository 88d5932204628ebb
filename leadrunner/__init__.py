"""
Round-robin lead scraping with per-account quotas and OpenVPN rotation.
"""

from .config import RetryConfig, RunnerConfig, VpnConfig
from .models import Account, Lead, RunResult
from .capability import BrowserScraper, ScrapingCapability
from .openvpn import OpenVPNManager
from .scheduler import Job, JobQueue, Scheduler

__version__ = "0.1.0"

__all__ = [
    'Account',
    'BrowserScraper',
    'Job',
    'JobQueue',
    'Lead',
    'OpenVPNManager',
    'RetryConfig',
    'RunResult',
    'RunnerConfig',
    'Scheduler',
    'ScrapingCapability',
    'VpnConfig'
]
