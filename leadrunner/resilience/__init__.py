"""
Resilience components for the lead runner.
"""

from .progress_tracker import ProgressTracker
from .quota import QuotaController
from .retry_handler import RetryHandler

__all__ = [
    'ProgressTracker',
    'QuotaController',
    'RetryHandler'
]
