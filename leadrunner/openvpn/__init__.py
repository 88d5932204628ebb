"""
OpenVPN tunnel control.
"""

from .process import TunnelProcess, start, stop, restart
from .manager import OpenVPNManager

__all__ = [
    'TunnelProcess',
    'OpenVPNManager',
    'start',
    'stop',
    'restart'
]
