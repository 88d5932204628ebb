#!/usr/bin/env python3
"""
Kill stray OpenVPN, Chrome and leadrunner processes.
Use this if a run was interrupted and left a tunnel or browser behind.
"""

import subprocess
import sys
from typing import List

POSIX_TARGETS = ['openvpn', 'chromedriver', 'chrome', 'leadrunner']
WINDOWS_IMAGES = ['openvpn.exe', 'chromedriver.exe', 'chrome.exe']


def _run_quietly(cmd: List[str]) -> bool:
    """Run a kill command, returning True if it matched something."""
    result = subprocess.run(cmd, stderr=subprocess.DEVNULL, stdout=subprocess.DEVNULL)
    return result.returncode == 0


def kill_processes(platform: str = sys.platform) -> List[str]:
    """
    Force-kill every leftover process of a run.

    Args:
        platform: sys.platform value selecting taskkill or pkill

    Returns:
        Names of the targets that had a running process
    """
    killed = []

    if platform == 'win32':
        print("Killing processes on Windows...")
        for image in WINDOWS_IMAGES:
            if _run_quietly(['taskkill', '/F', '/IM', image]):
                killed.append(image)
        if _run_quietly(['taskkill', '/F', '/FI', 'WINDOWTITLE eq *leadrunner*']):
            killed.append('leadrunner')
    else:
        print("Killing processes on Linux/Mac...")
        for target in POSIX_TARGETS:
            if _run_quietly(['pkill', '-9', '-f', target]):
                killed.append(target)

    if killed:
        print(f"✓ Killed: {', '.join(killed)}")
    else:
        print("No leftover processes found")

    print("\nYou can now restart the runner.")
    return killed


if __name__ == '__main__':
    print("=" * 60)
    print("KILL LEADRUNNER PROCESSES")
    print("=" * 60)
    print("This will force-kill all OpenVPN, Chrome and leadrunner processes.")
    print("")

    try:
        kill_processes()
    except OSError as e:
        print(f"Error: {e}")
        sys.exit(1)
