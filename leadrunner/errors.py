"""
Exception hierarchy shared by the tunnel, scheduler and storage layers.
"""

from typing import List, Optional


class LeadRunnerError(Exception):
    """Base exception for all leadrunner errors."""
    pass


# ---------------------------------------------------------------------------
# OpenVPN configuration and tunnel errors
# ---------------------------------------------------------------------------

class VPNError(LeadRunnerError):
    """Base exception for OpenVPN configuration and process failures."""
    pass


class ConfigNotFound(VPNError):
    """The requested OpenVPN config is not part of the discovered pool."""

    def __init__(self, config: str = ""):
        self.config = config
        super().__init__(f"specified openvpn config not found: {config!r}")


class ConfigsNotFound(VPNError):
    """No OpenVPN config files were found in the configs directory."""

    def __init__(self, directory: str = ""):
        self.directory = directory
        super().__init__(f"no openvpn configs were found in {directory!r}")


class NoUnusedConfigs(VPNError):
    """Every discovered OpenVPN config has already been assigned."""

    def __init__(self):
        super().__init__("no unused openvpn configs were found")


class NoProcess(VPNError):
    """There is no running OpenVPN process to stop."""

    def __init__(self):
        super().__init__("no openvpn processes were found")


class VPNTimeout(VPNError):
    """OpenVPN did not finish initialising before the deadline."""

    def __init__(self, captured_output: str = ""):
        self.captured_output = captured_output
        super().__init__(f"openvpn timed out: {captured_output}")


class ProcessFailure(VPNError):
    """OpenVPN wrote to stderr or exited before initialising."""

    def __init__(self, stdout: str = "", stderr: str = ""):
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"openvpn failed to run: stdout: {stdout!r}; stderr: {stderr!r}")


class TunnelStopError(VPNError):
    """Graceful and/or forced termination of the tunnel failed."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"failed to stop openvpn: {details}")


# ---------------------------------------------------------------------------
# Job outcomes
# ---------------------------------------------------------------------------

class JobOutcome(LeadRunnerError):
    """
    Expected end state of a job run.

    Outcomes steer the scheduler (requeue, cooldown, removal) and are
    never retried or reported as failures.
    """
    pass


class DailyLimit(JobOutcome):
    """The account saved its daily quota of leads."""

    def __init__(self, msg: str = "the daily limit for saving leads has been hit"):
        super().__init__(msg)


class NoCredits(JobOutcome):
    """The account has no credits left to save leads with."""

    def __init__(self, msg: str = "no more credits available for saving leads"):
        super().__init__(msg)


class TargetReached(JobOutcome):
    """The account saved its target number of leads."""

    def __init__(self, msg: str = "target number of leads have been saved"):
        super().__init__(msg)


class ListEnd(JobOutcome):
    """The upstream result set has no more leads to save or scrape."""

    def __init__(self, msg: str = "reached end of list"):
        super().__init__(msg)


class SecurityChallenge(LeadRunnerError):
    """The target site asked for a credential or security challenge."""

    def __init__(self, account: Optional[str] = None, msg: str = "security challenge encountered"):
        self.account = account
        super().__init__(f"{msg} ({account})" if account else msg)


# ---------------------------------------------------------------------------
# Persistence and queue errors
# ---------------------------------------------------------------------------

class UnsupportedFileFormat(LeadRunnerError):
    """The file extension maps to neither CSV nor JSON."""

    def __init__(self, path: str = ""):
        self.path = path
        super().__init__(f"unsupported file format: {path!r}")


class EmptyQueue(LeadRunnerError):
    """An operation needed a job but the queue is empty."""

    def __init__(self):
        super().__init__("job queue is empty")
