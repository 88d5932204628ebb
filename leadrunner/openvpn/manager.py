"""
Pool of OpenVPN configurations with failover.

The manager resolves config names to files in the configs directory,
keeps at most one tunnel running, remembers which configs have been
handed out, and picks an unused config when a tunnel fails to start.
"""

import logging
import os
import random
import time
from typing import Iterable, List, Optional, Tuple

from leadrunner.config import VpnConfig
from leadrunner.errors import (
    ConfigNotFound, ConfigsNotFound, NoProcess, NoUnusedConfigs, TunnelStopError, VPNError, VPNTimeout
)
from leadrunner.openvpn import process
from leadrunner.openvpn.process import TunnelProcess

logger = logging.getLogger(__name__)


class OpenVPNManager:
    """Owns the OpenVPN config pool and the active tunnel."""

    def __init__(
        self,
        configs_dir: str,
        auth_file: str,
        extra_args: Optional[List[str]] = None,
        executable: str = "openvpn",
        start_timeout: float = 20.0,
        stop_timeout: float = 10.0,
        backup_budget: float = 60.0,
        rng: Optional[random.Random] = None
    ):
        """
        Discover configs and prepare the manager.

        Args:
            configs_dir: Directory holding one OpenVPN config per file
            auth_file: Credentials file for --auth-user-pass
            extra_args: Additional OpenVPN arguments
            executable: OpenVPN binary
            start_timeout: Seconds to wait for a tunnel to come up
            stop_timeout: Seconds to wait for a graceful stop
            backup_budget: Wall-clock seconds backup() may spend
            rng: Random source for backup ordering

        Raises:
            ConfigsNotFound: If the directory holds no files
            OSError: If the directory cannot be read
        """
        self.configs_dir = configs_dir
        self.auth_file = auth_file
        self.extra_args = list(extra_args or [])
        self.executable = executable
        self.start_timeout = start_timeout
        self.stop_timeout = stop_timeout
        self.backup_budget = backup_budget
        self._rng = rng or random.Random()

        self.configs: Tuple[str, ...] = self._load_configs(configs_dir)
        self._used = set()
        self._handle: Optional[TunnelProcess] = None
        self.active_config: Optional[str] = None

        logger.info("Loaded %d openvpn configs from %s", len(self.configs), configs_dir)

    @classmethod
    def from_config(cls, config: VpnConfig) -> "OpenVPNManager":
        return cls(
            configs_dir=config.configs_dir,
            auth_file=config.auth_file,
            extra_args=config.extra_args,
            executable=config.executable,
            start_timeout=config.start_timeout,
            stop_timeout=config.stop_timeout,
            backup_budget=config.backup_budget
        )

    @staticmethod
    def _load_configs(directory: str) -> Tuple[str, ...]:
        with os.scandir(directory) as entries:
            configs = sorted(e.name for e in entries if e.is_file())
        if not configs:
            raise ConfigsNotFound(directory)
        return tuple(configs)

    # ------------------------------------------------------------------
    # Used-config bookkeeping
    # ------------------------------------------------------------------

    def mark_used(self, *configs: str):
        """Record configs as handed out for this run."""
        self._used.update(configs)

    def unused(self) -> List[str]:
        """Configs in the pool that have not been handed out, in pool order."""
        return [c for c in self.configs if c not in self._used]

    def path_for(self, config: str) -> str:
        """
        Resolve a config name to its file.

        Raises:
            ConfigNotFound: If the config is not in the pool
        """
        if config not in self.configs:
            raise ConfigNotFound(config)
        return os.path.join(self.configs_dir, config)

    # ------------------------------------------------------------------
    # Tunnel control
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._handle is not None and self._handle.is_running()

    def start(self, config: str, timeout: Optional[float] = None):
        """
        Bring up a tunnel with the given config.

        A tunnel that is already running is stopped first so only one is
        ever active.

        Raises:
            ConfigNotFound: If the config is not in the pool
            TunnelStopError: If the running tunnel could not be stopped
            VPNError: If the tunnel fails to come up
        """
        path = self.path_for(config)
        timeout = self.start_timeout if timeout is None else timeout

        if self._handle is not None:
            self._replace(config, path, timeout)
        else:
            self._handle = process.start(
                path, self.auth_file, self.extra_args,
                timeout=timeout, executable=self.executable
            )
            self.active_config = config

        self.mark_used(config)

    def restart(self, config: str):
        """
        Replace the running tunnel (if any) with one using `config`.

        Raises:
            TunnelStopError: If the old tunnel could not be stopped; it stays
                the active tunnel
            VPNError: If the new tunnel fails to come up
        """
        path = self.path_for(config)
        self._replace(config, path, self.start_timeout)
        self.mark_used(config)

    def _replace(self, config: str, path: str, timeout: float):
        try:
            handle = process.restart(
                self._handle, path, self.auth_file, self.extra_args,
                timeout=timeout, executable=self.executable, stop_timeout=self.stop_timeout
            )
        except TunnelStopError:
            # The old tunnel may still be up, so keep tracking it
            raise
        except VPNError:
            self._handle, self.active_config = None, None
            raise
        self._handle, self.active_config = handle, config

    def stop(self):
        """
        Stop the active tunnel.

        Raises:
            NoProcess: If no tunnel was started
            TunnelStopError: If the process could not be terminated
        """
        try:
            process.stop(self._handle, timeout=self.stop_timeout)
        except NoProcess:
            self._handle, self.active_config = None, None
            raise
        self._handle, self.active_config = None, None

    def backup(self) -> str:
        """
        Start a tunnel with a random unused config.

        Meant to be called after start()/restart() failed. Each unused
        config is tried at most once, in shuffled order.

        Returns:
            The config that came up

        Raises:
            NoUnusedConfigs: If every config has already been handed out
            VPNTimeout: If the budget ran out or every candidate failed
            TunnelStopError: If the running tunnel could not be stopped
        """
        logger.debug("Fetching backup config since previous failed")

        candidates = self.unused()
        if not candidates:
            raise NoUnusedConfigs()
        self._rng.shuffle(candidates)

        deadline = time.monotonic() + self.backup_budget
        for config in candidates:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                self.start(config, timeout=min(self.start_timeout, remaining))
            except TunnelStopError:
                raise
            except VPNError as e:
                logger.debug("Backup config %s failed: %s", config, e)
                continue

            logger.info("Switched to backup openvpn config %s", config)
            return config

        raise VPNTimeout("too many retries")

    def assign(self, accounts: Iterable) -> None:
        """
        Give every account without a config one of its own.

        Configs already named by accounts are marked used first. Unused
        configs are handed out in pool order; once the pool is exhausted
        configs are reused in rotation.
        """
        accounts = list(accounts)
        for account in accounts:
            if account.vpn:
                self.mark_used(account.vpn)

        rotation = 0
        for account in accounts:
            if account.vpn:
                continue
            unused = self.unused()
            if unused:
                account.vpn = unused[0]
            else:
                account.vpn = self.configs[rotation % len(self.configs)]
                rotation += 1
            self.mark_used(account.vpn)
            logger.debug("Assigned openvpn config %s to %s", account.vpn, account.email)
