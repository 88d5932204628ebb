"""
Control of a single OpenVPN process.

start() launches openvpn and blocks until it reports
"Initialization Sequence Completed", writes to stderr, exits, or the
deadline passes. stop() terminates it and falls back to a kill by pid.
"""

import logging
import os
import queue
import signal
import subprocess
import threading
import time
from typing import List, Optional, Sequence

from leadrunner.errors import NoProcess, ProcessFailure, TunnelStopError, VPNTimeout

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "Initialization Sequence Completed"

_FORCE_SIGNAL = getattr(signal, 'SIGKILL', signal.SIGTERM)


class TunnelProcess:
    """Handle on an OpenVPN process started by start()."""

    def __init__(self, process: Optional[subprocess.Popen], config: str):
        self.process = process
        self.config = config
        self._events: "queue.Queue" = queue.Queue()
        # While attached, output lines are forwarded to start()
        self._attached = True

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def detach(self):
        """Stop forwarding output to the launcher; log it instead."""
        self._attached = False

    def _pump(self, stream, name: str):
        for raw in iter(stream.readline, ''):
            line = raw.rstrip('\r\n')
            if self._attached:
                self._events.put((name, line))
            else:
                logger.debug("openvpn %s: %s", name, line)
        stream.close()

    def _watch(self, readers: List[threading.Thread]):
        # Post the exit only after both streams are drained so no output
        # line is reported after it.
        for reader in readers:
            reader.join()
        returncode = self.process.wait()
        self._events.put(('exit', returncode))

    def _start_threads(self):
        readers = [
            threading.Thread(target=self._pump, args=(self.process.stdout, 'stdout'), daemon=True),
            threading.Thread(target=self._pump, args=(self.process.stderr, 'stderr'), daemon=True),
        ]
        for reader in readers:
            reader.start()
        threading.Thread(target=self._watch, args=(readers,), daemon=True).start()

    def __repr__(self):
        return f"TunnelProcess(config={self.config!r}, pid={self.pid}, running={self.is_running()})"


def build_command(
    config_path: str,
    auth_path: str,
    extra_args: Optional[Sequence[str]] = None,
    executable: str = "openvpn"
) -> List[str]:
    return [executable, '--config', config_path, '--auth-user-pass', auth_path, *(extra_args or [])]


def _terminate(process: subprocess.Popen, timeout: float = 5.0):
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def start(
    config_path: str,
    auth_path: str,
    extra_args: Optional[Sequence[str]] = None,
    timeout: float = 20.0,
    executable: str = "openvpn"
) -> TunnelProcess:
    """
    Launch OpenVPN and wait for the tunnel to come up.

    Args:
        config_path: Path to the .ovpn configuration
        auth_path: Path to the --auth-user-pass credentials file
        extra_args: Additional command line arguments
        timeout: Seconds to wait for the success marker
        executable: OpenVPN binary

    Returns:
        TunnelProcess for the running tunnel

    Raises:
        VPNTimeout: The deadline passed first; carries the stdout lines seen
        ProcessFailure: OpenVPN wrote to stderr, exited, or could not be spawned
    """
    cmd = build_command(config_path, auth_path, extra_args, executable)
    logger.debug("Starting openvpn: %s", config_path)

    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1
        )
    except OSError as e:
        raise ProcessFailure(stderr=str(e)) from e

    handle = TunnelProcess(process, config_path)
    handle._start_threads()

    deadline = time.monotonic() + timeout
    stdout: List[str] = []

    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise VPNTimeout('\n'.join(stdout))

            try:
                kind, payload = handle._events.get(timeout=remaining)
            except queue.Empty:
                continue

            if kind == 'stdout':
                if SUCCESS_MARKER in payload:
                    handle.detach()
                    logger.debug("openvpn is up (pid=%s, config=%s)", handle.pid, config_path)
                    return handle
                if payload.strip():
                    stdout.append(payload)

            elif kind == 'stderr':
                raise ProcessFailure('\n'.join(stdout), payload)

            else:
                logger.debug("openvpn exited with code %s before initialising", payload)
                raise ProcessFailure('\n'.join(stdout), '')

    except (VPNTimeout, ProcessFailure):
        handle.detach()
        _terminate(process)
        raise


def stop(handle: Optional[TunnelProcess], timeout: float = 10.0):
    """
    Stop an OpenVPN process.

    Sends SIGTERM and waits up to `timeout`; then, as a safety net,
    kills the pid if the process is still alive.

    Raises:
        NoProcess: If there is no process to stop
        TunnelStopError: If termination failed; carries every error raised
    """
    logger.debug("Stopping openvpn")

    if handle is None or handle.process is None:
        raise NoProcess()

    process = handle.process
    handle.detach()
    errors: List[BaseException] = []

    try:
        if process.poll() is None:
            process.terminate()
            process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning("openvpn (pid=%s) ignored SIGTERM for %.0fs, killing", handle.pid, timeout)
    except OSError as e:
        errors.append(e)

    if process.poll() is None:
        try:
            os.kill(process.pid, _FORCE_SIGNAL)
            process.wait(timeout=timeout)
        except ProcessLookupError:
            pass
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Failed to kill openvpn (pid=%s): %s", handle.pid, e)
            errors.append(e)

    if errors:
        raise TunnelStopError(errors)


def restart(
    handle: Optional[TunnelProcess],
    config_path: str,
    auth_path: str,
    extra_args: Optional[Sequence[str]] = None,
    timeout: float = 20.0,
    executable: str = "openvpn",
    stop_timeout: float = 10.0
) -> TunnelProcess:
    """
    Stop the given tunnel (if any) and start a new one.

    A missing process is not an error; any other stop failure aborts
    the restart.
    """
    try:
        stop(handle, timeout=stop_timeout)
    except NoProcess:
        logger.debug("No running openvpn to stop before restart")

    return start(config_path, auth_path, extra_args, timeout=timeout, executable=executable)
