"""
Tests for the single-process OpenVPN wrapper, driven by shell scripts
that stand in for the openvpn binary.
"""

import sys
from unittest.mock import MagicMock

import pytest

from leadrunner.errors import NoProcess, ProcessFailure, TunnelStopError, VPNTimeout
from leadrunner.openvpn import process
from leadrunner.openvpn.process import SUCCESS_MARKER, TunnelProcess, build_command

pytestmark = pytest.mark.skipif(sys.platform == 'win32', reason="needs a POSIX shell")


@pytest.fixture
def vpn_files(tmp_path):
    config = tmp_path / "us-east.ovpn"
    auth = tmp_path / "auth.txt"
    config.write_text("client\n")
    auth.write_text("user\npass\n")
    return str(config), str(auth)


@pytest.fixture
def fake_openvpn(tmp_path):
    def make(body):
        script = tmp_path / "openvpn"
        script.write_text("#!/bin/sh\n" + body)
        script.chmod(0o755)
        return str(script)
    return make


def test_build_command():
    cmd = build_command("a.ovpn", "auth.txt", ["--verb", "3"])
    assert cmd == ['openvpn', '--config', 'a.ovpn', '--auth-user-pass', 'auth.txt', '--verb', '3']


def test_timeout_carries_stdout_lines(vpn_files, fake_openvpn):
    exe = fake_openvpn('echo AUTH\necho\necho TLS\nexec sleep 30\n')

    with pytest.raises(VPNTimeout) as exc:
        process.start(*vpn_files, timeout=1.0, executable=exe)

    assert exc.value.captured_output == "AUTH\nTLS"


def test_start_succeeds_on_marker_then_stops(vpn_files, fake_openvpn):
    exe = fake_openvpn(f'echo "Connecting"\necho "2025 {SUCCESS_MARKER}"\nexec sleep 30\n')

    handle = process.start(*vpn_files, timeout=5.0, executable=exe)
    assert handle.is_running()
    assert handle.config == vpn_files[0]

    process.stop(handle, timeout=5.0)
    assert not handle.is_running()


def test_stderr_output_is_a_failure(vpn_files, fake_openvpn):
    exe = fake_openvpn('echo "reading config"\necho "Options error" >&2\nexec sleep 30\n')

    with pytest.raises(ProcessFailure) as exc:
        process.start(*vpn_files, timeout=5.0, executable=exe)

    assert exc.value.stderr == "Options error"
    assert exc.value.stdout == "reading config"


def test_clean_exit_without_marker_is_a_failure(vpn_files, fake_openvpn):
    exe = fake_openvpn('echo "starting"\nexit 0\n')

    with pytest.raises(ProcessFailure) as exc:
        process.start(*vpn_files, timeout=5.0, executable=exe)

    assert exc.value.stdout == "starting"
    assert exc.value.stderr == ""


def test_silent_exit_is_a_failure(vpn_files, fake_openvpn):
    exe = fake_openvpn('exit 0\n')

    with pytest.raises(ProcessFailure):
        process.start(*vpn_files, timeout=5.0, executable=exe)


def test_missing_executable_is_a_failure(vpn_files, tmp_path):
    with pytest.raises(ProcessFailure):
        process.start(*vpn_files, timeout=1.0, executable=str(tmp_path / "missing"))


def test_arguments_are_passed_through(vpn_files, fake_openvpn, tmp_path):
    args_file = tmp_path / "args"
    exe = fake_openvpn(f'echo "$@" > {args_file}\necho "{SUCCESS_MARKER}"\nexec sleep 30\n')

    handle = process.start(*vpn_files, extra_args=["--verb", "3"], timeout=5.0, executable=exe)
    process.stop(handle, timeout=5.0)

    config, auth = vpn_files
    assert args_file.read_text().split() == ['--config', config, '--auth-user-pass', auth, '--verb', '3']


def test_stop_without_handle_raises_no_process():
    with pytest.raises(NoProcess):
        process.stop(None)

    with pytest.raises(NoProcess):
        process.stop(TunnelProcess(None, "never-started.ovpn"))


def test_stop_kills_a_process_ignoring_sigterm(vpn_files, fake_openvpn):
    exe = fake_openvpn(f"trap '' TERM\necho \"{SUCCESS_MARKER}\"\nwhile true; do sleep 1; done\n")

    handle = process.start(*vpn_files, timeout=5.0, executable=exe)
    process.stop(handle, timeout=0.5)

    assert not handle.is_running()


def test_restart_of_a_missing_tunnel_just_starts(vpn_files, fake_openvpn):
    exe = fake_openvpn(f'echo "{SUCCESS_MARKER}"\nexec sleep 30\n')

    handle = process.restart(None, *vpn_files, timeout=5.0, executable=exe)
    try:
        assert handle.is_running()
    finally:
        process.stop(handle, timeout=5.0)


def test_restart_replaces_the_running_tunnel(vpn_files, fake_openvpn):
    exe = fake_openvpn(f'echo "{SUCCESS_MARKER}"\nexec sleep 30\n')

    first = process.start(*vpn_files, timeout=5.0, executable=exe)
    second = process.restart(first, *vpn_files, timeout=5.0, executable=exe, stop_timeout=5.0)
    try:
        assert not first.is_running()
        assert second.is_running()
        assert second.pid != first.pid
    finally:
        process.stop(second, timeout=5.0)


def test_stop_reports_graceful_and_forced_failures(monkeypatch):
    popen = MagicMock(pid=4321)
    popen.poll.return_value = None
    popen.terminate.side_effect = OSError("terminate refused")

    def refuse_kill(pid, sig):
        raise PermissionError("kill refused")

    monkeypatch.setattr(process.os, 'kill', refuse_kill)

    with pytest.raises(TunnelStopError) as excinfo:
        process.stop(TunnelProcess(popen, "stuck.ovpn"), timeout=0.1)

    assert [str(e) for e in excinfo.value.errors] == ["terminate refused", "kill refused"]


def test_restart_aborts_when_the_old_tunnel_will_not_stop(monkeypatch, vpn_files):
    starts = []

    def stuck_stop(handle, timeout=10.0):
        raise TunnelStopError([OSError("operation not permitted")])

    monkeypatch.setattr(process, 'stop', stuck_stop)
    monkeypatch.setattr(process, 'start', lambda *args, **kwargs: starts.append(args))

    with pytest.raises(TunnelStopError):
        process.restart(TunnelProcess(MagicMock(), "old.ovpn"), *vpn_files)

    assert starts == []
