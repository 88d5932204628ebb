import os

import pytest

from leadrunner.config import RunnerConfig


def test_defaults():
    config = RunnerConfig()

    assert config.daily_limit == 500
    assert config.tab_name == "Net New"
    assert config.error_dir == os.path.join("./scrape-results", "errors")
    assert config.vpn is None


@pytest.mark.parametrize("kwargs", [
    {'daily_limit': 0},
    {'output_format': '.xml'},
    {'tab': 'archived'},
])
def test_invalid_values_are_rejected(kwargs):
    with pytest.raises(ValueError):
        RunnerConfig(**kwargs)


def test_from_env(monkeypatch):
    monkeypatch.setenv("LEADRUNNER_DAILY_LIMIT", "250")
    monkeypatch.setenv("LEADRUNNER_OUTPUT_FORMAT", ".json")
    monkeypatch.setenv("LEADRUNNER_HEADLESS", "false")
    monkeypatch.setenv("LEADRUNNER_TAB", "saved")
    monkeypatch.setenv("LEADRUNNER_VPN_CONFIGS_DIR", "/etc/openvpn/pool")
    monkeypatch.setenv("LEADRUNNER_VPN_CREDENTIALS", "/etc/openvpn/auth.txt")
    monkeypatch.setenv("LEADRUNNER_VPN_ARGS", "--verb 3 --route-nopull")

    config = RunnerConfig.from_env()

    assert config.daily_limit == 250
    assert config.output_format == ".json"
    assert config.headless is False
    assert config.tab_name == "Saved"
    assert config.vpn.configs_dir == "/etc/openvpn/pool"
    assert config.vpn.extra_args == ["--verb", "3", "--route-nopull"]


def test_from_env_without_vpn_credentials(monkeypatch):
    monkeypatch.setenv("LEADRUNNER_VPN_CONFIGS_DIR", "/etc/openvpn/pool")
    monkeypatch.delenv("LEADRUNNER_VPN_CREDENTIALS", raising=False)

    assert RunnerConfig.from_env().vpn is None
