"""
Where: coupled_cgi/gateway/tests/test_config_defaults.py
What: Validate default GatewaySettings values.
Why: Keep streaming and lifecycle defaults stable as environment defaults evolve.
"""

from coupled_cgi import __version__
from coupled_cgi.gateway.config import GatewaySettings

_SETTINGS_ENV = (
    "CGI_RUN_TIMEOUT",
    "TERMINATE_GRACE_PERIOD",
    "READ_CHUNK_SIZE",
    "SERVER_SOFTWARE",
    "REMOTE_HOST_LOOKUP",
)


def _clear_env(monkeypatch) -> None:
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)


def test_run_timeout_disabled_by_default(monkeypatch):
    _clear_env(monkeypatch)

    config = GatewaySettings(_env_file=None)

    assert config.CGI_RUN_TIMEOUT == 0.0
    assert config.TERMINATE_GRACE_PERIOD == 5.0
    assert config.READ_CHUNK_SIZE == 65536
    assert config.REMOTE_HOST_LOOKUP is True


def test_server_software_includes_version(monkeypatch):
    _clear_env(monkeypatch)

    config = GatewaySettings(_env_file=None)

    assert config.SERVER_SOFTWARE == f"CoupledCGI/{__version__}"


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("CGI_RUN_TIMEOUT", "30")
    monkeypatch.setenv("REMOTE_HOST_LOOKUP", "false")
    monkeypatch.setenv("SERVER_SOFTWARE", "MyGateway/2.0")

    config = GatewaySettings(_env_file=None)

    assert config.CGI_RUN_TIMEOUT == 30.0
    assert config.REMOTE_HOST_LOOKUP is False
    assert config.SERVER_SOFTWARE == "MyGateway/2.0"
