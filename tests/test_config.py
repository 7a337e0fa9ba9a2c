from overlay_controller.config import ControllerConfig
from overlay_controller.main import parse_config


def test_defaults(monkeypatch):
    for name in ["CONTROLLER_HOST", "CONTROLLER_PORT", "OVERLAY_NETWORK", "OVERLAY_FIRST_HOST", "LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)
    config = ControllerConfig.from_env()
    assert config == ControllerConfig(
        host="0.0.0.0", port=8080, network="10.0.0.0/24", first_host=2, log_level="info"
    )


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CONTROLLER_PORT", "9090")
    monkeypatch.setenv("OVERLAY_NETWORK", "10.8.0.0/16")
    monkeypatch.setenv("OVERLAY_FIRST_HOST", "5")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    config = ControllerConfig.from_env()
    assert config.port == 9090
    assert config.network == "10.8.0.0/16"
    assert config.first_host == 5
    assert config.log_level == "debug"


def test_command_line_beats_environment(monkeypatch):
    monkeypatch.setenv("CONTROLLER_PORT", "9090")
    monkeypatch.setenv("OVERLAY_NETWORK", "10.8.0.0/16")
    config = parse_config(["--port", "7000", "--first-host", "3", "--log-level", "WARNING"])
    assert config.port == 7000
    assert config.network == "10.8.0.0/16"
    assert config.first_host == 3
    assert config.log_level == "warning"
