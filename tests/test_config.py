from flask import Flask

from config import configure_app, get_settings


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("RCM_DEFAULT_DIMENSION", "4")
    monkeypatch.setenv("RCM_CUMULATIVE_REPAIR", "false")
    monkeypatch.setenv("RCM_MAX_REPAIR_PASSES", "not-a-number")
    monkeypatch.setenv("RCM_LOG_LEVEL", "debug")
    monkeypatch.setenv("RCM_MAX_DIMENSION", "7")

    settings = get_settings()

    assert settings["default_dimension"] == 4
    assert settings["cumulative_repair"] is False
    assert settings["max_repair_passes"] == 6
    assert settings["log_level"] == "DEBUG"
    assert settings["max_dimension"] == 7


def test_configure_app_merges_overrides(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    flask_app = configure_app(Flask(__name__), {"debug_dumps": True})

    assert flask_app.config["SECRET_KEY"] == "test-secret"
    assert flask_app.config["RCM_SETTINGS"]["debug_dumps"] is True
    assert "default_dimension" in flask_app.config["RCM_SETTINGS"]


def test_max_dimension_defaults_to_ten(monkeypatch):
    monkeypatch.delenv("RCM_MAX_DIMENSION", raising=False)
    assert get_settings()["max_dimension"] == 10

    monkeypatch.setenv("RCM_MAX_DIMENSION", "0")
    assert get_settings()["max_dimension"] == 10
