"""Test environment parsing helpers."""

import config


def test_int_env_default_when_unset(monkeypatch):
    monkeypatch.delenv("SYNC_DAYS_TEST", raising=False)
    assert config._int_env("SYNC_DAYS_TEST", 30) == 30


def test_int_env_parses_value(monkeypatch):
    monkeypatch.setenv("SYNC_DAYS_TEST", "14")
    assert config._int_env("SYNC_DAYS_TEST", 30) == 14


def test_int_env_invalid_falls_back(monkeypatch):
    monkeypatch.setenv("SYNC_DAYS_TEST", "two weeks")
    assert config._int_env("SYNC_DAYS_TEST", 30) == 30


def test_float_env_parses_value(monkeypatch):
    monkeypatch.setenv("HTTP_TIMEOUT_TEST", "12.5")
    assert config._float_env("HTTP_TIMEOUT_TEST", 30.0) == 12.5


def test_credentials_configured(monkeypatch):
    monkeypatch.setattr(config, "GARMIN_EMAIL", "me@example.com")
    monkeypatch.setattr(config, "GARMIN_PASSWORD", "")
    assert config.credentials_configured() is False
    monkeypatch.setattr(config, "GARMIN_PASSWORD", "secret")
    assert config.credentials_configured() is True
    assert config.get_garmin_credentials() == ("me@example.com", "secret")
