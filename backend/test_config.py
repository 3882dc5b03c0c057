"""
Tests for environment settings and the interval contract checks.
"""
import sys
import os
import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from decision_engine.config import DEFAULT_BASE_URL, Settings, validate_settings


class TestSettingsFromEnv:

    def test_defaults(self, monkeypatch):
        for name in (
            "MBTA_API_KEY", "MBTA_API_BASE_URL", "SUPERVISOR_INTERVAL_SECONDS",
            "GPS_STALE_THRESHOLD_SECONDS", "MBTA_STALE_THRESHOLD_SECONDS",
            "GPS_MIN_SECONDS", "MBTA_POLL_SECONDS", "BACKOFF_POLL_SECONDS", "LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.mbta_api_key is None
        assert settings.mbta_api_base_url == DEFAULT_BASE_URL
        assert settings.supervisor_interval_seconds == 3.0
        assert settings.gps_stale_threshold_seconds == 10.0
        assert settings.mbta_stale_threshold_seconds == 20.0
        assert settings.mbta_poll_seconds == 8.0
        assert settings.log_level == "INFO"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("MBTA_API_KEY", "abcdef0123456789")
        monkeypatch.setenv("MBTA_POLL_SECONDS", "10")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.mbta_api_key == "abcdef0123456789"
        assert settings.mbta_poll_seconds == 10.0
        assert settings.log_level == "DEBUG"

    def test_non_numeric_interval(self, monkeypatch):
        monkeypatch.setenv("MBTA_POLL_SECONDS", "fast")

        with pytest.raises(ValueError, match="MBTA_POLL_SECONDS"):
            Settings.from_env()


class TestValidateSettings:

    def test_defaults_pass(self):
        report = validate_settings(Settings(mbta_api_key="abcdef0123456789"))
        assert report.passed
        assert report.errors == []
        assert report.warnings == []

    def test_missing_key_is_a_warning(self):
        report = validate_settings(Settings())
        assert report.passed
        assert any("MBTA_API_KEY" in w for w in report.warnings)

    def test_stale_threshold_must_cover_two_polls(self):
        report = validate_settings(Settings(mbta_stale_threshold_seconds=12.0))
        assert not report.passed
        assert any("MBTA_STALE_THRESHOLD_SECONDS" in e for e in report.errors)

    def test_gps_stale_threshold(self):
        report = validate_settings(Settings(gps_stale_threshold_seconds=6.0))
        assert any("GPS_STALE_THRESHOLD_SECONDS" in e for e in report.errors)

    def test_backoff_must_exceed_poll(self):
        report = validate_settings(Settings(backoff_poll_seconds=8.0))
        assert any("BACKOFF_POLL_SECONDS" in e for e in report.errors)

    def test_supervisor_interval_range(self):
        report = validate_settings(Settings(supervisor_interval_seconds=30.0))
        assert any("SUPERVISOR_INTERVAL_SECONDS" in e for e in report.errors)

    def test_https_required(self):
        report = validate_settings(Settings(mbta_api_base_url="http://api-v3.mbta.com"))
        assert any("HTTPS" in e for e in report.errors)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
