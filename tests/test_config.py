"""
Tests for settings and logging setup.
"""
import pytest
import structlog

from backend.config import get_settings
from backend.exceptions import ConfigurationError
from backend.logging_config import configure_logging


class TestSettings:
    """Environment-driven settings."""

    def test_defaults(self):
        settings = get_settings()

        assert settings.snf_cap_rate == 0.125
        assert settings.leased_multiplier == 2.5
        assert settings.recommended_rounding == 100_000
        assert settings.facility_accept_threshold == 0.85

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DEALXL_EXTERNAL_SNF_CAP_RATE", "0.13")
        assert get_settings().external_snf_cap_rate == 0.13

    def test_thresholds_checked(self, monkeypatch):
        monkeypatch.setenv("DEALXL_FACILITY_REVIEW_THRESHOLD", "0.9")
        with pytest.raises(ConfigurationError) as exc_info:
            get_settings()
        assert exc_info.value.error_code == "DXL-500"

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("DEALXL_SNF_CAP_RATE", "twelve percent")
        with pytest.raises(ConfigurationError) as exc_info:
            get_settings()
        assert exc_info.value.details["errors"]


class TestLogging:
    """structlog configuration."""

    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()

    def test_json_renderer(self):
        configure_logging(level="debug", json=True)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_renderer_from_settings(self, monkeypatch):
        monkeypatch.setenv("DEALXL_LOG_JSON", "false")
        configure_logging()
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
