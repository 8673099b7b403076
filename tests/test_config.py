"""Tests for settings loading and validation."""

import decimal
from pathlib import Path

import pydantic
import pytest

from business_ledger.config import Environment, LogLevel, Settings, get_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in (
        "BL_BASE_CURRENCY",
        "BL_ROUNDING_MODE",
        "BL_AGING_BUCKET_BOUNDARIES",
        "BL_ENVIRONMENT",
        "BL_LOG_FORMAT",
        "BL_SQLITE_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestDefaults:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.base_currency == "USD"
        assert settings.rounding_mode == "ROUND_HALF_UP"
        assert settings.rounding == decimal.ROUND_HALF_UP
        assert settings.aging_bucket_boundaries == [0, 1, 31, 61, 91]
        assert settings.retained_earnings_account_code == "3200"
        assert settings.log_level == LogLevel.INFO
        assert settings.enable_audit_log

    def test_console_logging_outside_production(self):
        assert Settings(_env_file=None).log_format == "console"

    def test_json_logging_in_production(self):
        settings = Settings(_env_file=None, environment=Environment.PRODUCTION)
        assert settings.log_format == "json"
        assert settings.is_production

    def test_explicit_log_format_wins(self):
        settings = Settings(
            _env_file=None, environment=Environment.PRODUCTION, log_format="console"
        )
        assert settings.log_format == "console"


class TestEnvironment:
    def test_prefixed_variables(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BL_BASE_CURRENCY", "eur")
        monkeypatch.setenv("BL_SQLITE_PATH", "/tmp/ledger.db")
        monkeypatch.setenv("BL_ENVIRONMENT", "testing")

        settings = Settings(_env_file=None)

        assert settings.base_currency == "EUR"
        assert settings.sqlite_path == Path("/tmp/ledger.db")
        assert settings.is_testing

    def test_bucket_boundaries_from_json(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BL_AGING_BUCKET_BOUNDARIES", "[0, 30, 60]")
        assert Settings(_env_file=None).aging_bucket_boundaries == [0, 30, 60]

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestValidation:
    def test_rounding_mode_case_insensitive(self):
        settings = Settings(_env_file=None, rounding_mode="round_half_even")
        assert settings.rounding_mode == "ROUND_HALF_EVEN"
        assert settings.rounding == decimal.ROUND_HALF_EVEN

    def test_unknown_rounding_mode(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, rounding_mode="ROUND_SIDEWAYS")

    @pytest.mark.parametrize("boundaries", [[], [-1, 30], [0, 30, 30], [0, 60, 30]])
    def test_invalid_bucket_boundaries(self, boundaries: list[int]):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, aging_bucket_boundaries=boundaries)

    def test_base_currency_must_be_three_letters(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, base_currency="DOLLAR")

    def test_audit_queue_size_positive(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, audit_queue_size=0)
