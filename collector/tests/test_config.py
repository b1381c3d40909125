"""
Unit tests for collector configuration (CollectorSettings).

Tests verify:
- Config loads from environment variables with correct defaults.
- INVERTERS JSON list and legacy INVERTER_ONE_*/INVERTER_TWO_* vars.
- Missing required variables and invalid values are rejected.

CHANGELOG:
- 2026-10-16: Initial creation

TODO:
- None
"""

from zoneinfo import ZoneInfo

import pytest
from collector.src.config import CollectorSettings
from pydantic import ValidationError


class TestCollectorSettingsLoadsFromEnv:
    def test_loads_all_env_vars(self, env_vars_full: dict[str, str]) -> None:
        settings = CollectorSettings()

        assert [d.host for d in settings.inverters] == ["192.168.1.20", "192.168.1.21"]
        assert [d.data_id for d in settings.inverters] == ["0199-AAAA", "0199-BBBB"]
        assert settings.inverters[0].name == "roof"
        assert settings.inverter_pass == env_vars_full["INVERTER_PASS"]
        assert settings.inverter_live_watt_data_key == env_vars_full["INVERTER_LIVE_WATT_DATA_KEY"]
        assert settings.inverter_daily_yield_key == env_vars_full["INVERTER_DAILY_YIELD_KEY"]
        assert settings.poll_interval_seconds == 15
        assert settings.data_retention_days == 10
        assert settings.db_path == env_vars_full["DB_PATH"]
        assert settings.timezone == "Europe/Amsterdam"
        assert settings.tz == ZoneInfo("Europe/Amsterdam")
        assert settings.request_timeout_s == 5.0
        assert settings.health_path == env_vars_full["HEALTH_PATH"]

    def test_defaults_applied_when_optional_vars_missing(
        self, env_vars_required_only: dict[str, str]
    ) -> None:
        settings = CollectorSettings()

        assert settings.poll_interval_seconds == 30
        assert settings.data_retention_days == 7
        assert settings.db_path == "./data/solar.db"
        assert settings.timezone == "UTC"
        assert settings.request_timeout_s == 10.0
        assert settings.health_path == "./data/health.json"


class TestLegacyInverterVars:
    def test_single_legacy_inverter(self, env_vars_required_only: dict[str, str]) -> None:
        settings = CollectorSettings()

        assert len(settings.inverters) == 1
        assert settings.inverters[0].host == "10.0.0.50"
        assert settings.inverters[0].data_id == "0199-CCCC"

    def test_two_legacy_inverters(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INVERTER_TWO_IP", "10.0.0.51")
        monkeypatch.setenv("INVERTER_TWO_DATA_ID", "0199-DDDD")

        settings = CollectorSettings()

        assert [d.host for d in settings.inverters] == ["10.0.0.50", "10.0.0.51"]

    def test_inverters_list_wins_over_legacy_vars(
        self, env_vars_full: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INVERTER_ONE_IP", "10.9.9.9")
        monkeypatch.setenv("INVERTER_ONE_DATA_ID", "0199-ZZZZ")

        settings = CollectorSettings()

        assert "10.9.9.9" not in [d.host for d in settings.inverters]

    def test_legacy_inverter_without_data_id_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("INVERTER_ONE_DATA_ID")

        with pytest.raises(ValidationError, match="no data id"):
            CollectorSettings()


class TestCollectorSettingsValidation:
    def test_no_inverters_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("INVERTER_ONE_IP")

        with pytest.raises(ValidationError, match="At least one inverter"):
            CollectorSettings()

    def test_missing_password_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("INVERTER_PASS")

        with pytest.raises(ValidationError) as exc_info:
            CollectorSettings()
        assert "inverter_pass" in str(exc_info.value).lower()

    @pytest.mark.parametrize("value", ["0", "-5"])
    def test_poll_interval_must_be_positive(
        self,
        env_vars_required_only: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
        value: str,
    ) -> None:
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", value)

        with pytest.raises(ValidationError, match="POLL_INTERVAL_SECONDS"):
            CollectorSettings()

    def test_retention_must_be_positive(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DATA_RETENTION_DAYS", "0")

        with pytest.raises(ValidationError, match="DATA_RETENTION_DAYS"):
            CollectorSettings()

    def test_timeout_must_be_positive(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("REQUEST_TIMEOUT_S", "0")

        with pytest.raises(ValidationError, match="REQUEST_TIMEOUT_S"):
            CollectorSettings()

    def test_unknown_timezone_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TIMEZONE", "Mars/Olympus_Mons")

        with pytest.raises(ValidationError, match="IANA"):
            CollectorSettings()

    def test_malformed_inverters_json_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INVERTERS", '[{"host": "10.0.0.1"}]')

        with pytest.raises(ValidationError):
            CollectorSettings()
