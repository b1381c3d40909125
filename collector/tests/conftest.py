"""
Shared test fixtures for collector tests.

Provides environment variable fixtures for CollectorSettings tests
and a temporary AggregationStore. The scripted fake inverter lives in
fake_inverter.py.

CHANGELOG:
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from collector.src.store import AggregationStore
from collector.tests.fake_inverter import WATTS_KEY, YIELD_KEY

# All CollectorSettings environment variable names, used for cleanup.
_ALL_COLLECTOR_ENV_VARS = (
    "INVERTERS",
    "INVERTER_ONE_IP",
    "INVERTER_ONE_DATA_ID",
    "INVERTER_TWO_IP",
    "INVERTER_TWO_DATA_ID",
    "INVERTER_PASS",
    "INVERTER_LIVE_WATT_DATA_KEY",
    "INVERTER_DAILY_YIELD_KEY",
    "POLL_INTERVAL_SECONDS",
    "DATA_RETENTION_DAYS",
    "DB_PATH",
    "TIMEZONE",
    "REQUEST_TIMEOUT_S",
    "HEALTH_PATH",
)


@pytest.fixture(autouse=True)
def _clean_collector_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all collector env vars and isolate from .env files before each test."""
    for var in _ALL_COLLECTOR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all environment variables for CollectorSettings."""
    env = {
        "INVERTERS": json.dumps(
            [
                {"host": "192.168.1.20", "data_id": "0199-AAAA", "name": "roof"},
                {"host": "192.168.1.21", "data_id": "0199-BBBB"},
            ]
        ),
        "INVERTER_PASS": "inverter-secret",
        "INVERTER_LIVE_WATT_DATA_KEY": WATTS_KEY,
        "INVERTER_DAILY_YIELD_KEY": YIELD_KEY,
        "POLL_INTERVAL_SECONDS": "15",
        "DATA_RETENTION_DAYS": "10",
        "DB_PATH": "/tmp/test-solar.db",
        "TIMEZONE": "Europe/Amsterdam",
        "REQUEST_TIMEOUT_S": "5",
        "HEALTH_PATH": "/tmp/test-health.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required variables, using the legacy single-inverter vars."""
    env = {
        "INVERTER_ONE_IP": "10.0.0.50",
        "INVERTER_ONE_DATA_ID": "0199-CCCC",
        "INVERTER_PASS": "pw",
        "INVERTER_LIVE_WATT_DATA_KEY": WATTS_KEY,
        "INVERTER_DAILY_YIELD_KEY": YIELD_KEY,
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest_asyncio.fixture()
async def store(tmp_path: Path) -> AsyncIterator[AggregationStore]:
    """An opened AggregationStore on a temporary database (UTC buckets)."""
    async with AggregationStore(tmp_path / "solar.db") as opened:
        yield opened
