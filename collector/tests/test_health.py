"""
Unit tests for the collector health writer module.

CHANGELOG:
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path

from collector.src.health import HealthWriter
from collector.src.models import CycleResult


def _make_result(total_watts: float = 750.0, devices_ok: int = 2) -> CycleResult:
    return CycleResult(
        timestamp_ms=1_760_000_000_000,
        total_watts=total_watts,
        total_daily_yield_wh=4500.0,
        max_watts=450.0,
        devices_ok=devices_ok,
        devices_total=2,
    )


class TestRecordCycle:
    def test_writes_all_fields(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_cycle(_make_result())

        data = json.loads(health_path.read_text())
        assert set(data) == {"last_collect_ts", "last_total_watts", "devices_ok", "devices_total"}
        assert "T" in data["last_collect_ts"]
        assert data["last_total_watts"] == 750.0
        assert data["devices_ok"] == 2
        assert data["devices_total"] == 2

    def test_failed_cycle_reports_no_healthy_devices(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_cycle(_make_result())
        writer.record_cycle(None)

        data = json.loads(health_path.read_text())
        assert data["devices_ok"] == 0
        assert data["last_total_watts"] == 0.0
        assert data["devices_total"] == 2
        assert data["last_collect_ts"] is not None

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        health_path = tmp_path / "data" / "health.json"
        writer = HealthWriter(str(health_path))

        writer.record_cycle(_make_result(devices_ok=1))

        assert json.loads(health_path.read_text())["devices_ok"] == 1
