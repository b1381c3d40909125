"""
Health file writer for the collector daemon.

Writes a JSON health file at a configurable path with four fields:
- last_collect_ts: ISO timestamp of the most recent collection cycle.
- last_total_watts: Summed live watts from that cycle.
- devices_ok: Inverters that produced a reading in that cycle.
- devices_total: Inverters configured.

The file is rewritten after every cycle, giving Docker HEALTHCHECK or an
external monitor a simple liveness signal.

CHANGELOG:
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from collector.src.models import CycleResult


class HealthWriter:
    """Writes collector health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_collect_ts: str | None = None
        self._last_total_watts: float = 0.0
        self._devices_ok: int = 0
        self._devices_total: int = 0

    def record_cycle(self, result: CycleResult | None) -> None:
        """Record a collection attempt and write the health file.

        Args:
            result: Totals of the finished cycle, or None if the cycle
                failed as a whole. A failed cycle still refreshes the
                timestamp but reports zero healthy devices.
        """
        self._last_collect_ts = datetime.now(tz=UTC).isoformat()
        if result is None:
            self._last_total_watts = 0.0
            self._devices_ok = 0
        else:
            self._last_total_watts = result.total_watts
            self._devices_ok = result.devices_ok
            self._devices_total = result.devices_total
        self._write()

    def _write(self) -> None:
        data = {
            "last_collect_ts": self._last_collect_ts,
            "last_total_watts": self._last_total_watts,
            "devices_ok": self._devices_ok,
            "devices_total": self._devices_total,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data))
