"""
Pydantic models for readings, rollups and status snapshots.

Dates are ISO ``YYYY-MM-DD`` strings in the collector's configured time zone.
Timestamps are Unix epoch milliseconds.

CHANGELOG:
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel


class Reading(BaseModel):
    """One timestamped power/yield sample from one inverter.

    Attributes:
        id: Autoincrement row id, assigned by the store.
        timestamp_ms: Collection time in epoch milliseconds.
        device_id: Inverter identifier (its network address).
        current_watts: Live AC power in watts.
        daily_yield_wh: Energy produced today in watt-hours.
    """

    id: int | None = None
    timestamp_ms: int
    device_id: str
    current_watts: float
    daily_yield_wh: float


class HourlyAggregate(BaseModel):
    """Average/maximum watts and sample count for one calendar hour."""

    date: str
    hour: int
    avg_watts: int
    max_watts: float
    readings_count: int


class DailySummary(BaseModel):
    """Per-date total yield and the highest total watts seen so far."""

    date: str
    total_yield_wh: float
    peak_watts: float | None = None
    peak_time_ms: int | None = None


class DeviceSnapshot(BaseModel):
    """Latest stored values for one inverter."""

    device_id: str
    watts: float
    daily_yield_wh: float
    timestamp_ms: int


class DayStats(BaseModel):
    """Denormalized view of one day for the reporting layer.

    ``current_watts`` and ``total_yield_wh`` are summed over the latest
    reading of every device. Peak values come from the daily summary and
    ``hourly`` lists every hourly aggregate of the date in hour order.
    """

    date: str
    current_watts: float
    total_yield_wh: float
    total_yield_kwh: float
    peak_watts: float
    peak_time_ms: int | None
    hourly: list[HourlyAggregate]
    devices: list[DeviceSnapshot]


class CleanupResult(BaseModel):
    """Row counts removed by a retention pass."""

    deleted_readings: int
    deleted_aggregates: int
    deleted_summaries: int


class ConnectivityStatus(BaseModel):
    """Outcome of a login plus one live value read against a device."""

    online: bool
    error: str | None = None
    response_time_ms: int | None = None
    last_ping_timestamp_ms: int
    current_watts: float | None = None


class CycleResult(BaseModel):
    """Totals from one collection cycle across all inverters."""

    timestamp_ms: int
    total_watts: float
    total_daily_yield_wh: float
    max_watts: float
    devices_ok: int
    devices_total: int


def epoch_ms(dt: datetime | None = None) -> int:
    """Return *dt* (default: now, UTC) as Unix epoch milliseconds."""
    if dt is None:
        dt = datetime.now(tz=UTC)
    return int(dt.timestamp() * 1000)
