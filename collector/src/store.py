"""
Local SQLite store for raw readings and their hourly/daily rollups.

Three tables live in one database file opened in WAL mode:

- ``energy_readings``: append-only samples, one per device per cycle.
- ``hourly_aggregates``: avg/max watts and sample count per ``(date, hour)``,
  recomputed from readings and overwritten on every recomputation.
- ``daily_summaries``: per-date total yield plus the day's peak total watts.
  The peak only ever increases within a date.

Every write goes through one asyncio.Lock so inserts, upserts and cleanup
run strictly one after another. The peak comparison is done inside a single
``INSERT ... ON CONFLICT DO UPDATE`` statement, never read-then-write.

Operations:
- insert_reading / get_readings / get_latest_reading
- update_hourly_aggregate / get_hourly_aggregates
- update_daily_summary / get_daily_summary
- get_current_day_stats
- cleanup_old_data

Supports async context manager protocol for clean resource management.

CHANGELOG:
- 2026-10-16: Hour window spans both passes of a repeated fall-back hour
- 2026-10-16: Use half-open hour windows so boundary readings count once
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from pathlib import Path

import aiosqlite

from collector.src.models import (
    CleanupResult,
    DailySummary,
    DayStats,
    DeviceSnapshot,
    HourlyAggregate,
    Reading,
    epoch_ms,
)

logger = logging.getLogger(__name__)

AGGREGATE_RETENTION_DAYS: int = 30
"""Days of hourly aggregates kept by cleanup_old_data."""

SUMMARY_RETENTION_DAYS: int = 365
"""Days of daily summaries kept by cleanup_old_data."""

HOUR_MS: int = 60 * 60 * 1000

_CREATE_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS energy_readings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    inverter_id TEXT NOT NULL,
    current_watts REAL DEFAULT 0,
    daily_yield_wh REAL DEFAULT 0,
    created_at INTEGER DEFAULT (strftime('%s','now') * 1000)
);
CREATE INDEX IF NOT EXISTS idx_timestamp
    ON energy_readings(timestamp);
CREATE INDEX IF NOT EXISTS idx_inverter_timestamp
    ON energy_readings(inverter_id, timestamp);
CREATE TABLE IF NOT EXISTS hourly_aggregates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    hour INTEGER NOT NULL,
    avg_watts INTEGER DEFAULT 0,
    max_watts REAL DEFAULT 0,
    readings_count INTEGER DEFAULT 0,
    created_at INTEGER DEFAULT (strftime('%s','now') * 1000),
    UNIQUE(date, hour)
);
CREATE TABLE IF NOT EXISTS daily_summaries (
    date TEXT PRIMARY KEY,
    total_yield_wh REAL NOT NULL,
    peak_watts REAL,
    peak_time INTEGER,
    created_at INTEGER DEFAULT (strftime('%s','now') * 1000)
);
"""

_INSERT_READING_SQL = """\
INSERT INTO energy_readings (timestamp, inverter_id, current_watts, daily_yield_wh)
VALUES (?, ?, ?, ?);
"""

_HOUR_STATS_SQL = """\
SELECT AVG(current_watts), MAX(current_watts), COUNT(*)
FROM energy_readings
WHERE timestamp >= ? AND timestamp < ?;
"""

_UPSERT_HOURLY_SQL = """\
INSERT INTO hourly_aggregates (date, hour, avg_watts, max_watts, readings_count)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(date, hour) DO UPDATE SET
    avg_watts = excluded.avg_watts,
    max_watts = excluded.max_watts,
    readings_count = excluded.readings_count,
    created_at = strftime('%s','now') * 1000;
"""

_UPSERT_DAILY_SQL = """\
INSERT INTO daily_summaries (date, total_yield_wh, peak_watts, peak_time)
VALUES (?, ?, ?, ?)
ON CONFLICT(date) DO UPDATE SET
    total_yield_wh = excluded.total_yield_wh,
    peak_watts = CASE
        WHEN peak_watts IS NULL OR excluded.peak_watts > peak_watts
        THEN excluded.peak_watts
        ELSE peak_watts
    END,
    peak_time = CASE
        WHEN peak_watts IS NULL OR excluded.peak_watts > peak_watts
        THEN excluded.peak_time
        ELSE peak_time
    END,
    created_at = strftime('%s','now') * 1000;
"""

_LATEST_PER_DEVICE_SQL = """\
SELECT inverter_id, current_watts, daily_yield_wh, timestamp
FROM energy_readings
WHERE id IN (SELECT MAX(id) FROM energy_readings GROUP BY inverter_id)
ORDER BY inverter_id ASC;
"""

_READING_COLUMNS = "id, timestamp, inverter_id, current_watts, daily_yield_wh"


def _row_to_reading(row: aiosqlite.Row | tuple) -> Reading:
    return Reading(
        id=row[0],
        timestamp_ms=row[1],
        device_id=row[2],
        current_watts=row[3] or 0.0,
        daily_yield_wh=row[4] or 0.0,
    )


def _row_to_hourly(row: aiosqlite.Row | tuple) -> HourlyAggregate:
    return HourlyAggregate(
        date=row[0],
        hour=row[1],
        avg_watts=row[2] or 0,
        max_watts=row[3] or 0.0,
        readings_count=row[4] or 0,
    )


class AggregationStore:
    """Async SQLite store for readings, hourly aggregates and daily summaries.

    Args:
        path: Filesystem path for the SQLite database file. Parent
            directories are created on open.
        tz: Time zone in which ``date``/``hour`` buckets are interpreted.

    Usage::

        async with AggregationStore(path="/data/solar.db") as store:
            await store.insert_reading("192.168.1.20", 1200.0, 5400.0)
            await store.update_hourly_aggregate("2026-10-16", 11)
    """

    def __init__(self, path: str | Path, tz: tzinfo = UTC) -> None:
        self._path = Path(path)
        self._tz = tz
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> None:
        """Open the SQLite connection and initialize the schema.

        Creates the data directory if needed, enables WAL mode and creates
        all tables and indexes that do not exist yet.
        """
        if not self._path.parent.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            logger.info("Created database directory: %s", self._path.parent)
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.executescript(_CREATE_SCHEMA_SQL)
        await self._db.commit()
        logger.info("Database initialized at: %s", self._path)

    async def close(self) -> None:
        """Close the underlying SQLite connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> AggregationStore:
        """Enter async context manager: open the database."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager: close the database."""
        await self.close()

    @property
    def _conn(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not opened. Call open() or use async with."
        return self._db

    def hour_start_ms(self, day: str, hour: int) -> int:
        """Epoch milliseconds of ``day`` at ``hour``:00 in the store's zone."""
        start = datetime.combine(date.fromisoformat(day), time(hour), tzinfo=self._tz)
        return epoch_ms(start)

    def hour_end_ms(self, day: str, hour: int) -> int:
        """Exclusive end of ``day`` at ``hour`` in epoch milliseconds.

        On a fall-back date the local hour occurs twice and the window covers
        both passes. A skipped spring-forward hour yields an empty window.
        """
        last_pass = datetime.combine(
            date.fromisoformat(day), time(hour, fold=1), tzinfo=self._tz
        )
        return max(self.hour_start_ms(day, hour), epoch_ms(last_pass) + HOUR_MS)

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    async def insert_reading(
        self,
        device_id: str,
        watts: float,
        yield_wh: float,
        *,
        timestamp_ms: int | None = None,
    ) -> Reading:
        """Append a reading stamped with the current time.

        Args:
            device_id: Inverter identifier.
            watts: Live power in watts.
            yield_wh: Today's yield in watt-hours.
            timestamp_ms: Override for the collection time.

        Returns:
            The stored reading, including its row id.
        """
        ts = epoch_ms() if timestamp_ms is None else timestamp_ms
        async with self._write_lock:
            cursor = await self._conn.execute(
                _INSERT_READING_SQL,
                (ts, device_id, float(watts), float(yield_wh)),
            )
            await self._conn.commit()
        return Reading(
            id=cursor.lastrowid,
            timestamp_ms=ts,
            device_id=device_id,
            current_watts=watts,
            daily_yield_wh=yield_wh,
        )

    async def get_readings(
        self,
        start_ms: int,
        end_ms: int,
        device_id: str | None = None,
    ) -> list[Reading]:
        """Return readings with ``start_ms <= timestamp <= end_ms``, oldest first."""
        sql = f"SELECT {_READING_COLUMNS} FROM energy_readings WHERE timestamp BETWEEN ? AND ?"  # noqa: S608
        params: list[object] = [start_ms, end_ms]
        if device_id is not None:
            sql += " AND inverter_id = ?"
            params.append(device_id)
        sql += " ORDER BY timestamp ASC, id ASC;"
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [_row_to_reading(row) for row in rows]

    async def get_latest_reading(self, device_id: str | None = None) -> Reading | None:
        """Return the most recent reading, optionally for one device."""
        sql = f"SELECT {_READING_COLUMNS} FROM energy_readings"  # noqa: S608
        params: list[object] = []
        if device_id is not None:
            sql += " WHERE inverter_id = ?"
            params.append(device_id)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT 1;"
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        return _row_to_reading(row) if row is not None else None

    # ------------------------------------------------------------------
    # Hourly aggregates
    # ------------------------------------------------------------------

    async def update_hourly_aggregate(self, day: str, hour: int) -> HourlyAggregate | None:
        """Recompute and upsert the aggregate for one hour.

        Uses every reading with ``hour_start_ms <= timestamp < hour_end_ms``.
        Calling it again with unchanged readings stores the same row.

        Args:
            day: ISO date of the hour.
            hour: Hour of day, 0-23.

        Returns:
            The stored aggregate, or None when the hour has no readings (in
            which case nothing is written).
        """
        start_ms = self.hour_start_ms(day, hour)
        end_ms = self.hour_end_ms(day, hour)
        async with self._write_lock:
            cursor = await self._conn.execute(_HOUR_STATS_SQL, (start_ms, end_ms))
            avg_watts, max_watts, count = await cursor.fetchone()
            if not count:
                return None

            aggregate = HourlyAggregate(
                date=day,
                hour=hour,
                avg_watts=round(avg_watts or 0),
                max_watts=max_watts or 0.0,
                readings_count=count,
            )
            await self._conn.execute(
                _UPSERT_HOURLY_SQL,
                (
                    aggregate.date,
                    aggregate.hour,
                    aggregate.avg_watts,
                    aggregate.max_watts,
                    aggregate.readings_count,
                ),
            )
            await self._conn.commit()
        return aggregate

    async def get_hourly_aggregates(self, day: str) -> list[HourlyAggregate]:
        """Return all hourly aggregates for *day* ordered by hour."""
        cursor = await self._conn.execute(
            "SELECT date, hour, avg_watts, max_watts, readings_count "
            "FROM hourly_aggregates WHERE date = ? ORDER BY hour ASC;",
            (day,),
        )
        rows = await cursor.fetchall()
        return [_row_to_hourly(row) for row in rows]

    # ------------------------------------------------------------------
    # Daily summaries
    # ------------------------------------------------------------------

    async def update_daily_summary(
        self,
        day: str,
        total_yield_wh: float,
        peak_watts: float | None = None,
        peak_time_ms: int | None = None,
    ) -> None:
        """Upsert the summary row for *day*.

        ``total_yield_wh`` always replaces the stored total. ``peak_watts``
        and ``peak_time_ms`` replace the stored pair only when there is no
        stored peak or the new peak is strictly greater.
        """
        async with self._write_lock:
            await self._conn.execute(
                _UPSERT_DAILY_SQL,
                (day, total_yield_wh, peak_watts, peak_time_ms),
            )
            await self._conn.commit()

    async def get_daily_summary(self, day: str) -> DailySummary | None:
        """Return the summary row for *day*, or None."""
        cursor = await self._conn.execute(
            "SELECT date, total_yield_wh, peak_watts, peak_time "
            "FROM daily_summaries WHERE date = ?;",
            (day,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return DailySummary(
            date=row[0],
            total_yield_wh=row[1],
            peak_watts=row[2],
            peak_time_ms=row[3],
        )

    # ------------------------------------------------------------------
    # Composite view
    # ------------------------------------------------------------------

    async def get_current_day_stats(self, day: str) -> DayStats:
        """Build the day view from latest readings, summary and aggregates."""
        cursor = await self._conn.execute(_LATEST_PER_DEVICE_SQL)
        latest = [
            DeviceSnapshot(
                device_id=row[0],
                watts=row[1] or 0.0,
                daily_yield_wh=row[2] or 0.0,
                timestamp_ms=row[3],
            )
            for row in await cursor.fetchall()
        ]
        summary = await self.get_daily_summary(day)
        hourly = await self.get_hourly_aggregates(day)

        current_watts = sum(device.watts for device in latest)
        total_yield_wh = sum(device.daily_yield_wh for device in latest)

        return DayStats(
            date=day,
            current_watts=current_watts,
            total_yield_wh=total_yield_wh,
            total_yield_kwh=round(total_yield_wh / 1000, 1),
            peak_watts=(summary.peak_watts or 0.0) if summary else 0.0,
            peak_time_ms=summary.peak_time_ms if summary else None,
            hourly=hourly,
            devices=latest,
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def cleanup_old_data(
        self,
        retention_days: int = 7,
        *,
        now: datetime | None = None,
    ) -> CleanupResult:
        """Delete rows past their retention window, then VACUUM.

        Readings older than *retention_days* are removed by timestamp;
        hourly aggregates older than 30 days and daily summaries older
        than 365 days are removed by date.

        Args:
            retention_days: Days of raw readings to keep.
            now: Reference time, defaults to the current time.

        Returns:
            Number of rows deleted from each table.
        """
        now = datetime.now(tz=self._tz) if now is None else now.astimezone(self._tz)
        readings_cutoff = epoch_ms(now - timedelta(days=retention_days))
        aggregates_cutoff = (now - timedelta(days=AGGREGATE_RETENTION_DAYS)).date().isoformat()
        summaries_cutoff = (now - timedelta(days=SUMMARY_RETENTION_DAYS)).date().isoformat()

        async with self._write_lock:
            cursor = await self._conn.execute(
                "DELETE FROM energy_readings WHERE timestamp < ?;",
                (readings_cutoff,),
            )
            deleted_readings = cursor.rowcount
            cursor = await self._conn.execute(
                "DELETE FROM hourly_aggregates WHERE date < ?;",
                (aggregates_cutoff,),
            )
            deleted_aggregates = cursor.rowcount
            cursor = await self._conn.execute(
                "DELETE FROM daily_summaries WHERE date < ?;",
                (summaries_cutoff,),
            )
            deleted_summaries = cursor.rowcount
            await self._conn.commit()

            logger.info(
                "Cleaned up %d readings, %d hourly aggregates, %d daily summaries",
                deleted_readings,
                deleted_aggregates,
                deleted_summaries,
            )
            await self._conn.execute("VACUUM;")
            logger.info("Database vacuum completed")

        return CleanupResult(
            deleted_readings=deleted_readings,
            deleted_aggregates=deleted_aggregates,
            deleted_summaries=deleted_summaries,
        )
