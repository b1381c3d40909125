"""
Collection scheduler: polls every inverter and keeps rollups current.

Runs one asyncio loop owned by the scheduler:

1. Collect immediately, then wait ``poll_interval_s`` on a stop event.
2. Each cycle reads live watts and daily yield from all inverters
   concurrently. Every device has its own failure boundary, so one
   unreachable inverter only drops its own contribution.
3. Successful reads are stored as readings, the daily summary is updated
   with the cycle's total watts (the store keeps the peak monotonic), and
   when the hour changes the aggregate for the hour that just ended is
   recomputed. Crossing into a new date also runs retention cleanup once.

Cycles never overlap: a cycle started while another is still running is
skipped with a warning. stop() only prevents future cycles; a cycle that is
already running completes.

CHANGELOG:
- 2026-10-16: Wait for both reads of a device before dropping it
- 2026-10-16: Skip a cycle instead of overlapping when the previous one is slow
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, tzinfo
from typing import TYPE_CHECKING

from collector.src.models import CycleResult, HourlyAggregate, Reading, epoch_ms

if TYPE_CHECKING:
    from collector.src.health import HealthWriter
    from collector.src.inverter import DeviceSessionClient
    from collector.src.store import AggregationStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S: float = 30.0
DEFAULT_RETENTION_DAYS: int = 7


class CollectionScheduler:
    """Drives periodic collection across all configured inverters.

    Args:
        clients: One session client per inverter.
        store: Store receiving readings and rollups.
        poll_interval_s: Seconds between the start of one wait and the next
            cycle.
        retention_days: Days of raw readings kept by the daily cleanup.
        health: HealthWriter instance, or None to skip health writes.
        tz: Time zone used to derive the date and hour of a cycle.
        clock: Returns the current time; defaults to ``datetime.now(tz)``.
    """

    def __init__(
        self,
        *,
        clients: Sequence[DeviceSessionClient],
        store: AggregationStore,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        health: HealthWriter | None = None,
        tz: tzinfo = UTC,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clients = list(clients)
        self._store = store
        self._poll_interval_s = poll_interval_s
        self._retention_days = retention_days
        self._health = health
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(tz=tz))

        self._running = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._cycle_lock = asyncio.Lock()
        self._last_hour: tuple[str, int] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def _now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the collection loop on the running event loop.

        Does nothing but log a warning when already running.
        """
        if self._running:
            logger.warning("Data collector is already running")
            return

        logger.info(
            "Starting data collector (polling every %ss, %d inverters)",
            self._poll_interval_s,
            len(self._clients),
        )
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._run_loop(self._stop_event),
            name="collection-loop",
        )

    def stop(self) -> None:
        """Stop scheduling further cycles. Safe to call repeatedly.

        A cycle that is already running is allowed to finish; use
        :meth:`wait_stopped` to wait for it.
        """
        if not self._running:
            return
        logger.info("Stopping data collector")
        self._running = False
        self._stop_event.set()

    async def wait_stopped(self) -> None:
        """Wait until the loop task has exited after :meth:`stop`."""
        if self._task is not None:
            await self._task

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        logger.info("Collection loop started (interval=%ss)", self._poll_interval_s)
        while not stop_event.is_set():
            await self.collect()
            # Use wait with timeout so stop() ends the sleep early
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval_s)
        logger.info("Collection loop stopped")

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    async def collect(self) -> CycleResult | None:
        """Run one collection cycle across all inverters.

        Catches all exceptions so that the loop is never broken.

        Returns:
            The cycle totals, or None if the cycle was skipped because
            another one is running, or failed as a whole.
        """
        if self._cycle_lock.locked():
            logger.warning("Previous collection cycle still running, skipping this tick")
            return None

        async with self._cycle_lock:
            result: CycleResult | None = None
            try:
                result = await self._collect_cycle()
            except Exception:
                logger.error("Error in data collection", exc_info=True)
            self._record_health(result)
            return result

    async def _collect_cycle(self) -> CycleResult:
        now = self._now()
        current_date = now.date().isoformat()
        now_ms = epoch_ms(now)
        logger.info("Collecting data at %s", now.isoformat())

        readings = await asyncio.gather(
            *(self._collect_device(client, now_ms) for client in self._clients)
        )
        stored = [reading for reading in readings if reading is not None]

        total_watts = sum(reading.current_watts for reading in stored)
        total_daily_yield = sum(reading.daily_yield_wh for reading in stored)
        max_watts = max((reading.current_watts for reading in stored), default=0.0)
        logger.info(
            "Collected: %sW total, %sWh daily yield (%d/%d inverters)",
            total_watts,
            total_daily_yield,
            len(stored),
            len(self._clients),
        )

        if total_watts > 0:
            await self._store.update_daily_summary(
                current_date,
                total_daily_yield,
                total_watts,
                now_ms,
            )

        await self._roll_hour(current_date, now.hour)

        return CycleResult(
            timestamp_ms=now_ms,
            total_watts=total_watts,
            total_daily_yield_wh=total_daily_yield,
            max_watts=max_watts,
            devices_ok=len(stored),
            devices_total=len(self._clients),
        )

    async def _collect_device(
        self,
        client: DeviceSessionClient,
        timestamp_ms: int,
    ) -> Reading | None:
        """Read and store one inverter; any failure yields None."""
        try:
            # Both reads finish before the cycle moves on, even when one fails
            outcomes = await asyncio.gather(
                client.get_current_watts(),
                client.get_daily_yield(),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            watts, daily_yield = outcomes
            return await self._store.insert_reading(
                client.host,
                watts,
                daily_yield,
                timestamp_ms=timestamp_ms,
            )
        except Exception:
            logger.error("Error collecting data from inverter %s", client.host, exc_info=True)
            return None

    async def _roll_hour(self, current_date: str, current_hour: int) -> None:
        """Finalize the previous hour when the clock has moved past it."""
        previous = self._last_hour
        if previous == (current_date, current_hour):
            return

        if previous is not None:
            prev_date, prev_hour = previous
            logger.info("Processing hourly aggregate for %s hour %d", prev_date, prev_hour)
            await self._store.update_hourly_aggregate(prev_date, prev_hour)

            if prev_date != current_date:
                logger.info("Running daily cleanup")
                await self._store.cleanup_old_data(self._retention_days)

        self._last_hour = (current_date, current_hour)

    async def update_current_hour_aggregate(self) -> HourlyAggregate | None:
        """Recompute the aggregate of the hour in progress.

        Meant for the reporting layer before it reads today's statistics,
        so partial-hour numbers are fresh.
        """
        now = self._now()
        current_date = now.date().isoformat()
        logger.info(
            "Forcing hourly aggregate update for %s hour %d",
            current_date,
            now.hour,
        )
        return await self._store.update_hourly_aggregate(current_date, now.hour)

    def _record_health(self, result: CycleResult | None) -> None:
        if self._health is None:
            return
        try:
            self._health.record_cycle(result)
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)
