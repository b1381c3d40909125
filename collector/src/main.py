"""
Collector daemon entrypoint.

Wires the configured inverters, the SQLite store and the collection
scheduler together, then runs until SIGTERM/SIGINT. Components are built
once here and passed explicitly; nothing is a module-level singleton.

Shutdown order: the scheduler stops taking new cycles, the in-flight cycle
(if any) finishes, then the inverter clients and finally the store close.

Every log line is a single JSON object (see JsonLogFormatter).

CHANGELOG:
- 2026-10-16: Module-level JSON formatter; signal name in the shutdown log
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from collector.src.config import CollectorSettings
from collector.src.health import HealthWriter
from collector.src.inverter import DeviceSessionClient
from collector.src.scheduler import CollectionScheduler
from collector.src.store import AggregationStore

logger = logging.getLogger(__name__)

QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")
"""Libraries that log every request at INFO; capped at WARNING."""


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line with ts, level, logger and msg keys.

    A traceback, when present, is added under ``exception``.
    """

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        return datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, str] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: int = logging.INFO) -> None:
    """Route all records through a single stderr handler using JsonLogFormatter."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonLogFormatter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _redact(secret: str | None) -> str:
    return f"<redacted, {len(secret)} chars>" if secret else "<unset>"


def log_config_summary(settings: CollectorSettings) -> None:
    """Log the effective settings once at startup. The password is redacted."""
    inverters = ", ".join(
        f"{device.name or device.host}={device.host}/{device.data_id}"
        for device in settings.inverters
    )
    logger.info(
        "Collector settings: inverters=[%s] poll=%ss retention=%sd timeout=%ss "
        "tz=%s db=%s health=%s keys=(%s, %s) password=%s",
        inverters,
        settings.poll_interval_seconds,
        settings.data_retention_days,
        settings.request_timeout_s,
        settings.timezone,
        settings.db_path,
        settings.health_path,
        settings.inverter_live_watt_data_key,
        settings.inverter_daily_yield_key,
        _redact(settings.inverter_pass),
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_clients(settings: CollectorSettings) -> list[DeviceSessionClient]:
    """Create one session client per configured inverter."""
    return [
        DeviceSessionClient(
            host=device.host,
            data_id=device.data_id,
            password=settings.inverter_pass,
            watts_key=settings.inverter_live_watt_data_key,
            yield_key=settings.inverter_daily_yield_key,
            timeout_s=settings.request_timeout_s,
        )
        for device in settings.inverters
    ]


async def run(
    *,
    settings: CollectorSettings,
    store: AggregationStore,
    clients: list[DeviceSessionClient],
    shutdown_event: asyncio.Event,
) -> None:
    """Run the scheduler until shutdown_event is set, then drain it.

    The in-flight cycle (if any) completes before the clients are closed.
    """
    scheduler = CollectionScheduler(
        clients=clients,
        store=store,
        poll_interval_s=settings.poll_interval_seconds,
        retention_days=settings.data_retention_days,
        health=HealthWriter(settings.health_path),
        tz=settings.tz,
    )
    scheduler.start()
    try:
        await shutdown_event.wait()
    finally:
        scheduler.stop()
        await scheduler.wait_stopped()
        for client in clients:
            await client.aclose()
    logger.info("Collector stopped, %d inverter clients closed", len(clients))


def _request_shutdown(signum: int, shutdown_event: asyncio.Event) -> None:
    logger.info("Received %s, stopping after the current cycle", signal.Signals(signum).name)
    shutdown_event.set()


async def async_main() -> None:
    """Load settings, open the store and collect until a stop signal arrives."""
    configure_logging()
    settings = CollectorSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, _request_shutdown, signum, shutdown_event)

    async with AggregationStore(settings.db_path, tz=settings.tz) as store:
        await run(
            settings=settings,
            store=store,
            clients=build_clients(settings),
            shutdown_event=shutdown_event,
        )


def main() -> None:
    """Console script entrypoint (``solar-collector``)."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
