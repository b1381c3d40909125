"""
Collector daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Inverters are configured either as a JSON list in ``INVERTERS`` or through
the older ``INVERTER_ONE_*`` / ``INVERTER_TWO_*`` variable pairs.

CHANGELOG:
- 2026-10-16: Accept legacy INVERTER_ONE_*/INVERTER_TWO_* device variables
- 2026-10-16: Initial creation

TODO:
- None
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings


class DeviceConfig(BaseModel):
    """Address and data identifier of one inverter.

    Attributes:
        host: Inverter IP address or hostname on the local LAN.
        data_id: Device data identifier used as the first key under
            ``result`` in getValues responses.
        name: Optional human-readable label for logs.
    """

    host: str
    data_id: str
    name: str = ""


class CollectorSettings(BaseSettings):
    """Collector daemon configuration.

    Attributes:
        inverters: Inverters to poll. Parsed from the ``INVERTERS`` JSON list.
        inverter_one_ip: Legacy address of the first inverter.
        inverter_one_data_id: Legacy data id of the first inverter.
        inverter_two_ip: Legacy address of the second inverter.
        inverter_two_data_id: Legacy data id of the second inverter.
        inverter_pass: Password for the ``usr`` login right (shared).
        inverter_live_watt_data_key: Value key for live AC power.
        inverter_daily_yield_key: Value key for today's yield.
        poll_interval_seconds: Seconds between collection cycles.
        data_retention_days: Days of raw readings to keep.
        db_path: SQLite database file path.
        timezone: IANA zone used for date/hour buckets.
        request_timeout_s: Per-request HTTP timeout towards inverters.
        health_path: Path of the JSON health file.
    """

    inverters: list[DeviceConfig] = []
    inverter_one_ip: str = ""
    inverter_one_data_id: str = ""
    inverter_two_ip: str = ""
    inverter_two_data_id: str = ""
    inverter_pass: str
    inverter_live_watt_data_key: str
    inverter_daily_yield_key: str
    poll_interval_seconds: int = 30
    data_retention_days: int = 7
    db_path: str = "./data/solar.db"
    timezone: str = "UTC"
    request_timeout_s: float = 10.0
    health_path: str = "./data/health.json"

    @model_validator(mode="after")
    def _fold_legacy_devices(self) -> "CollectorSettings":
        """Build the inverter list from legacy vars when INVERTERS is empty."""
        if not self.inverters:
            legacy = [
                (self.inverter_one_ip, self.inverter_one_data_id),
                (self.inverter_two_ip, self.inverter_two_data_id),
            ]
            self.inverters = [
                DeviceConfig(host=host, data_id=data_id)
                for host, data_id in legacy
                if host
            ]
        if not self.inverters:
            raise ValueError(
                "At least one inverter must be configured "
                "(INVERTERS or INVERTER_ONE_IP/INVERTER_ONE_DATA_ID)"
            )
        for device in self.inverters:
            if not device.data_id:
                raise ValueError(f"Inverter {device.host} has no data id")
        return self

    @field_validator("poll_interval_seconds")
    @classmethod
    def poll_interval_must_be_positive(cls, v: int) -> int:
        """Validate that the poll interval is at least one second."""
        if v < 1:
            raise ValueError("POLL_INTERVAL_SECONDS must be >= 1")
        return v

    @field_validator("data_retention_days")
    @classmethod
    def retention_must_be_positive(cls, v: int) -> int:
        """Validate that at least one day of readings is retained."""
        if v < 1:
            raise ValueError("DATA_RETENTION_DAYS must be >= 1")
        return v

    @field_validator("request_timeout_s")
    @classmethod
    def timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        return v

    @field_validator("timezone")
    @classmethod
    def timezone_must_exist(cls, v: str) -> str:
        """Validate that the time zone name resolves to an IANA zone."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"TIMEZONE '{v}' is not a known IANA zone") from exc
        return v

    @property
    def tz(self) -> ZoneInfo:
        """The configured time zone as a ZoneInfo instance."""
        return ZoneInfo(self.timezone)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
