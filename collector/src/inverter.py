"""
Async session client for one inverter's HTTPS JSON interface.

Logs in with the ``usr`` right to obtain a session id (sid), then reads
named values with ``/dyn/getValues.json?sid=...``. Designed to be robust:

- A stale sid (``{"err": 401}``) clears the session and retries with a fresh
  login, bounded to MAX_CALL_ATTEMPTS values requests per logical call.
- Login failures and malformed responses are logged and turned into default
  values (0 or an empty mapping); they never raise to the caller.
- Network/TLS/JSON failures raise TransportError so the scheduler can drop
  this device for the current cycle.

Inverters serve self-signed certificates, so each client owns an
``httpx.AsyncClient`` with certificate verification disabled. Verification
stays enabled for every other HTTP client in the process.

CHANGELOG:
- 2026-10-16: Connectivity check reuses the session instead of forcing a login
- 2026-10-16: Share one login between concurrent reads on the same device
- 2026-10-16: Replace recursive stale-session retry with bounded loop
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx

from collector.src.decoder import decode_sid, decode_value, decode_values, is_stale_session
from collector.src.errors import (
    AuthenticationError,
    ResponseParseError,
    StaleSessionError,
    TransportError,
)
from collector.src.models import ConnectivityStatus, epoch_ms

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_CALL_ATTEMPTS: int = 3
"""Maximum values requests per logical read before giving up."""

REQUEST_TIMEOUT_S: float = 10.0
"""Default timeout per HTTP request in seconds."""

LOGIN_PATH: str = "/dyn/login.json"
VALUES_PATH: str = "/dyn/getValues.json"
LOGIN_RIGHT: str = "usr"


@dataclass
class Session:
    """In-memory session state for one inverter.

    Attributes:
        device_id: Inverter identifier (its host).
        token: Current sid, or empty string when not authenticated.
        call_attempts: Values requests used by the current/last read.
            Reset to 0 after every successfully decoded response.
    """

    device_id: str
    token: str = ""
    call_attempts: int = 0


class DeviceSessionClient:
    """Authenticated reader for one inverter.

    Args:
        host: Inverter IP address or hostname.
        data_id: Device data identifier keyed under ``result`` in responses.
        password: Password for the ``usr`` login right.
        watts_key: Value key for live AC power.
        yield_key: Value key for today's yield.
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport, used by tests to stub the device.

    Usage::

        async with DeviceSessionClient(
            host="192.168.1.20",
            data_id="0199-B32F1234",
            password="secret",
            watts_key="6100_40263F00",
            yield_key="6400_00262200",
        ) as client:
            watts = await client.get_current_watts()
    """

    def __init__(
        self,
        *,
        host: str,
        data_id: str,
        password: str,
        watts_key: str,
        yield_key: str,
        timeout_s: float = REQUEST_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.host = host
        self.data_id = data_id
        self._password = password
        self._watts_key = watts_key
        self._yield_key = yield_key
        self.session = Session(device_id=host)
        self._auth_lock = asyncio.Lock()
        self._client = httpx.AsyncClient(
            base_url=f"https://{host}",
            verify=False,
            timeout=timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> DeviceSessionClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    async def authenticate(self) -> bool:
        """Log in and store a fresh sid.

        Any previous sid is discarded first. A login response without a sid
        is logged and leaves the client unauthenticated.

        Returns:
            True if a sid was obtained, False otherwise.

        Raises:
            TransportError: If the login request itself fails.
        """
        self.session.token = ""
        try:
            sid = await self._login()
        except AuthenticationError as exc:
            logger.error("Unable to access sid: %s", exc)
            return False
        self.session.token = sid
        logger.info("Retrieved new sid for inverter %s", self.host)
        return True

    async def _login(self) -> str:
        payload = await self._post_json(
            LOGIN_PATH,
            {"right": LOGIN_RIGHT, "pass": self._password},
        )
        sid = decode_sid(payload)
        if sid is None:
            raise AuthenticationError(f"login to {self.host} returned no sid")
        return sid

    async def _ensure_session(self) -> str:
        """Return the current sid, logging in first if there is none."""
        async with self._auth_lock:
            if not self.session.token:
                await self.authenticate()
            return self.session.token

    def _invalidate(self, token: str) -> None:
        # Another read may already have replaced the sid; keep the newer one.
        if self.session.token == token:
            self.session.token = ""

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _post_json(
        self,
        path: str,
        body: dict[str, Any],
        params: dict[str, str] | None = None,
    ) -> Any:
        """POST a compact JSON body and return the parsed JSON response."""
        content = json.dumps(body, separators=(",", ":"))
        try:
            response = await self._client.post(
                path,
                content=content,
                params=params,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"POST {path} to {self.host} failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"POST {path} to {self.host} returned non-JSON body "
                f"(HTTP {response.status_code})"
            ) from exc

    async def _request_values(self, token: str, keys: list[str]) -> Any:
        payload = await self._post_json(
            VALUES_PATH,
            {"destDev": [], "keys": keys},
            params={"sid": token},
        )
        if is_stale_session(payload):
            raise StaleSessionError(f"sid rejected by {self.host}")
        return payload

    async def fetch_values(self, keys: Iterable[str]) -> Any | None:
        """Request values for *keys*, re-authenticating on a stale sid.

        At most MAX_CALL_ATTEMPTS values requests are made. A login that
        yields no sid counts as a used attempt.

        Args:
            keys: Value keys to request.

        Returns:
            The parsed getValues response, or None once the attempts are
            exhausted.

        Raises:
            TransportError: On network, TLS or JSON failures.
        """
        key_list = list(dict.fromkeys(keys))

        for attempt in range(1, MAX_CALL_ATTEMPTS + 1):
            self.session.call_attempts = attempt
            token = await self._ensure_session()
            if not token:
                logger.warning(
                    "No sid for inverter %s (attempt %d/%d)",
                    self.host,
                    attempt,
                    MAX_CALL_ATTEMPTS,
                )
                continue
            try:
                return await self._request_values(token, key_list)
            except StaleSessionError:
                logger.info(
                    "Stale sid for inverter %s, requesting new one (attempt %d/%d)",
                    self.host,
                    attempt,
                    MAX_CALL_ATTEMPTS,
                )
                self._invalidate(token)

        logger.error(
            "Unable to fetch %s from inverter %s: max call attempts (%d) reached",
            key_list,
            self.host,
            MAX_CALL_ATTEMPTS,
        )
        return None

    # ------------------------------------------------------------------
    # Public readers
    # ------------------------------------------------------------------

    async def get_current_watts(self) -> float:
        """Return live AC power in watts, or 0.0 if it cannot be read."""
        watts = await self._read_single(self._watts_key, "live watts")
        logger.info("Inverter %s is currently generating %sW", self.host, watts)
        return watts

    async def get_daily_yield(self) -> float:
        """Return today's yield in watt-hours, or 0.0 if it cannot be read."""
        daily_yield = await self._read_single(self._yield_key, "daily yield")
        logger.info("Inverter %s daily yield: %sWh", self.host, daily_yield)
        return daily_yield

    async def get_multiple_values(self, keys: Iterable[str]) -> dict[str, float]:
        """Read several keys in one request.

        Keys whose value cannot be decoded are omitted from the result.

        Returns:
            Mapping of key to value; empty when the read gave up.
        """
        key_list = list(dict.fromkeys(keys))
        payload = await self.fetch_values(key_list)
        if payload is None:
            return {}

        values = decode_values(payload, self.data_id, key_list)
        missing = [key for key in key_list if key not in values]
        if missing:
            logger.warning(
                "Unable to parse keys %s from inverter %s response",
                missing,
                self.host,
            )
        self.session.call_attempts = 0
        return values

    async def _read_single(self, key: str, label: str) -> float:
        payload = await self.fetch_values([key])
        if payload is None:
            return 0.0
        try:
            value = decode_value(payload, self.data_id, key)
        except ResponseParseError as exc:
            logger.error(
                "Unable to extract %s from inverter %s: %s",
                label,
                self.host,
                exc,
            )
            return 0.0
        self.session.call_attempts = 0
        return value

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def test_connectivity(self) -> ConnectivityStatus:
        """Make sure a session exists and read live watts once, timing it.

        The login goes through the same lock as regular reads, so a check
        running alongside a collection cycle shares its session. A stale sid
        is replaced by the read's own retry.

        Never raises; failures are reported with ``online=False``.
        """
        started = time.monotonic()
        try:
            if not await self._ensure_session():
                return ConnectivityStatus(
                    online=False,
                    error="Authentication failed",
                    last_ping_timestamp_ms=epoch_ms(),
                )
            watts = await self.get_current_watts()
        except TransportError as exc:
            logger.warning("Connectivity check for inverter %s failed: %s", self.host, exc)
            return ConnectivityStatus(
                online=False,
                error=str(exc),
                last_ping_timestamp_ms=epoch_ms(),
            )

        return ConnectivityStatus(
            online=True,
            response_time_ms=int((time.monotonic() - started) * 1000),
            last_ping_timestamp_ms=epoch_ms(),
            current_watts=watts,
        )
