"""
Error types raised inside the collector core.

None of these are process-fatal. The inverter client handles the first three
itself and falls back to default values; TransportError is allowed to reach
the scheduler, which drops that device's contribution for the cycle.

CHANGELOG:
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations


class CollectorError(Exception):
    """Base class for all collector errors."""


class AuthenticationError(CollectorError):
    """Login did not return a session id."""


class StaleSessionError(CollectorError):
    """The inverter rejected the session id (``{"err": 401}``)."""


class ResponseParseError(CollectorError):
    """A values response did not have the expected nested shape."""


class TransportError(CollectorError):
    """Network, TLS, HTTP status or JSON decoding failure talking to a device."""
