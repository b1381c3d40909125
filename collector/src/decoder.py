"""
Decoder for inverter login and getValues JSON responses.

The values endpoint nests every reading as::

    {"result": {"<data_id>": {"<key>": {"1": [{"val": <number|null>}]}}}}

Each level is checked explicitly so that a malformed response raises a
single ResponseParseError naming the level that did not match, instead of
whatever KeyError/TypeError/IndexError the shape happened to trigger.

Pure functions: no I/O, no logging of payload contents.

CHANGELOG:
- 2026-10-16: Treat ``"val": null`` as 0 (inverters report null at night)
- 2026-10-16: Initial creation

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from collector.src.errors import ResponseParseError

STALE_SESSION_ERR: int = 401
"""Top-level ``err`` code the inverter returns for an expired session id."""

VALUE_CHANNEL: str = "1"
"""Channel key under each value key that carries the reading list."""


def decode_sid(payload: Any) -> str | None:
    """Return ``result.sid`` from a login response, or None if absent.

    An empty string or a non-string sid is treated as absent.
    """
    if not isinstance(payload, dict):
        return None
    result = payload.get("result")
    if not isinstance(result, dict):
        return None
    sid = result.get("sid")
    if not isinstance(sid, str) or not sid:
        return None
    return sid


def is_stale_session(payload: Any) -> bool:
    """Return True when the response is the ``{"err": 401}`` marker."""
    return isinstance(payload, dict) and payload.get("err") == STALE_SESSION_ERR


def _child(node: Any, key: str, level: str) -> Any:
    if not isinstance(node, dict):
        raise ResponseParseError(f"{level}: expected object, got {type(node).__name__}")
    if key not in node:
        raise ResponseParseError(f"{level}: missing key '{key}'")
    return node[key]


def decode_value(payload: Any, data_id: str, key: str) -> float:
    """Extract ``result[data_id][key]["1"][0]["val"]`` as a float.

    Args:
        payload: Parsed JSON body of a getValues response.
        data_id: Device data identifier (first key under ``result``).
        key: Value key that was requested.

    Returns:
        The numeric value. ``null`` decodes to ``0.0``.

    Raises:
        ResponseParseError: If any level is missing or has the wrong type,
            the reading list is empty, or ``val`` is not numeric.
    """
    result = _child(payload, "result", "response")
    device = _child(result, data_id, "result")
    entry = _child(device, key, f"device {data_id}")
    channel = _child(entry, VALUE_CHANNEL, f"key {key}")

    if not isinstance(channel, list):
        raise ResponseParseError(
            f"key {key}: expected list under '{VALUE_CHANNEL}', "
            f"got {type(channel).__name__}"
        )
    if not channel:
        raise ResponseParseError(f"key {key}: empty reading list")

    val = _child(channel[0], "val", f"key {key} reading")
    if val is None:
        return 0.0
    # bool is an int subclass; a true/false val is not a reading.
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        raise ResponseParseError(
            f"key {key}: non-numeric val of type {type(val).__name__}"
        )
    return float(val)


def decode_values(
    payload: Any,
    data_id: str,
    keys: Iterable[str],
) -> dict[str, float]:
    """Decode several keys, omitting the ones that do not parse.

    Returns:
        Mapping of key to value for every key that decoded successfully.
        An entirely malformed payload yields an empty dict.
    """
    values: dict[str, float] = {}
    for key in keys:
        try:
            values[key] = decode_value(payload, data_id, key)
        except ResponseParseError:
            continue
    return values
