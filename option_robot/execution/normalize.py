"""Response-shape normalization for heterogeneous broker envelopes.

Pure functions, no I/O. The broker has been seen answering with any of:
  {"isSuccessful": true, "result": {...}}
  {"success": true, "data": {...}}
  {"status": "success", ...payload fields...}
  bare 2xx with the payload at the top level
and failures as `{"isSuccessful": false, "message": "..."}`, `{"success": false}`
or `{"status": "error"}`, with or without a non-2xx status code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Tuple

from option_robot.execution.errors import ShapeMismatch

SUCCESS_FLAGS = ("isSuccessful", "success")
SUCCESS_STATUSES = {"success", "ok"}
FAILURE_STATUSES = {"error", "fail", "failed", "failure"}
PAYLOAD_KEYS = ("result", "data")
MESSAGE_KEYS = ("message", "error", "msg")

_SSID_RE = re.compile(r"(?:^|[;,\s])ssid=([^;,\s]*)", re.IGNORECASE)


@dataclass(frozen=True)
class RawResponse:
    status: int
    body: Any = None
    set_cookies: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return 200 <= int(self.status) < 300


def success_marker(body: Any) -> Optional[bool]:
    """True/False for an explicit success/failure marker, None when silent."""
    if not isinstance(body, Mapping):
        return None
    status = body.get("status")
    status_s = status.strip().lower() if isinstance(status, str) else None

    if any(body.get(k) is True or body.get(k) in (1, "true") for k in SUCCESS_FLAGS):
        return True
    if status_s in SUCCESS_STATUSES:
        return True
    if any(k in body and body.get(k) is not None for k in SUCCESS_FLAGS):
        return False
    if status_s in FAILURE_STATUSES:
        return False
    return None


def extract_payload(body: Any) -> Any:
    """Payload from `result`, else `data`, else the body itself."""
    if isinstance(body, Mapping):
        for key in PAYLOAD_KEYS:
            val = body.get(key)
            if val:
                return val
        return body
    return {} if body is None else body


def message_of(body: Any) -> Optional[str]:
    if not isinstance(body, Mapping):
        return None
    for key in MESSAGE_KEYS:
        val = body.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return None


def normalize(response: RawResponse, *, allow_bare: bool = True) -> Any:
    """Return the payload of a successful response or raise `ShapeMismatch`.

    `ShapeMismatch.rejected` is set only when the broker sent an explicit
    failure marker (as opposed to a 404 or an unrecognized body).
    """
    marker = success_marker(response.body)
    msg = message_of(response.body)

    if not response.ok:
        raise ShapeMismatch(
            msg or f"HTTP {response.status}",
            status=response.status,
            rejected=marker is False,
            broker_message=msg,
        )
    if marker is True:
        return extract_payload(response.body)
    if marker is False:
        raise ShapeMismatch(
            msg or "Request rejected by broker",
            status=response.status,
            rejected=True,
            broker_message=msg,
        )
    if allow_bare:
        return extract_payload(response.body)
    raise ShapeMismatch("No success marker in response", status=response.status)


def parse_session_id(set_cookies: Iterable[str]) -> Optional[str]:
    """Pull the `ssid` value out of one or more Set-Cookie header values."""
    for header in set_cookies or ():
        if not header:
            continue
        m = _SSID_RE.search(str(header))
        if m and m.group(1):
            return m.group(1)
    return None


def pick(payload: Any, *keys: str) -> Any:
    """First truthy value among `keys` in a mapping payload."""
    if not isinstance(payload, Mapping):
        return None
    for key in keys:
        val = payload.get(key)
        if val not in (None, "", 0):
            return val
    return None


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


__all__ = [
    "RawResponse",
    "extract_payload",
    "message_of",
    "normalize",
    "parse_session_id",
    "pick",
    "success_marker",
    "to_decimal",
]
