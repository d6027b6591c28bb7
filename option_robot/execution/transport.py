"""HTTP transport for the broker client.

`RequestsTransport` wraps a `requests.Session`; the blocking call runs in a
worker thread so the event loop keeps serving the shell and the timers.
Tests swap in any object with the same `post` coroutine.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Protocol

import requests

from option_robot.execution.errors import NetworkError, RequestTimeout
from option_robot.execution.normalize import RawResponse


class Transport(Protocol):
    async def post(
        self,
        url: str,
        *,
        json: Mapping[str, Any],
        headers: Mapping[str, str],
        timeout: float,
    ) -> RawResponse: ...


def _set_cookie_values(resp: requests.Response) -> List[str]:
    raw_headers = getattr(resp.raw, "headers", None)
    getlist = getattr(raw_headers, "getlist", None)
    if callable(getlist):
        values = list(getlist("Set-Cookie"))
        if values:
            return values
    joined = resp.headers.get("Set-Cookie")
    return [joined] if joined else []


class RequestsTransport:
    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def _post_sync(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Dict[str, str],
        timeout: float,
    ) -> RawResponse:
        try:
            resp = self.session.post(url, json=dict(payload), headers=headers, timeout=timeout)
        except requests.Timeout as e:
            raise RequestTimeout(f"POST {url} timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise NetworkError(f"POST {url} failed: {e}") from e

        try:
            body: Any = resp.json()
        except ValueError:
            body = None
        return RawResponse(status=resp.status_code, body=body, set_cookies=tuple(_set_cookie_values(resp)))

    async def post(
        self,
        url: str,
        *,
        json: Mapping[str, Any],
        headers: Mapping[str, str],
        timeout: float,
    ) -> RawResponse:
        return await asyncio.to_thread(self._post_sync, url, json, dict(headers), timeout)

    def close(self) -> None:
        self.session.close()


__all__ = ["RequestsTransport", "Transport"]
