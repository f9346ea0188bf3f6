"""HTTP implementation of PollClient, backed by httpx."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from acquasync.core.errors import PollError

log = structlog.get_logger()


class HttpPollClient:
    """PollClient over an ``httpx.AsyncClient`` with a bounded timeout.

    Timeouts, connection errors, non-2xx statuses and non-JSON bodies all
    surface as PollError.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 4.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    async def get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        resp = await self._request("GET", path, params=params)
        try:
            return resp.json()
        except ValueError as exc:
            raise PollError(f"GET {path} returned invalid JSON") from exc

    async def post_json(self, path: str, body: Any = None) -> Any:
        """POST ``body`` as JSON. An empty response body decodes to None."""
        resp = await self._request("POST", path, json=body)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise PollError(f"POST {path} returned invalid JSON") from exc

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise PollError(f"{method} {path} timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise PollError(f"{method} {path} returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise PollError(f"{method} {path} failed: {exc}") from exc
        log.debug("poll_request", method=method, path=path, status=resp.status_code)
        return resp

    async def aclose(self) -> None:
        await self._client.aclose()
