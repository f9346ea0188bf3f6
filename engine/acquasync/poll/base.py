"""Poll client interface (port) for the pull fallback."""

from __future__ import annotations

from typing import Any, Protocol


class PollClient(Protocol):
    """Port: one JSON request/response exchange. Raises PollError on any failure."""

    async def get_json(self, path: str, params: dict[str, str] | None = None) -> Any: ...

    async def post_json(self, path: str, body: Any = None) -> Any: ...

    async def aclose(self) -> None: ...
