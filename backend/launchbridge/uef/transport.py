"""Endpoints the negotiator talks through: host window, message port, token source."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

ChannelHandler = Callable[[Any], Awaitable[None]]
TokenSource = Callable[[], Awaitable[str]]


class MessagePort(Protocol):
    """A private channel handed over by the host during the handshake."""

    def post_message(self, message: dict[str, Any]) -> None: ...

    def set_handler(self, handler: ChannelHandler) -> None: ...


class HostWindow(Protocol):
    """The parent document embedding the integration."""

    def post_message(self, message: dict[str, Any], target_origin: str) -> None: ...


@dataclass(frozen=True)
class MessageEvent:
    """A window-level message as delivered by the browser."""

    origin: str
    data: Any
    ports: Sequence[MessagePort] = field(default_factory=tuple)


class HttpTokenSource:
    """Fetch the UEF bearer token from the LaunchBridge server.

    The bridging page ticket authenticates the request; the token itself is
    returned to the caller and never logged.
    """

    def __init__(
        self,
        base_url: str,
        ticket: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = f"{base_url.rstrip('/')}/uef/access-token"
        self._ticket = ticket
        self.timeout = timeout
        self._transport = transport

    async def __call__(self) -> str:
        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.get(
                self.url,
                headers={"Authorization": f"Bearer {self._ticket}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()

        if not isinstance(payload, dict) or not payload.get("ok") or not payload.get("token"):
            raise ValueError(f"No token from {self.url}")
        return payload["token"]


def static_token_source(token: str) -> TokenSource:
    async def _source() -> str:
        return token

    return _source
