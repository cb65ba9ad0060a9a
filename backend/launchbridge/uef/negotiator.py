"""Host channel negotiator.

State machine for the cross-document handshake with the embedding host:

    IDLE -> AWAITING_CHANNEL -> AWAITING_AUTHORIZATION -> READY
                     |
                     +--> UNAVAILABLE (no handshake response after the retry)

Inbound window messages are dropped unless their origin equals a trusted host
origin exactly; nothing else about the event is read before that check.
After the handshake, all traffic flows over the captured channel.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from launchbridge.exceptions import ChannelUnavailable, LaunchBridgeError, PanelCreationFailed
from launchbridge.uef.messages import (
    Authorize,
    AuthorizeAck,
    Callback,
    Handshake,
    HelpRequest,
    HostMessage,
    PanelCreateAck,
    PortalEvent,
    from_wire,
)
from launchbridge.uef.panel import PanelRenderer
from launchbridge.uef.roles import RoleBehavior
from launchbridge.uef.transport import HostWindow, MessageEvent, MessagePort, TokenSource
from launchbridge.utils.log_redaction import redact_sensitive_data, sanitize_for_log

logger = logging.getLogger(__name__)

WILDCARD_ORIGIN = "*"


class NegotiatorState(str, Enum):
    IDLE = "idle"
    AWAITING_CHANNEL = "awaiting_channel"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    READY = "ready"
    UNAVAILABLE = "unavailable"


@dataclass
class ChannelSession:
    """The negotiated channel. Bound for the lifetime of the embedding document."""

    channel: MessagePort
    origin: str
    authorized: bool = False
    pending_panel_request: str | None = None
    panel_id: str | None = None


class HostChannelNegotiator:
    """Obtain a private channel from the host, authorize on it, then serve the role."""

    def __init__(
        self,
        host: HostWindow,
        token_source: TokenSource,
        role: RoleBehavior,
        *,
        expected_origin: str | None = None,
        allowed_origins: Iterable[str] = (),
        retry_after: float = 3.0,
        max_handshake_attempts: int = 2,
    ):
        self.host = host
        self.role = role
        self._token_source = token_source
        self.expected_origin = expected_origin or None
        self.allowed_origins = frozenset(allowed_origins)
        self.retry_after = retry_after
        self.max_handshake_attempts = max_handshake_attempts

        self.state = NegotiatorState.IDLE
        self.session: ChannelSession | None = None
        self.panel: PanelRenderer | None = None
        self.error: LaunchBridgeError | None = None
        self.handshake_attempts = 0
        self._retry_handle: asyncio.TimerHandle | None = None

        self._channel_handlers: dict[str, Callable[[Any], None]] = {
            "authorize-ack": self._on_authorize_ack,
            "panel-create-ack": self._on_panel_create_ack,
            "callback": self._on_callback,
            "help-request": self._on_help_request,
            "event": self._on_event,
        }

    @property
    def target_origin(self) -> str:
        return self.expected_origin or WILDCARD_ORIGIN

    async def start(self) -> None:
        """Send the handshake and arm the bounded retry timer."""
        if self.state is not NegotiatorState.IDLE:
            return

        if self.expected_origin is None and not self.allowed_origins:
            self._give_up("No trusted host origin configured")
            return
        if self.expected_origin is None:
            logger.warning("Host origin unknown, sending handshake to wildcard target")

        self.state = NegotiatorState.AWAITING_CHANNEL
        self._send_handshake()

    def close(self) -> None:
        """Cancel pending timers, e.g. when the embedding document unloads."""
        self._cancel_retry()

    async def handle_window_message(self, event: MessageEvent) -> None:
        """Entry point for window-level ``message`` events."""
        try:
            if not self._origin_trusted(event.origin):
                return

            message = from_wire(event.data)
            if not isinstance(message, Handshake):
                return

            if self.session is not None:
                logger.warning("Second handshake response ignored, channel already bound")
                return
            if self.state is not NegotiatorState.AWAITING_CHANNEL:
                logger.warning("Handshake response ignored in state %s", self.state.value)
                return
            if not event.ports:
                logger.warning("Handshake response carried no channel")
                return

            self._capture(event.ports[0], event.origin)
            await self._authorize()
        except Exception:
            logger.exception("Error handling window message")

    async def handle_channel_message(self, data: Any) -> None:
        """Entry point for messages arriving on the negotiated channel."""
        try:
            logger.debug("Channel message: %s", redact_sensitive_data(data))
            message = from_wire(data)
            if message is None:
                return
            handler = self._channel_handlers.get(message.kind)
            if handler is None:
                logger.debug("No handler for %s", message.kind)
                return
            handler(message)
        except LaunchBridgeError as e:
            logger.warning("Host request failed: %s", e)
        except Exception:
            logger.exception("Error handling channel message")

    def send(self, message: HostMessage) -> bool:
        """Post ``message`` on the channel. Never raises."""
        if self.session is None:
            logger.warning("Cannot send %s before a channel is negotiated", message.kind)
            return False
        try:
            self.session.channel.post_message(message.to_wire())
        except Exception as e:
            logger.error("Failed to send %s: %s", message.kind, e)
            return False
        logger.debug("Sent %s", message.kind)
        return True

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def _origin_trusted(self, origin: str) -> bool:
        if self.expected_origin is not None:
            return origin == self.expected_origin
        return origin in self.allowed_origins

    def _send_handshake(self) -> None:
        self.handshake_attempts += 1
        logger.info(
            "Sending handshake to %s (attempt %d/%d)",
            sanitize_for_log(self.target_origin),
            self.handshake_attempts,
            self.max_handshake_attempts,
        )
        try:
            self.host.post_message(Handshake().to_wire(), self.target_origin)
        except Exception as e:
            logger.error("Failed to post handshake: %s", e)

        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_after, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        if self.session is not None or self.state is not NegotiatorState.AWAITING_CHANNEL:
            return
        if self.handshake_attempts < self.max_handshake_attempts:
            self._send_handshake()
        else:
            self._give_up(f"No handshake response after {self.handshake_attempts} attempts")

    def _give_up(self, reason: str) -> None:
        self._cancel_retry()
        self.state = NegotiatorState.UNAVAILABLE
        self.error = ChannelUnavailable(reason)
        logger.error("Host channel unavailable: %s", reason)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _capture(self, channel: MessagePort, origin: str) -> None:
        self._cancel_retry()
        self.session = ChannelSession(channel=channel, origin=origin)
        self.panel = PanelRenderer(self.session, self.send, self.role.panel_content)
        channel.set_handler(self.handle_channel_message)
        self.state = NegotiatorState.AWAITING_AUTHORIZATION
        logger.info("Channel received from %s", sanitize_for_log(origin))

    async def _authorize(self) -> None:
        try:
            token = await self._token_source()
        except Exception as e:
            logger.error("Could not obtain bearer token: %s", e)
            return
        if self.send(Authorize(token=token)):
            logger.info("Authorization requested")

    # ------------------------------------------------------------------
    # Channel message handlers, one per kind
    # ------------------------------------------------------------------

    def _on_authorize_ack(self, message: AuthorizeAck) -> None:
        if self.state is not NegotiatorState.AWAITING_AUTHORIZATION:
            logger.debug("Ignoring authorization ack in state %s", self.state.value)
            return
        if not message.ok:
            logger.error("Host rejected the bearer token")
            return

        if self.session is None:
            logger.error("Authorization ack without a bound channel")
            return
        self.session.authorized = True
        self.state = NegotiatorState.READY
        logger.info("Authorized by host, running %s role", self.role.role.value)
        self.role.on_ready(self)

    def _on_panel_create_ack(self, message: PanelCreateAck) -> None:
        if not self._ready() or self.panel is None:
            return
        try:
            self.panel.handle_create_ack(message)
        except PanelCreationFailed as e:
            logger.warning("Panel request refused: %s", e)
            self.role.on_panel_failed(self, e)

    def _on_callback(self, message: Callback) -> None:
        if not self._ready() or self.panel is None:
            return
        if self.panel.owns_callback(message.callback_token):
            self.panel.on_panel_closed(message.callback_token)
        else:
            self.role.on_callback(self, message.callback_token)

    def _on_help_request(self, message: HelpRequest) -> None:
        if self._ready():
            self.role.on_help_request(self, message)

    def _on_event(self, message: PortalEvent) -> None:
        if self._ready():
            self.role.on_event(self, message)

    def _ready(self) -> bool:
        return self.state is NegotiatorState.READY
