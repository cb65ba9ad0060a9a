"""Panel renderer: ask the host for a panel and fill it with content."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from launchbridge.exceptions import PanelCreationFailed
from launchbridge.uef.messages import HostMessage, PanelCreate, PanelCreateAck, PanelRender

if TYPE_CHECKING:
    from launchbridge.uef.negotiator import ChannelSession

logger = logging.getLogger(__name__)

DEFAULT_FRAME_PERMISSIONS = "clipboard-read; clipboard-write"


def iframe_content(url: str, allow: str = DEFAULT_FRAME_PERMISSIONS) -> dict[str, Any]:
    """Content descriptor embedding ``url`` in a frame filling the panel."""
    return {
        "tag": "iframe",
        "props": {
            "src": url,
            "style": {"width": "100%", "height": "100%", "border": "0"},
            "allow": allow,
        },
    }


def button_content(label: str, callback_token: str) -> dict[str, Any]:
    """Content descriptor for a button that fires ``callback_token`` when clicked."""
    return {
        "tag": "div",
        "props": {"className": "uef--course-details--container"},
        "children": [
            {
                "tag": "button",
                "props": {
                    "className": "uef--button--course-details",
                    "onClick": {"callbackId": callback_token},
                },
                "children": label,
            }
        ],
    }


class PanelRenderer:
    """Drives the panel sub-protocol over an authorized channel session.

    At most one panel-creation request is outstanding at a time; it is keyed
    by its correlation id and cleared when the matching response arrives.
    """

    def __init__(
        self,
        session: ChannelSession,
        send: Callable[[HostMessage], bool],
        content: dict[str, Any],
    ):
        self.session = session
        self._send = send
        self.content = content
        self._close_token: str | None = None

    @property
    def panel_id(self) -> str | None:
        return self.session.panel_id

    @property
    def pending_request(self) -> str | None:
        return self.session.pending_panel_request

    def open_panel(
        self, title: str, on_close_token: str, correlation_id: str | None = None
    ) -> str | None:
        """Request a new panel. Returns the correlation id, or None if nothing was sent."""
        if self.session.pending_panel_request is not None:
            logger.info("Panel request %s already pending", self.session.pending_panel_request)
            return None
        if self.session.panel_id is not None:
            logger.info("Panel %s already open", self.session.panel_id)
            return None

        correlation_id = correlation_id or f"panel-{secrets.token_hex(6)}"
        request = PanelCreate(correlation_id=correlation_id, title=title, on_close=on_close_token)
        if not self._send(request):
            return None

        self.session.pending_panel_request = correlation_id
        self._close_token = on_close_token
        logger.debug("Requested panel %r (correlation: %s)", title, correlation_id)
        return correlation_id

    def handle_create_ack(self, ack: PanelCreateAck) -> None:
        """Apply the host's answer to our panel-creation request.

        Raises:
            PanelCreationFailed: The host answered our pending request with a failure
        """
        pending = self.session.pending_panel_request
        if pending is None or ack.correlation_id != pending:
            logger.debug("Ignoring panel response for unknown correlation %s", ack.correlation_id)
            return

        self.session.pending_panel_request = None
        if ack.status == "success" and ack.panel_id:
            self.session.panel_id = ack.panel_id
            self.render_content(ack.panel_id, self.content)
            return

        raise PanelCreationFailed(f"Host refused panel {pending} (status: {ack.status})")

    def render_content(self, panel_id: str, content: dict[str, Any]) -> None:
        """Fill a panel. Fire-and-forget: the host does the actual rendering."""
        self._send(PanelRender(panel_id=panel_id, content=content))

    def owns_callback(self, callback_token: str) -> bool:
        return self._close_token is not None and callback_token == self._close_token

    def on_panel_closed(self, callback_token: str) -> None:
        """Forget the open panel. Unknown tokens and repeated closes are no-ops."""
        if self.session.panel_id is None or not self.owns_callback(callback_token):
            return
        logger.info("Panel %s closed by host", self.session.panel_id)
        self.session.panel_id = None
