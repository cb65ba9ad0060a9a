"""Integration roles: what the integration does once the host authorized it."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from launchbridge.uef.messages import HelpRegister, HelpRequest, HelpResponse, PortalEvent, Subscribe
from launchbridge.uef.panel import button_content

if TYPE_CHECKING:
    from launchbridge.exceptions import PanelCreationFailed
    from launchbridge.uef.negotiator import HostChannelNegotiator

logger = logging.getLogger(__name__)

PORTAL_NEW = "portal:new"
COURSE_DETAILS_SELECTOR = "course.outline.details"


class IntegrationRole(str, Enum):
    """Selected per launch by the ``mode`` query parameter of the target link."""

    PANEL = "panel"
    HELP = "help"
    COURSE_BUTTON = "course-button"


class RoleBehavior:
    """Base behavior: opens the panel on demand, ignores host events."""

    role: IntegrationRole

    def __init__(
        self,
        panel_title: str,
        panel_content: dict[str, Any],
        close_token: str = "launchbridge-panel-close",
    ):
        self.panel_title = panel_title
        self.panel_content = panel_content
        self.close_token = close_token

    def on_ready(self, negotiator: HostChannelNegotiator) -> None:
        pass

    def on_help_request(self, negotiator: HostChannelNegotiator, message: HelpRequest) -> None:
        logger.debug("Help request ignored by %s role", self.role.value)

    def on_event(self, negotiator: HostChannelNegotiator, message: PortalEvent) -> None:
        pass

    def on_callback(self, negotiator: HostChannelNegotiator, callback_token: str) -> None:
        logger.debug("Unhandled callback %s", callback_token)

    def on_panel_failed(self, negotiator: HostChannelNegotiator, error: PanelCreationFailed) -> None:
        """The host refused the panel. User-triggered roles retry on the next trigger."""
        logger.info("Panel not opened for %s role, waiting for the next request", self.role.value)

    def open_panel(self, negotiator: HostChannelNegotiator) -> str | None:
        if negotiator.panel is None:
            return None
        return negotiator.panel.open_panel(self.panel_title, self.close_token)


class PanelBehavior(RoleBehavior):
    """Open the panel as soon as the host authorizes us."""

    role = IntegrationRole.PANEL

    def __init__(self, *args: Any, max_open_attempts: int = 2, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.max_open_attempts = max_open_attempts
        self.open_attempts = 0

    def on_ready(self, negotiator: HostChannelNegotiator) -> None:
        negotiator.send(Subscribe(topics=(PORTAL_NEW,)))
        self.open_panel(negotiator)

    def open_panel(self, negotiator: HostChannelNegotiator) -> str | None:
        self.open_attempts += 1
        return super().open_panel(negotiator)

    def on_panel_failed(self, negotiator: HostChannelNegotiator, error: PanelCreationFailed) -> None:
        if self.open_attempts >= self.max_open_attempts:
            logger.error("Giving up on the panel after %d attempts", self.open_attempts)
            return
        logger.info("Retrying panel request (attempt %d/%d)", self.open_attempts + 1, self.max_open_attempts)
        self.open_panel(negotiator)


class HelpProviderBehavior(RoleBehavior):
    """Register in the help menu and open the panel when the user asks for help."""

    role = IntegrationRole.HELP

    def __init__(self, *args: Any, provider_id: str = "launchbridge-help", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.provider_id = provider_id

    def on_ready(self, negotiator: HostChannelNegotiator) -> None:
        negotiator.send(HelpRegister(provider_id=self.provider_id, label=self.panel_title))

    def on_help_request(self, negotiator: HostChannelNegotiator, message: HelpRequest) -> None:
        negotiator.send(Subscribe(topics=(PORTAL_NEW,)))
        self.open_panel(negotiator)
        negotiator.send(HelpResponse(request_id=message.request_id, status="success"))


class CourseButtonBehavior(RoleBehavior):
    """Render a launch button in the course outline; the click opens the panel."""

    role = IntegrationRole.COURSE_BUTTON

    def __init__(
        self,
        *args: Any,
        button_label: str | None = None,
        click_token: str = "launchbridge-launch-click",
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.button_label = button_label or f"Open {self.panel_title}"
        self.click_token = click_token

    def on_ready(self, negotiator: HostChannelNegotiator) -> None:
        negotiator.send(Subscribe(topics=(PORTAL_NEW,)))

    def on_event(self, negotiator: HostChannelNegotiator, message: PortalEvent) -> None:
        if message.event_type != PORTAL_NEW or message.selector != COURSE_DETAILS_SELECTOR:
            return
        if not message.portal_id or negotiator.panel is None:
            return
        negotiator.panel.render_content(
            message.portal_id, button_content(self.button_label, self.click_token)
        )

    def on_callback(self, negotiator: HostChannelNegotiator, callback_token: str) -> None:
        if callback_token == self.click_token:
            self.open_panel(negotiator)
        else:
            super().on_callback(negotiator, callback_token)


_BEHAVIORS: dict[IntegrationRole, type[RoleBehavior]] = {
    IntegrationRole.PANEL: PanelBehavior,
    IntegrationRole.HELP: HelpProviderBehavior,
    IntegrationRole.COURSE_BUTTON: CourseButtonBehavior,
}


def behavior_for(role: IntegrationRole, panel_title: str, panel_content: dict[str, Any]) -> RoleBehavior:
    return _BEHAVIORS[role](panel_title, panel_content)
