"""Bridging page served after a verified launch.

The page carries everything the browser negotiator needs in
``window.__UEF_CONFIG__`` and loads ``/static/uef-client.js``. The bearer
token itself is never embedded; the page holds a short-lived ``uef`` ticket
which it exchanges at ``/uef/access-token``.
"""

import html
import json
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from dataclasses import dataclass
from typing import Any

from launchbridge.config import Settings
from launchbridge.services.launch_session import LaunchSession
from launchbridge.uef.roles import IntegrationRole

CLIENT_SCRIPT_PATH = "/static/uef-client.js"


@dataclass(frozen=True)
class BridgeConfig:
    lms_host: str
    role: IntegrationRole
    ticket: str
    panel_title: str
    content_url: str
    retry_ms: int = 3000
    access_token_path: str = "/uef/access-token"

    def as_client_config(self) -> dict[str, Any]:
        return {
            "lmsHost": self.lms_host,
            "role": self.role.value,
            "ticket": self.ticket,
            "panelTitle": self.panel_title,
            "contentUrl": self.content_url,
            "retryMs": self.retry_ms,
            "accessTokenPath": self.access_token_path,
        }


def _script_json(value: Any) -> str:
    """JSON safe to inline in a <script> element."""
    return (
        json.dumps(value, separators=(",", ":"))
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def render_bridge_page(config: BridgeConfig, title: str = "LaunchBridge") -> str:
    return f"""<!doctype html>
<html>
  <head>
    <meta charset="utf-8" />
    <title>{html.escape(title)}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1" />
  </head>
  <body>
    <script>window.__UEF_CONFIG__ = {_script_json(config.as_client_config())};</script>
    <script src="{CLIENT_SCRIPT_PATH}"></script>
  </body>
</html>
"""


def content_url(settings: Settings) -> str:
    """Absolute URL of the page shown inside the panel."""
    if settings.content_path.startswith(("http://", "https://")):
        return settings.content_path
    return f"{settings.tool_base_url.rstrip('/')}/{settings.content_path.lstrip('/')}"


def with_launch_context(url: str, session: LaunchSession) -> str:
    """Append the launch user and course to the panel URL query."""
    context = {"userId": session.assertion.subject, "courseId": session.assertion.context_id}
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in context.items() if v)
    return urlunsplit(parts._replace(query=urlencode(query)))


def bridge_config_for(session: LaunchSession, ticket: str, settings: Settings) -> BridgeConfig:
    return BridgeConfig(
        lms_host=session.lms_host,
        role=session.role,
        ticket=ticket,
        panel_title=settings.panel_title,
        content_url=with_launch_context(content_url(settings), session),
        retry_ms=settings.handshake_retry_ms,
    )
