"""Cross-document message contracts and their UEF wire encoding.

Messages are modelled as a tagged union over ``kind``. The negotiator only
ever deals with these models; ``to_wire``/``from_wire`` translate to and from
the dictionaries Learn's Ultra Extension Framework exchanges over postMessage.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_wire(self) -> dict[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} is never sent")


class Handshake(_Message):
    kind: Literal["handshake"] = "handshake"

    def to_wire(self) -> dict[str, Any]:
        return {"type": "integration:hello"}


class Authorize(_Message):
    kind: Literal["authorize"] = "authorize"
    token: str = Field(repr=False, min_length=1)

    def to_wire(self) -> dict[str, Any]:
        return {"type": "authorization:authorize", "token": self.token}


class AuthorizeAck(_Message):
    kind: Literal["authorize-ack"] = "authorize-ack"
    ok: bool


class Subscribe(_Message):
    kind: Literal["subscribe"] = "subscribe"
    topics: tuple[str, ...]

    def to_wire(self) -> dict[str, Any]:
        return {"type": "event:subscribe", "subscriptions": list(self.topics)}


class PanelCreate(_Message):
    kind: Literal["panel-create"] = "panel-create"
    correlation_id: str
    title: str
    on_close: str
    panel_type: str = "small"

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": "portal:panel",
            "correlationId": self.correlation_id,
            "panelType": self.panel_type,
            "panelTitle": self.title,
            "attributes": {"onClose": {"callbackId": self.on_close}},
        }


class PanelCreateAck(_Message):
    kind: Literal["panel-create-ack"] = "panel-create-ack"
    correlation_id: str | None = None
    status: Literal["success", "failure"]
    panel_id: str | None = None


class PanelRender(_Message):
    kind: Literal["panel-render"] = "panel-render"
    panel_id: str
    content: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        return {"type": "portal:render", "portalId": self.panel_id, "contents": self.content}


class Callback(_Message):
    """Host invoked a callback token we registered (panel close, button click)."""

    kind: Literal["callback"] = "callback"
    callback_token: str


class HelpRegister(_Message):
    kind: Literal["help-register"] = "help-register"
    provider_id: str
    label: str
    icon_url: str | None = None

    def to_wire(self) -> dict[str, Any]:
        provider: dict[str, Any] = {"id": self.provider_id, "label": self.label}
        if self.icon_url:
            provider["iconUrl"] = self.icon_url
        return {"type": "help:register", "provider": provider}


class HelpRequest(_Message):
    kind: Literal["help-request"] = "help-request"
    request_id: str | None = None


class HelpResponse(_Message):
    kind: Literal["help-response"] = "help-response"
    request_id: str | None
    status: Literal["success", "failure"] = "success"

    def to_wire(self) -> dict[str, Any]:
        return {"type": "help:response", "requestId": self.request_id, "status": self.status}


class PortalEvent(_Message):
    kind: Literal["event"] = "event"
    event_type: str
    portal_id: str | None = None
    selector: str | None = None


HostMessage = Annotated[
    Union[
        Handshake,
        Authorize,
        AuthorizeAck,
        Subscribe,
        PanelCreate,
        PanelCreateAck,
        PanelRender,
        Callback,
        HelpRegister,
        HelpRequest,
        HelpResponse,
        PortalEvent,
    ],
    Field(discriminator="kind"),
]

_message_adapter: TypeAdapter[HostMessage] = TypeAdapter(HostMessage)


def parse_message(payload: dict[str, Any]) -> HostMessage:
    """Validate an abstract ``{"kind": ...}`` payload into its message model."""
    return _message_adapter.validate_python(payload)


def to_wire(message: HostMessage) -> dict[str, Any]:
    return message.to_wire()


def _status(data: dict[str, Any]) -> Literal["success", "failure"]:
    return "success" if data.get("status") == "success" else "failure"


def _authorize_ok(data: dict[str, Any]) -> bool:
    return "error" not in data and data.get("status") not in ("error", "failure")


_DECODERS: dict[str, Callable[[dict[str, Any]], HostMessage]] = {
    "integration:hello": lambda d: Handshake(),
    "authorization:authorize": lambda d: AuthorizeAck(ok=_authorize_ok(d)),
    "portal:panel:response": lambda d: PanelCreateAck(
        correlation_id=d.get("correlationId"),
        status=_status(d),
        panel_id=d.get("portalId"),
    ),
    "portal:callback": lambda d: Callback(callback_token=d["callbackId"]),
    "help:request": lambda d: HelpRequest(request_id=d.get("requestId")),
    "event:event": lambda d: PortalEvent(
        event_type=d["eventType"],
        portal_id=d.get("portalId"),
        selector=d.get("selector"),
    ),
}


def from_wire(data: Any) -> HostMessage | None:
    """Decode an inbound UEF message. Unknown or malformed messages yield None."""
    if not isinstance(data, dict):
        return None
    wire_type = data.get("type")
    if not isinstance(wire_type, str):
        return None
    decoder = _DECODERS.get(wire_type)
    if decoder is None:
        return None
    try:
        return decoder(data)
    except (KeyError, TypeError, ValidationError) as e:
        logger.warning("Malformed %s message ignored: %s", data.get("type"), e)
        return None
