"""Client-side protocol: handshake with the Learn Ultra host and panel rendering."""

from launchbridge.uef.negotiator import ChannelSession, HostChannelNegotiator, NegotiatorState
from launchbridge.uef.panel import PanelRenderer
from launchbridge.uef.roles import IntegrationRole, behavior_for

__all__ = [
    "ChannelSession",
    "HostChannelNegotiator",
    "IntegrationRole",
    "NegotiatorState",
    "PanelRenderer",
    "behavior_for",
]
