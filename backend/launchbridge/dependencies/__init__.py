"""Dependencies for FastAPI endpoints."""

from launchbridge.dependencies.launch import (
    get_app_settings,
    get_authenticator,
    get_session_registry,
    get_ticket_signer,
    get_token_broker,
)

__all__ = [
    "get_app_settings",
    "get_authenticator",
    "get_session_registry",
    "get_ticket_signer",
    "get_token_broker",
]
