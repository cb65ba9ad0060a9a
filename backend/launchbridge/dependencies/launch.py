"""Providers for the launch services built in the application lifespan."""

from fastapi import Request

from launchbridge.config import Settings
from launchbridge.services.launch import LaunchAuthenticator
from launchbridge.services.launch_session import LaunchSessionRegistry, TicketSigner, TokenBroker


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_authenticator(request: Request) -> LaunchAuthenticator:
    return request.app.state.authenticator


def get_session_registry(request: Request) -> LaunchSessionRegistry:
    return request.app.state.session_registry


def get_ticket_signer(request: Request) -> TicketSigner:
    return request.app.state.ticket_signer


def get_token_broker(request: Request) -> TokenBroker:
    return request.app.state.token_broker
