"""LTI 1.3 endpoints: third-party login initiation, launch and tool key set."""

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from launchbridge.config import Settings
from launchbridge.dependencies import (
    get_app_settings,
    get_authenticator,
    get_session_registry,
    get_ticket_signer,
    get_token_broker,
)
from launchbridge.exceptions import LaunchBridgeError, to_http_exception
from launchbridge.services.bridge_page import bridge_config_for, render_bridge_page
from launchbridge.services.launch import LaunchAuthenticator
from launchbridge.services.launch_session import (
    PURPOSE_OAUTH,
    PURPOSE_UEF,
    LaunchSessionRegistry,
    TicketSigner,
    TokenBroker,
    resolve_lms_host,
    resolve_role,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["LTI"])

limiter = Limiter(key_func=get_remote_address)

OAUTH_CALLBACK_PATH = "/uef/oauth/callback"


def oauth_redirect_uri(settings: Settings) -> str:
    return f"{settings.tool_base_url.rstrip('/')}{OAUTH_CALLBACK_PATH}"


async def _login_params(request: Request) -> dict[str, str]:
    """Login initiation parameters arrive as query (GET) or form fields (POST)."""
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params


@router.api_route("/lti/login", methods=["GET", "POST"])
@limiter.limit("60/minute")
async def lti_login(
    request: Request,
    authenticator: LaunchAuthenticator = Depends(get_authenticator),
):
    """OIDC third-party login initiation. Redirects to the platform auth endpoint."""
    params = await _login_params(request)
    try:
        auth_url = await authenticator.initiate_login(
            params.get("iss"),
            params.get("login_hint"),
            params.get("target_link_uri"),
            params.get("lti_message_hint"),
            client_id=params.get("client_id"),
            deployment_id=params.get("lti_deployment_id"),
        )
    except LaunchBridgeError as e:
        logger.warning(f"LTI login initiation rejected: {e}")
        raise to_http_exception(e)

    return RedirectResponse(url=auth_url, status_code=302)


@router.post("/lti/launch")
@limiter.limit("60/minute")
async def lti_launch(
    request: Request,
    id_token: str | None = Form(None),
    state: str | None = Form(None),
    authenticator: LaunchAuthenticator = Depends(get_authenticator),
    registry: LaunchSessionRegistry = Depends(get_session_registry),
    signer: TicketSigner = Depends(get_ticket_signer),
    broker: TokenBroker = Depends(get_token_broker),
    settings: Settings = Depends(get_app_settings),
):
    """Launch endpoint the platform form-posts the signed id_token to.

    Verifies the launch, opens a launch session, then either sends the user
    through Learn 3LO or serves the bridging page directly.
    """
    if not id_token or not state:
        raise HTTPException(status_code=400, detail="Missing id_token or state")

    try:
        result = await authenticator.complete_login(id_token, state)
    except LaunchBridgeError as e:
        raise to_http_exception(e)

    assertion = result.assertion
    session = registry.create(
        assertion,
        resolve_role(result.target_link_uri),
        resolve_lms_host(assertion, settings.lms_host),
    )

    if broker.requires_authorization:
        try:
            auth_url = broker.authorization_redirect(
                session,
                oauth_redirect_uri(settings),
                signer.issue(session.session_id, PURPOSE_OAUTH),
            )
        except LaunchBridgeError as e:
            logger.error(f"Cannot start Learn authorization: {e}")
            raise to_http_exception(e)
        return RedirectResponse(url=auth_url, status_code=302)

    ticket = signer.issue(session.session_id, PURPOSE_UEF)
    return HTMLResponse(render_bridge_page(bridge_config_for(session, ticket, settings)))


@router.get("/.well-known/jwks.json")
async def tool_jwks(request: Request):
    """Public half of the tool's signing key."""
    return request.app.state.tool_jwks
