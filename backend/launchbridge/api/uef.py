"""UEF endpoints: Learn 3LO callback and the bearer token hand-off."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import HTMLResponse, JSONResponse

from launchbridge.api.lti import oauth_redirect_uri
from launchbridge.config import Settings
from launchbridge.dependencies import (
    get_app_settings,
    get_session_registry,
    get_ticket_signer,
    get_token_broker,
)
from launchbridge.exceptions import InvalidTicket, LaunchBridgeError, to_http_exception
from launchbridge.schemas import AccessTokenResponse
from launchbridge.services.bridge_page import bridge_config_for, render_bridge_page
from launchbridge.services.launch_session import (
    PURPOSE_OAUTH,
    PURPOSE_UEF,
    LaunchSession,
    LaunchSessionRegistry,
    TicketSigner,
    TokenBroker,
)
from launchbridge.utils.log_redaction import sanitize_for_log, short_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uef", tags=["UEF"])


def _session_for_ticket(
    ticket: str | None, purpose: str, signer: TicketSigner, registry: LaunchSessionRegistry
) -> LaunchSession:
    session_id = signer.verify(ticket, purpose)
    session = registry.get(session_id)
    if session is None:
        raise InvalidTicket(f"Launch session {short_id(session_id)} expired")
    return session


def _bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


@router.get("/oauth/callback")
async def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    registry: LaunchSessionRegistry = Depends(get_session_registry),
    signer: TicketSigner = Depends(get_ticket_signer),
    broker: TokenBroker = Depends(get_token_broker),
    settings: Settings = Depends(get_app_settings),
):
    """Learn redirects here after the user approved the 3LO request."""
    if error:
        logger.warning(f"Learn authorization denied: {sanitize_for_log(error)}")
        raise HTTPException(status_code=400, detail="Learn authorization was denied")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")

    try:
        session = _session_for_ticket(state, PURPOSE_OAUTH, signer, registry)
        token = await broker.redeem(session, code, oauth_redirect_uri(settings))
        registry.attach_token(session.session_id, token)
    except LaunchBridgeError as e:
        raise to_http_exception(e)

    logger.info(f"Learn user token obtained for launch session {short_id(session.session_id)}")
    ticket = signer.issue(session.session_id, PURPOSE_UEF)
    return HTMLResponse(render_bridge_page(bridge_config_for(session, ticket, settings)))


@router.get("/access-token", response_model=AccessTokenResponse)
async def access_token(
    authorization: str | None = Header(None),
    registry: LaunchSessionRegistry = Depends(get_session_registry),
    signer: TicketSigner = Depends(get_ticket_signer),
    broker: TokenBroker = Depends(get_token_broker),
):
    """Exchange the bridging page ticket for the UEF bearer token."""
    try:
        session = _session_for_ticket(_bearer(authorization), PURPOSE_UEF, signer, registry)
    except LaunchBridgeError as e:
        raise to_http_exception(e)

    token = broker.bearer_token_for(session)
    if not token:
        logger.error(f"No bearer token available for launch session {short_id(session.session_id)}")
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "No bearer token available for this launch"},
        )
    return AccessTokenResponse(token=token)
