"""Launch sessions, bridging-page tickets and bearer token brokering.

After a verified launch the server keeps a short-lived ``LaunchSession``.
The browser never sees the session id directly; it gets signed tickets:

- ``3lo``: the OAuth ``state`` sent to Learn during the 3LO round trip
- ``uef``: embedded in the bridging page and exchanged for the bearer token
"""

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

from authlib.jose import JoseError, JsonWebToken

from launchbridge.exceptions import InvalidTicket, TokenExchangeFailed
from launchbridge.services.launch import IdentityAssertion
from launchbridge.services.learn_oauth import LearnOAuthClient
from launchbridge.services.state_store import utc_now
from launchbridge.uef.roles import IntegrationRole
from launchbridge.utils.log_redaction import sanitize_for_log, short_id

logger = logging.getLogger(__name__)

TICKET_ALGORITHM = "HS256"
_ticket_jwt = JsonWebToken([TICKET_ALGORITHM])
PURPOSE_OAUTH = "3lo"
PURPOSE_UEF = "uef"


def resolve_role(target_link_uri: str) -> IntegrationRole:
    """Pick the integration role from the ``mode`` query parameter of the launch target."""
    modes = parse_qs(urlparse(target_link_uri).query).get("mode")
    if not modes:
        return IntegrationRole.PANEL
    try:
        return IntegrationRole(modes[0])
    except ValueError:
        logger.warning(f"Unknown launch mode {sanitize_for_log(modes[0])!r}, using panel")
        return IntegrationRole.PANEL


def _origin(url: str | None) -> str:
    if not url:
        return ""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


def resolve_lms_host(assertion: IdentityAssertion, configured: str = "") -> str:
    """Origin of the Learn page hosting the tool.

    Priority: configured host, launch presentation return URL, tool platform URL.
    """
    if configured:
        return _origin(configured) or configured.rstrip("/")
    return _origin(assertion.return_url) or _origin(assertion.platform_url)


@dataclass
class LaunchSession:
    session_id: str
    assertion: IdentityAssertion
    role: IntegrationRole
    lms_host: str
    created_at: datetime
    expires_at: datetime
    bearer_token: str | None = field(default=None, repr=False)


class LaunchSessionRegistry:
    """In-memory store for verified launch sessions."""

    def __init__(self, ttl_seconds: int = 3600, clock: Callable[[], datetime] = utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._sessions: dict[str, LaunchSession] = {}

    def create(
        self, assertion: IdentityAssertion, role: IntegrationRole, lms_host: str
    ) -> LaunchSession:
        now = self._clock()
        self._purge(now)
        session = LaunchSession(
            session_id=secrets.token_urlsafe(32),
            assertion=assertion,
            role=role,
            lms_host=lms_host,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self._sessions[session.session_id] = session
        logger.info(
            f"Created launch session {short_id(session.session_id)} "
            f"(role: {role.value}, host: {sanitize_for_log(lms_host or '<unknown>')})"
        )
        return session

    def get(self, session_id: str) -> LaunchSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.expires_at < self._clock():
            self._sessions.pop(session_id, None)
            return None
        return session

    def attach_token(self, session_id: str, bearer_token: str) -> None:
        session = self.get(session_id)
        if session is None:
            raise InvalidTicket(f"Launch session {short_id(session_id)} expired")
        session.bearer_token = bearer_token

    def _purge(self, now: datetime) -> None:
        expired = [sid for sid, s in self._sessions.items() if s.expires_at < now]
        for sid in expired:
            del self._sessions[sid]

    def __len__(self) -> int:
        return len(self._sessions)


class TicketSigner:
    """Short-lived HS256 tickets binding a launch session to one purpose."""

    def __init__(
        self,
        secret: str | None,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            logger.warning("SESSION_SECRET not set, using temporary in-memory key (will change on restart)")
            secret = secrets.token_urlsafe(32)
        self._secret = secret
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, session_id: str, purpose: str) -> str:
        now = int(self._clock())
        payload = {"sid": session_id, "pur": purpose, "iat": now, "exp": now + self.ttl_seconds}
        encoded = _ticket_jwt.encode({"alg": TICKET_ALGORITHM}, payload, self._secret)
        return encoded.decode("utf-8") if isinstance(encoded, bytes) else encoded

    def verify(self, ticket: str | None, purpose: str) -> str:
        """Return the session id bound to ``ticket``.

        Raises:
            InvalidTicket: If the ticket is missing, forged, expired or for another purpose
        """
        if not ticket:
            raise InvalidTicket("Missing ticket")
        try:
            claims = _ticket_jwt.decode(
                ticket,
                self._secret,
                claims_options={
                    "exp": {"essential": True},
                    "sid": {"essential": True},
                    "pur": {"essential": True, "value": purpose},
                },
            )
            claims.validate(now=int(self._clock()))
        except (JoseError, ValueError) as e:
            logger.warning("Rejected %s ticket: %s", purpose, sanitize_for_log(e))
            raise InvalidTicket(f"Ticket rejected: {e}") from e
        return claims["sid"]


class TokenBroker:
    """Provides the UEF bearer token for a launch session.

    With Learn application credentials the token comes from the 3LO flow.
    Without them, a static development token may be configured.
    """

    def __init__(self, oauth_client: LearnOAuthClient | None, static_token: str | None = None):
        self.oauth_client = oauth_client
        self._static_token = static_token or None
        if oauth_client is None and self._static_token:
            logger.warning("Using static UEF_USER_TOKEN. Configure Learn 3LO for production use.")

    @property
    def requires_authorization(self) -> bool:
        return self.oauth_client is not None

    def authorization_redirect(self, session: LaunchSession, redirect_uri: str, state: str) -> str:
        if self.oauth_client is None:
            raise TokenExchangeFailed("Learn 3LO is not configured")
        if not session.lms_host:
            raise TokenExchangeFailed("Learn host unknown for this launch")
        return self.oauth_client.authorization_url(
            session.lms_host,
            redirect_uri,
            state,
            one_time_session_token=session.assertion.one_time_session_token,
        )

    async def redeem(self, session: LaunchSession, code: str, redirect_uri: str) -> str:
        if self.oauth_client is None:
            raise TokenExchangeFailed("Learn 3LO is not configured")
        tokens = await self.oauth_client.exchange_code(session.lms_host, code, redirect_uri)
        return tokens["access_token"]

    def bearer_token_for(self, session: LaunchSession) -> str | None:
        if session.bearer_token:
            return session.bearer_token
        if self.oauth_client is None:
            return self._static_token
        return None
