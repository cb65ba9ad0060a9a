"""LTI 1.3 launch authenticator: OIDC login initiation and id_token verification."""

import hmac
import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any
from urllib.parse import urlencode

from authlib.common.encoding import json_loads, to_bytes, urlsafe_b64decode
from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError

from launchbridge.config import Settings
from launchbridge.exceptions import (
    BadRequest,
    InvalidState,
    KeySetUnavailable,
    NonceMismatch,
    TokenVerificationFailed,
)
from launchbridge.services.jwks import KeySetFetcher
from launchbridge.services.state_store import LoginAttempt, LoginAttemptStore, utc_now
from launchbridge.utils.log_redaction import sanitize_for_log, short_id

logger = logging.getLogger(__name__)

LTI_CLAIM = "https://purl.imsglobal.org/spec/lti/claim/"
CLAIM_MESSAGE_TYPE = LTI_CLAIM + "message_type"
CLAIM_VERSION = LTI_CLAIM + "version"
CLAIM_DEPLOYMENT_ID = LTI_CLAIM + "deployment_id"
CLAIM_TARGET_LINK_URI = LTI_CLAIM + "target_link_uri"
CLAIM_CONTEXT = LTI_CLAIM + "context"
CLAIM_ROLES = LTI_CLAIM + "roles"
CLAIM_CUSTOM = LTI_CLAIM + "custom"
CLAIM_LAUNCH_PRESENTATION = LTI_CLAIM + "launch_presentation"
CLAIM_TOOL_PLATFORM = LTI_CLAIM + "tool_platform"
CLAIM_ONE_TIME_SESSION_TOKEN = "https://blackboard.com/lti/claim/one_time_session_token"

SUPPORTED_MESSAGE_TYPES = frozenset({"LtiResourceLinkRequest", "LtiDeepLinkingRequest"})

# LTI 1.3 requires RS256 for platform-issued id_tokens
_lti_jwt = JsonWebToken(["RS256"])


@dataclass(frozen=True)
class LaunchConfig:
    """Everything the authenticator needs to know about one platform registration."""

    issuer: str
    client_id: str
    auth_login_url: str
    redirect_uri: str
    deployment_ids: tuple[str, ...] = ()
    clock_skew_seconds: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "LaunchConfig":
        return cls(
            issuer=settings.lti_platform_issuer,
            client_id=settings.lti_client_id,
            auth_login_url=settings.lti_auth_login_url,
            redirect_uri=f"{settings.tool_base_url.rstrip('/')}/lti/launch",
            deployment_ids=settings.deployment_ids,
            clock_skew_seconds=settings.clock_skew_seconds,
        )


@dataclass(frozen=True)
class IdentityAssertion:
    """Verified claims of an LTI launch. Built only by ``LaunchAuthenticator``."""

    subject: str
    issuer: str
    audience: tuple[str, ...]
    nonce: str
    deployment_id: str | None
    message_type: str
    context_id: str | None = None
    context_title: str | None = None
    roles: tuple[str, ...] = ()
    name: str | None = None
    email: str | None = None
    target_link_uri: str | None = None
    return_url: str | None = None
    platform_url: str | None = None
    one_time_session_token: str | None = field(default=None, repr=False)
    custom: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_instructor(self) -> bool:
        return any("Instructor" in role or "TeachingAssistant" in role for role in self.roles)


@dataclass(frozen=True)
class LaunchResult:
    assertion: IdentityAssertion
    target_link_uri: str


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _assertion_from_verified_claims(claims: Mapping[str, Any]) -> IdentityAssertion:
    aud = claims.get("aud")
    audience = tuple(aud) if isinstance(aud, list) else (str(aud),)

    roles = claims.get(CLAIM_ROLES) or []
    if not isinstance(roles, list):
        roles = [roles]

    context = _as_dict(claims.get(CLAIM_CONTEXT))
    presentation = _as_dict(claims.get(CLAIM_LAUNCH_PRESENTATION))
    platform = _as_dict(claims.get(CLAIM_TOOL_PLATFORM))

    return IdentityAssertion(
        subject=str(claims["sub"]),
        issuer=claims["iss"],
        audience=audience,
        nonce=claims["nonce"],
        deployment_id=claims.get(CLAIM_DEPLOYMENT_ID),
        message_type=claims[CLAIM_MESSAGE_TYPE],
        context_id=context.get("id"),
        context_title=context.get("title"),
        roles=tuple(str(r) for r in roles),
        name=claims.get("name") or claims.get("given_name"),
        email=claims.get("email"),
        target_link_uri=claims.get(CLAIM_TARGET_LINK_URI),
        return_url=presentation.get("return_url"),
        platform_url=platform.get("url"),
        one_time_session_token=claims.get(CLAIM_ONE_TIME_SESSION_TOKEN),
        custom=MappingProxyType(dict(_as_dict(claims.get(CLAIM_CUSTOM)))),
    )


def _unverified_kid(id_token: str) -> str | None:
    """Read ``kid`` from the JOSE header, used only to pick which keys to load."""
    try:
        header = json_loads(urlsafe_b64decode(to_bytes(id_token.split(".", 1)[0])))
    except (ValueError, TypeError):
        return None
    kid = header.get("kid") if isinstance(header, dict) else None
    return kid if isinstance(kid, str) else None


class LaunchAuthenticator:
    """OIDC third-party login initiation and launch verification for one platform."""

    def __init__(
        self,
        config: LaunchConfig,
        store: LoginAttemptStore,
        key_fetcher: KeySetFetcher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.store = store
        self.key_fetcher = key_fetcher
        self._clock = clock

    async def initiate_login(
        self,
        issuer: str | None,
        login_hint: str | None,
        target_link_uri: str | None,
        lti_message_hint: str | None = None,
        *,
        client_id: str | None = None,
        deployment_id: str | None = None,
    ) -> str:
        """Store a new login attempt and return the platform authorization redirect URL.

        Raises:
            BadRequest: If a required parameter is missing or names another platform
            Conflict: If the generated state collides with a stored one
        """
        missing = [
            name
            for name, value in (
                ("iss", issuer),
                ("login_hint", login_hint),
                ("target_link_uri", target_link_uri),
            )
            if not value
        ]
        if missing:
            raise BadRequest(f"Missing login parameters: {', '.join(missing)}")

        if issuer != self.config.issuer:
            logger.warning(f"Login initiation from unknown issuer: {sanitize_for_log(issuer)}")
            raise BadRequest(f"Unknown issuer {issuer!r}", detail="Unknown platform issuer")
        if client_id and client_id != self.config.client_id:
            logger.warning(f"Login initiation for unknown client_id: {sanitize_for_log(client_id)}")
            raise BadRequest(f"Unknown client_id {client_id!r}", detail="Unknown client_id")

        state = secrets.token_urlsafe(32)
        nonce = secrets.token_urlsafe(32)
        attempt = LoginAttempt(
            state=state,
            nonce=nonce,
            issuer=issuer,
            target_link_uri=target_link_uri,
            created_at=self._clock(),
            login_hint=login_hint,
            lti_message_hint=lti_message_hint,
            client_id=client_id,
            deployment_id=deployment_id,
        )
        await self.store.put(state, attempt)

        params = {
            "response_type": "id_token",
            "response_mode": "form_post",
            "scope": "openid",
            "prompt": "none",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "state": state,
            "nonce": nonce,
            "login_hint": login_hint,
        }
        if lti_message_hint is not None:
            params["lti_message_hint"] = lti_message_hint

        separator = "&" if "?" in self.config.auth_login_url else "?"
        auth_url = f"{self.config.auth_login_url}{separator}{urlencode(params)}"

        logger.info(f"Initiating LTI login (state: {short_id(state)})")
        return auth_url

    async def complete_login(self, id_token: str, state: str) -> LaunchResult:
        """Consume the login attempt for ``state`` and verify the platform's id_token.

        The attempt is removed before verification, so a failed launch
        cannot be retried with the same state.

        Raises:
            InvalidState: Unknown, expired or already consumed state
            TokenVerificationFailed: Signature, issuer, audience, expiry or LTI claim failure
            NonceMismatch: Verified token carries another nonce
        """
        now = self._clock()
        attempt = await self.store.take_if_valid(state, now)
        if attempt is None:
            logger.warning(f"Rejected launch with invalid state: {short_id(state)}")
            raise InvalidState(f"State {short_id(state)} unknown, expired or replayed")

        try:
            claims = await self._verify(id_token, attempt, now)
        except TokenVerificationFailed as e:
            logger.error(
                "Launch verification failed (issuer: %s, state: %s): %s",
                sanitize_for_log(attempt.issuer),
                short_id(state),
                sanitize_for_log(e),
            )
            raise

        if not hmac.compare_digest(str(claims.get("nonce", "")), attempt.nonce):
            logger.error(
                "Launch nonce mismatch (issuer: %s, state: %s)",
                sanitize_for_log(attempt.issuer),
                short_id(state),
            )
            raise NonceMismatch(f"Nonce mismatch for state {short_id(state)}")

        assertion = _assertion_from_verified_claims(claims)
        logger.info(
            f"LTI launch verified for subject {sanitize_for_log(assertion.subject)} "
            f"(context: {sanitize_for_log(assertion.context_id)})"
        )
        return LaunchResult(assertion=assertion, target_link_uri=attempt.target_link_uri)

    async def _verify(self, id_token: str, attempt: LoginAttempt, now: datetime) -> dict[str, Any]:
        if not id_token:
            raise TokenVerificationFailed("Empty id_token")

        try:
            key_set = await self.key_fetcher.get_key_set(_unverified_kid(id_token))
        except KeySetUnavailable as e:
            raise TokenVerificationFailed(f"Signing keys unavailable: {e}") from e

        try:
            claims = _lti_jwt.decode(
                id_token,
                key_set,
                claims_options={
                    "iss": {"essential": True, "value": attempt.issuer},
                    "aud": {"essential": True, "value": self.config.client_id},
                    "exp": {"essential": True},
                    "sub": {"essential": True},
                    "nonce": {"essential": True},
                },
            )
            claims.validate(now=int(now.timestamp()), leeway=self.config.clock_skew_seconds)
        except (JoseError, ValueError) as e:
            raise TokenVerificationFailed(f"id_token rejected: {e}") from e

        aud = claims.get("aud")
        if isinstance(aud, list) and len(aud) > 1 and claims.get("azp") != self.config.client_id:
            raise TokenVerificationFailed("Multiple audiences without matching azp")

        if claims.get(CLAIM_VERSION) != "1.3.0":
            raise TokenVerificationFailed(f"Unsupported LTI version: {claims.get(CLAIM_VERSION)!r}")

        message_type = claims.get(CLAIM_MESSAGE_TYPE)
        if message_type not in SUPPORTED_MESSAGE_TYPES:
            raise TokenVerificationFailed(f"Unsupported LTI message type: {message_type!r}")

        deployment_id = claims.get(CLAIM_DEPLOYMENT_ID)
        if self.config.deployment_ids and deployment_id not in self.config.deployment_ids:
            raise TokenVerificationFailed(f"Unknown deployment_id: {deployment_id!r}")

        return dict(claims)
