"""Blackboard Learn REST three-legged OAuth (3LO) for UEF bearer tokens."""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from launchbridge.exceptions import TokenExchangeFailed
from launchbridge.services.jwks import SSRFProtectionError, validate_outbound_url
from launchbridge.utils.log_redaction import redact_sensitive_data

logger = logging.getLogger(__name__)

AUTHORIZE_PATH = "/learn/api/public/v1/oauth2/authorizationcode"
TOKEN_PATH = "/learn/api/public/v1/oauth2/token"


class LearnOAuthClient:
    """Authorization-code flow against a Learn host."""

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        scope: str = "read",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.app_key = app_key
        self._app_secret = app_secret
        self.scope = scope
        self.timeout = timeout
        self._transport = transport

    def authorization_url(
        self,
        lms_host: str,
        redirect_uri: str,
        state: str,
        one_time_session_token: str | None = None,
    ) -> str:
        """Build the Learn authorization URL.

        The launch's one-time session token lets Learn skip its login page.
        """
        params = {
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "client_id": self.app_key,
            "scope": self.scope,
            "state": state,
        }
        if one_time_session_token:
            params["one_time_session_token"] = one_time_session_token
        return f"{lms_host.rstrip('/')}{AUTHORIZE_PATH}?{urlencode(params)}"

    async def exchange_code(self, lms_host: str, code: str, redirect_uri: str) -> dict[str, Any]:
        """Exchange an authorization code for a Learn user access token.

        Returns:
            Token response with access_token, expires_in, user_id, ...

        Raises:
            TokenExchangeFailed: On SSRF rejection, HTTP failure or a response without a token
        """
        token_endpoint = f"{lms_host.rstrip('/')}{TOKEN_PATH}"
        try:
            validate_outbound_url(token_endpoint)
        except (SSRFProtectionError, ValueError) as e:
            logger.error(f"SSRF protection blocked Learn token endpoint: {e}")
            raise TokenExchangeFailed(f"Token endpoint rejected: {e}") from e

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    token_endpoint,
                    params={"code": code, "redirect_uri": redirect_uri},
                    data={"grant_type": "authorization_code"},
                    auth=(self.app_key, self._app_secret),
                    timeout=self.timeout,
                )
                response.raise_for_status()
                tokens = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error during Learn token exchange: {e.response.status_code}")
            raise TokenExchangeFailed(f"Token endpoint returned {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            logger.error("Learn token exchange request timeout")
            raise TokenExchangeFailed("Token exchange timed out") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Unexpected error during Learn token exchange: {e}")
            raise TokenExchangeFailed(str(e)) from e

        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            logger.error("Token response without access_token: %s", redact_sensitive_data(tokens))
            raise TokenExchangeFailed("Token response carried no access_token")

        logger.info("Successfully exchanged Learn authorization code for a user token")
        return tokens
