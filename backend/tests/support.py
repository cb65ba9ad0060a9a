"""Shared constants and helpers for the test suite."""

import json
import re
from typing import Any
from urllib.parse import parse_qs, urlparse

from authlib.jose import JsonWebKey
from httpx import AsyncClient

from launchbridge.exceptions import KeySetUnavailable

ISSUER = "https://blackboard.com"
CLIENT_ID = "0f8b7a1c-client"
DEPLOYMENT_ID = "deployment-1"
AUTH_LOGIN_URL = "https://developer.blackboard.com/api/v1/gateway/oidcauth"
TOOL_BASE_URL = "https://tool.example.com"
LMS_HOST = "https://school.blackboard.com"
TARGET_LINK_URI = f"{TOOL_BASE_URL}/lti/launch"
KID = "platform-key-1"
INSTRUCTOR_ROLE = "http://purl.imsglobal.org/vocab/lis/v2/membership#Instructor"


class StaticKeySetFetcher:
    """Key-set fetcher serving a fixed JWKS and recording requested kids."""

    def __init__(self, jwks: dict[str, Any]):
        self.key_set = JsonWebKey.import_key_set(jwks)
        self.requested_kids: list[str | None] = []

    async def get_key_set(self, kid: str | None = None):
        self.requested_kids.append(kid)
        return self.key_set


class UnavailableKeySetFetcher:
    async def get_key_set(self, kid: str | None = None):
        raise KeySetUnavailable("JWKS fetch failed: connection refused")


def query_params(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


_CONFIG_RE = re.compile(r"window\.__UEF_CONFIG__ = (\{.*?\});</script>")


def bridge_config(html: str) -> dict[str, Any]:
    """Client config embedded in a bridging page."""
    match = _CONFIG_RE.search(html)
    assert match, "bridging page carries no client config"
    return json.loads(match.group(1))


async def start_login(client: AsyncClient, target_link_uri: str = TARGET_LINK_URI) -> tuple[str, str]:
    """Run login initiation over HTTP and return the issued (state, nonce)."""
    params = {"iss": ISSUER, "login_hint": "hint-1", "target_link_uri": target_link_uri}
    response = await client.get("/lti/login", params=params)
    assert response.status_code == 302
    location = query_params(response.headers["location"])
    return location["state"], location["nonce"]
