"""Platform signing key set (JWKS) fetching and caching."""

import asyncio
import ipaddress
import logging
import socket
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlparse

import httpx
from authlib.jose import JsonWebKey, KeySet
from authlib.jose.errors import JoseError

from launchbridge.exceptions import KeySetUnavailable

logger = logging.getLogger(__name__)


class SSRFProtectionError(Exception):
    """SSRF protection blocked the request."""

    pass


def validate_outbound_url(url: str, require_https: bool = True) -> None:
    """Validate a URL the server is about to fetch against SSRF (CWE-918).

    Blocks:
    - Non-HTTPS schemes (plain HTTP too, unless ``require_https`` is False)
    - Private, loopback and link-local addresses
    - Cloud metadata endpoints (169.254.169.254)

    Raises:
        ValueError: If the URL is empty or has no hostname
        SSRFProtectionError: If URL targets private/internal resources
    """
    if not url:
        raise ValueError("URL cannot be empty")

    parsed = urlparse(url)
    hostname = parsed.hostname

    if not hostname:
        raise ValueError("Invalid URL: no hostname")

    allowed_schemes = ("https",) if require_https else ("http", "https")
    if parsed.scheme not in allowed_schemes:
        raise SSRFProtectionError(f"Unsupported scheme: {parsed.scheme}")

    try:
        ip = ipaddress.ip_address(socket.gethostbyname(hostname))
    except (socket.gaierror, ValueError):
        # Unresolvable here, the HTTP layer will fail on its own
        return

    if str(ip) == "169.254.169.254":
        raise SSRFProtectionError("Cloud metadata endpoint blocked")
    if ip.is_private or ip.is_loopback or ip.is_link_local:
        raise SSRFProtectionError(f"Private/local IP blocked: {ip}")


class KeySetFetcher:
    """Fetch the platform JWKS and cache it.

    The cached set is reused for ``cache_seconds``. A token signed with a
    ``kid`` that is not in the cache triggers one refresh, rate limited by
    ``min_refresh_interval`` so forged kids cannot hammer the platform.
    """

    def __init__(
        self,
        jwks_url: str,
        cache_seconds: int = 300,
        timeout: float = 10.0,
        min_refresh_interval: float = 10.0,
        require_https: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jwks_url = jwks_url
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self.min_refresh_interval = min_refresh_interval
        self.require_https = require_https
        self._transport = transport
        self._clock = clock
        self._key_set: KeySet | None = None
        self._kids: set[str] = set()
        self._fetched_at: float | None = None
        self._lock = asyncio.Lock()

    async def get_key_set(self, kid: str | None = None) -> KeySet:
        """Return current signing keys, refreshing when stale or ``kid`` is unknown.

        Raises:
            KeySetUnavailable: If the key set cannot be fetched or parsed
        """
        async with self._lock:
            if self._key_set is None or self._needs_refresh(kid):
                return await self._refresh()
            return self._key_set

    def _needs_refresh(self, kid: str | None) -> bool:
        if self._key_set is None or self._fetched_at is None:
            return True
        age = self._clock() - self._fetched_at
        if age > self.cache_seconds:
            return True
        if kid and kid not in self._kids and age > self.min_refresh_interval:
            logger.info("Unknown signing key id, refreshing platform key set")
            return True
        return False

    async def _refresh(self) -> KeySet:
        try:
            validate_outbound_url(self.jwks_url, require_https=self.require_https)
        except (SSRFProtectionError, ValueError) as e:
            logger.error(f"SSRF protection blocked JWKS URL: {e}")
            raise KeySetUnavailable(f"JWKS URL rejected: {e}") from e

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(self.jwks_url, timeout=self.timeout)
                response.raise_for_status()
                document: dict[str, Any] = response.json()
            key_set = JsonWebKey.import_key_set(document)
        except httpx.TimeoutException as e:
            logger.error("Platform JWKS request timeout")
            raise KeySetUnavailable("JWKS request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Cannot fetch platform JWKS: {e}")
            raise KeySetUnavailable(f"JWKS fetch failed: {e}") from e
        except (JoseError, ValueError, TypeError, KeyError) as e:
            logger.error(f"Platform JWKS is malformed: {e}")
            raise KeySetUnavailable(f"JWKS malformed: {e}") from e

        self._key_set = key_set
        self._kids = {k.get("kid") for k in document.get("keys", []) if k.get("kid")}
        self._fetched_at = self._clock()
        logger.info(f"Loaded {len(key_set.keys)} platform signing keys")
        return key_set
