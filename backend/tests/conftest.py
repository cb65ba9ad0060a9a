"""Pytest configuration and shared fixtures."""

import os
import sys
import time
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
from authlib.jose import JsonWebKey, JsonWebToken
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
project_root_str = str(PROJECT_ROOT)
if project_root_str in sys.path:
    sys.path.remove(project_root_str)
sys.path.insert(0, project_root_str)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("TOOL_PRIVATE_KEY_FILE", "/nonexistent/private.pem")

# ruff: noqa: E402 - Imports must come after environment variable setup
from launchbridge.config import Settings
from launchbridge.database import Base
from launchbridge.main import app, configure_services
from launchbridge.services.launch import (
    CLAIM_CONTEXT,
    CLAIM_DEPLOYMENT_ID,
    CLAIM_LAUNCH_PRESENTATION,
    CLAIM_MESSAGE_TYPE,
    CLAIM_ONE_TIME_SESSION_TOKEN,
    CLAIM_ROLES,
    CLAIM_TARGET_LINK_URI,
    CLAIM_VERSION,
    LaunchAuthenticator,
    LaunchConfig,
)
from launchbridge.services.state_store import InMemoryLoginAttemptStore
from support import (
    AUTH_LOGIN_URL,
    CLIENT_ID,
    DEPLOYMENT_ID,
    INSTRUCTOR_ROLE,
    ISSUER,
    KID,
    LMS_HOST,
    TARGET_LINK_URI,
    TOOL_BASE_URL,
    StaticKeySetFetcher,
    query_params,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

_rs256 = JsonWebToken(["RS256"])


@pytest.fixture(scope="session")
def platform_key():
    """RSA key the fake platform signs id_tokens with."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def other_key():
    """An RSA key the platform never published."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def platform_jwks(platform_key) -> dict[str, Any]:
    jwk = platform_key.as_dict(is_private=False)
    jwk.update({"kid": KID, "use": "sig", "alg": "RS256"})
    return {"keys": [jwk]}


@pytest.fixture
def key_fetcher(platform_jwks) -> StaticKeySetFetcher:
    return StaticKeySetFetcher(platform_jwks)


@pytest.fixture
def launch_config() -> LaunchConfig:
    return LaunchConfig(
        issuer=ISSUER,
        client_id=CLIENT_ID,
        auth_login_url=AUTH_LOGIN_URL,
        redirect_uri=f"{TOOL_BASE_URL}/lti/launch",
        deployment_ids=(DEPLOYMENT_ID,),
        clock_skew_seconds=60,
    )


@pytest.fixture
def state_store() -> InMemoryLoginAttemptStore:
    return InMemoryLoginAttemptStore()


@pytest.fixture
def authenticator(launch_config, state_store, key_fetcher) -> LaunchAuthenticator:
    return LaunchAuthenticator(launch_config, state_store, key_fetcher)


@pytest.fixture
def make_claims() -> Callable[..., dict[str, Any]]:
    """Build a valid LTI 1.3 resource link launch payload; keyword args override claims."""

    def _make(nonce: str, **overrides: Any) -> dict[str, Any]:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "learner-42",
            "nonce": nonce,
            "iat": now,
            "exp": now + 300,
            "name": "Ada Lovelace",
            "email": "ada@example.edu",
            CLAIM_VERSION: "1.3.0",
            CLAIM_MESSAGE_TYPE: "LtiResourceLinkRequest",
            CLAIM_DEPLOYMENT_ID: DEPLOYMENT_ID,
            CLAIM_TARGET_LINK_URI: TARGET_LINK_URI,
            CLAIM_CONTEXT: {"id": "course-101", "title": "Analytical Engines"},
            CLAIM_ROLES: [INSTRUCTOR_ROLE],
            CLAIM_LAUNCH_PRESENTATION: {"return_url": f"{LMS_HOST}/ultra/courses/_101_1/outline"},
            CLAIM_ONE_TIME_SESSION_TOKEN: "one-time-token",
        }
        claims.update(overrides)
        return claims

    return _make


@pytest.fixture
def sign_id_token(platform_key) -> Callable[..., str]:
    """Sign claims as the platform would (RS256, kid in the header)."""

    def _sign(claims: dict[str, Any], key=None, kid: str = KID) -> str:
        token = _rs256.encode({"alg": "RS256", "kid": kid}, claims, key or platform_key)
        return token.decode("utf-8") if isinstance(token, bytes) else token

    return _sign


@pytest.fixture
def begin_login(authenticator) -> Callable[..., Any]:
    """Run login initiation and return ``(state, nonce)`` from the redirect URL."""

    async def _begin(target_link_uri: str = TARGET_LINK_URI) -> tuple[str, str]:
        url = await authenticator.initiate_login(ISSUER, "hint-1", target_link_uri)
        params = query_params(url)
        return params["state"], params["nonce"]

    return _begin


@pytest.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose(close=True)


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        lti_platform_issuer=ISSUER,
        lti_client_id=CLIENT_ID,
        lti_auth_login_url=AUTH_LOGIN_URL,
        lti_jwks_url=f"{ISSUER}/jwks.json",
        lti_deployment_ids=DEPLOYMENT_ID,
        tool_base_url=TOOL_BASE_URL,
        session_secret="test-session-secret",
        uef_user_token="dev-bearer-token",
        learn_app_key=None,
        learn_app_secret=None,
        lms_host="",
        tool_private_key_file=str(tmp_path / "missing.pem"),
    )


@pytest.fixture
async def client(test_settings, key_fetcher) -> AsyncGenerator[AsyncClient]:
    """Test client with launch services wired to the fake platform."""
    from launchbridge.api import lti

    lti.limiter.reset()
    configure_services(app, test_settings, InMemoryLoginAttemptStore(), key_fetcher=key_fetcher)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
