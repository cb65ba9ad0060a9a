"""LaunchBridge FastAPI application."""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from importlib.metadata import version as pkg_version
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from launchbridge.api import lti, uef
from launchbridge.config import Settings
from launchbridge.config import settings as app_settings
from launchbridge.database import async_session_maker, close_db, init_db
from launchbridge.middleware.embedding import EmbeddingHeadersMiddleware
from launchbridge.schemas import HealthResponse
from launchbridge.services.jwks import KeySetFetcher
from launchbridge.services.launch import LaunchAuthenticator, LaunchConfig
from launchbridge.services.launch_session import LaunchSessionRegistry, TicketSigner, TokenBroker
from launchbridge.services.learn_oauth import LearnOAuthClient
from launchbridge.services.state_store import (
    DatabaseLoginAttemptStore,
    InMemoryLoginAttemptStore,
    LoginAttemptStore,
)
from launchbridge.services.tool_keys import load_public_key_set

# Configure logging
logging.basicConfig(
    level=getattr(logging, app_settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


class EndpointFilter(logging.Filter):
    """Filter to exclude specific endpoints from Granian access logs."""

    def __init__(self, excluded_paths: list[str]) -> None:
        super().__init__()
        self.excluded_paths = excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False if the log record is for an excluded endpoint."""
        message = record.getMessage()
        return not any(path in message for path in self.excluded_paths)


logging.getLogger("granian.access").addFilter(EndpointFilter(["/health"]))

STATIC_DIR = Path(__file__).parent / "static"


async def create_state_store(settings: Settings) -> LoginAttemptStore:
    """Login attempt store for the configured backend."""
    ttl = timedelta(seconds=settings.state_ttl_seconds)
    if settings.state_store_backend == "database":
        await init_db()
        logger.info("Using database login attempt store")
        return DatabaseLoginAttemptStore(async_session_maker, ttl=ttl)
    if settings.state_store_backend != "memory":
        logger.warning(f"Unknown STATE_STORE_BACKEND {settings.state_store_backend!r}, using memory")
    return InMemoryLoginAttemptStore(ttl=ttl)


def configure_services(
    app: FastAPI,
    settings: Settings,
    store: LoginAttemptStore,
    key_fetcher: KeySetFetcher | None = None,
    oauth_client: LearnOAuthClient | None = None,
) -> None:
    """Attach the launch services to ``app.state``."""
    if not settings.lti_client_id or not settings.lti_jwks_url:
        logger.warning("LTI_CLIENT_ID or LTI_JWKS_URL not set, launches will be rejected")

    if key_fetcher is None:
        key_fetcher = KeySetFetcher(
            settings.lti_jwks_url,
            cache_seconds=settings.jwks_cache_seconds,
            timeout=settings.http_timeout,
        )
    if oauth_client is None and settings.learn_oauth_enabled:
        oauth_client = LearnOAuthClient(
            settings.learn_app_key,
            settings.learn_app_secret,
            scope=settings.learn_oauth_scope,
            timeout=settings.http_timeout,
        )

    app.state.settings = settings
    app.state.authenticator = LaunchAuthenticator(LaunchConfig.from_settings(settings), store, key_fetcher)
    app.state.session_registry = LaunchSessionRegistry(ttl_seconds=settings.session_ttl_seconds)
    app.state.ticket_signer = TicketSigner(settings.session_secret, ttl_seconds=settings.ticket_ttl_seconds)
    app.state.token_broker = TokenBroker(oauth_client, static_token=settings.uef_user_token)
    app.state.tool_jwks = load_public_key_set(settings.tool_private_key_file)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting LaunchBridge...")
    store = await create_state_store(app_settings)
    configure_services(app, app_settings, store)
    logger.info(f"Accepting launches from {app_settings.lti_platform_issuer}")

    yield

    logger.info("Shutting down LaunchBridge...")
    if isinstance(store, DatabaseLoginAttemptStore):
        await close_db()


try:
    _APP_VERSION = pkg_version("launchbridge")
except Exception:
    _APP_VERSION = "0.0.0"

app = FastAPI(
    title="LaunchBridge",
    description="LTI 1.3 launch and Blackboard Ultra extension bridge",
    version=_APP_VERSION,
    lifespan=lifespan,
)

# Rate limiter setup
app.state.limiter = lti.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

app.add_middleware(EmbeddingHeadersMiddleware, frame_ancestors=app_settings.frame_ancestors)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(service=app_settings.app_name)


app.include_router(lti.router)
app.include_router(uef.router)

if STATIC_DIR.exists():
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
