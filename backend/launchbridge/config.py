"""Configuration settings for LaunchBridge."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "LaunchBridge"
    host: str = "0.0.0.0"
    port: int = 10000
    log_level: str = "INFO"

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./data/launchbridge.db"
    state_store_backend: str = "memory"  # memory | database
    state_ttl_seconds: int = 600  # 10 minutes per login attempt

    # Platform (LTI 1.3 registration)
    lti_platform_issuer: str = "https://blackboard.com"
    lti_client_id: str = ""
    lti_auth_login_url: str = "https://developer.blackboard.com/api/v1/gateway/oidcauth"
    lti_jwks_url: str = ""
    lti_deployment_ids: str = ""  # Comma-separated allow-list, empty accepts any
    tool_base_url: str = "http://localhost:10000"
    jwks_cache_seconds: int = 300
    clock_skew_seconds: int = 60
    http_timeout: float = 10.0

    # Learn REST three-legged OAuth
    learn_app_key: str | None = None
    learn_app_secret: str | None = None
    learn_oauth_scope: str = "read"
    lms_host: str = ""  # e.g. https://school.blackboard.com, derived from the launch if empty

    # Launch sessions
    session_secret: str | None = None  # Random per process if unset
    session_ttl_seconds: int = 3600
    ticket_ttl_seconds: int = 600
    uef_user_token: str | None = None  # Development only, ignored when 3LO is configured

    # Embedding
    frame_ancestors: str = (
        "https://*.blackboard.com https://*.blackboard.com:* "
        "https://*.blackboardcloud.com https://*.blackboardcloud.com:*"
    )
    panel_title: str = "Assistant"
    content_path: str = "/static/widget-wrapper.html"
    handshake_retry_ms: int = 3000

    # Tool keys
    tool_private_key_file: str = "keys/private.pem"

    @property
    def deployment_ids(self) -> tuple[str, ...]:
        """Parsed deployment id allow-list."""
        return tuple(d.strip() for d in self.lti_deployment_ids.split(",") if d.strip())

    @property
    def learn_oauth_enabled(self) -> bool:
        return bool(self.learn_app_key and self.learn_app_secret)


settings = Settings()
