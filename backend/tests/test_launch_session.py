"""Tests for launch sessions, tickets and the bearer token broker."""

from datetime import UTC, datetime, timedelta

import pytest

from launchbridge.exceptions import InvalidTicket, TokenExchangeFailed
from launchbridge.services.launch import IdentityAssertion
from launchbridge.services.launch_session import (
    PURPOSE_OAUTH,
    PURPOSE_UEF,
    LaunchSessionRegistry,
    TicketSigner,
    TokenBroker,
    resolve_lms_host,
    resolve_role,
)
from launchbridge.services.learn_oauth import LearnOAuthClient
from launchbridge.uef.roles import IntegrationRole

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


def make_assertion(**overrides) -> IdentityAssertion:
    fields = {
        "subject": "learner-42",
        "issuer": "https://blackboard.com",
        "audience": ("client",),
        "nonce": "nonce",
        "deployment_id": "deployment-1",
        "message_type": "LtiResourceLinkRequest",
        "return_url": "https://school.blackboard.com/ultra/courses/_101_1/outline",
        "platform_url": "https://platform.blackboard.com",
        "one_time_session_token": "ott-123",
    }
    fields.update(overrides)
    return IdentityAssertion(**fields)


class TestResolveRole:
    @pytest.mark.parametrize(
        "uri,expected",
        [
            ("https://tool.example.com/lti/launch", IntegrationRole.PANEL),
            ("https://tool.example.com/lti/launch?mode=panel", IntegrationRole.PANEL),
            ("https://tool.example.com/lti/launch?mode=help", IntegrationRole.HELP),
            ("https://tool.example.com/lti/launch?x=1&mode=course-button", IntegrationRole.COURSE_BUTTON),
            ("https://tool.example.com/lti/launch?mode=unknown", IntegrationRole.PANEL),
        ],
    )
    def test_mode_query_parameter(self, uri, expected):
        assert resolve_role(uri) is expected


class TestResolveLmsHost:
    def test_configured_host_wins(self):
        assert resolve_lms_host(make_assertion(), "https://other.blackboard.com/") == "https://other.blackboard.com"

    def test_falls_back_to_return_url_origin(self):
        assert resolve_lms_host(make_assertion()) == "https://school.blackboard.com"

    def test_falls_back_to_platform_url(self):
        assert resolve_lms_host(make_assertion(return_url=None)) == "https://platform.blackboard.com"

    def test_rejects_non_http_urls(self):
        assert resolve_lms_host(make_assertion(return_url="javascript:alert(1)", platform_url=None)) == ""


class TestLaunchSessionRegistry:
    def test_create_and_get(self):
        registry = LaunchSessionRegistry(ttl_seconds=60, clock=lambda: T0)

        session = registry.create(make_assertion(), IntegrationRole.HELP, "https://school.blackboard.com")

        assert registry.get(session.session_id) is session
        assert session.expires_at == T0 + timedelta(seconds=60)
        assert len(registry) == 1

    def test_expired_session_is_gone(self):
        now = [T0]
        registry = LaunchSessionRegistry(ttl_seconds=60, clock=lambda: now[0])
        session = registry.create(make_assertion(), IntegrationRole.PANEL, "")

        now[0] = T0 + timedelta(seconds=61)

        assert registry.get(session.session_id) is None

    def test_attach_token(self):
        registry = LaunchSessionRegistry(clock=lambda: T0)
        session = registry.create(make_assertion(), IntegrationRole.PANEL, "")

        registry.attach_token(session.session_id, "learn-token")

        assert session.bearer_token == "learn-token"
        assert "learn-token" not in repr(session)

    def test_attach_token_to_unknown_session(self):
        registry = LaunchSessionRegistry(clock=lambda: T0)

        with pytest.raises(InvalidTicket):
            registry.attach_token("missing", "learn-token")


class TestTicketSigner:
    def test_round_trip(self):
        signer = TicketSigner("secret")

        ticket = signer.issue("session-1", PURPOSE_UEF)

        assert signer.verify(ticket, PURPOSE_UEF) == "session-1"

    def test_wrong_purpose_rejected(self):
        """A 3LO state ticket cannot be used to fetch the bearer token."""
        signer = TicketSigner("secret")
        ticket = signer.issue("session-1", PURPOSE_OAUTH)

        with pytest.raises(InvalidTicket):
            signer.verify(ticket, PURPOSE_UEF)

    def test_foreign_secret_rejected(self):
        ticket = TicketSigner("other-secret").issue("session-1", PURPOSE_UEF)

        with pytest.raises(InvalidTicket):
            TicketSigner("secret").verify(ticket, PURPOSE_UEF)

    def test_expired_ticket_rejected(self):
        now = [1_000_000.0]
        signer = TicketSigner("secret", ttl_seconds=600, clock=lambda: now[0])
        ticket = signer.issue("session-1", PURPOSE_UEF)

        now[0] += 601

        with pytest.raises(InvalidTicket):
            signer.verify(ticket, PURPOSE_UEF)

    @pytest.mark.parametrize("ticket", [None, "", "garbage", "a.b.c"])
    def test_malformed_ticket_rejected(self, ticket):
        with pytest.raises(InvalidTicket):
            TicketSigner("secret").verify(ticket, PURPOSE_UEF)

    def test_missing_secret_generates_one(self, caplog):
        signer = TicketSigner(None)

        assert signer.verify(signer.issue("s", PURPOSE_UEF), PURPOSE_UEF) == "s"
        assert "SESSION_SECRET not set" in caplog.text


class TestTokenBroker:
    def _session(self, lms_host="https://school.blackboard.com"):
        registry = LaunchSessionRegistry(clock=lambda: T0)
        return registry.create(make_assertion(), IntegrationRole.PANEL, lms_host)

    def test_static_token_without_oauth(self):
        broker = TokenBroker(None, static_token="dev-token")

        assert broker.requires_authorization is False
        assert broker.bearer_token_for(self._session()) == "dev-token"

    def test_no_token_configured(self):
        assert TokenBroker(None).bearer_token_for(self._session()) is None

    def test_static_token_ignored_with_oauth(self):
        broker = TokenBroker(LearnOAuthClient("key", "secret"), static_token="dev-token")
        session = self._session()

        assert broker.requires_authorization is True
        assert broker.bearer_token_for(session) is None

        session.bearer_token = "user-token"
        assert broker.bearer_token_for(session) == "user-token"

    def test_authorization_redirect_forwards_one_time_session_token(self):
        broker = TokenBroker(LearnOAuthClient("key", "secret"))

        url = broker.authorization_redirect(self._session(), "https://tool.example.com/uef/oauth/callback", "st")

        assert url.startswith("https://school.blackboard.com/learn/api/public/v1/oauth2/authorizationcode?")
        assert "one_time_session_token=ott-123" in url
        assert "state=st" in url

    def test_authorization_redirect_requires_host(self):
        broker = TokenBroker(LearnOAuthClient("key", "secret"))

        with pytest.raises(TokenExchangeFailed):
            broker.authorization_redirect(self._session(lms_host=""), "https://tool.example.com/cb", "st")

    @pytest.mark.asyncio
    async def test_redeem_without_oauth_fails(self):
        with pytest.raises(TokenExchangeFailed):
            await TokenBroker(None).redeem(self._session(), "code", "https://tool.example.com/cb")
