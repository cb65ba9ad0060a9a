"""API tests for the UEF token hand-off and the Learn 3LO callback."""

from unittest.mock import patch

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from launchbridge.main import app, configure_services
from launchbridge.services.launch_session import PURPOSE_OAUTH, PURPOSE_UEF
from launchbridge.services.learn_oauth import LearnOAuthClient
from launchbridge.services.state_store import InMemoryLoginAttemptStore
from support import LMS_HOST, TOOL_BASE_URL, bridge_config, query_params, start_login


async def launch(client, make_claims, sign_id_token) -> httpx.Response:
    state, nonce = await start_login(client)
    return await client.post("/lti/launch", data={"id_token": sign_id_token(make_claims(nonce)), "state": state})


@pytest.fixture
def learn_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
async def oauth_client(test_settings, key_fetcher, learn_requests):
    """Test client for a deployment with Learn application credentials."""
    from launchbridge.api import lti

    def handler(request: httpx.Request) -> httpx.Response:
        learn_requests.append(request)
        return httpx.Response(200, json={"access_token": "learn-user-token", "expires_in": 3599})

    learn = LearnOAuthClient("app-key", "app-secret", transport=httpx.MockTransport(handler))
    lti.limiter.reset()
    configure_services(app, test_settings, InMemoryLoginAttemptStore(), key_fetcher=key_fetcher, oauth_client=learn)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestAccessToken:
    @pytest.mark.asyncio
    async def test_ticket_exchanged_for_token(self, client, make_claims, sign_id_token):
        page = await launch(client, make_claims, sign_id_token)
        ticket = bridge_config(page.text)["ticket"]

        response = await client.get("/uef/access-token", headers={"Authorization": f"Bearer {ticket}"})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "token": "dev-bearer-token"}

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer"}, {"Authorization": "Basic abc"}, {"Authorization": "Bearer not-a-ticket"}],
    )
    @pytest.mark.asyncio
    async def test_missing_or_invalid_ticket_is_401(self, client, headers):
        response = await client.get("/uef/access-token", headers=headers)

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired launch ticket"

    @pytest.mark.asyncio
    async def test_oauth_ticket_not_accepted(self, client, make_claims, sign_id_token):
        await launch(client, make_claims, sign_id_token)
        session_id = next(iter(app.state.session_registry._sessions))
        oauth_ticket = app.state.ticket_signer.issue(session_id, PURPOSE_OAUTH)

        response = await client.get("/uef/access-token", headers={"Authorization": f"Bearer {oauth_ticket}"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_no_token_available_is_500(self, client, test_settings, key_fetcher, make_claims, sign_id_token):
        no_token = test_settings.model_copy(update={"uef_user_token": None})
        configure_services(app, no_token, InMemoryLoginAttemptStore(), key_fetcher=key_fetcher)
        page = await launch(client, make_claims, sign_id_token)
        ticket = bridge_config(page.text)["ticket"]

        response = await client.get("/uef/access-token", headers={"Authorization": f"Bearer {ticket}"})

        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "No bearer token available for this launch"}


@patch("socket.gethostbyname", return_value="8.8.8.8")
class TestLearnAuthorization:
    @pytest.mark.asyncio
    async def test_launch_redirects_to_learn(self, mock_dns, oauth_client, make_claims, sign_id_token):
        response = await launch(oauth_client, make_claims, sign_id_token)

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(f"{LMS_HOST}/learn/api/public/v1/oauth2/authorizationcode?")
        params = query_params(location)
        assert params["redirect_uri"] == f"{TOOL_BASE_URL}/uef/oauth/callback"
        assert params["one_time_session_token"] == "one-time-token"
        assert params["state"]

    @pytest.mark.asyncio
    async def test_callback_serves_page_with_learn_token(
        self, mock_dns, oauth_client, learn_requests, make_claims, sign_id_token
    ):
        redirect = await launch(oauth_client, make_claims, sign_id_token)
        state = query_params(redirect.headers["location"])["state"]

        page = await oauth_client.get("/uef/oauth/callback", params={"code": "auth-code", "state": state})

        assert page.status_code == 200
        assert learn_requests[0].url.params["code"] == "auth-code"
        ticket = bridge_config(page.text)["ticket"]
        token = await oauth_client.get("/uef/access-token", headers={"Authorization": f"Bearer {ticket}"})
        assert token.json() == {"ok": True, "token": "learn-user-token"}
        assert "learn-user-token" not in page.text

    @pytest.mark.asyncio
    async def test_uef_ticket_rejected_as_callback_state(self, mock_dns, oauth_client, learn_requests):
        uef_ticket = app.state.ticket_signer.issue("unknown-session", PURPOSE_UEF)

        response = await oauth_client.get("/uef/oauth/callback", params={"code": "c", "state": uef_ticket})

        assert response.status_code == 401
        assert learn_requests == []

    @pytest.mark.asyncio
    async def test_denied_authorization_is_400(self, mock_dns, oauth_client):
        response = await oauth_client.get("/uef/oauth/callback", params={"error": "access_denied"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Learn authorization was denied"

    @pytest.mark.parametrize("params", [{}, {"code": "c"}, {"state": "s"}])
    @pytest.mark.asyncio
    async def test_missing_code_or_state_is_400(self, mock_dns, oauth_client, params):
        response = await oauth_client.get("/uef/oauth/callback", params=params)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_failed_exchange_is_502(self, mock_dns, test_settings, key_fetcher, make_claims, sign_id_token):
        failing = LearnOAuthClient(
            "app-key",
            "app-secret",
            transport=httpx.MockTransport(lambda r: httpx.Response(400, json={"error": "invalid_grant"})),
        )
        configure_services(
            app, test_settings, InMemoryLoginAttemptStore(), key_fetcher=key_fetcher, oauth_client=failing
        )

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            redirect = await launch(ac, make_claims, sign_id_token)
            state = query_params(redirect.headers["location"])["state"]
            response = await ac.get("/uef/oauth/callback", params={"code": "bad", "state": state})

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to obtain a Learn access token"
