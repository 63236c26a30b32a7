"""
Shared fixtures for the auth server tests.

The identity provider is replaced by a Mock whose async methods are
AsyncMocks, so every test controls exactly what the provider answers.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from authserver.app.config import Settings
from authserver.app.main import create_app
from authserver.app.models import (
    AuthenticationResult,
    Principal,
    RefreshResult,
    SessionRecord,
    TokenValidation,
)

API = "/api/v1"
FRONTEND_URL = "http://localhost:3000"
PROVIDER_URL = "https://idp.example.test"

TEST_USER = Principal(
    id="usr_123",
    name="Test User",
    email="test.user@example.com",
    email_verified=True,
    organization="org_42",
)


@pytest.fixture
def test_settings():
    """Settings independent of the host environment"""
    return Settings(
        _env_file=None,
        SCALEKIT_ENVIRONMENT_URL=PROVIDER_URL,
        SCALEKIT_CLIENT_ID="skc_test_client",
        SCALEKIT_CLIENT_SECRET="test-client-secret",
        SESSION_SECRET="test-session-secret-0123456789abcdef",
        ENCRYPTION_KEY="test-encryption-key",
        FRONTEND_URL=FRONTEND_URL,
        MONGO_URL="mongodb://localhost:27017/test",
        PROVIDER_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
def provider():
    """Mock identity provider that accepts every token by default"""
    provider = Mock()
    provider.authorization_url = Mock(
        return_value=f"{PROVIDER_URL}/oauth/authorize?client_id=skc_test_client"
    )
    provider.exchange_code = AsyncMock(
        return_value=AuthenticationResult(
            user=TEST_USER,
            access_token="access-token-1",
            id_token="id-token-1",
            refresh_token="refresh-token-1",
        )
    )
    provider.validate_access_token = AsyncMock(
        return_value=TokenValidation(valid=True, user=TEST_USER)
    )
    provider.refresh_access_token = AsyncMock(
        return_value=RefreshResult(
            access_token="access-token-2",
            refresh_token="refresh-token-2",
        )
    )
    provider.logout_url = Mock(return_value=f"{PROVIDER_URL}/oidc/logout?id_token_hint=id-token-1")
    provider.aclose = AsyncMock()
    return provider


@pytest.fixture
def app(test_settings, provider):
    """Create test FastAPI application"""
    return create_app(settings=test_settings, provider=provider)


@pytest.fixture
def state(app):
    """Auth components of the test application"""
    return app.state.app_state


@pytest.fixture
def client(app):
    """Create test client"""
    return TestClient(app)


def establish_session(
    client,
    state,
    access_token="access-token-1",
    refresh_token="refresh-token-1",
    user=TEST_USER,
    with_session=True,
):
    """
    Put a logged-in user's cookies in the client and their state in the app.

    Returns:
        The encrypted access token cookie value
    """
    if refresh_token:
        state.refresh_tokens.set(user.id, refresh_token)

    encrypted = state.cipher.encrypt(access_token)
    client.cookies.set("accessToken", encrypted)
    client.cookies.set("userId", state.sessions.issue_user_token(user.id))

    if with_session:
        _, session_token = state.sessions.create(
            SessionRecord(user=user, id_token="id-token-1", user_id=user.id)
        )
        client.cookies.set("sessionId", session_token)

    return encrypted


def cookie_cleared(response, name):
    """True if the response expires the named cookie"""
    return any(
        header.startswith(f"{name}=") and "max-age=0" in header.lower()
        for header in response.headers.get_list("set-cookie")
    )
