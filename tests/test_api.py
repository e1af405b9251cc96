"""
Tests for the HTTP API.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from src.main import app
from src.models.internal_models import ChallengeHandoff, ProviderTokens
from src.services.auth_service import AuthService, get_auth_service, get_request_authorizer
from src.services.authorizer import DecisionCache, RequestAuthorizer
from src.services.errors import IdentityProviderError
from tests.factories import PHONE

METHOD_ARN = "arn:aws:execute-api:eu-west-1:123456789012:abc123/prod/GET/items"


@pytest.fixture
def mock_provider():
    provider = Mock()
    provider.sign_up = AsyncMock()
    provider.initiate_custom_auth = AsyncMock(return_value=ChallengeHandoff(session="S1"))
    provider.respond_to_challenge = AsyncMock()
    provider.refresh = AsyncMock()
    return provider


@pytest.fixture
def client(mock_provider, token_service):
    token_service.provider = mock_provider
    service = AuthService(identity_provider=mock_provider, token_service=token_service)
    authorizer = RequestAuthorizer(token_service, cache=DecisionCache())

    app.dependency_overrides[get_auth_service] = lambda: service
    app.dependency_overrides[get_request_authorizer] = lambda: authorizer
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def set_cookies(response):
    return response.headers.get_list("set-cookie")


class TestHealth:

    def test_health_check(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.headers["X-Request-ID"]

    def test_security_headers(self, client):
        response = client.get("/healthz")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestOtpFlow:
    """Initiate and verify over HTTP."""

    def test_send_otp(self, client, mock_provider):
        response = client.post("/auth/send-otp", json={"phoneNumber": PHONE})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "OTP sent successfully",
            "session": "S1",
            "challengeName": "CUSTOM_CHALLENGE",
        }

    def test_send_otp_invalid_phone(self, client, mock_provider):
        response = client.post("/auth/send-otp", json={"phoneNumber": "12345"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "ValidationError"
        assert "E.164" in body["message"]
        assert body["correlation_id"]
        mock_provider.initiate_custom_auth.assert_not_called()

    def test_send_otp_unknown_user(self, client, mock_provider):
        mock_provider.initiate_custom_auth.side_effect = IdentityProviderError("UserNotFoundException")

        response = client.post("/auth/send-otp", json={"phoneNumber": PHONE})

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_malformed_body(self, client):
        response = client.post("/auth/send-otp", content="not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_register_conflict(self, client, mock_provider):
        mock_provider.sign_up.side_effect = IdentityProviderError("UsernameExistsException")

        response = client.post("/auth/register", json={"phoneNumber": PHONE, "name": "Jane"})

        assert response.status_code == 409
        assert response.json()["error"] == "Conflict"

    def test_register(self, client, mock_provider):
        response = client.post("/auth/register", json={"phoneNumber": PHONE, "name": "Jane"})

        assert response.status_code == 200
        assert response.json()["session"] == "S1"
        mock_provider.sign_up.assert_awaited_once_with(PHONE, "Jane")

    def test_initiate_then_verify_sets_session_cookies(self, client, mock_provider, make_token):
        session = client.post("/auth/send-otp", json={"phoneNumber": PHONE}).json()["session"]
        mock_provider.respond_to_challenge.return_value = ProviderTokens(
            id_token=make_token(), refresh_token="refresh.jwe.token"
        )

        response = client.post("/auth/verify-otp", json={"phoneNumber": PHONE, "otp": "123456", "session": session})

        assert response.status_code == 200
        cookies = set_cookies(response)
        assert len(cookies) == 2
        assert cookies[0].startswith("idToken=")
        assert cookies[0].endswith("Max-Age=3600")
        assert cookies[1] == "refreshToken=refresh.jwe.token; HttpOnly; SameSite=Lax; Path=/; Max-Age=604800"
        assert all("HttpOnly" in cookie and "Secure" not in cookie for cookie in cookies)

        body = response.json()
        assert body["success"] is True
        assert body["user"]["userId"] == "user-123"
        assert body["user"]["phoneNumber"] == PHONE
        mock_provider.respond_to_challenge.assert_awaited_once_with(PHONE, "123456", "S1")

    def test_incorrect_code_returns_new_session(self, client, mock_provider):
        mock_provider.respond_to_challenge.return_value = ChallengeHandoff(session="S2")

        response = client.post("/auth/verify-otp", json={"phoneNumber": PHONE, "otp": "000000", "session": "S1"})

        assert response.status_code == 401
        body = response.json()
        assert body["error"] == "Unauthorized"
        assert body["message"] == "Invalid OTP code"
        assert body["session"] == "S2"
        assert body["challengeName"] == "CUSTOM_CHALLENGE"
        assert set_cookies(response) == []

    def test_verify_missing_session(self, client):
        response = client.post("/auth/verify-otp", json={"phoneNumber": PHONE, "otp": "123456"})

        assert response.status_code == 400
        assert response.json()["message"] == "Phone number, OTP, and session are required"


class TestSessionEndpoints:
    """Refresh, logout and current user."""

    def test_logout_expires_both_cookies(self, client):
        response = client.post("/auth/logout")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert set_cookies(response) == [
            "idToken=; HttpOnly; SameSite=Lax; Path=/; Max-Age=0",
            "refreshToken=; HttpOnly; SameSite=Lax; Path=/; Max-Age=0",
        ]

    def test_refresh_from_cookie(self, client, mock_provider, make_token):
        mock_provider.refresh.return_value = ProviderTokens(id_token=make_token())

        response = client.post("/auth/refresh", headers={"Cookie": "refreshToken=old.refresh.token"})

        assert response.status_code == 200
        assert response.json()["message"] == "Token refreshed successfully"
        cookies = set_cookies(response)
        assert cookies[1].startswith("refreshToken=old.refresh.token;")
        mock_provider.refresh.assert_awaited_once_with("old.refresh.token")

    def test_refresh_without_cookie(self, client, mock_provider):
        response = client.post("/auth/refresh")

        assert response.status_code == 401
        assert response.json() == {
            "error": "Unauthorized",
            "message": "No refresh token provided",
            "correlation_id": response.headers["X-Request-ID"],
        }
        mock_provider.refresh.assert_not_called()

    def test_refresh_rejected(self, client, mock_provider):
        mock_provider.refresh.side_effect = IdentityProviderError("NotAuthorizedException", "Refresh Token has expired")

        response = client.post("/auth/refresh", headers={"Cookie": "refreshToken=old.refresh.token"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid or expired refresh token"

    def test_me_with_cookie(self, client, make_token):
        response = client.get("/auth/me", headers={"Cookie": f"idToken={make_token()}"})

        assert response.status_code == 200
        assert response.json()["user"]["name"] == "Jane Doe"
        assert response.json()["user"]["role"] == "admin"

    def test_me_with_bearer(self, client, make_token):
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {make_token()}"})
        assert response.status_code == 200

    def test_me_rejects_forged_token(self, client, make_token, foreign_key):
        response = client.get("/auth/me", headers={"Cookie": f"idToken={make_token(key=foreign_key)}"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"

    def test_me_without_token(self, client):
        response = client.get("/auth/me")
        assert response.status_code == 401


class TestAuthorizeEndpoint:

    def test_allow(self, client, make_token):
        response = client.post(
            "/authorize",
            json={"methodArn": METHOD_ARN, "headers": {"Cookie": f"idToken={make_token()}"}}
        )

        assert response.status_code == 200
        policy = response.json()
        assert policy["principalId"] == "user-123"
        assert policy["policyDocument"]["Statement"][0]["Effect"] == "Allow"
        assert policy["context"]["userId"] == "user-123"

    def test_refresh_cookie_only_is_denied(self, client):
        response = client.post(
            "/authorize",
            json={"methodArn": METHOD_ARN, "headers": {"Cookie": "refreshToken=abc.def.ghi"}}
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized", "message": "Unauthorized"}
