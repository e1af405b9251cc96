"""
Tests for the Cognito identity provider and SNS clients.
"""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from src.clients.cognito_client import CognitoIdentityProvider, generate_placeholder_password
from src.clients.sms_client import SNSMessageSender
from src.models.internal_models import ChallengeHandoff, ProviderTokens
from src.services.errors import IdentityProviderError, MessageDeliveryError
from tests.factories import PHONE


def client_error(code: str, message: str = "", operation: str = "InitiateAuth") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class TestCognitoIdentityProvider:
    """Test cases for CognitoIdentityProvider."""

    @pytest.fixture
    def boto_client(self):
        return Mock()

    @pytest.fixture
    def provider(self, boto_client):
        return CognitoIdentityProvider(client=boto_client, client_id="app-client", region="eu-west-1")

    @pytest.mark.asyncio
    async def test_sign_up(self, provider, boto_client):
        await provider.sign_up(PHONE, "Jane Doe")

        kwargs = boto_client.sign_up.call_args.kwargs
        assert kwargs["ClientId"] == "app-client"
        assert kwargs["Username"] == PHONE
        assert {"Name": "phone_number", "Value": PHONE} in kwargs["UserAttributes"]
        assert {"Name": "name", "Value": "Jane Doe"} in kwargs["UserAttributes"]

    @pytest.mark.asyncio
    async def test_sign_up_without_name(self, provider, boto_client):
        await provider.sign_up(PHONE)
        assert boto_client.sign_up.call_args.kwargs["UserAttributes"] == [{"Name": "phone_number", "Value": PHONE}]

    @pytest.mark.asyncio
    async def test_initiate_custom_auth(self, provider, boto_client):
        boto_client.initiate_auth.return_value = {"Session": "S1", "ChallengeName": "CUSTOM_CHALLENGE"}

        handoff = await provider.initiate_custom_auth(PHONE)

        assert handoff == ChallengeHandoff(session="S1", challenge_name="CUSTOM_CHALLENGE")
        boto_client.initiate_auth.assert_called_once_with(
            AuthFlow="CUSTOM_AUTH",
            ClientId="app-client",
            AuthParameters={"USERNAME": PHONE}
        )

    @pytest.mark.asyncio
    async def test_respond_success_returns_tokens(self, provider, boto_client):
        boto_client.respond_to_auth_challenge.return_value = {
            "AuthenticationResult": {"IdToken": "id", "RefreshToken": "refresh", "AccessToken": "access", "ExpiresIn": 3600}
        }

        result = await provider.respond_to_challenge(PHONE, "123456", "S1")

        assert result == ProviderTokens(id_token="id", refresh_token="refresh", access_token="access", expires_in=3600)
        kwargs = boto_client.respond_to_auth_challenge.call_args.kwargs
        assert kwargs["ChallengeResponses"] == {"USERNAME": PHONE, "ANSWER": "123456"}
        assert kwargs["Session"] == "S1"

    @pytest.mark.asyncio
    async def test_respond_incorrect_returns_handoff(self, provider, boto_client):
        boto_client.respond_to_auth_challenge.return_value = {"Session": "S2", "ChallengeName": "CUSTOM_CHALLENGE"}

        result = await provider.respond_to_challenge(PHONE, "000000", "S1")

        assert result == ChallengeHandoff(session="S2")

    @pytest.mark.asyncio
    async def test_refresh(self, provider, boto_client):
        boto_client.initiate_auth.return_value = {"AuthenticationResult": {"IdToken": "new-id"}}

        tokens = await provider.refresh("refresh")

        assert tokens.id_token == "new-id"
        assert tokens.refresh_token is None
        assert boto_client.initiate_auth.call_args.kwargs["AuthFlow"] == "REFRESH_TOKEN_AUTH"

    @pytest.mark.asyncio
    async def test_client_error_carries_code(self, provider, boto_client):
        boto_client.initiate_auth.side_effect = client_error("UserNotFoundException", "User does not exist.")

        with pytest.raises(IdentityProviderError) as exc_info:
            await provider.initiate_custom_auth(PHONE)
        assert exc_info.value.code == "UserNotFoundException"
        assert exc_info.value.message == "User does not exist."

    @pytest.mark.asyncio
    async def test_connection_error_is_service_unavailable(self, provider, boto_client):
        boto_client.initiate_auth.side_effect = EndpointConnectionError(endpoint_url="https://cognito-idp")

        with pytest.raises(IdentityProviderError) as exc_info:
            await provider.initiate_custom_auth(PHONE)
        assert exc_info.value.code == "ServiceUnavailable"

    @pytest.mark.asyncio
    async def test_missing_id_token(self, provider, boto_client):
        boto_client.respond_to_auth_challenge.return_value = {"AuthenticationResult": {"RefreshToken": "r"}}

        with pytest.raises(IdentityProviderError):
            await provider.respond_to_challenge(PHONE, "123456", "S1")

    def test_placeholder_password_policy(self):
        password = generate_placeholder_password()
        assert len(password) == 16
        assert any(c.isupper() for c in password)
        assert any(c.islower() for c in password)
        assert any(c.isdigit() for c in password)
        assert generate_placeholder_password() != password


class TestSNSMessageSender:
    """Test cases for SNSMessageSender."""

    @pytest.mark.asyncio
    async def test_publish_transactional_sms(self):
        boto_client = Mock()
        boto_client.publish.return_value = {"MessageId": "m-1"}

        await SNSMessageSender(client=boto_client).send(PHONE, "hello")

        kwargs = boto_client.publish.call_args.kwargs
        assert kwargs["PhoneNumber"] == PHONE
        assert kwargs["Message"] == "hello"
        assert kwargs["MessageAttributes"]["AWS.SNS.SMS.SMSType"]["StringValue"] == "Transactional"

    @pytest.mark.asyncio
    async def test_publish_failure(self):
        boto_client = Mock()
        boto_client.publish.side_effect = client_error("Throttling", operation="Publish")

        with pytest.raises(MessageDeliveryError, match="Throttling"):
            await SNSMessageSender(client=boto_client).send(PHONE, "hello")
