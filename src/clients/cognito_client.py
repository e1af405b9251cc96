"""Cognito user pool client for the custom (OTP) authentication flow."""

import asyncio
import logging
import secrets
import string
from typing import Any, Dict, Optional, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.config import settings
from src.models.internal_models import ChallengeHandoff, ProviderTokens
from src.services.errors import IdentityProviderError
from src.utils.phone import mask_phone

logger = logging.getLogger(__name__)

CUSTOM_CHALLENGE = "CUSTOM_CHALLENGE"


def generate_placeholder_password(length: int = 16) -> str:
    """
    Generate a throwaway password for sign-up.

    Cognito requires a password even for custom-auth-only users; it is never
    shown to anyone. The fixed prefix satisfies the default pool policy.
    """
    charset = string.ascii_letters + string.digits + "!@#$%^&*"
    return "Aa1!" + "".join(secrets.choice(charset) for _ in range(length - 4))


class CognitoIdentityProvider:
    """
    Async wrapper around the ``cognito-idp`` API.

    boto3 is blocking, so every call runs in a worker thread. Provider
    failures surface as IdentityProviderError carrying Cognito's error code.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        client_id: Optional[str] = None,
        region: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the provider client.

        Args:
            client: Preconfigured boto3 ``cognito-idp`` client. If None, created lazily.
            client_id: User pool app client id
            region: AWS region of the user pool
            timeout: Connect/read timeout in seconds
        """
        self._client = client
        self.client_id = client_id or settings.cognito_client_id
        self._region = region or settings.cognito_region
        self._timeout = timeout or settings.http_timeout

    @property
    def client(self) -> Any:
        """Get or create the boto3 client."""
        if self._client is None:
            self._client = boto3.client(
                "cognito-idp",
                region_name=self._region,
                config=Config(
                    connect_timeout=self._timeout,
                    read_timeout=self._timeout,
                    retries={"max_attempts": 2}
                )
            )
        return self._client

    async def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(getattr(self.client, operation), **kwargs)
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "Unknown")
            logger.warning(f"Cognito {operation} failed with {code}")
            raise IdentityProviderError(code, error.get("Message", "")) from e
        except BotoCoreError as e:
            logger.error(f"Cognito {operation} request failed: {e}")
            raise IdentityProviderError("ServiceUnavailable", str(e)) from e

    async def sign_up(self, phone: str, name: Optional[str] = None) -> None:
        """Create an (unconfirmed) user keyed by phone number."""
        attributes = [{"Name": "phone_number", "Value": phone}]
        if name:
            attributes.append({"Name": "name", "Value": name})

        await self._call(
            "sign_up",
            ClientId=self.client_id,
            Username=phone,
            Password=generate_placeholder_password(),
            UserAttributes=attributes
        )
        logger.info(f"Signed up user {mask_phone(phone)}")

    async def initiate_custom_auth(self, phone: str) -> ChallengeHandoff:
        """Start the CUSTOM_AUTH flow; the pool's triggers issue and send the OTP."""
        response = await self._call(
            "initiate_auth",
            AuthFlow="CUSTOM_AUTH",
            ClientId=self.client_id,
            AuthParameters={"USERNAME": phone}
        )
        return ChallengeHandoff(
            session=response["Session"],
            challenge_name=response.get("ChallengeName", CUSTOM_CHALLENGE)
        )

    async def respond_to_challenge(
        self,
        phone: str,
        answer: str,
        session: str
    ) -> Union[ProviderTokens, ChallengeHandoff]:
        """
        Answer the open custom challenge.

        Returns:
            ProviderTokens when the pool issues tokens, or a ChallengeHandoff
            when it wants another round (incorrect answer, retries left)
        """
        response = await self._call(
            "respond_to_auth_challenge",
            ClientId=self.client_id,
            ChallengeName=CUSTOM_CHALLENGE,
            Session=session,
            ChallengeResponses={"USERNAME": phone, "ANSWER": answer}
        )

        result = response.get("AuthenticationResult")
        if result:
            return _tokens_from_result(result)

        return ChallengeHandoff(
            session=response["Session"],
            challenge_name=response.get("ChallengeName", CUSTOM_CHALLENGE)
        )

    async def refresh(self, refresh_token: str) -> ProviderTokens:
        """Exchange a refresh token for a new ID token."""
        response = await self._call(
            "initiate_auth",
            AuthFlow="REFRESH_TOKEN_AUTH",
            ClientId=self.client_id,
            AuthParameters={"REFRESH_TOKEN": refresh_token}
        )

        result = response.get("AuthenticationResult")
        if not result:
            raise IdentityProviderError("NotAuthorizedException", "Refresh did not return tokens")
        return _tokens_from_result(result)


def _tokens_from_result(result: Dict[str, Any]) -> ProviderTokens:
    if not result.get("IdToken"):
        raise IdentityProviderError("InvalidResponse", "Missing ID token in authentication result")
    return ProviderTokens(
        id_token=result["IdToken"],
        refresh_token=result.get("RefreshToken"),
        access_token=result.get("AccessToken"),
        expires_in=result.get("ExpiresIn")
    )
