"""
Authentication service for phone OTP login and session management.

This module provides the core business logic for:
- Registration and OTP initiation against the identity provider
- OTP answer submission and session credential issuance
- Session refresh and current-user lookup
- Construction of the process-wide token service, authorizer and OTP engine
"""

import logging
from typing import Optional, Tuple

from src.clients.cognito_client import CognitoIdentityProvider
from src.clients.sms_client import SNSMessageSender
from src.config import settings
from src.models.internal_models import ChallengeHandoff, SessionCredentialPair, UserContext
from src.services.authorizer import DecisionCache, RequestAuthorizer
from src.services.errors import (
    IdentityProviderError,
    InvalidCodeError,
    UnauthorizedError,
    ValidationError,
    classify_provider_error,
)
from src.services.challenge_store import InMemoryChallengeStore
from src.services.jwks_cache import JWKSCache
from src.services.otp_engine import OTPEngine, validate_phone_number
from src.services.token_service import SessionTokenService
from src.utils.phone import mask_phone

logger = logging.getLogger(__name__)


class AuthService:
    """
    Orchestrates the OTP login protocol against the identity provider.

    The pool's custom-auth triggers own code issuance and matching; this
    service validates input, drives the challenge hand-offs, and turns the
    provider's results into session credentials.
    """

    def __init__(
        self,
        identity_provider: Optional[CognitoIdentityProvider] = None,
        token_service: Optional[SessionTokenService] = None
    ):
        """
        Initialize authentication service.

        Args:
            identity_provider: Provider client. If None, creates a Cognito client.
            token_service: Token service. If None, builds one from settings.
        """
        self.provider = identity_provider or CognitoIdentityProvider()
        self.token_service = token_service or build_token_service(self.provider)

        logger.info(f"Authentication service initialized for issuer: {self.token_service.issuer}")

    async def register(self, phone: str, name: Optional[str] = None) -> ChallengeHandoff:
        """
        Register a new user and start their first OTP challenge.

        Raises:
            ValidationError: Malformed phone number
            ConflictError: Phone number already registered
        """
        validate_phone_number(phone)
        logger.info(f"Registering user {mask_phone(phone)}")

        try:
            await self.provider.sign_up(phone, name)
            return await self.provider.initiate_custom_auth(phone)
        except IdentityProviderError as e:
            raise self._classify("register", phone, e)

    async def send_otp(self, phone: str) -> ChallengeHandoff:
        """
        Initiate the custom auth flow; the provider's triggers send the code.

        Raises:
            ValidationError: Malformed phone number (nothing is sent)
            NotFoundError: Unknown phone number
        """
        validate_phone_number(phone)
        logger.info(f"Initiating OTP for {mask_phone(phone)}")

        try:
            return await self.provider.initiate_custom_auth(phone)
        except IdentityProviderError as e:
            raise self._classify("send_otp", phone, e)

    async def verify_otp(
        self,
        phone: str,
        code: str,
        session: str
    ) -> Tuple[SessionCredentialPair, UserContext]:
        """
        Submit an OTP answer.

        Returns:
            Tuple of (credential pair, user context) on success

        Raises:
            ValidationError: Missing phone, code or session
            InvalidCodeError: Incorrect code with rounds left; carries the new session
            ChallengeExpiredError: Attempt session expired
            UnauthorizedError: Rounds exhausted or provider refused
        """
        if not phone or not code or not session:
            raise ValidationError("Phone number, OTP, and session are required")
        validate_phone_number(phone)

        try:
            result = await self.provider.respond_to_challenge(phone, code, session)
        except IdentityProviderError as e:
            raise self._classify("verify_otp", phone, e)

        if isinstance(result, ChallengeHandoff):
            logger.info(f"Incorrect OTP for {mask_phone(phone)}, challenge re-issued")
            raise InvalidCodeError(
                "Invalid OTP code",
                session=result.session,
                challenge_name=result.challenge_name
            )

        return self.token_service.issue(result)

    async def refresh(self, refresh_token: Optional[str]) -> Tuple[SessionCredentialPair, UserContext]:
        """Exchange the renewal credential for a fresh identity assertion."""
        return await self.token_service.refresh(refresh_token)

    async def current_user(self, id_token: Optional[str]) -> UserContext:
        """
        Resolve the caller from their identity assertion.

        Raises:
            UnauthorizedError: No token supplied
            InvalidTokenError: Token failed verification
        """
        if not id_token:
            raise UnauthorizedError("Not authenticated", reason="no token provided")
        return await self.token_service.verify(id_token)

    def _classify(self, operation: str, phone: str, error: IdentityProviderError):
        classified = classify_provider_error(error)
        log = logger.error if classified.status_code >= 500 else logger.warning
        log(f"{operation} failed for {mask_phone(phone)}: {error.code}")
        return classified


def build_token_service(provider: Optional[CognitoIdentityProvider] = None) -> SessionTokenService:
    """Build a token service from settings."""
    return SessionTokenService(
        jwks_cache=_get_jwks_cache(),
        issuer=settings.issuer,
        audience=settings.cognito_client_id,
        provider=provider,
        algorithm=settings.jwt_algorithm,
        id_token_max_age=settings.id_token_max_age,
        refresh_token_max_age=settings.refresh_token_max_age,
    )


# Global instances
_jwks_cache: Optional[JWKSCache] = None
_auth_service: Optional[AuthService] = None
_request_authorizer: Optional[RequestAuthorizer] = None
_otp_engine: Optional[OTPEngine] = None


def _get_jwks_cache() -> JWKSCache:
    global _jwks_cache
    if _jwks_cache is None:
        _jwks_cache = JWKSCache(
            jwks_url=settings.jwks_url,
            ttl_seconds=settings.jwks_cache_ttl,
            timeout=settings.http_timeout
        )
    return _jwks_cache


def get_auth_service() -> AuthService:
    """
    Get the global authentication service instance.

    Returns:
        AuthService: The global authentication service instance
    """
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service


def get_request_authorizer() -> RequestAuthorizer:
    """
    Get the global request authorizer, sharing the token service and JWKS cache.

    Returns:
        RequestAuthorizer: The global request authorizer instance
    """
    global _request_authorizer
    if _request_authorizer is None:
        _request_authorizer = RequestAuthorizer(
            token_service=get_auth_service().token_service,
            cache=DecisionCache(ttl_seconds=settings.decision_cache_ttl)
        )
    return _request_authorizer


def get_otp_engine() -> OTPEngine:
    """
    Get the global self-contained OTP engine.

    Used where challenge state is not owned by the user pool's triggers:
    attempts live in a process-local store and codes go out through SNS.

    Returns:
        OTPEngine: The global OTP engine configured from settings
    """
    global _otp_engine
    if _otp_engine is None:
        _otp_engine = OTPEngine(
            store=InMemoryChallengeStore(ttl_seconds=settings.otp_attempt_ttl),
            sender=SNSMessageSender(region=settings.cognito_region, timeout=settings.sms_delivery_timeout),
            max_rounds=settings.otp_max_rounds,
            regenerate_on_retry=settings.otp_regenerate_on_retry,
            delivery_timeout=settings.sms_delivery_timeout,
            brand_name=settings.otp_brand_name
        )
    return _otp_engine
