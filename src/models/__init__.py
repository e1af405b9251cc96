"""Data models for the phone OTP authentication service."""

from .api_models import (
    SendOtpRequest,
    RegisterRequest,
    VerifyOtpRequest,
    AuthorizeRequest,
    UserResponse,
    ChallengeResponse,
    AuthResponse,
    CurrentUserResponse,
    MessageResponse,
    HealthResponse,
    ErrorResponse
)
from .internal_models import (
    ChallengePhase,
    LoginAttempt,
    ChallengeOutcome,
    ChallengeHandoff,
    ProviderTokens,
    SessionCredentialPair,
    UserContext,
    PolicyEffect,
    AuthorizerDecision
)

__all__ = [
    "SendOtpRequest",
    "RegisterRequest",
    "VerifyOtpRequest",
    "AuthorizeRequest",
    "UserResponse",
    "ChallengeResponse",
    "AuthResponse",
    "CurrentUserResponse",
    "MessageResponse",
    "HealthResponse",
    "ErrorResponse",
    "ChallengePhase",
    "LoginAttempt",
    "ChallengeOutcome",
    "ChallengeHandoff",
    "ProviderTokens",
    "SessionCredentialPair",
    "UserContext",
    "PolicyEffect",
    "AuthorizerDecision"
]
