"""Internal data models for the phone OTP authentication service."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ChallengePhase(str, Enum):
    """State of a login attempt in the custom challenge flow."""

    START = "start"
    AWAITING_ANSWER = "awaiting_answer"
    SUCCESS = "success"
    FAILURE = "failure"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (ChallengePhase.SUCCESS, ChallengePhase.FAILURE, ChallengePhase.EXPIRED)


@dataclass
class LoginAttempt:
    """One in-progress authentication for a phone number."""

    attempt_session: str
    subject: str  # E.164 phone number
    round_index: int = 0  # Completed challenge/response rounds
    pending_code: Optional[str] = None
    phase: ChallengePhase = ChallengePhase.START
    last_result: Optional[bool] = None
    delivered_round: Optional[int] = None
    expires_at: Optional[float] = None

    @classmethod
    def from_cognito_session(
        cls,
        subject: str,
        session: List[Dict[str, Any]],
        attempt_session: str = ""
    ) -> "LoginAttempt":
        """
        Rebuild an attempt from the session history Cognito hands to triggers.

        Each history entry is one completed round; the code issued for the
        round is carried in ``challengeMetadata``.
        """
        last = session[-1] if session else {}
        last_result = last.get("challengeResult") if session else None
        return cls(
            attempt_session=attempt_session,
            subject=subject,
            round_index=len(session),
            pending_code=last.get("challengeMetadata") or None,
            phase=ChallengePhase.AWAITING_ANSWER if session else ChallengePhase.START,
            last_result=last_result,
            delivered_round=len(session) - 1 if session else None,
        )


@dataclass
class ChallengeOutcome:
    """Result of submitting one answer."""

    phase: ChallengePhase
    attempt: LoginAttempt
    correct: bool


@dataclass
class ChallengeHandoff:
    """Continuation returned by the identity provider while a challenge is open."""

    session: str
    challenge_name: str = "CUSTOM_CHALLENGE"


@dataclass
class ProviderTokens:
    """Raw token issuance result from the identity provider."""

    id_token: str
    refresh_token: Optional[str] = None  # Absent on a non-rotating refresh
    access_token: Optional[str] = None
    expires_in: Optional[int] = None


@dataclass
class SessionCredentialPair:
    """Identity assertion and renewal credential carried in session cookies."""

    id_token: str
    refresh_token: str
    id_token_max_age: int = 3600
    refresh_token_max_age: int = 604800

    def __post_init__(self):
        """The identity assertion must always expire before the renewal credential."""
        if self.id_token_max_age >= self.refresh_token_max_age:
            raise ValueError(
                f"id_token_max_age ({self.id_token_max_age}) must be shorter than "
                f"refresh_token_max_age ({self.refresh_token_max_age})"
            )


@dataclass
class UserContext:
    """Read-only projection of identity assertion claims."""

    user_id: str
    phone_number: str = ""
    email: str = ""
    name: str = ""
    role: str = "user"
    company: str = ""
    email_verified: bool = False
    phone_verified: bool = False

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "UserContext":
        return cls(
            user_id=claims.get("sub") or "",
            phone_number=claims.get("phone_number") or "",
            email=claims.get("email") or "",
            name=claims.get("name") or "",
            role=claims.get("custom:role") or "user",
            company=claims.get("custom:company") or "",
            email_verified=_claim_flag(claims.get("email_verified")),
            phone_verified=_claim_flag(claims.get("phone_number_verified")),
        )

    def to_response(self) -> Dict[str, Any]:
        """JSON body representation returned to clients."""
        return {
            "userId": self.user_id,
            "phoneNumber": self.phone_number,
            "email": self.email,
            "name": self.name,
            "emailVerified": self.email_verified,
            "phoneVerified": self.phone_verified,
            "role": self.role,
            "company": self.company,
        }

    def to_authorizer_context(self) -> Dict[str, str]:
        """Gateway context map; the transport only carries string values."""
        return {
            "userId": str(self.user_id or ""),
            "phoneNumber": str(self.phone_number or ""),
            "email": str(self.email or ""),
            "name": str(self.name or ""),
            "role": str(self.role or ""),
            "company": str(self.company or ""),
        }


class PolicyEffect(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"


@dataclass
class AuthorizerDecision:
    """Allow/deny outcome for one inbound request."""

    effect: PolicyEffect
    principal_id: str
    resource: str
    context: Dict[str, str] = field(default_factory=dict)
    reason: Optional[str] = None  # Logged only, never returned to clients

    @property
    def allowed(self) -> bool:
        return self.effect == PolicyEffect.ALLOW

    def to_policy(self) -> Dict[str, Any]:
        """Render an API Gateway IAM policy document."""
        policy = {
            "principalId": self.principal_id,
            "policyDocument": {
                "Version": "2012-10-17",
                "Statement": [
                    {
                        "Action": "execute-api:Invoke",
                        "Effect": self.effect.value,
                        "Resource": self.resource,
                    }
                ],
            },
        }
        if self.context:
            policy["context"] = dict(self.context)
        return policy


def _claim_flag(value: Any) -> bool:
    # Cognito serializes verification flags as "true"/"false" in some token versions
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)
