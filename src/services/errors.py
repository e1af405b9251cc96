"""
Error taxonomy for the authentication service.

Every failure that reaches a client is one of these categories. Provider
and delivery failures are classified here and re-raised; raw provider
exceptions never cross the service boundary.
"""

from typing import Optional


class AuthServiceError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 500
    category: str = "InternalError"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        # Internal detail for logs; never rendered into a response body
        self.reason = reason


class ValidationError(AuthServiceError):
    """Malformed input, e.g. a phone number that is not E.164 (400)."""
    status_code = 400
    category = "ValidationError"


class NotFoundError(AuthServiceError):
    """Unknown subject (404)."""
    status_code = 404
    category = "NotFound"


class ConflictError(AuthServiceError):
    """Duplicate registration (409)."""
    status_code = 409
    category = "Conflict"


class UnauthorizedError(AuthServiceError):
    """Bad code, bad or expired token, missing credential (401)."""
    status_code = 401
    category = "Unauthorized"


class InvalidCodeError(UnauthorizedError):
    """Incorrect OTP with retries left; carries the continuation session."""

    def __init__(self, message: str, session: Optional[str] = None,
                 challenge_name: Optional[str] = None, reason: Optional[str] = "code_mismatch"):
        super().__init__(message, reason=reason)
        self.session = session
        self.challenge_name = challenge_name


class ChallengeFailedError(UnauthorizedError):
    """Maximum rounds exhausted; the attempt session is dead."""


class ChallengeExpiredError(UnauthorizedError):
    """The attempt session expired; the client must request a fresh code."""


class InvalidTokenError(UnauthorizedError):
    """Identity assertion failed verification."""


class InvalidCredentialError(UnauthorizedError):
    """Renewal credential missing, malformed, or rejected by the provider."""


class InternalError(AuthServiceError):
    """Unexpected provider or infrastructure fault (500)."""
    status_code = 500
    category = "InternalError"


class IdentityProviderError(Exception):
    """Raised by the identity provider client with the provider's error code."""

    def __init__(self, code: str, message: str = ""):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message


class MessageDeliveryError(Exception):
    """Raised when an out-of-band message could not be delivered."""


# Provider error code -> (error class, client-safe message)
PROVIDER_ERROR_MAP = {
    "UserNotFoundException": (NotFoundError, "User not found"),
    "UsernameExistsException": (ConflictError, "User with this phone number already exists"),
    "CodeMismatchException": (UnauthorizedError, "Invalid OTP code"),
    "NotAuthorizedException": (UnauthorizedError, "Authentication failed"),
    "ExpiredCodeException": (ChallengeExpiredError, "OTP session expired, request a new code"),
    "InvalidParameterException": (ValidationError, "Invalid request parameters"),
}


def classify_provider_error(error: IdentityProviderError) -> AuthServiceError:
    """
    Map an identity provider error onto the service taxonomy.

    Args:
        error: Error raised by the identity provider client

    Returns:
        AuthServiceError subclass instance; unmapped codes become InternalError
    """
    # Cognito reports a dead custom-auth session as NotAuthorizedException
    if error.code == "NotAuthorizedException" and "session is expired" in error.message.lower():
        return ChallengeExpiredError(
            "OTP session expired, request a new code",
            reason="session_expired"
        )

    mapped = PROVIDER_ERROR_MAP.get(error.code)
    if mapped is None:
        return InternalError("Identity provider request failed", reason=error.code)

    error_class, message = mapped
    if error_class is ChallengeExpiredError:
        return error_class(message, reason="session_expired")
    return error_class(message, reason=error.code)
