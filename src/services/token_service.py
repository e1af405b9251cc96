"""
Session token service: issue, refresh, verify and describe credentials.

Revocation is stateless. Logout only tells the client to drop both cookies;
there is no server-side blacklist, so a captured identity assertion replayed
outside the cookie channel stays valid until its own ``exp``. This is an
accepted residual risk of the design.
"""

import logging
import re
import time
from typing import Any, Callable, Dict, Optional, Tuple

import jwt

from src.models.internal_models import ProviderTokens, SessionCredentialPair, UserContext
from src.services.errors import (
    IdentityProviderError,
    InternalError,
    InvalidCredentialError,
    InvalidTokenError,
    classify_provider_error,
)
from src.services.jwks_cache import JWKSCache, JWKSFetchError

logger = logging.getLogger(__name__)

# Compact JWS: three base64url segments, no padding
COMPACT_JWS = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")
# Cognito refresh tokens are compact JWE (five segments)
OPAQUE_TOKEN = re.compile(r"^[A-Za-z0-9_.-]+$")

REQUIRED_CLAIMS = ["exp", "iss", "sub"]


class SessionTokenService:
    """
    Mints and validates the identity assertion / renewal credential pair.

    Signature checks only accept the provider-mandated algorithm; the
    algorithm named in a token header is never trusted on its own.
    """

    def __init__(
        self,
        jwks_cache: JWKSCache,
        issuer: str,
        audience: Optional[str] = None,
        provider: Optional[Any] = None,
        algorithm: str = "RS256",
        id_token_max_age: int = 3600,
        refresh_token_max_age: int = 604800,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the token service.

        Args:
            jwks_cache: Signing key cache for the provider
            issuer: Exact expected ``iss`` claim
            audience: Expected ``aud`` (app client id); skipped when empty
            provider: Identity provider client used for refresh
            algorithm: The only accepted signing algorithm
            id_token_max_age: Identity assertion cookie lifetime in seconds
            refresh_token_max_age: Renewal credential cookie lifetime in seconds
            clock: Wall-clock time source for expiry checks
        """
        self.jwks_cache = jwks_cache
        self.issuer = issuer
        self.audience = audience or None
        self.provider = provider
        self.algorithm = algorithm
        self.id_token_max_age = id_token_max_age
        self.refresh_token_max_age = refresh_token_max_age
        self._clock = clock

    def _pair(self, id_token: str, refresh_token: str) -> SessionCredentialPair:
        return SessionCredentialPair(
            id_token=id_token,
            refresh_token=refresh_token,
            id_token_max_age=self.id_token_max_age,
            refresh_token_max_age=self.refresh_token_max_age,
        )

    def describe(self, id_token: str) -> UserContext:
        """
        Project claims without verifying the signature.

        Only for tokens received directly from the provider in the same call.
        """
        try:
            claims = jwt.decode(id_token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError("Invalid token", reason=f"malformed token: {e}")
        return UserContext.from_claims(claims)

    def issue(self, tokens: ProviderTokens) -> Tuple[SessionCredentialPair, UserContext]:
        """
        Turn a successful challenge outcome into session credentials.

        Returns:
            Tuple of (credential pair, user context for the response body)
        """
        if not tokens.refresh_token:
            raise InternalError("Missing tokens in authentication result", reason="no refresh token")

        user = self.describe(tokens.id_token)
        logger.info(f"Issued session credentials for user {user.user_id}")
        return self._pair(tokens.id_token, tokens.refresh_token), user

    async def refresh(self, refresh_token: Optional[str]) -> Tuple[SessionCredentialPair, UserContext]:
        """
        Obtain a new identity assertion from a renewal credential.

        The provider's response is authoritative: a rotated refresh token
        replaces the old one, otherwise the old one is kept.

        Raises:
            InvalidCredentialError: Missing, malformed or rejected renewal credential
            InternalError: Provider unreachable or faulted
        """
        if not refresh_token:
            raise InvalidCredentialError("No refresh token provided", reason="missing")
        if not OPAQUE_TOKEN.match(refresh_token):
            raise InvalidCredentialError("Invalid or expired refresh token", reason="malformed")
        if self.provider is None:
            raise InternalError("Token refresh is not configured", reason="no provider")

        try:
            tokens = await self.provider.refresh(refresh_token)
        except IdentityProviderError as e:
            error = classify_provider_error(e)
            if isinstance(error, InternalError):
                raise error
            raise InvalidCredentialError("Invalid or expired refresh token", reason=e.code)

        rotated = tokens.refresh_token is not None and tokens.refresh_token != refresh_token
        if rotated:
            logger.info("Identity provider rotated the refresh token")

        user = self.describe(tokens.id_token)
        return self._pair(tokens.id_token, tokens.refresh_token or refresh_token), user

    async def verify(self, id_token: Optional[str]) -> UserContext:
        """Verify an identity assertion and project its claims."""
        return UserContext.from_claims(await self.verify_claims(id_token))

    async def verify_claims(self, id_token: Optional[str]) -> Dict[str, Any]:
        """
        Fully verify an identity assertion and return its claims.

        Steps: shape check, unverified header read, algorithm pinning, key
        resolution through the JWKS cache, signature/issuer/audience check,
        expiry against the service clock.

        Raises:
            InvalidTokenError: With ``reason`` describing the failed check
            InternalError: Signing keys could not be fetched
        """
        if not id_token or not COMPACT_JWS.match(id_token):
            raise _invalid("malformed token")

        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.InvalidTokenError:
            raise _invalid("malformed token")

        if header.get("alg") != self.algorithm:
            raise _invalid("unsupported algorithm")

        kid = header.get("kid")
        if not kid:
            raise _invalid("key not found")

        try:
            key = await self.jwks_cache.get_signing_key(kid)
        except JWKSFetchError as e:
            logger.error(f"Unable to fetch signing keys: {e}")
            raise InternalError("Unable to verify token", reason="jwks unavailable")
        if key is None:
            raise _invalid("key not found")

        claims = self._decode(id_token, key)

        if claims.get("token_use") not in (None, "id"):
            raise _invalid("wrong token use")

        # Time claims are not type-checked by the decoder when it skips them
        try:
            expires_at = float(claims["exp"])
            not_before = float(claims["nbf"]) if "nbf" in claims else None
        except (TypeError, ValueError):
            raise _invalid("malformed token")

        now = self._clock()
        if expires_at <= now:
            raise _invalid("token expired")
        if not_before is not None and not_before > now:
            raise _invalid("token not yet valid")

        return claims

    def _decode(self, id_token: str, key: Any) -> Dict[str, Any]:
        options = {
            "verify_exp": False,  # Checked against the injectable clock
            "verify_nbf": False,
            "verify_iat": False,
            "verify_aud": self.audience is not None,
            "require": REQUIRED_CLAIMS,
        }
        try:
            return jwt.decode(
                id_token,
                key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options=options,
            )
        except jwt.InvalidSignatureError:
            raise _invalid("invalid signature")
        except jwt.InvalidIssuerError:
            raise _invalid("issuer mismatch")
        except jwt.InvalidAudienceError:
            raise _invalid("audience mismatch")
        except jwt.MissingRequiredClaimError as e:
            raise _invalid(f"missing claim {e.claim}")
        except jwt.InvalidAlgorithmError:
            raise _invalid("unsupported algorithm")
        except jwt.InvalidTokenError:
            raise _invalid("malformed token")


def _invalid(reason: str) -> InvalidTokenError:
    return InvalidTokenError("Invalid token", reason=reason)
