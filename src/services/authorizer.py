"""
Request authorizer for the API gateway.

Turns an inbound request's credentials into an Allow/Deny decision plus the
caller's context map. Successful verifications are cached per raw token for
a short window. Entries expire by time only, so a token revoked at the
provider stays authorizable until its cache entry lapses.
"""

import logging
import time
from typing import Callable, Dict, Mapping, Optional, Tuple

from src.models.internal_models import AuthorizerDecision, PolicyEffect, UserContext
from src.services.errors import AuthServiceError
from src.services.token_service import SessionTokenService
from src.utils.cookies import ID_TOKEN_COOKIE, extract_cookie

logger = logging.getLogger(__name__)

DEFAULT_DECISION_TTL = 300  # 5 minutes
NO_TOKEN_REASON = "no token provided"


class DecisionCache:
    """Short-lived cache of verified user contexts keyed by raw token."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_DECISION_TTL,
        clock: Callable[[], float] = time.time,
        max_entries: int = 10000
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[UserContext, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, token: str) -> Optional[UserContext]:
        entry = self._entries.get(token)
        if entry is None:
            return None
        context, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(token, None)
            return None
        return context

    def put(self, token: str, context: UserContext, not_after: Optional[float] = None) -> None:
        """
        Cache a verified context.

        Args:
            token: Raw token string
            context: Verified user context
            not_after: Absolute time the entry must not outlive (token ``exp``)
        """
        expires_at = self._clock() + self.ttl_seconds
        if not_after is not None:
            expires_at = min(expires_at, not_after)

        if len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[token] = (context, expires_at)

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        now = self._clock()
        for token in [t for t, (_, expires_at) in self._entries.items() if expires_at <= now]:
            del self._entries[token]
        # Still full: drop the oldest insertion
        while len(self._entries) >= self.max_entries:
            self._entries.pop(next(iter(self._entries)))


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in (headers or {}).items():
        if key.lower() == lowered:
            return value
    return None


def extract_token(headers: Mapping[str, str]) -> Optional[str]:
    """
    Find the identity assertion in request headers.

    An ``Authorization: Bearer`` header wins over the ``idToken`` cookie.
    """
    authorization = _header(headers, "Authorization")
    if authorization:
        scheme, _, credentials = authorization.strip().partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()

    token = extract_cookie(_header(headers, "Cookie"), ID_TOKEN_COOKIE)
    return token or None


def wildcard_resource(method_arn: str) -> str:
    """
    Widen a method ARN to every method and path of its API stage.

    ``arn:aws:execute-api:eu-west-1:123:abc/prod/GET/items`` becomes
    ``arn:aws:execute-api:eu-west-1:123:abc/prod/*``.
    """
    if not method_arn:
        return "*"
    return "/".join(method_arn.split("/")[:2]) + "/*"


class RequestAuthorizer:
    """Allow/deny decisions for gateway requests."""

    def __init__(self, token_service: SessionTokenService, cache: Optional[DecisionCache] = None):
        self.token_service = token_service
        self.cache = cache if cache is not None else DecisionCache()

    async def authorize(self, headers: Mapping[str, str], method_arn: str) -> AuthorizerDecision:
        """
        Decide whether the request may proceed.

        Deny reasons are logged and kept on the decision for callers that log
        them; they are never meant for the client.
        """
        resource = wildcard_resource(method_arn)
        token = extract_token(headers)
        if not token:
            return self._deny(resource, NO_TOKEN_REASON)

        context = self.cache.get(token)
        if context is None:
            try:
                context, not_after = await self._verify(token)
            except AuthServiceError as e:
                return self._deny(resource, e.reason or e.message)
            self.cache.put(token, context, not_after=not_after)
        else:
            logger.debug(f"Decision cache hit for user {context.user_id}")

        logger.info(f"Authorized user {context.user_id} for {resource}")
        return AuthorizerDecision(
            effect=PolicyEffect.ALLOW,
            principal_id=context.user_id,
            resource=resource,
            context=context.to_authorizer_context(),
        )

    async def _verify(self, token: str) -> Tuple[UserContext, Optional[float]]:
        claims = await self.token_service.verify_claims(token)
        return UserContext.from_claims(claims), float(claims["exp"])

    def _deny(self, resource: str, reason: str) -> AuthorizerDecision:
        logger.warning(f"Authorization denied: {reason}")
        return AuthorizerDecision(
            effect=PolicyEffect.DENY,
            principal_id="unauthorized",
            resource=resource,
            reason=reason,
        )
