"""
API Gateway request authorizer Lambda.

Returns an IAM policy for the whole API stage on success. On deny it raises
``Exception("Unauthorized")``, which API Gateway turns into a bare 401.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from src.config import settings
from src.services.auth_service import build_token_service
from src.services.authorizer import DecisionCache, RequestAuthorizer

logger = logging.getLogger(__name__)

# Survives warm invocations, together with its JWKS and decision caches
_authorizer: Optional[RequestAuthorizer] = None


def get_authorizer() -> RequestAuthorizer:
    global _authorizer
    if _authorizer is None:
        _authorizer = RequestAuthorizer(
            token_service=build_token_service(),
            cache=DecisionCache(ttl_seconds=settings.decision_cache_ttl)
        )
    return _authorizer


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Authorize one API Gateway request event."""
    headers = event.get("headers") or {}
    method_arn = event.get("methodArn", "")

    decision = asyncio.run(get_authorizer().authorize(headers, method_arn))
    if not decision.allowed:
        raise Exception("Unauthorized")

    return decision.to_policy()
