"""
Gateway authorization endpoint.
"""

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.models.api_models import AuthorizeRequest, ErrorResponse
from src.observability import record_authorization_metrics, trace_function
from src.services.auth_service import get_request_authorizer
from src.services.authorizer import RequestAuthorizer

logger = structlog.get_logger()
router = APIRouter(tags=["authorization"])


@router.post("/authorize")
@trace_function("authorize_endpoint")
async def authorize(
    request: AuthorizeRequest,
    authorizer: RequestAuthorizer = Depends(get_request_authorizer)
) -> JSONResponse:
    """
    Decide whether a gateway request may reach the protected backend.

    Allow returns the IAM policy with the caller context. Deny is a bare 401;
    the reason is logged, never returned.
    """
    decision = await authorizer.authorize(request.headers, request.methodArn)
    record_authorization_metrics(decision.effect.value)

    if not decision.allowed:
        logger.info("Authorization denied", resource=decision.resource, reason=decision.reason)
        error = ErrorResponse(error="Unauthorized", message="Unauthorized")
        return JSONResponse(status_code=401, content=error.to_content())

    return JSONResponse(status_code=200, content=decision.to_policy())
