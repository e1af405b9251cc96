"""
Authentication API endpoints for phone OTP login and session cookies.
"""

import time
from typing import List

import structlog
from fastapi import APIRouter, Depends, Request, Response

from src.config import settings
from src.models.api_models import (
    AuthResponse,
    ChallengeResponse,
    CurrentUserResponse,
    MessageResponse,
    RegisterRequest,
    SendOtpRequest,
    UserResponse,
    VerifyOtpRequest
)
from src.models.internal_models import SessionCredentialPair, UserContext
from src.observability import record_otp_metrics, trace_function
from src.services.auth_service import AuthService, get_auth_service
from src.services.authorizer import extract_token
from src.services.errors import AuthServiceError
from src.utils.cookies import (
    REFRESH_TOKEN_COOKIE,
    extract_cookie,
    render_expired_cookies,
    render_session_cookies
)
from src.utils.phone import mask_phone

logger = structlog.get_logger()
router = APIRouter(prefix="/auth", tags=["authentication"])


def _set_cookies(response: Response, cookies: List[str]) -> None:
    # One header per cookie; a comma-joined value is not parseable
    for cookie in cookies:
        response.headers.append("Set-Cookie", cookie)


def _issue_cookies(response: Response, pair: SessionCredentialPair) -> None:
    _set_cookies(
        response,
        render_session_cookies(
            pair.id_token,
            pair.refresh_token,
            secure=settings.is_production,
            id_token_max_age=pair.id_token_max_age,
            refresh_token_max_age=pair.refresh_token_max_age
        )
    )


def _user(context: UserContext) -> UserResponse:
    return UserResponse(**context.to_response())


@router.post("/register", response_model=ChallengeResponse)
@trace_function("register_endpoint")
async def register(
    request: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service)
) -> ChallengeResponse:
    """
    Register a phone number and send the first OTP.

    The account stays unconfirmed until the first successful verification.
    """
    start_time = time.time()
    logger.info("Registration request received", phone=mask_phone(request.phoneNumber))

    try:
        handoff = await auth_service.register(request.phoneNumber, request.name)
    except AuthServiceError as e:
        record_otp_metrics("register", e.category, time.time() - start_time)
        raise

    record_otp_metrics("register", "success", time.time() - start_time)
    return ChallengeResponse(
        message="Registration initiated. Please verify OTP to complete registration.",
        session=handoff.session,
        challengeName=handoff.challenge_name
    )


@router.post("/send-otp", response_model=ChallengeResponse)
@trace_function("send_otp_endpoint")
async def send_otp(
    request: SendOtpRequest,
    auth_service: AuthService = Depends(get_auth_service)
) -> ChallengeResponse:
    """
    Start a login challenge; the code is delivered by SMS.

    Returns the opaque session handle the client must echo back on verify.
    """
    start_time = time.time()
    logger.info("OTP request received", phone=mask_phone(request.phoneNumber))

    try:
        handoff = await auth_service.send_otp(request.phoneNumber)
    except AuthServiceError as e:
        record_otp_metrics("send", e.category, time.time() - start_time)
        raise

    record_otp_metrics("send", "success", time.time() - start_time)
    return ChallengeResponse(
        message="OTP sent successfully",
        session=handoff.session,
        challengeName=handoff.challenge_name
    )


@router.post("/verify-otp", response_model=AuthResponse)
@trace_function("verify_otp_endpoint")
async def verify_otp(
    request: VerifyOtpRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service)
) -> AuthResponse:
    """
    Answer the current challenge.

    On success both session cookies are set. An incorrect code with rounds
    left is a 401 carrying the continuation session.
    """
    start_time = time.time()
    logger.info("OTP verification request received", phone=mask_phone(request.phoneNumber))

    try:
        pair, user = await auth_service.verify_otp(request.phoneNumber, request.otp, request.session)
    except AuthServiceError as e:
        record_otp_metrics("verify", e.category, time.time() - start_time)
        raise

    record_otp_metrics("verify", "success", time.time() - start_time)
    _issue_cookies(response, pair)
    logger.info("Authentication successful", user_id=user.user_id)

    return AuthResponse(message="Authentication successful", user=_user(user))


@router.post("/refresh", response_model=AuthResponse)
@trace_function("refresh_endpoint")
async def refresh(
    http_request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service)
) -> AuthResponse:
    """Renew the identity assertion from the ``refreshToken`` cookie."""
    refresh_token = extract_cookie(http_request.headers.get("cookie"), REFRESH_TOKEN_COOKIE)

    pair, user = await auth_service.refresh(refresh_token)
    _issue_cookies(response, pair)
    logger.info("Session refreshed", user_id=user.user_id)

    return AuthResponse(message="Token refreshed successfully", user=_user(user))


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response) -> MessageResponse:
    """Tell the client to discard both session cookies."""
    _set_cookies(response, render_expired_cookies(secure=settings.is_production))
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=CurrentUserResponse)
@trace_function("current_user_endpoint")
async def current_user(
    http_request: Request,
    auth_service: AuthService = Depends(get_auth_service)
) -> CurrentUserResponse:
    """Return the caller's identity from a verified ``idToken`` cookie or bearer token."""
    user = await auth_service.current_user(extract_token(http_request.headers))
    return CurrentUserResponse(user=_user(user))
