"""
Cognito custom authentication flow triggers.

Cognito owns the challenge state between calls and hands each trigger the
session history of the attempt. The handlers rebuild a LoginAttempt from that
history and apply the same policy functions as the OTP engine:

- define: decide_next_step (issue challenge, issue tokens, or fail)
- create: select_code, reusing the code carried in the previous round's
  ``challengeMetadata``, then best-effort SMS delivery
- verify: constant-time codes_match against ``privateChallengeParameters``
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from src.clients.sms_client import MessageSender, SNSMessageSender
from src.config import settings
from src.models.internal_models import ChallengePhase, LoginAttempt
from src.services.otp_engine import codes_match, decide_next_step, deliver_code, select_code
from src.utils.phone import mask_phone

logger = logging.getLogger(__name__)

CUSTOM_CHALLENGE = "CUSTOM_CHALLENGE"

_sender: Optional[MessageSender] = None


def get_sender() -> MessageSender:
    """Get the SNS sender, reused across warm invocations."""
    global _sender
    if _sender is None:
        _sender = SNSMessageSender(region=settings.cognito_region, timeout=settings.sms_delivery_timeout)
    return _sender


def _attempt(event: Dict[str, Any]) -> LoginAttempt:
    request = event.get("request") or {}
    phone = (request.get("userAttributes") or {}).get("phone_number") or event.get("userName", "")
    return LoginAttempt.from_cognito_session(phone, request.get("session") or [])


def define_auth_challenge(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Decide the next step of the custom auth flow from the session history."""
    attempt = _attempt(event)
    phase = decide_next_step(attempt.round_index, attempt.last_result, settings.otp_max_rounds)

    response = event.setdefault("response", {})
    response["issueTokens"] = phase == ChallengePhase.SUCCESS
    response["failAuthentication"] = phase == ChallengePhase.FAILURE
    if phase == ChallengePhase.AWAITING_ANSWER:
        response["challengeName"] = CUSTOM_CHALLENGE

    logger.info(
        f"Define challenge for {mask_phone(attempt.subject)}: "
        f"round {attempt.round_index}, next {phase.value}"
    )
    return event


def create_auth_challenge(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """
    Issue the OTP for the current round and send it by SMS.

    The code travels to the verify trigger in ``privateChallengeParameters``
    and to the next round in ``challengeMetadata``. Delivery failures are
    logged; the challenge is still created.
    """
    attempt = _attempt(event)
    if not attempt.subject:
        raise ValueError("User has no phone_number attribute")

    code = select_code(attempt, settings.otp_regenerate_on_retry)
    if code == attempt.pending_code:
        logger.info(f"Reusing OTP from previous round for {mask_phone(attempt.subject)}")

    response = event.setdefault("response", {})
    response["publicChallengeParameters"] = {"phoneNumber": mask_phone(attempt.subject)}
    response["privateChallengeParameters"] = {"otp": code}
    response["challengeMetadata"] = code

    asyncio.run(
        deliver_code(
            get_sender(),
            attempt.subject,
            code,
            timeout=settings.sms_delivery_timeout,
            brand_name=settings.otp_brand_name
        )
    )
    return event


def verify_auth_challenge(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Compare the submitted answer with the issued code."""
    request = event.get("request") or {}
    expected = (request.get("privateChallengeParameters") or {}).get("otp")
    answer = request.get("challengeAnswer")

    correct = codes_match(answer, expected)
    event.setdefault("response", {})["answerCorrect"] = correct

    phone = (request.get("userAttributes") or {}).get("phone_number", "")
    logger.info(f"OTP answer for {mask_phone(phone)} {'accepted' if correct else 'rejected'}")
    return event


def pre_authentication(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """
    Let unconfirmed users into the custom auth flow.

    Passing the OTP challenge is what confirms a newly registered number.
    """
    user_not_found = (event.get("request") or {}).get("userNotFound", False)
    logger.info(f"Pre-authentication: user {'not found' if user_not_found else 'found'}")
    return event
