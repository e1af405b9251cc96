"""
OTP engine and challenge state machine for the custom authentication flow.

This module provides:
- Pure policy functions shared with the Cognito trigger handlers
  (code generation, constant-time matching, next-step decision)
- OTPEngine, a store-backed challenge issuer/verifier
- Best-effort out-of-band code delivery

State machine per attempt (``round_index`` counts answered rounds):

    START -> AWAITING_ANSWER -> SUCCESS
                 |  ^
                 v  |  (incorrect, rounds < max)
             AWAITING_ANSWER -> FAILURE (incorrect, rounds >= max)
"""

import asyncio
import hmac
import logging
import secrets
from dataclasses import replace
from typing import Optional

from src.clients.sms_client import MessageSender
from src.models.internal_models import ChallengeOutcome, ChallengePhase, LoginAttempt
from src.services.challenge_store import AttemptNotFoundError, ChallengeStore
from src.services.errors import ChallengeExpiredError, ChallengeFailedError, ValidationError
from src.utils.phone import is_e164, mask_phone

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 3
CODE_MIN = 100000
CODE_MAX = 999999

MESSAGE_TEMPLATE = "Your {brand} verification code is: {code}. This code expires in 5 minutes."


def validate_phone_number(phone: Optional[str]) -> str:
    """
    Validate an E.164 phone number.

    Raises:
        ValidationError: If the number is missing or malformed
    """
    if not phone:
        raise ValidationError("Phone number is required")
    if not is_e164(phone):
        raise ValidationError("Invalid phone number format. Use E.164 format (e.g., +12345678900)")
    return phone


def generate_code() -> str:
    """Generate a uniformly random 6-digit code in 100000..999999."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def codes_match(submitted: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of a submitted answer against the stored code."""
    if not expected or submitted is None:
        return False
    return hmac.compare_digest(submitted.strip().encode(), expected.encode())


def decide_next_step(
    rounds_completed: int,
    last_correct: Optional[bool],
    max_rounds: int = DEFAULT_MAX_ROUNDS
) -> ChallengePhase:
    """
    Decide what follows the last answered round.

    Args:
        rounds_completed: Number of challenge/response rounds answered so far
        last_correct: Outcome of the most recent answer (None before any)
        max_rounds: Incorrect answers tolerated before failing

    Returns:
        AWAITING_ANSWER to issue a challenge, SUCCESS to issue tokens,
        or FAILURE to deny authentication
    """
    if rounds_completed == 0:
        return ChallengePhase.AWAITING_ANSWER
    if last_correct:
        return ChallengePhase.SUCCESS
    if rounds_completed < max_rounds:
        return ChallengePhase.AWAITING_ANSWER
    return ChallengePhase.FAILURE


def render_message(code: str, brand_name: str = "WyzeSecure") -> str:
    return MESSAGE_TEMPLATE.format(brand=brand_name, code=code)


async def deliver_code(
    sender: MessageSender,
    destination: str,
    code: str,
    timeout: float = 3.0,
    brand_name: str = "WyzeSecure"
) -> bool:
    """
    Send a code out-of-band, best-effort.

    Failures and timeouts are logged and swallowed; the issued code stays valid.

    Returns:
        True if the sender accepted the message, False otherwise
    """
    try:
        await asyncio.wait_for(sender.send(destination, render_message(code, brand_name)), timeout=timeout)
        logger.info(f"OTP delivered to {mask_phone(destination)}")
        return True
    except asyncio.TimeoutError:
        logger.error(f"OTP delivery to {mask_phone(destination)} timed out after {timeout}s")
    except Exception as e:
        logger.error(f"OTP delivery to {mask_phone(destination)} failed: {e}")
    return False


def select_code(attempt: LoginAttempt, regenerate_on_retry: bool = False) -> str:
    """
    Pick the code for the attempt's current round.

    A code already issued is reused so a user who opened the challenge twice
    still holds a valid SMS. ``regenerate_on_retry`` draws a fresh code when
    a new round follows an incorrect answer.
    """
    if attempt.pending_code is None:
        return generate_code()
    if regenerate_on_retry and attempt.last_result is False and attempt.delivered_round != attempt.round_index:
        return generate_code()
    return attempt.pending_code


class OTPEngine:
    """
    Challenge issuer/verifier driving login attempts through a ChallengeStore.

    Delivery of codes is best-effort: a failed or slow send is logged and the
    round remains valid.
    """

    def __init__(
        self,
        store: ChallengeStore,
        sender: MessageSender,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        regenerate_on_retry: bool = False,
        delivery_timeout: float = 3.0,
        brand_name: str = "WyzeSecure"
    ):
        self.store = store
        self.sender = sender
        self.max_rounds = max_rounds
        self.regenerate_on_retry = regenerate_on_retry
        self.delivery_timeout = delivery_timeout
        self.brand_name = brand_name

    async def deliver_code(self, destination: str, code: str) -> bool:
        return await deliver_code(
            self.sender, destination, code, timeout=self.delivery_timeout, brand_name=self.brand_name
        )

    async def start(self, subject: str) -> LoginAttempt:
        """
        Begin a login attempt and issue its first challenge.

        Raises:
            ValidationError: If the phone number is malformed; nothing is sent
        """
        validate_phone_number(subject)
        attempt = await self.store.create(subject)
        logger.info(f"Starting OTP challenge for {mask_phone(subject)}")
        return await self.issue_challenge(attempt)

    async def issue_challenge(self, attempt: LoginAttempt) -> LoginAttempt:
        """
        Issue (or re-issue) the challenge for the attempt's current round.

        Re-invoking before an answer arrives reuses the stored code and sends
        nothing new; each new round is delivered exactly once.
        """
        if attempt.phase.is_terminal:
            raise ChallengeFailedError("Authentication attempt is closed", reason=attempt.phase.value)

        code = select_code(attempt, self.regenerate_on_retry)
        needs_delivery = attempt.delivered_round != attempt.round_index or code != attempt.pending_code

        attempt = replace(attempt, pending_code=code, phase=ChallengePhase.AWAITING_ANSWER)
        if needs_delivery:
            await self.deliver_code(attempt.subject, code)
            attempt = replace(attempt, delivered_round=attempt.round_index)

        try:
            return await self.store.save(attempt)
        except AttemptNotFoundError:
            raise _expired()

    async def resend(self, attempt_session: str) -> LoginAttempt:
        """Re-invoke challenge creation for a live attempt."""
        attempt = await self._live_attempt(attempt_session)
        return await self.issue_challenge(attempt)

    async def submit(self, attempt_session: str, answer: str) -> ChallengeOutcome:
        """
        Verify an answer and advance the state machine.

        Returns:
            ChallengeOutcome with SUCCESS, AWAITING_ANSWER (retry) or FAILURE

        Raises:
            ChallengeExpiredError: Attempt unknown or past its window
            ChallengeFailedError: Attempt already terminal
        """
        attempt = await self._live_attempt(attempt_session)
        if attempt.phase != ChallengePhase.AWAITING_ANSWER:
            raise ChallengeFailedError("No challenge is awaiting an answer", reason=attempt.phase.value)

        correct = codes_match(answer, attempt.pending_code)
        try:
            attempt = await self.store.advance(attempt_session, correct)
        except AttemptNotFoundError:
            raise _expired()
        phase = decide_next_step(attempt.round_index, correct, self.max_rounds)

        logger.info(
            f"OTP answer for {mask_phone(attempt.subject)}: "
            f"{'correct' if correct else 'incorrect'}, round {attempt.round_index}, next {phase.value}"
        )

        if phase == ChallengePhase.AWAITING_ANSWER:
            attempt = await self.issue_challenge(attempt)
        else:
            await self.store.expire(attempt_session)
            attempt = replace(attempt, phase=phase)

        return ChallengeOutcome(phase=phase, attempt=attempt, correct=correct)

    async def _live_attempt(self, attempt_session: str) -> LoginAttempt:
        attempt = await self.store.get(attempt_session)
        if attempt is None:
            raise _expired()
        return attempt


def _expired() -> ChallengeExpiredError:
    return ChallengeExpiredError("OTP session expired, request a new code", reason="attempt_expired")
