"""
Keyed store for in-flight login attempts.

Maps an opaque attempt session id to its LoginAttempt. Attempts expire a
fixed time after creation; an expired attempt is indistinguishable from an
unknown one.
"""

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Dict, Optional

from src.models.internal_models import LoginAttempt
from src.utils.phone import mask_phone

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPT_TTL = 300  # 5 minutes


class AttemptNotFoundError(KeyError):
    """Raised when an attempt is unknown or has expired."""


class ChallengeStore(ABC):
    """Interface for login attempt persistence."""

    @abstractmethod
    async def create(self, subject: str) -> LoginAttempt:
        """Create a fresh attempt at round 0."""

    @abstractmethod
    async def get(self, attempt_session: str) -> Optional[LoginAttempt]:
        """Return the live attempt, or None if unknown or expired."""

    @abstractmethod
    async def save(self, attempt: LoginAttempt) -> LoginAttempt:
        """Persist challenge issuance state (code, phase, delivered round)."""

    @abstractmethod
    async def advance(self, attempt_session: str, correct: bool) -> LoginAttempt:
        """Record one answered round."""

    @abstractmethod
    async def expire(self, attempt_session: str) -> None:
        """Discard an attempt."""


class InMemoryChallengeStore(ChallengeStore):
    """
    Process-local challenge store.

    Attempts live in a dict guarded by an asyncio lock. Expired entries are
    purged lazily on access.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_ATTEMPT_TTL, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the store.

        Args:
            ttl_seconds: Attempt lifetime from creation
            clock: Monotonic time source, injectable for tests
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._attempts: Dict[str, LoginAttempt] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._attempts)

    def _is_expired(self, attempt: LoginAttempt) -> bool:
        return attempt.expires_at is not None and self._clock() >= attempt.expires_at

    def _live(self, attempt_session: str) -> Optional[LoginAttempt]:
        attempt = self._attempts.get(attempt_session)
        if attempt is None:
            return None
        if self._is_expired(attempt):
            logger.info(f"Login attempt for {mask_phone(attempt.subject)} expired")
            del self._attempts[attempt_session]
            return None
        return attempt

    async def create(self, subject: str) -> LoginAttempt:
        attempt = LoginAttempt(
            attempt_session=secrets.token_urlsafe(32),
            subject=subject,
            expires_at=self._clock() + self.ttl_seconds,
        )
        async with self._lock:
            self._attempts[attempt.attempt_session] = attempt
        logger.debug(f"Created login attempt for {mask_phone(subject)}")
        return replace(attempt)

    async def get(self, attempt_session: str) -> Optional[LoginAttempt]:
        async with self._lock:
            attempt = self._live(attempt_session)
            return replace(attempt) if attempt else None

    async def save(self, attempt: LoginAttempt) -> LoginAttempt:
        async with self._lock:
            current = self._live(attempt.attempt_session)
            if current is None:
                raise AttemptNotFoundError(attempt.attempt_session)
            # Round counting and expiry are owned by the store
            updated = replace(
                attempt,
                round_index=current.round_index,
                last_result=current.last_result,
                expires_at=current.expires_at,
            )
            self._attempts[attempt.attempt_session] = updated
            return replace(updated)

    async def advance(self, attempt_session: str, correct: bool) -> LoginAttempt:
        async with self._lock:
            current = self._live(attempt_session)
            if current is None:
                raise AttemptNotFoundError(attempt_session)
            updated = replace(current, round_index=current.round_index + 1, last_result=correct)
            self._attempts[attempt_session] = updated
            return replace(updated)

    async def expire(self, attempt_session: str) -> None:
        async with self._lock:
            attempt = self._attempts.pop(attempt_session, None)
        if attempt is not None:
            logger.debug(f"Discarded login attempt for {mask_phone(attempt.subject)}")

    async def purge_expired(self) -> int:
        """Drop every expired attempt; returns the number removed."""
        async with self._lock:
            expired = [key for key, attempt in self._attempts.items() if self._is_expired(attempt)]
            for key in expired:
                del self._attempts[key]
        return len(expired)

