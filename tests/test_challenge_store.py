"""
Tests for the in-memory challenge store.
"""

from dataclasses import replace

import pytest

from src.models.internal_models import ChallengePhase
from src.services.challenge_store import AttemptNotFoundError, InMemoryChallengeStore
from tests.factories import PHONE


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestInMemoryChallengeStore:
    """Test cases for InMemoryChallengeStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return InMemoryChallengeStore(ttl_seconds=300, clock=clock)

    @pytest.mark.asyncio
    async def test_create_starts_at_round_zero(self, store):
        attempt = await store.create(PHONE)

        assert attempt.round_index == 0
        assert attempt.phase == ChallengePhase.START
        assert attempt.expires_at == 300
        assert len(attempt.attempt_session) >= 32

    @pytest.mark.asyncio
    async def test_sessions_are_unique(self, store):
        first = await store.create(PHONE)
        second = await store.create(PHONE)
        assert first.attempt_session != second.attempt_session

    @pytest.mark.asyncio
    async def test_advance_counts_rounds(self, store):
        attempt = await store.create(PHONE)

        await store.advance(attempt.attempt_session, False)
        advanced = await store.advance(attempt.attempt_session, True)

        assert advanced.round_index == 2
        assert advanced.last_result is True

    @pytest.mark.asyncio
    async def test_save_cannot_rewind_rounds(self, store):
        attempt = await store.create(PHONE)
        await store.advance(attempt.attempt_session, False)

        saved = await store.save(replace(attempt, pending_code="123456", round_index=0))

        assert saved.round_index == 1
        assert saved.pending_code == "123456"

    @pytest.mark.asyncio
    async def test_returned_attempts_are_copies(self, store):
        attempt = await store.create(PHONE)
        attempt.pending_code = "999999"

        stored = await store.get(attempt.attempt_session)
        assert stored.pending_code is None

    @pytest.mark.asyncio
    async def test_expiry(self, store, clock):
        attempt = await store.create(PHONE)

        clock.now = 299
        assert await store.get(attempt.attempt_session) is not None

        clock.now = 300
        assert await store.get(attempt.attempt_session) is None
        with pytest.raises(AttemptNotFoundError):
            await store.advance(attempt.attempt_session, True)

    @pytest.mark.asyncio
    async def test_expire_discards(self, store):
        attempt = await store.create(PHONE)
        await store.expire(attempt.attempt_session)

        assert await store.get(attempt.attempt_session) is None
        with pytest.raises(AttemptNotFoundError):
            await store.save(attempt)

    @pytest.mark.asyncio
    async def test_purge_expired(self, store, clock):
        await store.create(PHONE)
        clock.now = 100
        await store.create(PHONE)

        clock.now = 350
        assert await store.purge_expired() == 1
        assert len(store) == 1
