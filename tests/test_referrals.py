"""
Tests for ReferralService.
"""

from unittest.mock import AsyncMock, patch
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trial_clients.db.models import Referral, ReferralCode, Subscription, UserXP
from trial_clients.exceptions import (
    InvalidReferralCodeError,
    ReferralAlreadyUsedError,
    SelfReferralError,
)
from trial_clients.services.referrals import (
    CODE_ALPHABET,
    CODE_LENGTH,
    REFERRAL_REWARD_CREDITS,
    ReferralService,
    build_link,
    credits_earned,
    generate_code,
)


async def _credits(session_factory: async_sessionmaker[AsyncSession], user_id: UUID) -> int:
    async with session_factory() as db:
        stmt = select(Subscription.credits).where(Subscription.user_id == user_id)
        return int((await db.execute(stmt)).scalar_one_or_none() or 0)


async def _code_for(session_factory: async_sessionmaker[AsyncSession], user_id: UUID) -> str:
    async with session_factory() as db:
        return await ReferralService(db).get_or_create_code(user_id)


class TestCodes:
    """Tests for referral codes and links."""

    def test_generated_code_shape(self) -> None:
        code = generate_code()
        assert len(code) == CODE_LENGTH
        assert set(code) <= set(CODE_ALPHABET)

    def test_build_link(self) -> None:
        assert build_link("ABCD1234", "https://app.example.com/") == (
            "https://app.example.com/auth?ref=ABCD1234"
        )

    def test_credits_earned(self) -> None:
        assert credits_earned(3) == 3 * REFERRAL_REWARD_CREDITS

    async def test_code_is_stable(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """The same user always gets the same code."""
        user_id = uuid4()
        first = await _code_for(session_factory, user_id)
        second = await _code_for(session_factory, user_id)

        assert first == second

        async with session_factory() as db:
            rows = (await db.execute(select(ReferralCode))).scalars().all()
        assert len(rows) == 1

    async def test_collision_retries_with_new_code(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A code already owned by someone else is replaced by a fresh one."""
        taken = await _code_for(session_factory, uuid4())

        with patch(
            "trial_clients.services.referrals.generate_code",
            side_effect=[taken, "FRESH001"],
        ):
            code = await _code_for(session_factory, uuid4())

        assert code == "FRESH001"


class TestProcessReferral:
    """Tests for redeeming codes."""

    async def test_both_sides_credited(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        referrer, referred = uuid4(), uuid4()
        code = await _code_for(session_factory, referrer)

        async with session_factory() as db:
            result = await ReferralService(db).process_referral(referred, code.lower())

        assert result.ok is True
        assert result.referrer_credited is True
        assert await _credits(session_factory, referred) == REFERRAL_REWARD_CREDITS
        assert await _credits(session_factory, referrer) == REFERRAL_REWARD_CREDITS

        async with session_factory() as db:
            xp = await db.get(UserXP, referrer)
            stats = await ReferralService(db).get_stats(referrer)
        assert xp is not None and xp.total_xp == 200
        assert stats.total_referrals == 1
        assert stats.credits_earned == REFERRAL_REWARD_CREDITS

    async def test_referral_is_one_time(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A referred user can redeem once, even with a different code."""
        referred = uuid4()
        code_a = await _code_for(session_factory, uuid4())
        code_b = await _code_for(session_factory, uuid4())

        async with session_factory() as db:
            service = ReferralService(db)
            await service.process_referral(referred, code_a)
            with pytest.raises(ReferralAlreadyUsedError):
                await service.process_referral(referred, code_b)

        assert await _credits(session_factory, referred) == REFERRAL_REWARD_CREDITS

    async def test_self_referral(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        user_id = uuid4()
        code = await _code_for(session_factory, user_id)

        async with session_factory() as db:
            with pytest.raises(SelfReferralError):
                await ReferralService(db).process_referral(user_id, code)

    async def test_unknown_code(self, session: AsyncSession) -> None:
        with pytest.raises(InvalidReferralCodeError):
            await ReferralService(session).process_referral(uuid4(), "NOPE0000")

    async def test_daily_cap_records_without_crediting_referrer(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Past the daily cap the referral is recorded; only the referred user is paid."""
        referrer = uuid4()
        code = await _code_for(session_factory, referrer)
        second_referred = uuid4()

        async with session_factory() as db:
            service = ReferralService(db, daily_cap=1)
            first = await service.process_referral(uuid4(), code)
            second = await service.process_referral(second_referred, code)

        assert first.referrer_credited is True
        assert second.referrer_credited is False
        assert await _credits(session_factory, referrer) == REFERRAL_REWARD_CREDITS
        assert await _credits(session_factory, second_referred) == REFERRAL_REWARD_CREDITS

        async with session_factory() as db:
            referrals = (await db.execute(select(Referral))).scalars().all()
            stats = await ReferralService(db).get_stats(referrer)
        assert len(referrals) == 2
        assert stats.total_referrals == 2
        assert stats.credits_earned == REFERRAL_REWARD_CREDITS

    async def test_lookup_failure_propagates(self, db_session: AsyncMock) -> None:
        """Database errors are not swallowed."""
        db_session.execute.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await ReferralService(db_session).process_referral(uuid4(), "ABCD1234")
