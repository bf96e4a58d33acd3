"""
Referral Service - invite codes, one-time referral bonus, referrer stats.

NO DICTIONARIES - All operations return strongly typed domain models.
"""

import secrets
import string
from datetime import UTC, datetime, timedelta
from typing import Final
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.db.models import Referral, ReferralCode, Subscription, utc_now
from trial_clients.exceptions import (
    InvalidReferralCodeError,
    ReferralAlreadyUsedError,
    SelfReferralError,
    WriteVerificationError,
)
from trial_clients.models.api import XPEventType
from trial_clients.models.domain import ReferralResult, ReferralStats
from trial_clients.observability.logging import get_logger
from trial_clients.observability.metrics import metrics
from trial_clients.services.gamification import GamificationService
from trial_clients.services.quota import QuotaService

logger = get_logger(__name__)

REFERRAL_REWARD_CREDITS: Final = 2
CODE_LENGTH: Final = 8
CODE_ALPHABET: Final = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS: Final = 5


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def build_link(code: str, base_url: str) -> str:
    """Shareable sign-up link carrying the code."""
    return f"{base_url.rstrip('/')}/auth?ref={code}"


def credits_earned(credited_referrals: int) -> int:
    return credited_referrals * REFERRAL_REWARD_CREDITS


def _start_of_utc_day(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day, tzinfo=UTC)


class ReferralService:
    """Referral codes and redemption."""

    def __init__(
        self,
        session: AsyncSession,
        reward_credits: int = REFERRAL_REWARD_CREDITS,
        daily_cap: int = 1,
    ) -> None:
        """Initialize with database session and reward policy."""
        self.session = session
        self.reward_credits = reward_credits
        self.daily_cap = daily_cap

    async def get_or_create_code(self, user_id: UUID) -> str:
        """
        The user's referral code, created on first use.

        Codes never change once stored. A concurrent creator for the same
        user wins via the unique constraint; the loser returns the winner's
        code. A collision with another user's code retries with a new one.
        """
        existing = await self._find_code(user_id)
        if existing is not None:
            return existing

        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            code = generate_code()
            try:
                async with self.session.begin_nested():
                    self.session.add(ReferralCode(user_id=user_id, code=code))
            except IntegrityError:
                winner = await self._find_code(user_id)
                if winner is not None:
                    logger.info("referral_code_race_resolved", user_id=str(user_id))
                    await self.session.commit()
                    return winner
                logger.warning("referral_code_collision", user_id=str(user_id), attempt=attempt)
                continue

            await self.session.commit()
            logger.info("referral_code_created", user_id=str(user_id))
            return code

        raise WriteVerificationError(
            f"Could not allocate a unique referral code for {user_id} "
            f"after {MAX_CODE_ATTEMPTS} attempts"
        )

    async def get_stats(self, user_id: UUID) -> ReferralStats:
        """Referral counts for a referrer; credits count only rewarded referrals."""
        total_stmt = select(func.count()).select_from(Referral).where(
            Referral.referrer_id == user_id
        )
        credited_stmt = total_stmt.where(Referral.credits_awarded.is_(True))

        total = (await self.session.execute(total_stmt)).scalar_one()
        credited = (await self.session.execute(credited_stmt)).scalar_one()
        return ReferralStats(total_referrals=int(total), credits_earned=credits_earned(int(credited)))

    async def process_referral(self, referred_id: UUID, code: str) -> ReferralResult:
        """
        Redeem a referral code for a newly signed-up user.

        The referred user is rewarded once, ever. The referrer is rewarded
        for at most `daily_cap` referrals per UTC day; beyond that the
        referral is still recorded, just not credited.

        Raises:
            InvalidReferralCodeError: Code doesn't exist
            SelfReferralError: Code belongs to the referred user
            ReferralAlreadyUsedError: Referred user was already referred
        """
        code = code.strip().upper()
        referrer_id = await self._find_owner(code)
        if referrer_id is None:
            metrics.referrals_total.labels(outcome="invalid_code").inc()
            raise InvalidReferralCodeError(code)
        if referrer_id == referred_id:
            metrics.referrals_total.labels(outcome="self_referral").inc()
            raise SelfReferralError(referred_id)

        if await self._already_referred(referred_id):
            metrics.referrals_total.labels(outcome="already_referred").inc()
            raise ReferralAlreadyUsedError(referred_id)

        quota = QuotaService(self.session)
        await quota.ensure_subscription(referrer_id, commit=False)
        # Serializes concurrent redemptions for the same referrer around the cap check
        await self.session.execute(
            select(Subscription.id).where(Subscription.user_id == referrer_id).with_for_update()
        )

        now = utc_now()
        credited_today_stmt = (
            select(func.count())
            .select_from(Referral)
            .where(
                Referral.referrer_id == referrer_id,
                Referral.credits_awarded.is_(True),
                Referral.created_at >= _start_of_utc_day(now),
                Referral.created_at < _start_of_utc_day(now) + timedelta(days=1),
            )
        )
        credited_today = (await self.session.execute(credited_today_stmt)).scalar_one()
        referrer_credited = int(credited_today) < self.daily_cap

        referral = Referral(
            referrer_id=referrer_id,
            referred_id=referred_id,
            referral_code=code,
            credits_awarded=referrer_credited,
            created_at=now,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(referral)
        except IntegrityError:
            await self.session.rollback()
            metrics.referrals_total.labels(outcome="already_referred").inc()
            raise ReferralAlreadyUsedError(referred_id)

        await quota.add_credits(referred_id, self.reward_credits, reason="referral_signup", commit=False)
        if referrer_credited:
            await quota.add_credits(
                referrer_id, self.reward_credits, reason="referral_reward", commit=False
            )
        await GamificationService(self.session).award_xp(
            referrer_id, XPEventType.REFERRAL_SUCCESS.value, commit=False
        )

        await self.session.commit()

        metrics.referrals_total.labels(
            outcome="credited" if referrer_credited else "capped"
        ).inc()
        logger.info(
            "referral_processed",
            referrer_id=str(referrer_id),
            referred_id=str(referred_id),
            referrer_credited=referrer_credited,
        )
        return ReferralResult(
            ok=True,
            referred_credits=self.reward_credits,
            referrer_credited=referrer_credited,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_code(self, user_id: UUID) -> str | None:
        stmt = select(ReferralCode.code).where(ReferralCode.user_id == user_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _already_referred(self, referred_id: UUID) -> bool:
        stmt = select(Referral.id).where(Referral.referred_id == referred_id)
        return (await self.session.execute(stmt)).first() is not None

    async def _find_owner(self, code: str) -> UUID | None:
        stmt = select(ReferralCode.user_id).where(ReferralCode.code == code)
        return (await self.session.execute(stmt)).scalar_one_or_none()
