"""
Gamification Service - server-owned XP, levels and one-time badges.

NO DICTIONARIES - All operations return strongly typed domain models.

Callers name an event; the point value always comes from XP_AMOUNTS.
"""

from datetime import date
from typing import Final
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.db.models import UserBadge, UserXP, XPEvent, as_utc, utc_now
from trial_clients.exceptions import InvalidEventTypeError, WriteVerificationError
from trial_clients.models.api import BadgeType, XPEventType
from trial_clients.models.domain import BadgeData, LevelProgress, XPAward
from trial_clients.observability.logging import get_logger
from trial_clients.observability.metrics import metrics

logger = get_logger(__name__)

XP_PER_LEVEL: Final = 1000

XP_AMOUNTS: Final[dict[XPEventType, int]] = {
    XPEventType.PROJECT_CREATED: 100,
    XPEventType.PROJECT_COMPLETED: 150,
    XPEventType.REFERRAL_SUCCESS: 200,
    XPEventType.DAILY_LOGIN: 25,
}

# Granted by the project and referral flows themselves, never on client request
SERVER_AWARDED_EVENTS: Final = frozenset(
    {XPEventType.PROJECT_CREATED, XPEventType.PROJECT_COMPLETED, XPEventType.REFERRAL_SUCCESS}
)

BADGE_NAMES: Final[dict[BadgeType, str]] = {
    BadgeType.FIRST_PROJECT: "First Project",
    BadgeType.LEVEL_5: "Level 5 Achiever",
    BadgeType.LEVEL_10: "Level 10 Master",
    BadgeType.XP_5000: "5000 XP Legend",
    BadgeType.REFERRAL_SUCCESS: "Referral Champion",
    BadgeType.DAILY_STREAK_7: "7 Day Streak",
}

XP_MILESTONE: Final = 5000


def compute_level(total_xp: int) -> int:
    """Level for a total: 0-999 is level 1, 1000-1999 level 2, ..."""
    return max(total_xp, 0) // XP_PER_LEVEL + 1


def level_progress(total_xp: int) -> LevelProgress:
    level = compute_level(total_xp)
    return LevelProgress(
        total_xp=total_xp,
        level=level,
        level_floor=(level - 1) * XP_PER_LEVEL,
        level_ceiling=level * XP_PER_LEVEL,
    )


def badge_display_name(badge_type: str) -> str:
    try:
        return BADGE_NAMES[BadgeType(badge_type)]
    except ValueError:
        return badge_type


def parse_event_type(event_type: str) -> XPEventType:
    """
    Raises:
        InvalidEventTypeError: Not an XP-granting event
    """
    try:
        return XPEventType(event_type)
    except ValueError as exc:
        raise InvalidEventTypeError(event_type) from exc


def triggered_badges(event: XPEventType, old_total: int, new_total: int) -> list[BadgeType]:
    """Badges an award can trigger, before checking what the user already has."""
    badges: list[BadgeType] = []
    if event == XPEventType.PROJECT_CREATED:
        badges.append(BadgeType.FIRST_PROJECT)
    if event == XPEventType.REFERRAL_SUCCESS:
        badges.append(BadgeType.REFERRAL_SUCCESS)

    old_level, new_level = compute_level(old_total), compute_level(new_total)
    if old_level < 5 <= new_level:
        badges.append(BadgeType.LEVEL_5)
    if old_level < 10 <= new_level:
        badges.append(BadgeType.LEVEL_10)
    if new_total >= XP_MILESTONE:
        badges.append(BadgeType.XP_5000)
    return badges


class GamificationService:
    """XP awards, level progress and badges."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize gamification service with database session."""
        self.session = session

    async def award_xp(self, user_id: UUID, event_type: str, *, commit: bool = True) -> XPAward:
        """
        Award the server-defined XP for an event.

        The total is incremented in one UPDATE, so concurrent awards add up
        exactly. Triggered badges are granted at most once each. daily_login
        pays out once per UTC day; repeats return xp_gained=0. The ledger row
        is written before the increment, and a unique index on
        (user_id, event_type, award_date) rejects a second daily_login for
        the same day even when both requests passed the read check.

        Raises:
            InvalidEventTypeError: Unknown event type
        """
        event = parse_event_type(event_type)
        amount = XP_AMOUNTS[event]
        now = utc_now()
        award_date = now.date() if event == XPEventType.DAILY_LOGIN else None

        if award_date is not None and await self._awarded_on(user_id, event, award_date):
            logger.debug("daily_login_already_awarded", user_id=str(user_id))
            return await self._no_award(user_id)

        await self._ensure_xp_row(user_id)

        try:
            async with self.session.begin_nested():
                self.session.add(
                    XPEvent(
                        user_id=user_id,
                        event_type=event.value,
                        xp_gained=amount,
                        award_date=award_date,
                        created_at=now,
                    )
                )
        except IntegrityError:
            logger.debug("daily_login_race_lost", user_id=str(user_id))
            if commit:
                await self.session.commit()
            return await self._no_award(user_id)

        stmt = (
            update(UserXP)
            .where(UserXP.user_id == user_id)
            .values(
                total_xp=UserXP.total_xp + amount,
                level=(UserXP.total_xp + amount) // XP_PER_LEVEL + 1,
                updated_at=utc_now(),
            )
            .returning(UserXP.total_xp)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            raise WriteVerificationError(f"XP row for {user_id} missing after create")

        new_total = int(row[0])
        old_total = new_total - amount
        new_level = compute_level(new_total)
        leveled_up = new_level > compute_level(old_total)

        awarded: list[str] = []
        for badge in triggered_badges(event, old_total, new_total):
            if await self.award_badge(user_id, badge.value, commit=False):
                awarded.append(badge.value)

        if commit:
            await self.session.commit()

        metrics.xp_awarded_total.labels(event_type=event.value).inc(amount)
        logger.info(
            "xp_awarded",
            user_id=str(user_id),
            event_type=event.value,
            xp_gained=amount,
            total_xp=new_total,
            level=new_level,
            leveled_up=leveled_up,
            badges_awarded=awarded,
        )
        return XPAward(
            xp_gained=amount,
            total_xp=new_total,
            level=new_level,
            leveled_up=leveled_up,
            badges_awarded=awarded,
        )

    async def award_badge(self, user_id: UUID, badge_type: str, *, commit: bool = True) -> bool:
        """
        Grant a badge once, ever.

        Returns False when the user already has it, including when a
        concurrent award won the unique constraint.
        """
        badge = BadgeType(badge_type)
        if await self._has_badge(user_id, badge):
            return False

        try:
            async with self.session.begin_nested():
                self.session.add(UserBadge(user_id=user_id, badge_type=badge.value))
        except IntegrityError:
            logger.debug("badge_award_race_lost", user_id=str(user_id), badge_type=badge.value)
            return False

        if commit:
            await self.session.commit()

        metrics.badges_awarded_total.labels(badge_type=badge.value).inc()
        logger.info("badge_awarded", user_id=str(user_id), badge_type=badge.value)
        return True

    async def get_level_progress(self, user_id: UUID) -> LevelProgress:
        stmt = select(UserXP.total_xp).where(UserXP.user_id == user_id)
        total = (await self.session.execute(stmt)).scalar_one_or_none()
        return level_progress(int(total or 0))

    async def list_badges(self, user_id: UUID) -> list[BadgeData]:
        """Badges earned by the user, newest first."""
        stmt = (
            select(UserBadge)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.earned_at.desc())
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [
            BadgeData(badge_type=row.badge_type, earned_at=as_utc(row.earned_at) or utc_now())
            for row in rows
        ]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _ensure_xp_row(self, user_id: UUID) -> None:
        existing = await self.session.execute(select(UserXP.user_id).where(UserXP.user_id == user_id))
        if existing.first() is not None:
            return
        try:
            async with self.session.begin_nested():
                self.session.add(UserXP(user_id=user_id, total_xp=0, level=1))
        except IntegrityError:
            logger.debug("xp_row_create_race_lost", user_id=str(user_id))

    async def _awarded_on(self, user_id: UUID, event: XPEventType, award_date: date) -> bool:
        stmt = select(XPEvent.id).where(
            XPEvent.user_id == user_id,
            XPEvent.event_type == event.value,
            XPEvent.award_date == award_date,
        )
        return (await self.session.execute(stmt)).first() is not None

    async def _no_award(self, user_id: UUID) -> XPAward:
        progress = await self.get_level_progress(user_id)
        return XPAward(
            xp_gained=0, total_xp=progress.total_xp, level=progress.level, leveled_up=False
        )

    async def _has_badge(self, user_id: UUID, badge: BadgeType) -> bool:
        stmt = select(UserBadge.id).where(
            UserBadge.user_id == user_id, UserBadge.badge_type == badge.value
        )
        return (await self.session.execute(stmt)).first() is not None
