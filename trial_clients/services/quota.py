"""
Quota Service - per-level generation allowances and purchased credits.

NO DICTIONARIES - All operations return strongly typed domain models.

Every decrement is a single conditional UPDATE evaluated by the database,
so concurrent callers can never drive a counter below zero and the
unlimited sentinel (-1) is never touched.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ColumnElement, and_, case, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.db.models import AdminAuditLog, Subscription, as_utc, utc_now
from trial_clients.exceptions import InsufficientCreditsError, WriteVerificationError
from trial_clients.models.api import Level, Plan
from trial_clients.models.domain import QuotaStatus, SubscriptionData
from trial_clients.observability.logging import get_logger
from trial_clients.observability.metrics import metrics
from trial_clients.services.plans import (
    COUNTER_COLUMNS,
    PLAN_LIMITS,
    default_counters,
    is_locked,
    is_unlimited,
    next_reset_at,
    quota_status,
)

logger = get_logger(__name__)


def _refill_value(level: Level) -> ColumnElement[int]:
    """CASE expression giving the period refill value of a counter for the row's plan."""
    return case(
        *[(Subscription.plan == plan.value, default_counters(plan)[level]) for plan in PLAN_LIMITS],
        else_=0,
    )


class QuotaService:
    """
    Quota tracker backed by the subscriptions table.

    Reads never trust a cached value: consumption, refill and credit
    deduction are all decided by conditional UPDATE statements.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize quota service with database session."""
        self.session = session

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_subscription(self, user_id: UUID) -> SubscriptionData | None:
        """Current subscription snapshot, or None if the user has none yet."""
        subscription = await self._find_subscription(user_id)
        if subscription is None:
            return None
        return self._to_domain(subscription)

    async def get_status(
        self, user_id: UUID, level: Level, now: datetime | None = None
    ) -> QuotaStatus:
        """
        Quota status for one level.

        A refill that is due but not yet applied is reported as already
        applied; the write happens on the next consume.
        """
        subscription = await self.get_subscription(user_id)
        if subscription is None:
            return quota_status(None, level, 0)
        return self.status_for(subscription, level, now)

    def status_for(
        self, subscription: SubscriptionData, level: Level, now: datetime | None = None
    ) -> QuotaStatus:
        """Status for one level of an already-loaded subscription."""
        now = now or utc_now()
        if subscription.reset_at is None or subscription.reset_at <= now:
            remaining = default_counters(subscription.plan)[level]
        else:
            remaining = subscription.remaining_for(level)
        return quota_status(subscription.plan, level, remaining)

    # ========================================================================
    # Writes
    # ========================================================================

    async def ensure_subscription(self, user_id: UUID, *, commit: bool = True) -> SubscriptionData:
        """
        Get or lazily create the user's subscription on the free plan.

        A concurrent creator wins via the unique constraint on user_id; the
        loser re-reads the winner's row.
        """
        subscription = await self._find_subscription(user_id)
        if subscription is None:
            counters = default_counters(Plan.FREE)
            new_subscription = Subscription(
                user_id=user_id,
                plan=Plan.FREE.value,
                beginner_left=counters[Level.BEGINNER],
                intermediate_left=counters[Level.INTERMEDIATE],
                veteran_left=counters[Level.VETERAN],
                credits=0,
                reset_at=next_reset_at(),
            )
            try:
                async with self.session.begin_nested():
                    self.session.add(new_subscription)
            except IntegrityError:
                logger.info("subscription_create_race_resolved", user_id=str(user_id))
                subscription = await self._find_subscription(user_id)
                if subscription is None:
                    raise WriteVerificationError(
                        f"Subscription for {user_id} missing after unique violation"
                    )
            else:
                subscription = new_subscription
                logger.info("subscription_created", user_id=str(user_id), plan=Plan.FREE.value)

            if commit:
                await self.session.commit()

        return self._to_domain(subscription)

    async def reset_if_due(
        self, user_id: UUID, now: datetime | None = None, *, commit: bool = True
    ) -> bool:
        """
        Refill all counters to the plan's defaults when the period has ended.

        Idempotent under concurrency: the condition on reset_at lets exactly
        one caller apply the refill for a given period.
        """
        now = now or utc_now()
        stmt = (
            update(Subscription)
            .where(
                and_(
                    Subscription.user_id == user_id,
                    or_(Subscription.reset_at.is_(None), Subscription.reset_at <= now),
                )
            )
            .values(
                beginner_left=_refill_value(Level.BEGINNER),
                intermediate_left=_refill_value(Level.INTERMEDIATE),
                veteran_left=_refill_value(Level.VETERAN),
                reset_at=next_reset_at(now),
                updated_at=now,
            )
            .returning(Subscription.id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        applied = result.first() is not None

        if applied:
            logger.info("quota_period_reset", user_id=str(user_id))
        if commit:
            await self.session.commit()
        return applied

    async def consume(self, user_id: UUID, level: Level, *, commit: bool = True) -> bool:
        """
        Consume one generation of `level`.

        Returns False for a missing subscription, a locked level, an
        exhausted counter, or a plan change that landed between reading the
        plan and decrementing. Unlimited levels succeed without a write.
        """
        await self.reset_if_due(user_id, commit=False)

        subscription = await self._find_subscription(user_id)
        if subscription is None:
            if commit:
                await self.session.commit()
            logger.warning("quota_consume_no_subscription", user_id=str(user_id), level=level.value)
            return False

        plan = Plan(subscription.plan)

        if is_locked(plan, level):
            granted = False
        elif is_unlimited(plan, level):
            granted = True
        else:
            column = getattr(Subscription, COUNTER_COLUMNS[level])
            stmt = (
                update(Subscription)
                .where(
                    Subscription.user_id == user_id,
                    Subscription.plan == plan.value,
                    column > 0,
                )
                .values({COUNTER_COLUMNS[level]: column - 1, "updated_at": utc_now()})
                .returning(column)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            row = result.first()
            granted = row is not None
            if granted:
                logger.info(
                    "quota_consumed",
                    user_id=str(user_id),
                    plan=plan.value,
                    level=level.value,
                    remaining=row[0],
                )

        if commit:
            await self.session.commit()

        metrics.record_quota_consumption(plan.value, level.value, granted)
        if not granted:
            logger.info(
                "quota_consume_denied", user_id=str(user_id), plan=plan.value, level=level.value
            )
        return granted

    async def change_plan(
        self, user_id: UUID, plan: Plan, admin_id: UUID | None = None
    ) -> SubscriptionData:
        """
        Switch plans: overwrite all three counters with the new plan's defaults.

        Counters are never carried over from the previous plan.
        """
        previous = await self.ensure_subscription(user_id, commit=False)
        counters = default_counters(plan)
        now = utc_now()

        stmt = (
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .values(
                plan=plan.value,
                beginner_left=counters[Level.BEGINNER],
                intermediate_left=counters[Level.INTERMEDIATE],
                veteran_left=counters[Level.VETERAN],
                reset_at=next_reset_at(now),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

        if admin_id is not None:
            self.session.add(
                AdminAuditLog(
                    admin_user_id=admin_id,
                    action="change_plan",
                    resource_type="subscription",
                    resource_id=str(user_id),
                    changes={"from": previous.plan.value, "to": plan.value},
                )
            )

        await self.session.commit()

        subscription = await self._find_subscription(user_id)
        if subscription is None or subscription.plan != plan.value:
            raise WriteVerificationError(f"Plan change for {user_id} not visible after commit")

        metrics.plan_changes_total.labels(plan=plan.value).inc()
        logger.info(
            "plan_changed", user_id=str(user_id), from_plan=previous.plan.value, to_plan=plan.value
        )
        return self._to_domain(subscription)

    async def add_credits(
        self, user_id: UUID, amount: int, reason: str, *, commit: bool = True
    ) -> int:
        """Add purchased/earned credits. Returns the new balance."""
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive: {amount}")

        await self.ensure_subscription(user_id, commit=False)
        stmt = (
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .values(credits=Subscription.credits + amount, updated_at=utc_now())
            .returning(Subscription.credits)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        row = result.first()
        if row is None:
            raise WriteVerificationError(f"Subscription for {user_id} missing while adding credits")

        if commit:
            await self.session.commit()

        logger.info(
            "credits_added", user_id=str(user_id), amount=amount, reason=reason, balance=row[0]
        )
        return int(row[0])

    async def consume_credit(self, user_id: UUID, amount: int = 1, *, commit: bool = True) -> int:
        """
        Deduct purchased credits atomically. Returns the new balance.

        Raises:
            InsufficientCreditsError: Balance does not cover `amount`
        """
        stmt = (
            update(Subscription)
            .where(Subscription.user_id == user_id, Subscription.credits >= amount)
            .values(credits=Subscription.credits - amount, updated_at=utc_now())
            .returning(Subscription.credits)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        row = result.first()
        if row is None:
            subscription = await self._find_subscription(user_id)
            balance = subscription.credits if subscription is not None else 0
            if commit:
                await self.session.rollback()
            raise InsufficientCreditsError(balance, amount)

        if commit:
            await self.session.commit()

        logger.info("credits_consumed", user_id=str(user_id), amount=amount, balance=row[0])
        return int(row[0])

    async def adjust_credits(
        self, user_id: UUID, change: int, reason: str, admin_id: UUID
    ) -> int:
        """
        Admin credit adjustment: a positive change adds, a negative one deducts.

        The balance change and its audit row commit together. Returns the
        new balance.

        Raises:
            InsufficientCreditsError: The deduction exceeds the balance
        """
        if change == 0:
            raise ValueError("Credit change must not be zero")

        if change > 0:
            balance = await self.add_credits(user_id, change, reason, commit=False)
        else:
            balance = await self.consume_credit(user_id, -change, commit=False)

        self.session.add(
            AdminAuditLog(
                admin_user_id=admin_id,
                action="adjust_credits",
                resource_type="subscription",
                resource_id=str(user_id),
                changes={"change": change, "reason": reason, "balance": balance},
            )
        )
        await self.session.commit()
        return balance

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_subscription(self, user_id: UUID) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _to_domain(self, subscription: Subscription) -> SubscriptionData:
        """Convert ORM subscription to domain model."""
        return SubscriptionData(
            user_id=subscription.user_id,
            plan=Plan(subscription.plan),
            beginner_left=subscription.beginner_left,
            intermediate_left=subscription.intermediate_left,
            veteran_left=subscription.veteran_left,
            credits=subscription.credits,
            reset_at=as_utc(subscription.reset_at),
        )
