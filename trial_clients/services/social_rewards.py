"""
Social Reward Service - cooldown-gated "post about us, earn credits" flow.

NO DICTIONARIES - All operations return strongly typed domain models.

Lifecycle of a request: pending -> approved | rejected, decided once by an
admin. Eligibility is always computed here from the server clock; callers
only ever display it.
"""

import math
from datetime import datetime, timedelta
from typing import Final
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.db.models import AdminAuditLog, SocialRewardRequest, as_utc, utc_now
from trial_clients.exceptions import (
    CooldownActiveError,
    DuplicatePostUrlError,
    InvalidSocialUrlError,
    InvalidStatusTransitionError,
    PendingRequestExistsError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from trial_clients.models.api import Platform, RequestStatus
from trial_clients.models.domain import CooldownState, SocialRewardRequestData
from trial_clients.observability.logging import get_logger
from trial_clients.observability.metrics import metrics
from trial_clients.services.quota import QuotaService
from trial_clients.services.social_url import platform_for_host, validate_social_url

logger = get_logger(__name__)

REASON_PENDING: Final = "pending_review"
REASON_COOLDOWN: Final = "cooldown_active"
REASON_ELIGIBLE: Final = "eligible"


class SocialRewardService:
    """Social reward requests, cooldown eligibility and admin review."""

    def __init__(self, session: AsyncSession, cooldown_days: int = 7) -> None:
        """Initialize with database session and cooldown window length."""
        self.session = session
        self.cooldown = timedelta(days=cooldown_days)

    async def get_cooldown(self, user_id: UUID, now: datetime | None = None) -> CooldownState:
        """
        Eligibility to submit a new request.

        Pure read: calling it any number of times changes nothing.
        """
        now = now or utc_now()

        if await self._has_pending(user_id):
            return CooldownState(allowed=False, reason=REASON_PENDING, now=now)

        last_approved_at = await self._last_approved_at(user_id)
        if last_approved_at is not None:
            cooldown_end = last_approved_at + self.cooldown
            if cooldown_end > now:
                ms_remaining = math.ceil((cooldown_end - now).total_seconds() * 1000)
                return CooldownState(
                    allowed=False,
                    reason=REASON_COOLDOWN,
                    now=now,
                    last_approved_at=last_approved_at,
                    cooldown_end=cooldown_end,
                    ms_remaining=ms_remaining,
                )

        return CooldownState(
            allowed=True, reason=REASON_ELIGIBLE, now=now, last_approved_at=last_approved_at
        )

    async def submit(
        self, user_id: UUID, platform: Platform, post_url: str
    ) -> SocialRewardRequestData:
        """
        Submit a post for review.

        Raises:
            InvalidSocialUrlError: URL fails validation or names another platform
            PendingRequestExistsError: User already has a pending request
            CooldownActiveError: Last approval is inside the cooldown window
            DuplicatePostUrlError: URL was already submitted by anyone
        """
        post_url = post_url.strip()
        validation = validate_social_url(post_url)
        if not validation.valid:
            metrics.social_reward_submissions_total.labels(outcome="invalid_url").inc()
            raise InvalidSocialUrlError(post_url, validation.error or "Invalid URL")

        if platform_for_host(post_url) != platform:
            metrics.social_reward_submissions_total.labels(outcome="invalid_url").inc()
            raise InvalidSocialUrlError(post_url, "URL does not match the selected platform")

        state = await self.get_cooldown(user_id)
        if not state.allowed:
            metrics.social_reward_submissions_total.labels(outcome=state.reason).inc()
            if state.reason == REASON_PENDING:
                raise PendingRequestExistsError(user_id)
            if state.cooldown_end is None or state.ms_remaining is None:
                raise WriteVerificationError(f"Cooldown for {user_id} has no end time")
            raise CooldownActiveError(state.cooldown_end, state.ms_remaining)

        request = SocialRewardRequest(
            user_id=user_id,
            platform=platform.value,
            post_url=post_url,
            status=RequestStatus.PENDING.value,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(request)
        except IntegrityError:
            if await self._post_url_exists(post_url):
                metrics.social_reward_submissions_total.labels(outcome="duplicate_url").inc()
                raise DuplicatePostUrlError(post_url)
            metrics.social_reward_submissions_total.labels(outcome=REASON_PENDING).inc()
            raise PendingRequestExistsError(user_id)

        await self.session.commit()

        metrics.social_reward_submissions_total.labels(outcome="submitted").inc()
        logger.info(
            "social_reward_submitted",
            user_id=str(user_id),
            request_id=str(request.id),
            platform=platform.value,
        )
        return self._to_domain(request)

    async def latest_request(self, user_id: UUID) -> SocialRewardRequestData | None:
        """Most recent request of a user, any status."""
        stmt = (
            select(SocialRewardRequest)
            .where(SocialRewardRequest.user_id == user_id)
            .order_by(SocialRewardRequest.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        request = result.scalar_one_or_none()
        return self._to_domain(request) if request is not None else None

    async def list_requests(
        self, status: RequestStatus | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[SocialRewardRequestData], int]:
        """Admin listing, newest first, with the total count for the filter."""
        stmt = select(SocialRewardRequest)
        count_stmt = select(func.count()).select_from(SocialRewardRequest)
        if status is not None:
            stmt = stmt.where(SocialRewardRequest.status == status.value)
            count_stmt = count_stmt.where(SocialRewardRequest.status == status.value)

        stmt = stmt.order_by(SocialRewardRequest.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        requests = [self._to_domain(r) for r in result.scalars().all()]

        total = (await self.session.execute(count_stmt)).scalar_one()
        return requests, int(total)

    async def review(
        self,
        admin_id: UUID,
        request_id: UUID,
        approved: bool,
        credits_amount: int = 3,
        rejection_reason: str | None = None,
    ) -> SocialRewardRequestData:
        """
        Approve or reject a pending request.

        Approval credits the user in the same transaction as the status
        change. Only pending requests can be reviewed.

        Raises:
            ResourceNotFoundError: No such request
            InvalidStatusTransitionError: Request was already reviewed
        """
        stmt = (
            select(SocialRewardRequest)
            .where(SocialRewardRequest.id == request_id)
            .with_for_update()
        )
        request = (await self.session.execute(stmt)).scalar_one_or_none()
        if request is None:
            raise ResourceNotFoundError("social_reward_request", str(request_id))

        new_status = RequestStatus.APPROVED if approved else RequestStatus.REJECTED
        now = utc_now()
        update_stmt = (
            update(SocialRewardRequest)
            .where(
                SocialRewardRequest.id == request_id,
                SocialRewardRequest.status == RequestStatus.PENDING.value,
            )
            .values(
                status=new_status.value,
                credits_awarded=credits_amount if approved else None,
                rejection_reason=None if approved else rejection_reason,
                reviewed_by=admin_id,
                reviewed_at=now,
            )
            .returning(SocialRewardRequest.id)
            .execution_options(synchronize_session=False)
        )
        current_status = request.status
        user_id = request.user_id
        if (await self.session.execute(update_stmt)).first() is None:
            await self.session.rollback()
            raise InvalidStatusTransitionError(request_id, current_status)

        if approved and credits_amount > 0:
            await QuotaService(self.session).add_credits(
                user_id, credits_amount, reason="social_reward", commit=False
            )

        self.session.add(
            AdminAuditLog(
                admin_user_id=admin_id,
                action=f"social_reward_{new_status.value}",
                resource_type="social_reward_request",
                resource_id=str(request_id),
                changes={
                    "credits_awarded": credits_amount if approved else None,
                    "rejection_reason": rejection_reason,
                },
            )
        )
        await self.session.commit()

        reviewed = await self._find_request(request_id)
        if reviewed is None or reviewed.status != new_status.value:
            raise WriteVerificationError(f"Review of {request_id} not visible after commit")

        metrics.social_reward_reviews_total.labels(outcome=new_status.value).inc()
        logger.info(
            "social_reward_reviewed",
            request_id=str(request_id),
            admin_id=str(admin_id),
            status=new_status.value,
            credits_awarded=credits_amount if approved else 0,
        )
        return self._to_domain(reviewed)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_request(self, request_id: UUID) -> SocialRewardRequest | None:
        stmt = (
            select(SocialRewardRequest)
            .where(SocialRewardRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _has_pending(self, user_id: UUID) -> bool:
        stmt = select(SocialRewardRequest.id).where(
            SocialRewardRequest.user_id == user_id,
            SocialRewardRequest.status == RequestStatus.PENDING.value,
        )
        return (await self.session.execute(stmt)).first() is not None

    async def _last_approved_at(self, user_id: UUID) -> datetime | None:
        stmt = select(func.max(SocialRewardRequest.reviewed_at)).where(
            SocialRewardRequest.user_id == user_id,
            SocialRewardRequest.status == RequestStatus.APPROVED.value,
        )
        return as_utc((await self.session.execute(stmt)).scalar_one_or_none())

    async def _post_url_exists(self, post_url: str) -> bool:
        stmt = select(SocialRewardRequest.id).where(SocialRewardRequest.post_url == post_url)
        return (await self.session.execute(stmt)).first() is not None

    def _to_domain(self, request: SocialRewardRequest) -> SocialRewardRequestData:
        """Convert ORM request to domain model."""
        return SocialRewardRequestData(
            request_id=request.id,
            user_id=request.user_id,
            platform=Platform(request.platform),
            post_url=request.post_url,
            status=RequestStatus(request.status),
            credits_awarded=request.credits_awarded,
            rejection_reason=request.rejection_reason,
            created_at=as_utc(request.created_at) or utc_now(),
            reviewed_at=as_utc(request.reviewed_at),
        )
