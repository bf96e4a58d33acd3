"""
Admin API routes - reward review, maintenance, broadcasts, support replies,
plan changes and credit adjustments.

Every route requires the admin role; the role check fails closed.
"""

from uuid import UUID

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.api.dependencies import CurrentUser, require_admin
from trial_clients.api.routes import notification_response, social_reward_response
from trial_clients.config import settings
from trial_clients.db.session import get_read_db, get_write_db
from trial_clients.exceptions import (
    InsufficientCreditsError,
    InvalidStatusTransitionError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from trial_clients.models.api import (
    AdjustCreditsRequest,
    BroadcastNotificationRequest,
    ChangePlanRequest,
    CreditBalanceResponse,
    MaintenanceResponse,
    NotificationResponse,
    RequestStatus,
    ReviewSocialRewardRequest,
    SetMaintenanceRequest,
    SocialRewardListResponse,
    SocialRewardRequestResponse,
    SubscriptionResponse,
    SupportReplyRequest,
)
from trial_clients.observability.logging import get_logger
from trial_clients.redis_client import get_optional_redis
from trial_clients.services.notifications import NotificationService
from trial_clients.services.quota import QuotaService
from trial_clients.services.social_rewards import SocialRewardService
from trial_clients.services.system_settings import SystemSettingsService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"])


# ============================================================================
# Social Rewards
# ============================================================================


@router.get("/social-rewards", response_model=SocialRewardListResponse)
async def list_social_rewards(
    status_filter: RequestStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_read_db),
    admin: CurrentUser = Depends(require_admin),
) -> SocialRewardListResponse:
    """Social reward requests, newest first, optionally filtered by status."""
    service = SocialRewardService(db, cooldown_days=settings.social_reward_cooldown_days)
    requests, total = await service.list_requests(status_filter, limit=limit, offset=offset)
    return SocialRewardListResponse(
        requests=[social_reward_response(r) for r in requests],
        total=total,
    )


@router.post("/social-rewards/{request_id}/review", response_model=SocialRewardRequestResponse)
async def review_social_reward(
    request_id: UUID,
    request: ReviewSocialRewardRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: CurrentUser = Depends(require_admin),
) -> SocialRewardRequestResponse:
    """Approve (crediting the user) or reject a pending request."""
    service = SocialRewardService(db, cooldown_days=settings.social_reward_cooldown_days)
    try:
        reviewed = await service.review(
            admin.user_id,
            request_id,
            approved=request.approved,
            credits_amount=request.credits_amount,
            rejection_reason=request.rejection_reason,
        )
        return social_reward_response(reviewed)

    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Request not found",
        ) from exc

    except InvalidStatusTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc


# ============================================================================
# Maintenance
# ============================================================================


@router.post("/maintenance", response_model=MaintenanceResponse)
async def set_maintenance(
    request: SetMaintenanceRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: CurrentUser = Depends(require_admin),
) -> MaintenanceResponse:
    """Turn maintenance mode on or off."""
    state = await SystemSettingsService(db).set_maintenance_mode(
        admin.user_id, request.enabled, request.message
    )
    return MaintenanceResponse(enabled=state.enabled, message=state.message)


# ============================================================================
# Notifications / Support
# ============================================================================


@router.post(
    "/notifications", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED
)
async def broadcast_notification(
    request: BroadcastNotificationRequest,
    db: AsyncSession = Depends(get_write_db),
    redis: aioredis.Redis | None = Depends(get_optional_redis),
    admin: CurrentUser = Depends(require_admin),
) -> NotificationResponse:
    """Create a notification for everyone, or for one user when target_user_id is set."""
    view = await NotificationService(db, redis).broadcast(
        admin.user_id,
        request.title,
        request.message,
        notification_type=request.type,
        target_user_id=request.target_user_id,
    )
    return notification_response(view)


@router.post(
    "/support/{message_id}/reply",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def reply_to_support(
    message_id: UUID,
    request: SupportReplyRequest,
    db: AsyncSession = Depends(get_write_db),
    redis: aioredis.Redis | None = Depends(get_optional_redis),
    admin: CurrentUser = Depends(require_admin),
) -> NotificationResponse:
    """Answer a support message; the author sees it in their feed."""
    try:
        view = await NotificationService(db, redis).reply_to_support(
            admin.user_id, message_id, request.body
        )
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Support message not found",
        ) from exc
    return notification_response(view)


# ============================================================================
# Plans
# ============================================================================


@router.post("/plan", response_model=SubscriptionResponse)
async def change_plan(
    request: ChangePlanRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: CurrentUser = Depends(require_admin),
) -> SubscriptionResponse:
    """Move a user to another plan; all counters restart at the new plan's values."""
    try:
        subscription = await QuotaService(db).change_plan(
            request.user_id, request.plan, admin_id=admin.user_id
        )
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    logger.info(
        "admin_plan_changed",
        admin_id=str(admin.user_id),
        user_id=str(request.user_id),
        plan=request.plan.value,
    )
    return SubscriptionResponse(
        user_id=subscription.user_id,
        plan=subscription.plan,
        beginner_left=subscription.beginner_left,
        intermediate_left=subscription.intermediate_left,
        veteran_left=subscription.veteran_left,
        credits=subscription.credits,
        reset_at=subscription.reset_at.isoformat() if subscription.reset_at else None,
    )


@router.post("/credits", response_model=CreditBalanceResponse)
async def adjust_credits(
    request: AdjustCreditsRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: CurrentUser = Depends(require_admin),
) -> CreditBalanceResponse:
    """Add or deduct a user's purchased credits."""
    try:
        balance = await QuotaService(db).adjust_credits(
            request.user_id, request.change, request.reason, admin.user_id
        )
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=str(exc),
        ) from exc
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    logger.info(
        "admin_credits_adjusted",
        admin_id=str(admin.user_id),
        user_id=str(request.user_id),
        change=request.change,
        balance=balance,
    )
    return CreditBalanceResponse(user_id=request.user_id, credits=balance)
