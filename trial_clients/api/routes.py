"""
API Routes - FastAPI endpoints for signed-in users.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.api.dependencies import (
    CurrentUser,
    get_current_user,
    require_not_maintenance,
)
from trial_clients.config import settings
from trial_clients.db.session import get_read_db, get_write_db
from trial_clients.exceptions import (
    CooldownActiveError,
    DuplicatePostUrlError,
    InvalidEventTypeError,
    InvalidReferralCodeError,
    InvalidSocialUrlError,
    LevelLockedError,
    PendingRequestExistsError,
    QuotaExhaustedError,
    ReferralAlreadyUsedError,
    ResourceNotFoundError,
    SelfReferralError,
    WriteVerificationError,
)
from trial_clients.models.api import (
    AwardXPRequest,
    AwardXPResponse,
    BadgeResponse,
    ConsumeQuotaResponse,
    CooldownResponse,
    CreatedResponse,
    GamificationResponse,
    HealthResponse,
    Level,
    MaintenanceResponse,
    NotificationListResponse,
    NotificationMutationResponse,
    NotificationResponse,
    ProjectListResponse,
    ProjectResponse,
    QuotaOverviewResponse,
    QuotaStatusResponse,
    RedeemReferralRequest,
    RedeemReferralResponse,
    ReferralOverviewResponse,
    SocialRewardRequestResponse,
    StartProjectRequest,
    SubmitSocialRewardRequest,
    SupportMessageRequest,
)
from trial_clients.models.domain import (
    CooldownState,
    NotificationView,
    ProjectData,
    QuotaStatus,
    SocialRewardRequestData,
)
from trial_clients.services.gamification import (
    SERVER_AWARDED_EVENTS,
    GamificationService,
    badge_display_name,
    parse_event_type,
)
from trial_clients.services.notifications import NotificationService
from trial_clients.services.plans import next_reset_at
from trial_clients.services.projects import ProjectService
from trial_clients.services.quota import QuotaService
from trial_clients.services.referrals import ReferralService, build_link
from trial_clients.services.social_rewards import SocialRewardService
from trial_clients.services.system_settings import SystemSettingsService

router = APIRouter()


# ============================================================================
# Response converters
# ============================================================================


def quota_status_response(quota: QuotaStatus) -> QuotaStatusResponse:
    return QuotaStatusResponse(
        level=quota.level,
        available=quota.available,
        remaining=quota.remaining,
        limit=quota.limit,
        is_locked=quota.is_locked,
    )


def cooldown_response(state: CooldownState) -> CooldownResponse:
    return CooldownResponse(
        allowed=state.allowed,
        reason=state.reason,
        now=state.now.isoformat(),
        last_approved_at=state.last_approved_at.isoformat() if state.last_approved_at else None,
        cooldown_end=state.cooldown_end.isoformat() if state.cooldown_end else None,
        ms_remaining=state.ms_remaining,
    )


def social_reward_response(request: SocialRewardRequestData) -> SocialRewardRequestResponse:
    return SocialRewardRequestResponse(
        id=request.request_id,
        user_id=request.user_id,
        platform=request.platform,
        post_url=request.post_url,
        status=request.status,
        credits_awarded=request.credits_awarded,
        rejection_reason=request.rejection_reason,
        created_at=request.created_at.isoformat(),
        reviewed_at=request.reviewed_at.isoformat() if request.reviewed_at else None,
    )


def notification_response(view: NotificationView) -> NotificationResponse:
    return NotificationResponse(
        id=view.id,
        source=view.source,
        type=view.type,
        title=view.title,
        message=view.message,
        timestamp=view.timestamp.isoformat(),
        read=view.read,
    )


def project_response(project: ProjectData) -> ProjectResponse:
    return ProjectResponse(
        id=project.project_id,
        title=project.title,
        description=project.description,
        type=project.project_type,
        level=project.level,
        industry=project.industry,
        status=project.status,
        brief_data=project.brief_data,
        failure_reason=project.failure_reason,
        created_at=project.created_at.isoformat(),
        completed_at=project.completed_at.isoformat() if project.completed_at else None,
    )


def _integrity_error(exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Database integrity error",
    )


# ============================================================================
# Quota
# ============================================================================


@router.get("/v1/quota", response_model=QuotaOverviewResponse)
async def get_quota(
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(get_current_user),
) -> QuotaOverviewResponse:
    """
    Plan, purchased credits and per-level quota.

    Creates the free-plan subscription on first call.
    """
    service = QuotaService(db)
    subscription = await service.ensure_subscription(user.user_id)

    now = datetime.now(UTC)
    reset_at = subscription.reset_at
    if reset_at is None or reset_at <= now:
        reset_at = next_reset_at(now)

    return QuotaOverviewResponse(
        plan=subscription.plan,
        credits=subscription.credits,
        reset_at=reset_at.isoformat(),
        levels=[
            quota_status_response(service.status_for(subscription, level, now))
            for level in Level
        ],
    )


@router.get("/v1/quota/{level}", response_model=QuotaStatusResponse)
async def get_level_quota(
    level: Level,
    db: AsyncSession = Depends(get_read_db),
    user: CurrentUser = Depends(get_current_user),
) -> QuotaStatusResponse:
    """Quota status for one level."""
    quota = await QuotaService(db).get_status(user.user_id, level)
    return quota_status_response(quota)


@router.post("/v1/quota/{level}/consume", response_model=ConsumeQuotaResponse)
async def consume_quota(
    level: Level,
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> ConsumeQuotaResponse:
    """
    Consume one generation of a level.

    consumed=false is a normal answer (locked or exhausted), not an error.
    """
    service = QuotaService(db)
    await service.ensure_subscription(user.user_id)
    consumed = await service.consume(user.user_id, level)
    quota = await service.get_status(user.user_id, level)
    return ConsumeQuotaResponse(consumed=consumed, status=quota_status_response(quota))


# ============================================================================
# Social Rewards
# ============================================================================


@router.get("/v1/social-rewards/cooldown", response_model=CooldownResponse)
async def get_social_reward_cooldown(
    db: AsyncSession = Depends(get_read_db),
    user: CurrentUser = Depends(get_current_user),
) -> CooldownResponse:
    """Whether the user may submit now; a time cooldown carries ms_remaining."""
    service = SocialRewardService(db, cooldown_days=settings.social_reward_cooldown_days)
    return cooldown_response(await service.get_cooldown(user.user_id))


@router.get(
    "/v1/social-rewards/latest", response_model=SocialRewardRequestResponse | None
)
async def get_latest_social_reward(
    db: AsyncSession = Depends(get_read_db),
    user: CurrentUser = Depends(get_current_user),
) -> SocialRewardRequestResponse | None:
    """Most recent request of the caller, or null."""
    service = SocialRewardService(db, cooldown_days=settings.social_reward_cooldown_days)
    latest = await service.latest_request(user.user_id)
    return social_reward_response(latest) if latest is not None else None


@router.post(
    "/v1/social-rewards",
    response_model=SocialRewardRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_social_reward(
    request: SubmitSocialRewardRequest,
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> SocialRewardRequestResponse:
    """Submit a social post for credit review."""
    service = SocialRewardService(db, cooldown_days=settings.social_reward_cooldown_days)
    try:
        submitted = await service.submit(user.user_id, request.platform, request.post_url)
        return social_reward_response(submitted)

    except InvalidSocialUrlError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.reason,
        ) from exc

    except (DuplicatePostUrlError, PendingRequestExistsError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    except CooldownActiveError as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(max(exc.ms_remaining // 1000, 1))},
        ) from exc


# ============================================================================
# Referrals
# ============================================================================


@router.get("/v1/referrals", response_model=ReferralOverviewResponse)
async def get_referrals(
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(get_current_user),
) -> ReferralOverviewResponse:
    """The caller's code, share link and referral counters."""
    service = ReferralService(
        db,
        reward_credits=settings.referral_reward_credits,
        daily_cap=settings.referral_daily_cap,
    )
    try:
        code = await service.get_or_create_code(user.user_id)
    except WriteVerificationError as exc:
        raise _integrity_error(exc) from exc

    stats = await service.get_stats(user.user_id)
    return ReferralOverviewResponse(
        code=code,
        link=build_link(code, settings.public_base_url),
        total_referrals=stats.total_referrals,
        credits_earned=stats.credits_earned,
    )


@router.post("/v1/referrals/redeem", response_model=RedeemReferralResponse)
async def redeem_referral(
    request: RedeemReferralRequest,
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> RedeemReferralResponse:
    """Redeem a referral code after sign-up. One redemption per user, ever."""
    service = ReferralService(
        db,
        reward_credits=settings.referral_reward_credits,
        daily_cap=settings.referral_daily_cap,
    )
    try:
        result = await service.process_referral(user.user_id, request.code)
        return RedeemReferralResponse(
            ok=result.ok,
            referred_credits=result.referred_credits,
            referrer_credited=result.referrer_credited,
        )

    except InvalidReferralCodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid referral code",
        ) from exc

    except SelfReferralError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except ReferralAlreadyUsedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A referral code has already been redeemed for this account",
        ) from exc


# ============================================================================
# Notifications
# ============================================================================


@router.get("/v1/notifications", response_model=NotificationListResponse)
async def list_notifications(
    db: AsyncSession = Depends(get_read_db),
    user: CurrentUser = Depends(get_current_user),
) -> NotificationListResponse:
    """Merged notification feed, newest first."""
    views = await NotificationService(db).list_notifications(user.user_id)
    return NotificationListResponse(
        notifications=[notification_response(v) for v in views],
        unread_count=sum(1 for v in views if not v.read),
    )


@router.post("/v1/notifications/read-all", response_model=NotificationMutationResponse)
async def mark_all_notifications_read(
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> NotificationMutationResponse:
    """Mark every visible notification read."""
    marked = await NotificationService(db).mark_all_read(user.user_id)
    return NotificationMutationResponse(ok=True, affected=marked)


@router.post(
    "/v1/notifications/{notification_id}/read", response_model=NotificationMutationResponse
)
async def mark_notification_read(
    notification_id: str,
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> NotificationMutationResponse:
    """Mark one notification read. Marking twice is not an error."""
    try:
        created = await NotificationService(db).mark_read(user.user_id, notification_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        ) from exc
    return NotificationMutationResponse(ok=True, affected=int(created))


@router.delete("/v1/notifications", response_model=NotificationMutationResponse)
async def clear_notifications(
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> NotificationMutationResponse:
    """Hide every visible notification for the caller."""
    hidden = await NotificationService(db).clear_all(user.user_id)
    return NotificationMutationResponse(ok=True, affected=hidden)


@router.delete("/v1/notifications/{notification_id}", response_model=NotificationMutationResponse)
async def delete_notification(
    notification_id: str,
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> NotificationMutationResponse:
    """Hide one notification for the caller only."""
    try:
        created = await NotificationService(db).delete(user.user_id, notification_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        ) from exc
    return NotificationMutationResponse(ok=True, affected=int(created))


@router.post(
    "/v1/support/messages", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED
)
async def create_support_message(
    request: SupportMessageRequest,
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> CreatedResponse:
    """Send a message to support; replies arrive as notifications."""
    message_id = await NotificationService(db).create_support_message(
        user.user_id, request.subject, request.body
    )
    return CreatedResponse(id=message_id)


# ============================================================================
# Gamification
# ============================================================================


@router.get("/v1/gamification", response_model=GamificationResponse)
async def get_gamification(
    db: AsyncSession = Depends(get_read_db),
    user: CurrentUser = Depends(get_current_user),
) -> GamificationResponse:
    """XP, level progress and earned badges."""
    service = GamificationService(db)
    progress = await service.get_level_progress(user.user_id)
    badges = await service.list_badges(user.user_id)
    return GamificationResponse(
        total_xp=progress.total_xp,
        level=progress.level,
        level_floor=progress.level_floor,
        level_ceiling=progress.level_ceiling,
        progress_xp=progress.progress_xp,
        needed_xp=progress.needed_xp,
        progress_fraction=progress.fraction,
        badges=[
            BadgeResponse(
                badge_type=badge.badge_type,
                display_name=badge_display_name(badge.badge_type),
                earned_at=badge.earned_at.isoformat(),
            )
            for badge in badges
        ],
    )


@router.post("/v1/gamification/xp", response_model=AwardXPResponse)
async def award_xp(
    request: AwardXPRequest,
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> AwardXPResponse:
    """
    Award XP for a client-observed event.

    Only the event type is accepted; the amount comes from the server
    table. Project and referral events are awarded by those flows and are
    refused here.
    """
    try:
        event = parse_event_type(request.event_type)
    except InvalidEventTypeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    if event in SERVER_AWARDED_EVENTS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Event {event.value} is awarded by the server",
        )

    award = await GamificationService(db).award_xp(user.user_id, event.value)
    return AwardXPResponse(
        ok=True,
        xp_gained=award.xp_gained,
        total_xp=award.total_xp,
        level=award.level,
        leveled_up=award.leveled_up,
        badges_awarded=award.badges_awarded,
    )


# ============================================================================
# Projects
# ============================================================================


@router.post(
    "/v1/projects", response_model=ProjectResponse, status_code=status.HTTP_202_ACCEPTED
)
async def start_project(
    request: StartProjectRequest,
    db: AsyncSession = Depends(get_write_db),
    user: CurrentUser = Depends(require_not_maintenance),
) -> ProjectResponse:
    """
    Start generating a project brief.

    Quota is consumed immediately; the project stays "generating" until
    the brief generator calls back.
    """
    try:
        project = await ProjectService(db).start_generation(
            user.user_id, request.level, request.project_type, request.industry
        )
        return project_response(project)

    except LevelLockedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{exc.level.capitalize()} projects are not available on the {exc.plan} plan",
        ) from exc

    except QuotaExhaustedError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"No {exc.level} generations left this month",
        ) from exc

    except WriteVerificationError as exc:
        raise _integrity_error(exc) from exc


@router.get("/v1/projects", response_model=ProjectListResponse)
async def list_projects(
    db: AsyncSession = Depends(get_read_db),
    user: CurrentUser = Depends(get_current_user),
) -> ProjectListResponse:
    """The caller's projects, newest first."""
    projects = await ProjectService(db).list_projects(user.user_id)
    return ProjectListResponse(projects=[project_response(p) for p in projects])


@router.get("/v1/projects/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    user: CurrentUser = Depends(get_current_user),
) -> ProjectResponse:
    """One of the caller's projects."""
    try:
        project = await ProjectService(db).get_project(user.user_id, project_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found",
        ) from exc
    return project_response(project)


# ============================================================================
# Maintenance / Health
# ============================================================================


@router.get("/v1/maintenance", response_model=MaintenanceResponse)
async def get_maintenance(db: AsyncSession = Depends(get_read_db)) -> MaintenanceResponse:
    """Public maintenance flag, read by the UI before rendering."""
    state = await SystemSettingsService(db).get_maintenance()
    return MaintenanceResponse(enabled=state.enabled, message=state.message)


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
