"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class Plan(str, Enum):
    """Billing plan enumeration."""

    FREE = "free"
    PRO = "pro"
    PROPLUS = "proplus"


class Level(str, Enum):
    """Project difficulty level enumeration."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    VETERAN = "veteran"


class Platform(str, Enum):
    """Social platform enumeration for reward submissions."""

    X = "x"
    LINKEDIN = "linkedin"
    REDDIT = "reddit"
    YOUTUBE = "youtube"


class RequestStatus(str, Enum):
    """Social reward request status enumeration."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ProjectStatus(str, Enum):
    """Project generation status enumeration."""

    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):
    """Generation job status enumeration."""

    QUEUED = "queued"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class XPEventType(str, Enum):
    """XP-granting event types."""

    PROJECT_CREATED = "project_created"
    PROJECT_COMPLETED = "project_completed"
    REFERRAL_SUCCESS = "referral_success"
    DAILY_LOGIN = "daily_login"


class BadgeType(str, Enum):
    """Badge types that can be earned once per user."""

    FIRST_PROJECT = "first_project"
    LEVEL_5 = "level_5"
    LEVEL_10 = "level_10"
    XP_5000 = "xp_5000"
    REFERRAL_SUCCESS = "referral_success"
    DAILY_STREAK_7 = "daily_streak_7"


class NotificationSource(str, Enum):
    """Source of a merged notification (also its id prefix)."""

    ADMIN = "admin"
    SUPPORT = "support"


class NotificationType(str, Enum):
    """Notification category shown in the UI."""

    PROJECT = "project"
    REFERRAL = "referral"
    BILLING = "billing"
    SYSTEM = "system"
    SUPPORT = "support"


# ============================================================================
# Quota Models
# ============================================================================


class QuotaStatusResponse(BaseModel):
    """Quota status for one level.

    remaining/limit carry an integer, or "unlimited" / "locked".
    """

    level: Level
    available: bool
    remaining: int | str
    limit: int | str
    is_locked: bool


class QuotaOverviewResponse(BaseModel):
    """GET /v1/quota response."""

    plan: Plan
    credits: int
    reset_at: str | None = Field(None, description="ISO 8601 timestamp of next refill")
    levels: list[QuotaStatusResponse]


class ConsumeQuotaResponse(BaseModel):
    """POST /v1/quota/{level}/consume response."""

    consumed: bool
    status: QuotaStatusResponse


class ChangePlanRequest(BaseModel):
    """POST /v1/admin/plan request body."""

    user_id: UUID
    plan: Plan


class SubscriptionResponse(BaseModel):
    """Subscription after an admin plan change."""

    user_id: UUID
    plan: Plan
    beginner_left: int
    intermediate_left: int
    veteran_left: int
    credits: int
    reset_at: str | None = None


class AdjustCreditsRequest(BaseModel):
    """POST /v1/admin/credits request body. A negative change deducts."""

    user_id: UUID
    change: int = Field(..., ge=-100_000, le=100_000)
    reason: str = Field(default="Admin adjustment", min_length=1, max_length=500)

    @field_validator("change")
    @classmethod
    def reject_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("change must not be zero")
        return v


class CreditBalanceResponse(BaseModel):
    """Purchased credit balance after an admin adjustment."""

    user_id: UUID
    credits: int


# ============================================================================
# Social Reward Models
# ============================================================================


class CooldownResponse(BaseModel):
    """GET /v1/social-rewards/cooldown response."""

    allowed: bool
    reason: str
    now: str
    last_approved_at: str | None = None
    cooldown_end: str | None = None
    ms_remaining: int | None = None


class SubmitSocialRewardRequest(BaseModel):
    """POST /v1/social-rewards request body."""

    platform: Platform
    post_url: str = Field(..., min_length=1, max_length=2048)

    @field_validator("post_url")
    @classmethod
    def strip_post_url(cls, v: str) -> str:
        """Trim whitespace around the submitted URL."""
        return v.strip()


class SocialRewardRequestResponse(BaseModel):
    """A single social reward request."""

    id: UUID
    user_id: UUID
    platform: Platform
    post_url: str
    status: RequestStatus
    credits_awarded: int | None = None
    rejection_reason: str | None = None
    created_at: str
    reviewed_at: str | None = None


class ReviewSocialRewardRequest(BaseModel):
    """POST /v1/admin/social-rewards/{id}/review request body."""

    approved: bool
    credits_amount: int = Field(default=3, ge=0, le=1000)
    rejection_reason: str | None = Field(None, max_length=1000)


class SocialRewardListResponse(BaseModel):
    """Admin list of social reward requests."""

    requests: list[SocialRewardRequestResponse]
    total: int


# ============================================================================
# Referral Models
# ============================================================================


class ReferralOverviewResponse(BaseModel):
    """GET /v1/referrals response."""

    code: str
    link: str
    total_referrals: int
    credits_earned: int


class RedeemReferralRequest(BaseModel):
    """POST /v1/referrals/redeem request body."""

    code: str = Field(..., min_length=4, max_length=32)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Referral codes are case-insensitive."""
        return v.strip().upper()


class RedeemReferralResponse(BaseModel):
    """POST /v1/referrals/redeem response."""

    ok: bool
    referred_credits: int
    referrer_credited: bool


# ============================================================================
# Notification Models
# ============================================================================


class NotificationResponse(BaseModel):
    """A merged notification as shown to one user."""

    id: str
    source: NotificationSource
    type: NotificationType
    title: str
    message: str
    timestamp: str
    read: bool


class NotificationListResponse(BaseModel):
    """GET /v1/notifications response."""

    notifications: list[NotificationResponse]
    unread_count: int


class NotificationMutationResponse(BaseModel):
    """Response for read/delete operations."""

    ok: bool
    affected: int = 0


class BroadcastNotificationRequest(BaseModel):
    """POST /v1/admin/notifications request body."""

    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)
    type: NotificationType = NotificationType.SYSTEM
    target_user_id: UUID | None = None


class SupportMessageRequest(BaseModel):
    """POST /v1/support/messages request body."""

    subject: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, max_length=5000)


class SupportReplyRequest(BaseModel):
    """POST /v1/admin/support/{id}/reply request body."""

    body: str = Field(..., min_length=1, max_length=5000)


class CreatedResponse(BaseModel):
    """Generic response carrying the id of a created row."""

    id: UUID


# ============================================================================
# Gamification Models
# ============================================================================


class AwardXPRequest(BaseModel):
    """POST /v1/gamification/xp request body.

    Only the event type is accepted; the point value is derived server-side.
    """

    event_type: str = Field(..., min_length=1, max_length=50)


class AwardXPResponse(BaseModel):
    """POST /v1/gamification/xp response."""

    ok: bool
    xp_gained: int
    total_xp: int
    level: int
    leveled_up: bool
    badges_awarded: list[str]


class BadgeResponse(BaseModel):
    """A badge earned by the user."""

    badge_type: str
    display_name: str
    earned_at: str


class GamificationResponse(BaseModel):
    """GET /v1/gamification response."""

    total_xp: int
    level: int
    level_floor: int
    level_ceiling: int
    progress_xp: int
    needed_xp: int
    progress_fraction: float
    badges: list[BadgeResponse]


# ============================================================================
# Project Models
# ============================================================================


class StartProjectRequest(BaseModel):
    """POST /v1/projects request body."""

    level: Level
    project_type: str = Field(..., min_length=1, max_length=100)
    industry: str = Field(..., min_length=1, max_length=100)


class ProjectResponse(BaseModel):
    """A generated (or generating) project."""

    id: UUID
    title: str
    description: str | None = None
    type: str
    level: Level
    industry: str
    status: ProjectStatus
    brief_data: dict[str, Any] | None = None
    failure_reason: str | None = None
    created_at: str
    completed_at: str | None = None


class ProjectListResponse(BaseModel):
    """GET /v1/projects response."""

    projects: list[ProjectResponse]


class ProjectBriefCallback(BaseModel):
    """POST /v1/callbacks/project-brief body sent by the brief generator.

    Extra fields are kept verbatim as the brief payload.
    """

    model_config = {"extra": "allow"}

    project_id: UUID
    company_name: str | None = None
    title: str | None = None
    tagline: str | None = None
    description: str | None = None


class ProjectBriefCallbackResponse(BaseModel):
    """Callback acknowledgement."""

    success: bool
    project_id: UUID


# ============================================================================
# Maintenance Models
# ============================================================================


class MaintenanceResponse(BaseModel):
    """GET /v1/maintenance response."""

    enabled: bool
    message: str


class SetMaintenanceRequest(BaseModel):
    """POST /v1/admin/maintenance request body."""

    enabled: bool
    message: str | None = Field(None, max_length=500)


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
