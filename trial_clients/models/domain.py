"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from trial_clients.models.api import (
    Level,
    NotificationSource,
    NotificationType,
    Plan,
    Platform,
    ProjectStatus,
    RequestStatus,
)


@dataclass(frozen=True)
class QuotaStatus:
    """Quota state of one level for one user.

    remaining/limit are integers for counted levels, or the labels
    "unlimited" / "locked".
    """

    level: Level
    available: bool
    remaining: int | str
    limit: int | str
    is_locked: bool


@dataclass(frozen=True)
class SubscriptionData:
    """Immutable subscription snapshot."""

    user_id: UUID
    plan: Plan
    beginner_left: int
    intermediate_left: int
    veteran_left: int
    credits: int
    reset_at: datetime | None

    def remaining_for(self, level: Level) -> int:
        """Stored counter for a level (-1 means unlimited)."""
        if level == Level.BEGINNER:
            return self.beginner_left
        if level == Level.INTERMEDIATE:
            return self.intermediate_left
        return self.veteran_left


@dataclass(frozen=True)
class SocialUrlValidation:
    """Result of validating a social post URL."""

    valid: bool
    error: str | None = None


@dataclass(frozen=True)
class CooldownState:
    """Server-computed eligibility for a social reward submission.

    ms_remaining is None exactly when no time cooldown is active.
    """

    allowed: bool
    reason: str
    now: datetime
    last_approved_at: datetime | None = None
    cooldown_end: datetime | None = None
    ms_remaining: int | None = None

    def __post_init__(self) -> None:
        """Validate cooldown invariants."""
        if self.ms_remaining is not None and self.ms_remaining <= 0:
            raise ValueError(f"ms_remaining must be positive when set: {self.ms_remaining}")
        if (self.ms_remaining is None) != (self.cooldown_end is None):
            raise ValueError("cooldown_end and ms_remaining must be set together")


@dataclass(frozen=True)
class SocialRewardRequestData:
    """Immutable social reward request snapshot."""

    request_id: UUID
    user_id: UUID
    platform: Platform
    post_url: str
    status: RequestStatus
    credits_awarded: int | None
    rejection_reason: str | None
    created_at: datetime
    reviewed_at: datetime | None


@dataclass(frozen=True)
class ReferralStats:
    """Referral counters for one referrer."""

    total_referrals: int
    credits_earned: int


@dataclass(frozen=True)
class ReferralResult:
    """Outcome of redeeming a referral code."""

    ok: bool
    referred_credits: int
    referrer_credited: bool


@dataclass(frozen=True)
class LevelProgress:
    """XP progress within the current level."""

    total_xp: int
    level: int
    level_floor: int
    level_ceiling: int

    @property
    def progress_xp(self) -> int:
        return self.total_xp - self.level_floor

    @property
    def needed_xp(self) -> int:
        return self.level_ceiling - self.level_floor

    @property
    def fraction(self) -> float:
        return self.progress_xp / self.needed_xp


@dataclass(frozen=True)
class XPAward:
    """Result of a server-side XP award."""

    xp_gained: int
    total_xp: int
    level: int
    leveled_up: bool
    badges_awarded: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BadgeData:
    """A badge earned by a user."""

    badge_type: str
    earned_at: datetime


@dataclass(frozen=True)
class NotificationView:
    """A merged notification as seen by one user.

    The id is source-prefixed (admin-<uuid>, support-<uuid>) so the two
    source id spaces never collide.
    """

    id: str
    source: NotificationSource
    type: NotificationType
    title: str
    message: str
    timestamp: datetime
    read: bool

    def with_read(self, read: bool) -> "NotificationView":
        """Copy with a different read flag."""
        return NotificationView(
            id=self.id,
            source=self.source,
            type=self.type,
            title=self.title,
            message=self.message,
            timestamp=self.timestamp,
            read=read,
        )


@dataclass(frozen=True)
class MaintenanceState:
    """Global maintenance flag."""

    enabled: bool
    message: str


@dataclass(frozen=True)
class ProjectData:
    """Immutable project snapshot."""

    project_id: UUID
    user_id: UUID
    title: str
    description: str | None
    project_type: str
    level: Level
    industry: str
    status: ProjectStatus
    brief_data: dict[str, Any] | None
    failure_reason: str | None
    created_at: datetime
    completed_at: datetime | None
