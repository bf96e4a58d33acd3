"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
JSON payload columns (brief data, setting values, audit diffs) are the
only exception.
"""

from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to timestamps read back without tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ============================================================================
# Billing
# ============================================================================


class Subscription(Base):
    """
    ORM model for subscriptions table.

    One row per user. Per-level counters use -1 as the "unlimited" sentinel.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")

    # Per-level allowances for the current period
    beginner_left: Mapped[int] = mapped_column(Integer, nullable=False, default=-1)
    intermediate_left: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    veteran_left: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Purchased / earned credits, independent of quota
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("plan IN ('free', 'pro', 'proplus')", name="ck_subscription_plan"),
        CheckConstraint("beginner_left >= -1", name="ck_beginner_left_floor"),
        CheckConstraint("intermediate_left >= -1", name="ck_intermediate_left_floor"),
        CheckConstraint("veteran_left >= -1", name="ck_veteran_left_floor"),
        CheckConstraint("credits >= 0", name="ck_credits_non_negative"),
        UniqueConstraint("user_id", name="uq_subscription_user"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Subscription(user_id={self.user_id}, plan={self.plan}, "
            f"intermediate_left={self.intermediate_left}, veteran_left={self.veteran_left})>"
        )


# ============================================================================
# Social Rewards
# ============================================================================


class SocialRewardRequest(Base):
    """
    ORM model for social_reward_requests table.

    One user's claim to have posted about the product. At most one pending
    request per user; post_url unique across all users.
    """

    __tablename__ = "social_reward_requests"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)

    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    post_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    credits_awarded: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    reviewed_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "platform IN ('x', 'linkedin', 'reddit', 'youtube')", name="ck_social_platform"
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_social_status"
        ),
        UniqueConstraint("post_url", name="uq_social_reward_post_url"),
        Index(
            "uq_social_reward_one_pending",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_social_reward_status_created", "status", "created_at"),
    )


# ============================================================================
# Referrals
# ============================================================================


class ReferralCode(Base):
    """
    ORM model for referral_codes table.

    One stable, immutable invite code per user.
    """

    __tablename__ = "referral_codes"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_referral_code_user"),
        UniqueConstraint("code", name="uq_referral_code_code"),
    )


class Referral(Base):
    """
    ORM model for referrals table.

    A referred user appears at most once (one-time referral bonus).
    """

    __tablename__ = "referrals"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    referrer_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    referred_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False)
    credits_awarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("referred_id", name="uq_referral_referred"),
        CheckConstraint("referrer_id <> referred_id", name="ck_referral_not_self"),
        Index("idx_referrals_referrer_created", "referrer_id", "created_at"),
    )


# ============================================================================
# Gamification
# ============================================================================


class UserXP(Base):
    """ORM model for user_xp table."""

    __tablename__ = "user_xp"

    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("total_xp >= 0", name="ck_total_xp_non_negative"),
        CheckConstraint("level >= 1", name="ck_level_positive"),
    )


class UserBadge(Base):
    """
    ORM model for user_badges table.

    A badge type is granted to a user at most once.
    """

    __tablename__ = "user_badges"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    badge_type: Mapped[str] = mapped_column(String(50), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (UniqueConstraint("user_id", "badge_type", name="uq_user_badge"),)


class XPEvent(Base):
    """ORM model for xp_events table. Immutable ledger of XP grants."""

    __tablename__ = "xp_events"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    xp_gained: Mapped[int] = mapped_column(Integer, nullable=False)
    # UTC day of a daily_login grant; NULL for every other event
    award_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("xp_gained > 0", name="ck_xp_gained_positive"),
        Index(
            "uq_xp_events_daily_login",
            "user_id",
            "event_type",
            "award_date",
            unique=True,
            postgresql_where=text("event_type = 'daily_login'"),
            sqlite_where=text("event_type = 'daily_login'"),
        ),
    )


# ============================================================================
# Projects
# ============================================================================


class Project(Base):
    """ORM model for projects table."""

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    industry: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="generating")
    brief_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('generating', 'completed', 'failed')", name="ck_project_status"
        ),
        Index("idx_projects_user_created", "user_id", "created_at"),
    )


class GenerationJob(Base):
    """
    ORM model for generation_jobs table.

    Durable outbox entry for the brief-generation webhook. Delivered at
    least once; terminal state "failed" after max attempts.
    """

    __tablename__ = "generation_jobs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'dispatched', 'failed')", name="ck_generation_job_status"
        ),
        CheckConstraint("attempts >= 0", name="ck_generation_job_attempts"),
        UniqueConstraint("project_id", name="uq_generation_job_project"),
        Index("idx_generation_jobs_due", "status", "next_attempt_at"),
    )


# ============================================================================
# Notifications / Support
# ============================================================================


class AdminNotification(Base):
    """
    ORM model for admin_notifications table.

    Admin-authored broadcast. Global when target_user_id is NULL. Rows are
    shared and never mutated by users.
    """

    __tablename__ = "admin_notifications"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="system")
    target_user_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_admin_notifications_target", "target_user_id"),
        Index("idx_admin_notifications_created_at", "created_at"),
    )


class SupportMessage(Base):
    """ORM model for support_messages table."""

    __tablename__ = "support_messages"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class AdminReply(Base):
    """ORM model for admin_replies table. One support notification per row."""

    __tablename__ = "admin_replies"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    message_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("support_messages.id", ondelete="CASCADE"), nullable=False
    )
    admin_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_admin_replies_message", "message_id"),)


class UserNotificationRead(Base):
    """
    ORM model for user_notification_reads table.

    Per-user read overlay keyed by the merged notification id.
    """

    __tablename__ = "user_notification_reads"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    notification_key: Mapped[str] = mapped_column(String(64), nullable=False)
    read_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "notification_key", name="uq_notification_read"),
    )


class UserDeletedNotification(Base):
    """
    ORM model for user_deleted_notifications table.

    Per-user suppression record; the shared row is never deleted.
    """

    __tablename__ = "user_deleted_notifications"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    notification_key: Mapped[str] = mapped_column(String(64), nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "notification_key", name="uq_notification_deleted"),
    )


# ============================================================================
# System / Admin
# ============================================================================


class SystemSetting(Base):
    """ORM model for system_settings table (key/value)."""

    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    updated_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class UserRole(Base):
    """ORM model for user_roles table."""

    __tablename__ = "user_roles"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'user')", name="ck_user_role"),
        UniqueConstraint("user_id", "role", name="uq_user_role"),
    )


class AdminAuditLog(Base):
    """
    ORM model for admin_audit_logs table.

    Immutable audit trail of all admin actions.
    """

    __tablename__ = "admin_audit_logs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    admin_user_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    changes: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_admin_audit_logs_admin_user", "admin_user_id"),
        Index("idx_admin_audit_logs_created_at", "created_at", postgresql_using="brin"),
        Index("idx_admin_audit_logs_resource", "resource_type", "resource_id"),
    )
