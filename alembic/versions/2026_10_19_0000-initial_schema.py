"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))


def upgrade() -> None:
    """Create quota, reward, referral, gamification, project and notification tables."""

    # ========================================================================
    # subscriptions
    # ========================================================================
    op.create_table(
        'subscriptions',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('plan', sa.String(20), nullable=False, server_default='free'),
        sa.Column('beginner_left', sa.Integer(), nullable=False, server_default='-1'),
        sa.Column('intermediate_left', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('veteran_left', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reset_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("plan IN ('free', 'pro', 'proplus')", name='ck_subscription_plan'),
        sa.CheckConstraint('beginner_left >= -1', name='ck_beginner_left_floor'),
        sa.CheckConstraint('intermediate_left >= -1', name='ck_intermediate_left_floor'),
        sa.CheckConstraint('veteran_left >= -1', name='ck_veteran_left_floor'),
        sa.CheckConstraint('credits >= 0', name='ck_credits_non_negative'),
        sa.UniqueConstraint('user_id', name='uq_subscription_user'),
    )

    # ========================================================================
    # social_reward_requests
    # ========================================================================
    op.create_table(
        'social_reward_requests',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('platform', sa.String(20), nullable=False),
        sa.Column('post_url', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('credits_awarded', sa.Integer(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('reviewed_by', UUID(as_uuid=True), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),

        sa.CheckConstraint("platform IN ('x', 'linkedin', 'reddit', 'youtube')", name='ck_social_platform'),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name='ck_social_status'),
        sa.UniqueConstraint('post_url', name='uq_social_reward_post_url'),
    )
    op.create_index('ix_social_reward_requests_user_id', 'social_reward_requests', ['user_id'])
    op.create_index(
        'uq_social_reward_one_pending', 'social_reward_requests', ['user_id'],
        unique=True, postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index('idx_social_reward_status_created', 'social_reward_requests', ['status', 'created_at'])

    # ========================================================================
    # referral_codes / referrals
    # ========================================================================
    op.create_table(
        'referral_codes',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('code', sa.String(32), nullable=False),
        _created_at(),

        sa.UniqueConstraint('user_id', name='uq_referral_code_user'),
        sa.UniqueConstraint('code', name='uq_referral_code_code'),
    )

    op.create_table(
        'referrals',
        _id(),
        sa.Column('referrer_id', UUID(as_uuid=True), nullable=False),
        sa.Column('referred_id', UUID(as_uuid=True), nullable=False),
        sa.Column('referral_code', sa.String(32), nullable=False),
        sa.Column('credits_awarded', sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),

        sa.UniqueConstraint('referred_id', name='uq_referral_referred'),
        sa.CheckConstraint('referrer_id <> referred_id', name='ck_referral_not_self'),
    )
    op.create_index('ix_referrals_referrer_id', 'referrals', ['referrer_id'])
    op.create_index('idx_referrals_referrer_created', 'referrals', ['referrer_id', 'created_at'])

    # ========================================================================
    # Gamification
    # ========================================================================
    op.create_table(
        'user_xp',
        sa.Column('user_id', UUID(as_uuid=True), primary_key=True),
        sa.Column('total_xp', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('total_xp >= 0', name='ck_total_xp_non_negative'),
        sa.CheckConstraint('level >= 1', name='ck_level_positive'),
    )

    op.create_table(
        'user_badges',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('badge_type', sa.String(50), nullable=False),
        sa.Column('earned_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('user_id', 'badge_type', name='uq_user_badge'),
    )

    op.create_table(
        'xp_events',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('xp_gained', sa.Integer(), nullable=False),
        sa.Column('award_date', sa.Date(), nullable=True),
        _created_at(),

        sa.CheckConstraint('xp_gained > 0', name='ck_xp_gained_positive'),
    )
    op.create_index('ix_xp_events_user_id', 'xp_events', ['user_id'])
    op.create_index(
        'uq_xp_events_daily_login', 'xp_events', ['user_id', 'event_type', 'award_date'],
        unique=True, postgresql_where=sa.text("event_type = 'daily_login'"),
    )

    # ========================================================================
    # Projects and generation jobs
    # ========================================================================
    op.create_table(
        'projects',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(100), nullable=False),
        sa.Column('level', sa.String(20), nullable=False),
        sa.Column('industry', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='generating'),
        sa.Column('brief_data', JSONB(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),

        sa.CheckConstraint("status IN ('generating', 'completed', 'failed')", name='ck_project_status'),
    )
    op.create_index('ix_projects_user_id', 'projects', ['user_id'])
    op.create_index('idx_projects_user_created', 'projects', ['user_id', 'created_at'])

    op.create_table(
        'generation_jobs',
        _id(),
        sa.Column('project_id', UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='queued'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("status IN ('queued', 'dispatched', 'failed')", name='ck_generation_job_status'),
        sa.CheckConstraint('attempts >= 0', name='ck_generation_job_attempts'),
        sa.UniqueConstraint('project_id', name='uq_generation_job_project'),
    )
    op.create_index('idx_generation_jobs_due', 'generation_jobs', ['status', 'next_attempt_at'])

    # ========================================================================
    # Notifications and support
    # ========================================================================
    op.create_table(
        'admin_notifications',
        _id(),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(20), nullable=False, server_default='system'),
        sa.Column('target_user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        _created_at(),
    )
    op.create_index('idx_admin_notifications_target', 'admin_notifications', ['target_user_id'])
    op.create_index('idx_admin_notifications_created_at', 'admin_notifications', ['created_at'])

    op.create_table(
        'support_messages',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('subject', sa.String(200), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        _created_at(),
    )
    op.create_index('ix_support_messages_user_id', 'support_messages', ['user_id'])

    op.create_table(
        'admin_replies',
        _id(),
        sa.Column('message_id', UUID(as_uuid=True), sa.ForeignKey('support_messages.id', ondelete='CASCADE'), nullable=False),
        sa.Column('admin_id', UUID(as_uuid=True), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_index('idx_admin_replies_message', 'admin_replies', ['message_id'])

    op.create_table(
        'user_notification_reads',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('notification_key', sa.String(64), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('user_id', 'notification_key', name='uq_notification_read'),
    )

    op.create_table(
        'user_deleted_notifications',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('notification_key', sa.String(64), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('user_id', 'notification_key', name='uq_notification_deleted'),
    )

    # ========================================================================
    # System settings, roles, audit log
    # ========================================================================
    op.create_table(
        'system_settings',
        sa.Column('key', sa.String(100), primary_key=True),
        sa.Column('value', JSONB(), nullable=False),
        sa.Column('updated_by', UUID(as_uuid=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.execute(
        "INSERT INTO system_settings (key, value) "
        "VALUES ('maintenance_mode', '{\"enabled\": false, \"message\": \"\"}'::jsonb)"
    )

    op.create_table(
        'user_roles',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        _created_at(),

        sa.CheckConstraint("role IN ('admin', 'user')", name='ck_user_role'),
        sa.UniqueConstraint('user_id', 'role', name='uq_user_role'),
    )

    op.create_table(
        'admin_audit_logs',
        _id(),
        sa.Column('admin_user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.String(255), nullable=True),
        sa.Column('changes', JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index('idx_admin_audit_logs_admin_user', 'admin_audit_logs', ['admin_user_id'])
    op.create_index('idx_admin_audit_logs_created_at', 'admin_audit_logs', ['created_at'], postgresql_using='brin')
    op.create_index('idx_admin_audit_logs_resource', 'admin_audit_logs', ['resource_type', 'resource_id'])


def downgrade() -> None:
    """Drop all tables."""
    for table in (
        'admin_audit_logs',
        'user_roles',
        'system_settings',
        'user_deleted_notifications',
        'user_notification_reads',
        'admin_replies',
        'support_messages',
        'admin_notifications',
        'generation_jobs',
        'projects',
        'xp_events',
        'user_badges',
        'user_xp',
        'referrals',
        'referral_codes',
        'social_reward_requests',
        'subscriptions',
    ):
        op.drop_table(table)
