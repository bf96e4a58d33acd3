"""
Notification Service - merged per-user feed over shared admin content.

NO DICTIONARIES - All operations return strongly typed domain models.

Two sources feed one list: admin broadcasts (global or targeted) and admin
replies to the user's support messages. Ids are prefixed by source so the
two id spaces never collide. Read and delete are per-user overlay rows;
the shared source rows are never modified by users.
"""

import json
from collections.abc import Iterable
from typing import Final
from uuid import UUID

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.db.models import (
    AdminNotification,
    AdminReply,
    SupportMessage,
    UserDeletedNotification,
    UserNotificationRead,
    as_utc,
    utc_now,
)
from trial_clients.exceptions import ResourceNotFoundError
from trial_clients.models.api import NotificationSource, NotificationType
from trial_clients.models.domain import NotificationView
from trial_clients.observability.logging import get_logger
from trial_clients.observability.metrics import metrics

logger = get_logger(__name__)

BROADCAST_CHANNEL: Final = "notifications:broadcast"
USER_CHANNEL_PREFIX: Final = "notifications:user:"
EVENT_CREATED: Final = "notification_created"


def user_channel(user_id: UUID) -> str:
    """Redis channel carrying notifications targeted at one user."""
    return f"{USER_CHANNEL_PREFIX}{user_id}"


def notification_id(source: NotificationSource, row_id: UUID) -> str:
    """Merged, source-prefixed notification id."""
    return f"{source.value}-{row_id}"


def parse_notification_id(value: str) -> tuple[NotificationSource, UUID]:
    """
    Split a merged id into its source and row id.

    Raises:
        ResourceNotFoundError: Unknown prefix or malformed UUID
    """
    prefix, sep, raw_id = value.partition("-")
    if not sep:
        raise ResourceNotFoundError("notification", value)
    try:
        return NotificationSource(prefix), UUID(raw_id)
    except ValueError as exc:
        raise ResourceNotFoundError("notification", value) from exc


def view_to_event(view: NotificationView) -> str:
    """Serialize a view as a pub/sub insert event."""
    return json.dumps(
        {
            "event": EVENT_CREATED,
            "data": {
                "id": view.id,
                "source": view.source.value,
                "type": view.type.value,
                "title": view.title,
                "message": view.message,
                "timestamp": view.timestamp.isoformat(),
            },
        }
    )


class NotificationService:
    """Merge, overlay and publish notifications."""

    def __init__(self, session: AsyncSession, redis: aioredis.Redis | None = None) -> None:
        """Initialize with database session and optional Redis publisher."""
        self.session = session
        self.redis = redis

    # ========================================================================
    # User reads
    # ========================================================================

    async def list_notifications(self, user_id: UUID) -> list[NotificationView]:
        """Merged feed for one user, deletions removed, newest first."""
        deleted = await self._keys(UserDeletedNotification, user_id)
        read = await self._keys(UserNotificationRead, user_id)

        views = [
            view
            for view in await self._all_views(user_id)
            if view.id not in deleted
        ]
        views = [view.with_read(view.id in read) for view in views]
        views.sort(key=lambda v: v.timestamp, reverse=True)
        return views

    async def unread_count(self, user_id: UUID) -> int:
        return sum(1 for view in await self.list_notifications(user_id) if not view.read)

    # ========================================================================
    # User overlay writes
    # ========================================================================

    async def mark_read(self, user_id: UUID, notification_key: str) -> bool:
        """
        Mark one notification read. Idempotent.

        Returns True when a new mark was written, False if it already existed.

        Raises:
            ResourceNotFoundError: Id unknown or not visible to this user
        """
        await self._require_visible(user_id, notification_key)
        created = await self._insert_marks(UserNotificationRead, user_id, [notification_key])
        await self.session.commit()
        logger.info("notification_marked_read", user_id=str(user_id), id=notification_key)
        return created == 1

    async def mark_all_read(self, user_id: UUID) -> int:
        """Mark every visible unread notification read. Returns the number marked."""
        unread = [v.id for v in await self.list_notifications(user_id) if not v.read]
        created = await self._insert_marks(UserNotificationRead, user_id, unread)
        await self.session.commit()
        logger.info("notifications_marked_all_read", user_id=str(user_id), count=created)
        return created

    async def delete(self, user_id: UUID, notification_key: str) -> bool:
        """
        Hide one notification for this user only. Idempotent.

        Raises:
            ResourceNotFoundError: Id unknown or not visible to this user
        """
        await self._require_visible(user_id, notification_key)
        created = await self._insert_marks(UserDeletedNotification, user_id, [notification_key])
        await self.session.commit()
        logger.info("notification_deleted", user_id=str(user_id), id=notification_key)
        return created == 1

    async def clear_all(self, user_id: UUID) -> int:
        """Hide every visible notification for this user. Returns the number hidden."""
        visible = [v.id for v in await self.list_notifications(user_id)]
        created = await self._insert_marks(UserDeletedNotification, user_id, visible)
        await self.session.commit()
        logger.info("notifications_cleared", user_id=str(user_id), count=created)
        return created

    # ========================================================================
    # Support messages
    # ========================================================================

    async def create_support_message(self, user_id: UUID, subject: str, body: str) -> UUID:
        message = SupportMessage(user_id=user_id, subject=subject, body=body, status="open")
        self.session.add(message)
        await self.session.commit()
        logger.info("support_message_created", user_id=str(user_id), message_id=str(message.id))
        return message.id

    # ========================================================================
    # Admin writes
    # ========================================================================

    async def broadcast(
        self,
        admin_id: UUID,
        title: str,
        message: str,
        notification_type: NotificationType = NotificationType.SYSTEM,
        target_user_id: UUID | None = None,
    ) -> NotificationView:
        """Create an admin notification (global when target_user_id is None) and publish it."""
        row = AdminNotification(
            title=title,
            message=message,
            type=notification_type.value,
            target_user_id=target_user_id,
            created_by=admin_id,
            created_at=utc_now(),
        )
        self.session.add(row)
        await self.session.commit()

        view = self._admin_view(row)
        channel = BROADCAST_CHANNEL if target_user_id is None else user_channel(target_user_id)
        await self._publish(channel, view)

        logger.info(
            "notification_broadcast",
            admin_id=str(admin_id),
            id=view.id,
            target_user_id=str(target_user_id) if target_user_id else None,
        )
        return view

    async def reply_to_support(self, admin_id: UUID, message_id: UUID, body: str) -> NotificationView:
        """
        Answer a support message; the reply shows up in the author's feed.

        Raises:
            ResourceNotFoundError: Support message doesn't exist
        """
        support_message = await self.session.get(SupportMessage, message_id)
        if support_message is None:
            raise ResourceNotFoundError("support_message", str(message_id))

        reply = AdminReply(
            message_id=message_id, admin_id=admin_id, body=body, created_at=utc_now()
        )
        self.session.add(reply)
        support_message.status = "answered"
        await self.session.commit()

        view = self._reply_view(reply, support_message)
        await self._publish(user_channel(support_message.user_id), view)

        logger.info(
            "support_reply_created",
            admin_id=str(admin_id),
            message_id=str(message_id),
            id=view.id,
        )
        return view

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _all_views(self, user_id: UUID) -> list[NotificationView]:
        """Every notification visible to the user, before overlays."""
        admin_stmt = select(AdminNotification).where(
            or_(
                AdminNotification.target_user_id.is_(None),
                AdminNotification.target_user_id == user_id,
            )
        )
        admin_rows = (await self.session.execute(admin_stmt)).scalars().all()

        reply_stmt = (
            select(AdminReply, SupportMessage)
            .join(SupportMessage, AdminReply.message_id == SupportMessage.id)
            .where(SupportMessage.user_id == user_id)
        )
        reply_rows = (await self.session.execute(reply_stmt)).all()

        views = [self._admin_view(row) for row in admin_rows]
        views.extend(self._reply_view(reply, message) for reply, message in reply_rows)
        return views

    async def _require_visible(self, user_id: UUID, notification_key: str) -> None:
        source, row_id = parse_notification_id(notification_key)
        if source == NotificationSource.ADMIN:
            admin_stmt = select(AdminNotification.id).where(
                AdminNotification.id == row_id,
                or_(
                    AdminNotification.target_user_id.is_(None),
                    AdminNotification.target_user_id == user_id,
                ),
            )
            found = (await self.session.execute(admin_stmt)).first() is not None
        else:
            reply_stmt = (
                select(AdminReply.id)
                .join(SupportMessage, AdminReply.message_id == SupportMessage.id)
                .where(AdminReply.id == row_id, SupportMessage.user_id == user_id)
            )
            found = (await self.session.execute(reply_stmt)).first() is not None

        if not found:
            raise ResourceNotFoundError("notification", notification_key)

    async def _keys(
        self, model: type[UserNotificationRead] | type[UserDeletedNotification], user_id: UUID
    ) -> set[str]:
        stmt = select(model.notification_key).where(model.user_id == user_id)
        return set((await self.session.execute(stmt)).scalars().all())

    async def _insert_marks(
        self,
        model: type[UserNotificationRead] | type[UserDeletedNotification],
        user_id: UUID,
        keys: Iterable[str],
    ) -> int:
        """Insert overlay rows, skipping ones that already exist. Returns rows created."""
        existing = await self._keys(model, user_id)
        created = 0
        for key in keys:
            if key in existing:
                continue
            try:
                async with self.session.begin_nested():
                    self.session.add(model(user_id=user_id, notification_key=key))
            except IntegrityError:
                # A concurrent request wrote the same mark
                logger.debug("notification_mark_exists", user_id=str(user_id), id=key)
                continue
            existing.add(key)
            created += 1
        return created

    async def _publish(self, channel: str, view: NotificationView) -> None:
        """Publish an insert event. The row is already committed; subscribers resync on drops."""
        if self.redis is None:
            return
        try:
            await self.redis.publish(channel, view_to_event(view))
        except RedisError as exc:
            metrics.record_error("RedisError", "notification_publish")
            logger.warning("notification_publish_failed", channel=channel, error=str(exc))
            return
        metrics.notification_events_total.labels(source=view.source.value).inc()

    def _admin_view(self, row: AdminNotification) -> NotificationView:
        return NotificationView(
            id=notification_id(NotificationSource.ADMIN, row.id),
            source=NotificationSource.ADMIN,
            type=NotificationType(row.type),
            title=row.title,
            message=row.message,
            timestamp=as_utc(row.created_at) or utc_now(),
            read=False,
        )

    def _reply_view(self, reply: AdminReply, message: SupportMessage) -> NotificationView:
        return NotificationView(
            id=notification_id(NotificationSource.SUPPORT, reply.id),
            source=NotificationSource.SUPPORT,
            type=NotificationType.SUPPORT,
            title=f"Support reply: {message.subject}",
            message=reply.body,
            timestamp=as_utc(reply.created_at) or utc_now(),
            read=False,
        )
