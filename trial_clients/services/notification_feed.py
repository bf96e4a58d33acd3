"""
Notification Feed - per-user notification cache kept live by Redis pub/sub.

The feed owns one user's merged list. It is filled by a full fetch,
extended by insert events, and re-fetched in full whenever the
subscription is re-established, so events missed during a drop are never
lost. Deletes are optimistic with an undo window; reads are optimistic and
roll back on failure.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Protocol
from uuid import UUID

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trial_clients.models.api import NotificationSource, NotificationType
from trial_clients.models.domain import NotificationView
from trial_clients.observability.logging import get_logger
from trial_clients.observability.metrics import metrics
from trial_clients.services.notifications import (
    BROADCAST_CHANNEL,
    EVENT_CREATED,
    NotificationService,
    user_channel,
)

logger = get_logger(__name__)

NewNotificationHandler = Callable[[NotificationView], Awaitable[None]]
ErrorHandler = Callable[[str, Exception], Awaitable[None]]


class FeedBackend(Protocol):
    """Server operations the feed needs."""

    async def list_notifications(self, user_id: UUID) -> list[NotificationView]: ...

    async def mark_read(self, user_id: UUID, notification_key: str) -> bool: ...

    async def mark_all_read(self, user_id: UUID) -> int: ...

    async def delete(self, user_id: UUID, notification_key: str) -> bool: ...


class SessionFeedBackend:
    """FeedBackend that opens a fresh database session per operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _service(self) -> AsyncIterator[NotificationService]:
        async with self._session_factory() as session:
            yield NotificationService(session)

    async def list_notifications(self, user_id: UUID) -> list[NotificationView]:
        async with self._service() as service:
            return await service.list_notifications(user_id)

    async def mark_read(self, user_id: UUID, notification_key: str) -> bool:
        async with self._service() as service:
            return await service.mark_read(user_id, notification_key)

    async def mark_all_read(self, user_id: UUID) -> int:
        async with self._service() as service:
            return await service.mark_all_read(user_id)

    async def delete(self, user_id: UUID, notification_key: str) -> bool:
        async with self._service() as service:
            return await service.delete(user_id, notification_key)


def parse_event(data: Any) -> NotificationView | None:
    """Decode a pub/sub insert event; None for anything that is not one."""
    if isinstance(data, bytes):
        data = data.decode()
    if not isinstance(data, str):
        return None
    try:
        payload = json.loads(data)
        if payload.get("event") != EVENT_CREATED:
            return None
        body = payload["data"]
        return NotificationView(
            id=body["id"],
            source=NotificationSource(body["source"]),
            type=NotificationType(body["type"]),
            title=body["title"],
            message=body["message"],
            timestamp=datetime.fromisoformat(body["timestamp"]),
            read=False,
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError):
        logger.warning("notification_event_invalid")
        return None


class NotificationFeed:
    """Live notification cache for a single user."""

    def __init__(
        self,
        user_id: UUID,
        backend: FeedBackend,
        redis: aioredis.Redis | None = None,
        *,
        on_new: NewNotificationHandler | None = None,
        on_error: ErrorHandler | None = None,
        undo_seconds: float = 5.0,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ) -> None:
        self.user_id = user_id
        self.backend = backend
        self.redis = redis
        self.on_new = on_new
        self.on_error = on_error
        self.undo_seconds = undo_seconds
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

        self._items: list[NotificationView] = []
        self._pending_deletes: dict[str, tuple[asyncio.Task[None], NotificationView]] = {}
        self._pubsub: Any = None
        self._listener: asyncio.Task[None] | None = None
        self._running = False

    # ========================================================================
    # Cache view
    # ========================================================================

    @property
    def items(self) -> list[NotificationView]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self._items if not item.read)

    @property
    def pending_delete_ids(self) -> set[str]:
        return set(self._pending_deletes)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """Subscribe, then fetch, so no insert between the two is missed."""
        self._running = True
        if self.redis is not None:
            self._pubsub = await self._subscribe()
        await self.refresh()
        if self._pubsub is not None:
            self._listener = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        """
        Stop listening and finalize any deletes still inside their undo window.

        The subscription is closed and pending deletes are sent even when the
        listener ended with an error.
        """
        self._running = False
        listener, self._listener = self._listener, None
        try:
            if listener is not None:
                listener.cancel()
                try:
                    await listener
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("notification_feed_listener_failed", user_id=str(self.user_id))
        finally:
            await self._close_pubsub()
            await self.flush_pending_deletes()

    async def reset(self, user_id: UUID) -> None:
        """Auth change: drop everything cached for the previous user and start over."""
        await self.stop()
        self.user_id = user_id
        self._items = []
        await self.start()

    async def refresh(self) -> None:
        """Full re-fetch; pending deletes stay hidden."""
        items = await self.backend.list_notifications(self.user_id)
        self._items = [item for item in items if item.id not in self._pending_deletes]

    async def resync(self) -> None:
        metrics.notification_resyncs_total.inc()
        logger.info("notification_feed_resync", user_id=str(self.user_id))
        await self.refresh()

    # ========================================================================
    # Events
    # ========================================================================

    async def handle_event(self, data: Any) -> NotificationView | None:
        """Apply one insert event. Returns the new view, or None if ignored."""
        view = parse_event(data)
        if view is None:
            return None
        if view.id in self._pending_deletes or any(i.id == view.id for i in self._items):
            return None
        self._items.insert(0, view)
        if self.on_new is not None:
            await self.on_new(view)
        return view

    # ========================================================================
    # Optimistic mutations
    # ========================================================================

    async def mark_read(self, notification_key: str) -> bool:
        """Flip locally, confirm on the server, roll back on failure."""
        index = self._index_of(notification_key)
        if index is None:
            return False
        original = self._items[index]
        if original.read:
            return True

        self._items[index] = original.with_read(True)
        try:
            await self.backend.mark_read(self.user_id, notification_key)
        except Exception as exc:
            self._replace(original)
            logger.warning(
                "notification_mark_read_rolled_back", id=notification_key, error=str(exc)
            )
            await self._report(notification_key, exc)
            return False
        return True

    async def mark_all_read(self) -> bool:
        original_read = {item.id: item.read for item in self._items}
        self._items = [item.with_read(True) for item in self._items]
        try:
            await self.backend.mark_all_read(self.user_id)
        except Exception as exc:
            self._items = [
                item.with_read(original_read.get(item.id, item.read)) for item in self._items
            ]
            logger.warning("notification_mark_all_read_rolled_back", error=str(exc))
            await self._report("*", exc)
            return False
        return True

    def delete(self, notification_key: str) -> bool:
        """
        Remove locally and schedule the server delete after the undo window.

        Returns False when the id is not in the cache.
        """
        index = self._index_of(notification_key)
        if index is None:
            return False
        view = self._items.pop(index)
        task = asyncio.create_task(self._finalize_delete(notification_key, view))
        self._pending_deletes[notification_key] = (task, view)
        return True

    def undo(self, notification_key: str) -> bool:
        """Cancel a scheduled delete inside its window and restore the item."""
        pending = self._pending_deletes.pop(notification_key, None)
        if pending is None:
            return False
        task, view = pending
        task.cancel()
        self._restore(view)
        return True

    async def flush_pending_deletes(self) -> None:
        """Send every scheduled delete now."""
        for key, (task, view) in list(self._pending_deletes.items()):
            task.cancel()
            await self._finalize_delete(key, view, delay=0)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _finalize_delete(
        self, notification_key: str, view: NotificationView, delay: float | None = None
    ) -> None:
        await asyncio.sleep(self.undo_seconds if delay is None else delay)
        # Past the undo window
        self._pending_deletes.pop(notification_key, None)
        try:
            await self.backend.delete(self.user_id, notification_key)
        except Exception as exc:
            self._restore(view)
            logger.warning("notification_delete_rolled_back", id=notification_key, error=str(exc))
            await self._report(notification_key, exc)
            return
        logger.debug("notification_delete_finalized", id=notification_key)

    async def _subscribe(self) -> Any:
        if self.redis is None:
            raise RuntimeError("Notification feed has no Redis client")
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(BROADCAST_CHANNEL, user_channel(self.user_id))
        logger.info("notification_feed_subscribed", user_id=str(self.user_id))
        return pubsub

    async def _close_pubsub(self) -> None:
        if self._pubsub is None:
            return
        pubsub, self._pubsub = self._pubsub, None
        try:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        except RedisError as exc:
            logger.debug("notification_feed_close_failed", error=str(exc))

    async def _listen(self) -> None:
        delay = self.reconnect_delay
        while self._running:
            try:
                if self._pubsub is None:
                    self._pubsub = await self._subscribe()
                    await self.resync()
                    delay = self.reconnect_delay
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except RedisError as exc:
                logger.warning(
                    "notification_subscription_dropped",
                    user_id=str(self.user_id),
                    error=str(exc),
                )
                await self._drop_subscription(delay)
                delay = min(delay * 2, self.max_reconnect_delay)
                continue
            except Exception:
                # Resync failed; the next pass resubscribes and fetches again
                logger.exception("notification_feed_resync_failed", user_id=str(self.user_id))
                await self._drop_subscription(delay)
                delay = min(delay * 2, self.max_reconnect_delay)
                continue

            if message is None:
                continue
            try:
                await self.handle_event(message.get("data"))
            except Exception:
                logger.exception("notification_event_handler_failed", user_id=str(self.user_id))

    async def _drop_subscription(self, delay: float) -> None:
        await self._close_pubsub()
        await asyncio.sleep(delay)

    async def _report(self, notification_key: str, exc: Exception) -> None:
        if self.on_error is None:
            return
        try:
            await self.on_error(notification_key, exc)
        except Exception:
            logger.exception("notification_error_handler_failed", id=notification_key)

    def _index_of(self, notification_key: str) -> int | None:
        for index, item in enumerate(self._items):
            if item.id == notification_key:
                return index
        return None

    def _replace(self, view: NotificationView) -> None:
        index = self._index_of(view.id)
        if index is not None:
            self._items[index] = view

    def _restore(self, view: NotificationView) -> None:
        if self._index_of(view.id) is None:
            self._items.append(view)
            self._sort()

    def _sort(self) -> None:
        self._items.sort(key=lambda v: v.timestamp, reverse=True)

