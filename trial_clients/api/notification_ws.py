"""
Notification websocket - one live NotificationFeed per connection.

The client authenticates with ?token=<session token>. The server sends a
snapshot, then every new notification as it is published. The client may
send {"action": "mark_read" | "mark_all_read" | "delete" | "undo", "id": ...};
each action is answered with a fresh snapshot.

Maintenance mode applies here as on the HTTP routes: non-admins get an
error event and a 1013 close at connect, and writes sent later on an open
socket are answered with an error event. undo only cancels a pending
delete and is always allowed.
"""

from typing import Any, Final
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from trial_clients.api.dependencies import UNAVAILABLE_DETAIL, decode_user_token
from trial_clients.api.routes import notification_response
from trial_clients.config import settings
from trial_clients.db.session import get_write_session, get_write_session_factory
from trial_clients.exceptions import AuthenticationError
from trial_clients.models.domain import NotificationView
from trial_clients.observability.logging import get_logger
from trial_clients.redis_client import get_optional_redis
from trial_clients.services.notification_feed import NotificationFeed, SessionFeedBackend
from trial_clients.services.notifications import EVENT_CREATED
from trial_clients.services.system_settings import SystemSettingsService

logger = get_logger(__name__)
router = APIRouter(tags=["notifications"])

EVENT_SNAPSHOT = "snapshot"
EVENT_ERROR = "error"

WRITE_ACTIONS: Final = frozenset({"mark_read", "mark_all_read", "delete"})


def snapshot_message(feed: NotificationFeed) -> dict[str, Any]:
    return {
        "event": EVENT_SNAPSHOT,
        "data": {
            "notifications": [notification_response(v).model_dump() for v in feed.items],
            "unread_count": feed.unread_count,
        },
    }


async def apply_action(feed: NotificationFeed, message: dict[str, Any]) -> bool:
    """Run one client action against the feed. False for unknown actions or ids."""
    action = message.get("action")
    key = message.get("id")
    if action == "mark_all_read":
        return await feed.mark_all_read()
    if not isinstance(key, str):
        return False
    if action == "mark_read":
        return await feed.mark_read(key)
    if action == "delete":
        return feed.delete(key)
    if action == "undo":
        return feed.undo(key)
    return False


async def maintenance_block(user_id: UUID) -> str | None:
    """Message to refuse a non-admin with during maintenance. Fails closed."""
    try:
        async with get_write_session() as db:
            return await SystemSettingsService(db).maintenance_block(user_id)
    except Exception as exc:
        logger.error("maintenance_check_failed", user_id=str(user_id), error=str(exc))
        return UNAVAILABLE_DETAIL


def error_message(notification_key: Any, message: str) -> dict[str, Any]:
    return {"event": EVENT_ERROR, "data": {"id": notification_key, "message": message}}


@router.websocket("/v1/notifications/ws")
async def notifications_ws(websocket: WebSocket, token: str = Query(...)) -> None:
    """Live notification feed for the token's user."""
    try:
        user = decode_user_token(token)
    except AuthenticationError as exc:
        logger.warning("notification_ws_auth_failed", error=exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    blocked = await maintenance_block(user.user_id)
    await websocket.accept()
    if blocked is not None:
        logger.info("notification_ws_blocked_maintenance", user_id=str(user.user_id))
        await websocket.send_json(error_message(None, blocked))
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    async def on_new(view: NotificationView) -> None:
        await websocket.send_json(
            {"event": EVENT_CREATED, "data": notification_response(view).model_dump()}
        )

    async def on_error(notification_key: str, exc: Exception) -> None:
        await websocket.send_json(error_message(notification_key, str(exc)))

    feed = NotificationFeed(
        user.user_id,
        SessionFeedBackend(get_write_session_factory()),
        get_optional_redis(),
        on_new=on_new,
        on_error=on_error,
        undo_seconds=settings.notification_undo_seconds,
    )

    await feed.start()
    logger.info("notification_ws_connected", user_id=str(user.user_id))
    try:
        await websocket.send_json(snapshot_message(feed))
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                await websocket.send_json(error_message(None, "Unsupported action"))
                continue
            if message.get("action") in WRITE_ACTIONS:
                blocked = await maintenance_block(user.user_id)
                if blocked is not None:
                    await websocket.send_json(error_message(message.get("id"), blocked))
                    continue
            if not await apply_action(feed, message):
                await websocket.send_json(error_message(message.get("id"), "Unsupported action"))
                continue
            await websocket.send_json(snapshot_message(feed))
    except WebSocketDisconnect:
        logger.info("notification_ws_disconnected", user_id=str(user.user_id))
    finally:
        await feed.stop()
