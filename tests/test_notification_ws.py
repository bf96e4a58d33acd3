"""
Tests for the notification websocket.
"""

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from tests.helpers import make_token
from trial_clients.api.notification_ws import apply_action, maintenance_block, snapshot_message
from trial_clients.models.api import NotificationSource, NotificationType
from trial_clients.models.domain import NotificationView
from trial_clients.services.notification_feed import NotificationFeed


@pytest.fixture
def feed() -> MagicMock:
    mock = MagicMock(spec=NotificationFeed)
    mock.mark_read = AsyncMock(return_value=True)
    mock.mark_all_read = AsyncMock(return_value=True)
    mock.delete = MagicMock(return_value=True)
    mock.undo = MagicMock(return_value=True)
    return mock


class TestApplyAction:
    """Tests for apply_action()."""

    async def test_mark_read(self, feed: MagicMock) -> None:
        assert await apply_action(feed, {"action": "mark_read", "id": "admin-1"}) is True
        feed.mark_read.assert_awaited_once_with("admin-1")

    async def test_mark_all_read_needs_no_id(self, feed: MagicMock) -> None:
        assert await apply_action(feed, {"action": "mark_all_read"}) is True
        feed.mark_all_read.assert_awaited_once()

    async def test_delete_then_undo(self, feed: MagicMock) -> None:
        assert await apply_action(feed, {"action": "delete", "id": "support-1"}) is True
        assert await apply_action(feed, {"action": "undo", "id": "support-1"}) is True
        feed.delete.assert_called_once_with("support-1")
        feed.undo.assert_called_once_with("support-1")

    @pytest.mark.parametrize(
        "message",
        [
            {"action": "explode", "id": "admin-1"},
            {"action": "mark_read"},
            {"action": "delete", "id": 7},
            {},
        ],
    )
    async def test_unsupported(self, feed: MagicMock, message: dict[str, object]) -> None:
        assert await apply_action(feed, message) is False
        feed.mark_read.assert_not_called()
        feed.delete.assert_not_called()


class TestSnapshot:
    """Tests for snapshot_message()."""

    def test_snapshot_shape(self, feed: MagicMock) -> None:
        view = NotificationView(
            id=f"admin-{uuid4()}",
            source=NotificationSource.ADMIN,
            type=NotificationType.BILLING,
            title="Plan changed",
            message="You are now on Pro",
            timestamp=datetime(2026, 3, 15, 12, 0, tzinfo=UTC),
            read=False,
        )
        feed.items = [view]
        feed.unread_count = 1

        message = snapshot_message(feed)

        assert message["event"] == "snapshot"
        assert message["data"]["unread_count"] == 1
        assert message["data"]["notifications"][0]["id"] == view.id
        assert message["data"]["notifications"][0]["timestamp"] == "2026-03-15T12:00:00+00:00"


class TestWebsocketAuth:
    """The socket is closed before accept without a valid token."""

    def test_bad_token_rejected(self, app: FastAPI) -> None:
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/v1/notifications/ws?token=garbage"):
                pass

        assert exc_info.value.code == 1008


@pytest.fixture
def live_feed(feed: MagicMock) -> Iterator[MagicMock]:
    """Websocket wiring with the feed and its storage replaced."""
    feed.start = AsyncMock()
    feed.stop = AsyncMock()
    feed.items = []
    feed.unread_count = 0
    with (
        patch("trial_clients.api.notification_ws.NotificationFeed", return_value=feed),
        patch("trial_clients.api.notification_ws.SessionFeedBackend"),
        patch("trial_clients.api.notification_ws.get_write_session_factory"),
        patch("trial_clients.api.notification_ws.get_optional_redis", return_value=None),
    ):
        yield feed


class TestWebsocketMaintenance:
    """Non-admins cannot use the socket to write during maintenance."""

    def test_blocked_at_connect(self, app: FastAPI, live_feed: MagicMock) -> None:
        client = TestClient(app)
        url = f"/v1/notifications/ws?token={make_token(uuid4())}"
        with patch(
            "trial_clients.api.notification_ws.maintenance_block",
            AsyncMock(return_value="Back at 10"),
        ):
            with client.websocket_connect(url) as ws:
                assert ws.receive_json() == {
                    "event": "error",
                    "data": {"id": None, "message": "Back at 10"},
                }
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_json()

        assert exc_info.value.code == 1013
        live_feed.start.assert_not_called()

    def test_write_refused_when_maintenance_starts(
        self, app: FastAPI, live_feed: MagicMock
    ) -> None:
        client = TestClient(app)
        url = f"/v1/notifications/ws?token={make_token(uuid4())}"
        gate = AsyncMock(side_effect=[None, "Back at 10", None])
        with patch("trial_clients.api.notification_ws.maintenance_block", gate):
            with client.websocket_connect(url) as ws:
                assert ws.receive_json()["event"] == "snapshot"

                ws.send_json({"action": "mark_read", "id": "admin-1"})
                assert ws.receive_json() == {
                    "event": "error",
                    "data": {"id": "admin-1", "message": "Back at 10"},
                }
                live_feed.mark_read.assert_not_called()

                ws.send_json({"action": "undo", "id": "admin-1"})
                assert ws.receive_json()["event"] == "snapshot"

                ws.send_json({"action": "mark_read", "id": "admin-1"})
                assert ws.receive_json()["event"] == "snapshot"

        live_feed.mark_read.assert_awaited_once_with("admin-1")
        live_feed.undo.assert_called_once_with("admin-1")
        assert gate.await_count == 3


class TestMaintenanceBlock:
    """Tests for the websocket's maintenance lookup."""

    async def test_fails_closed(self) -> None:
        @asynccontextmanager
        async def broken_session() -> AsyncIterator[AsyncMock]:
            raise ConnectionError("db down")
            yield AsyncMock()  # noqa: unreachable

        with patch("trial_clients.api.notification_ws.get_write_session", broken_session):
            assert await maintenance_block(uuid4()) == "Service temporarily unavailable"

    async def test_delegates_to_settings(self) -> None:
        @asynccontextmanager
        async def session() -> AsyncIterator[AsyncMock]:
            yield AsyncMock()

        with (
            patch("trial_clients.api.notification_ws.get_write_session", session),
            patch(
                "trial_clients.api.notification_ws.SystemSettingsService.maintenance_block",
                AsyncMock(return_value=None),
            ),
        ):
            assert await maintenance_block(uuid4()) is None
