"""
Tests for API Dependencies.

Tests authentication, admin gating, maintenance gating and callback
secret verification.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from tests.helpers import make_result, make_token
from trial_clients.api.dependencies import (
    CurrentUser,
    decode_user_token,
    get_current_user,
    require_admin,
    require_not_maintenance,
    verify_callback_secret,
)
from trial_clients.config import settings
from trial_clients.exceptions import AuthenticationError
from trial_clients.models.domain import MaintenanceState


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeUserToken:
    """Tests for decode_user_token()."""

    def test_valid_token(self) -> None:
        user_id = uuid4()
        user = decode_user_token(make_token(user_id, email="a@example.com"))

        assert user == CurrentUser(user_id=user_id, email="a@example.com")

    def test_expired_token(self) -> None:
        token = make_token(uuid4(), expires_in=timedelta(seconds=-10))

        with pytest.raises(AuthenticationError) as exc_info:
            decode_user_token(token)
        assert exc_info.value.message == "Token has expired"

    def test_wrong_signature(self) -> None:
        token = make_token(uuid4(), secret="another-secret-that-is-long-enough-32")
        with pytest.raises(AuthenticationError):
            decode_user_token(token)

    def test_wrong_audience(self) -> None:
        with pytest.raises(AuthenticationError):
            decode_user_token(make_token(uuid4(), audience="service_role"))

    def test_non_uuid_subject(self) -> None:
        token = make_token(uuid4(), sub="not-a-uuid")
        with pytest.raises(AuthenticationError) as exc_info:
            decode_user_token(token)
        assert "missing user ID" in exc_info.value.message

    def test_unconfigured_secret_rejects_everything(self) -> None:
        token = make_token(uuid4())
        with patch.object(settings, "jwt_secret", ""):
            with pytest.raises(AuthenticationError):
                decode_user_token(token)


class TestGetCurrentUser:
    """Tests for get_current_user dependency."""

    async def test_missing_header(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    async def test_invalid_token(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(bearer("garbage"))
        assert exc_info.value.status_code == 401

    async def test_valid_token(self) -> None:
        user_id = uuid4()
        user = await get_current_user(bearer(make_token(user_id)))
        assert user.user_id == user_id


class TestRequireAdmin:
    """Tests for require_admin dependency."""

    async def test_admin_passes(self, db_session: AsyncMock, current_user: CurrentUser) -> None:
        db_session.execute.return_value = make_result(first=(uuid4(),))

        assert await require_admin(current_user, db_session) == current_user

    async def test_non_admin_forbidden(
        self, db_session: AsyncMock, current_user: CurrentUser
    ) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await require_admin(current_user, db_session)
        assert exc_info.value.status_code == 403

    async def test_lookup_error_fails_closed(
        self, db_session: AsyncMock, current_user: CurrentUser
    ) -> None:
        """A broken role lookup is treated as not-admin."""
        db_session.execute.side_effect = RuntimeError("db down")

        with pytest.raises(HTTPException) as exc_info:
            await require_admin(current_user, db_session)
        assert exc_info.value.status_code == 403


class TestRequireNotMaintenance:
    """Tests for require_not_maintenance dependency."""

    async def test_open_when_flag_off(
        self, db_session: AsyncMock, current_user: CurrentUser
    ) -> None:
        assert await require_not_maintenance(current_user, db_session) == current_user

    async def test_blocked_during_maintenance(
        self, db_session: AsyncMock, current_user: CurrentUser
    ) -> None:
        with (
            patch(
                "trial_clients.api.dependencies.SystemSettingsService.is_admin",
                AsyncMock(return_value=False),
            ),
            patch(
                "trial_clients.api.dependencies.SystemSettingsService.get_maintenance",
                AsyncMock(return_value=MaintenanceState(enabled=True, message="Back at 10")),
            ),
        ):
            with pytest.raises(HTTPException) as exc_info:
                await require_not_maintenance(current_user, db_session)

        assert exc_info.value.status_code == 503
        assert exc_info.value.detail == "Back at 10"

    async def test_admin_bypasses_maintenance(
        self, db_session: AsyncMock, current_user: CurrentUser
    ) -> None:
        get_maintenance = AsyncMock(return_value=MaintenanceState(enabled=True, message="x"))
        with (
            patch(
                "trial_clients.api.dependencies.SystemSettingsService.is_admin",
                AsyncMock(return_value=True),
            ),
            patch(
                "trial_clients.api.dependencies.SystemSettingsService.get_maintenance",
                get_maintenance,
            ),
        ):
            assert await require_not_maintenance(current_user, db_session) == current_user

        get_maintenance.assert_not_called()

    async def test_unreadable_flag_fails_closed(
        self, db_session: AsyncMock, current_user: CurrentUser
    ) -> None:
        db_session.execute.side_effect = RuntimeError("db down")

        with pytest.raises(HTTPException) as exc_info:
            await require_not_maintenance(current_user, db_session)

        assert exc_info.value.status_code == 503
        assert exc_info.value.detail == "Service temporarily unavailable"


class TestVerifyCallbackSecret:
    """Tests for verify_callback_secret dependency."""

    async def test_correct_secret(self) -> None:
        assert await verify_callback_secret(settings.brief_callback_secret) is None

    @pytest.mark.parametrize("secret", [None, "", "wrong"])
    async def test_bad_secret(self, secret: str | None) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await verify_callback_secret(secret)
        assert exc_info.value.status_code == 401

    async def test_unconfigured_secret_rejects(self) -> None:
        with patch.object(settings, "brief_callback_secret", ""):
            with pytest.raises(HTTPException):
                await verify_callback_secret("anything")
