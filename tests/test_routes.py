"""
Tests for API Routes.

Route handlers are exercised through the FastAPI test client with the
database, the user and the maintenance gate overridden, and the services
patched where the handler delegates to them.
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

from fastapi import FastAPI
from fastapi.testclient import TestClient

from tests.helpers import make_result
from trial_clients.exceptions import (
    CooldownActiveError,
    DuplicatePostUrlError,
    InvalidReferralCodeError,
    InvalidSocialUrlError,
    LevelLockedError,
    PendingRequestExistsError,
    QuotaExhaustedError,
    ReferralAlreadyUsedError,
    ResourceNotFoundError,
    SelfReferralError,
)
from trial_clients.models.api import (
    Level,
    NotificationSource,
    NotificationType,
    Plan,
    Platform,
    ProjectStatus,
    RequestStatus,
)
from trial_clients.models.domain import (
    CooldownState,
    LevelProgress,
    NotificationView,
    ProjectData,
    QuotaStatus,
    ReferralResult,
    ReferralStats,
    SocialRewardRequestData,
    SubscriptionData,
    XPAward,
)


def make_subscription(user_id: UUID, **overrides: object) -> SubscriptionData:
    values: dict[str, object] = {
        "user_id": user_id,
        "plan": Plan.FREE,
        "beginner_left": -1,
        "intermediate_left": 2,
        "veteran_left": 0,
        "credits": 4,
        "reset_at": datetime.now(UTC) + timedelta(days=5),
    }
    values.update(overrides)
    return SubscriptionData(**values)  # type: ignore[arg-type]


def make_project(user_id: UUID, status: ProjectStatus = ProjectStatus.GENERATING) -> ProjectData:
    return ProjectData(
        project_id=uuid4(),
        user_id=user_id,
        title="Branding Project",
        description=None,
        project_type="Branding",
        level=Level.BEGINNER,
        industry="Food",
        status=status,
        brief_data=None,
        failure_reason=None,
        created_at=datetime.now(UTC),
        completed_at=None,
    )


# ============================================================================
# Quota
# ============================================================================


class TestQuotaRoutes:
    """Tests for /v1/quota endpoints."""

    def test_overview_lists_every_level(self, user_client: TestClient, user_id: UUID) -> None:
        with patch("trial_clients.api.routes.QuotaService") as service_cls:
            service = service_cls.return_value
            service.ensure_subscription = AsyncMock(return_value=make_subscription(user_id))
            service.status_for = MagicMock(
                side_effect=lambda sub, level, now: QuotaStatus(
                    level=level, available=True, remaining=1, limit=2, is_locked=False
                )
            )

            response = user_client.get("/v1/quota")

        assert response.status_code == 200
        body = response.json()
        assert body["plan"] == "free"
        assert body["credits"] == 4
        assert [entry["level"] for entry in body["levels"]] == [
            "beginner",
            "intermediate",
            "veteran",
        ]

    def test_due_reset_shows_next_period(self, user_client: TestClient, user_id: UUID) -> None:
        """A past reset_at is shown as the upcoming one."""
        past = datetime.now(UTC) - timedelta(days=1)
        with patch("trial_clients.api.routes.QuotaService") as service_cls:
            service = service_cls.return_value
            service.ensure_subscription = AsyncMock(
                return_value=make_subscription(user_id, reset_at=past)
            )
            service.status_for = MagicMock(
                return_value=QuotaStatus(
                    level=Level.BEGINNER,
                    available=True,
                    remaining="unlimited",
                    limit="unlimited",
                    is_locked=False,
                )
            )

            response = user_client.get("/v1/quota")

        reset_at = datetime.fromisoformat(response.json()["reset_at"])
        assert reset_at > datetime.now(UTC)
        assert reset_at.day == 1

    def test_consume_denied_is_not_an_error(self, user_client: TestClient) -> None:
        """consumed=false comes back as 200 with the current status."""
        with patch("trial_clients.api.routes.QuotaService") as service_cls:
            service = service_cls.return_value
            service.ensure_subscription = AsyncMock()
            service.consume = AsyncMock(return_value=False)
            service.get_status = AsyncMock(
                return_value=QuotaStatus(
                    level=Level.VETERAN,
                    available=False,
                    remaining="locked",
                    limit="locked",
                    is_locked=True,
                )
            )

            response = user_client.post("/v1/quota/veteran/consume")

        assert response.status_code == 200
        assert response.json()["consumed"] is False
        assert response.json()["status"]["is_locked"] is True

    def test_unknown_level(self, user_client: TestClient) -> None:
        assert user_client.get("/v1/quota/expert").status_code == 422

    def test_requires_auth(self, app: FastAPI, db_session: AsyncMock) -> None:
        from trial_clients.db.session import get_write_db

        async def override_db() -> AsyncGenerator[AsyncMock, None]:
            yield db_session

        app.dependency_overrides[get_write_db] = override_db
        try:
            assert TestClient(app).get("/v1/quota").status_code == 401
        finally:
            app.dependency_overrides.clear()


# ============================================================================
# Social Rewards
# ============================================================================


class TestSocialRewardRoutes:
    """Tests for /v1/social-rewards endpoints."""

    def test_cooldown(self, user_client: TestClient) -> None:
        now = datetime.now(UTC)
        state = CooldownState(
            allowed=False,
            reason="cooldown_active",
            now=now,
            last_approved_at=now - timedelta(days=1),
            cooldown_end=now + timedelta(days=6),
            ms_remaining=6 * 24 * 3600 * 1000,
        )
        with patch("trial_clients.api.routes.SocialRewardService") as service_cls:
            service_cls.return_value.get_cooldown = AsyncMock(return_value=state)
            response = user_client.get("/v1/social-rewards/cooldown")

        body = response.json()
        assert body["allowed"] is False
        assert body["ms_remaining"] == 6 * 24 * 3600 * 1000
        assert body["cooldown_end"] == state.cooldown_end.isoformat()  # type: ignore[union-attr]

    def test_latest_none(self, user_client: TestClient) -> None:
        with patch("trial_clients.api.routes.SocialRewardService") as service_cls:
            service_cls.return_value.latest_request = AsyncMock(return_value=None)
            response = user_client.get("/v1/social-rewards/latest")

        assert response.status_code == 200
        assert response.json() is None

    def test_submit_created(self, user_client: TestClient, user_id: UUID) -> None:
        created = SocialRewardRequestData(
            request_id=uuid4(),
            user_id=user_id,
            platform=Platform.X,
            post_url="https://x.com/a/status/1",
            status=RequestStatus.PENDING,
            credits_awarded=None,
            rejection_reason=None,
            created_at=datetime.now(UTC),
            reviewed_at=None,
        )
        with patch("trial_clients.api.routes.SocialRewardService") as service_cls:
            service_cls.return_value.submit = AsyncMock(return_value=created)
            response = user_client.post(
                "/v1/social-rewards",
                json={"platform": "x", "post_url": " https://x.com/a/status/1 "},
            )

        assert response.status_code == 201
        assert response.json()["status"] == "pending"
        service_cls.return_value.submit.assert_awaited_once_with(
            user_id, Platform.X, "https://x.com/a/status/1"
        )

    def test_submit_error_mapping(self, user_client: TestClient, user_id: UUID) -> None:
        """Each submission failure has its own status code."""
        cases = [
            (InvalidSocialUrlError("u", "URL must use HTTPS"), 400),
            (DuplicatePostUrlError("u"), 409),
            (PendingRequestExistsError(user_id), 409),
            (CooldownActiveError(datetime.now(UTC) + timedelta(hours=1), 3_600_000), 429),
        ]
        for error, expected in cases:
            with patch("trial_clients.api.routes.SocialRewardService") as service_cls:
                service_cls.return_value.submit = AsyncMock(side_effect=error)
                response = user_client.post(
                    "/v1/social-rewards",
                    json={"platform": "x", "post_url": "https://x.com/a/status/1"},
                )
            assert response.status_code == expected, type(error).__name__
            if expected == 429:
                assert response.headers["Retry-After"] == "3600"


# ============================================================================
# Referrals
# ============================================================================


class TestReferralRoutes:
    """Tests for /v1/referrals endpoints."""

    def test_overview(self, user_client: TestClient) -> None:
        with patch("trial_clients.api.routes.ReferralService") as service_cls:
            service = service_cls.return_value
            service.get_or_create_code = AsyncMock(return_value="ABCD1234")
            service.get_stats = AsyncMock(
                return_value=ReferralStats(total_referrals=3, credits_earned=4)
            )
            response = user_client.get("/v1/referrals")

        body = response.json()
        assert body["code"] == "ABCD1234"
        assert body["link"] == "https://app.example.com/auth?ref=ABCD1234"
        assert body["total_referrals"] == 3

    def test_redeem(self, user_client: TestClient, user_id: UUID) -> None:
        with patch("trial_clients.api.routes.ReferralService") as service_cls:
            service_cls.return_value.process_referral = AsyncMock(
                return_value=ReferralResult(ok=True, referred_credits=2, referrer_credited=True)
            )
            response = user_client.post("/v1/referrals/redeem", json={"code": " abcd1234 "})

        assert response.status_code == 200
        service_cls.return_value.process_referral.assert_awaited_once_with(user_id, "ABCD1234")

    def test_redeem_errors(self, user_client: TestClient, user_id: UUID) -> None:
        cases = [
            (InvalidReferralCodeError("X"), 400),
            (SelfReferralError(user_id), 400),
            (ReferralAlreadyUsedError(user_id), 409),
        ]
        for error, expected in cases:
            with patch("trial_clients.api.routes.ReferralService") as service_cls:
                service_cls.return_value.process_referral = AsyncMock(side_effect=error)
                response = user_client.post("/v1/referrals/redeem", json={"code": "ABCD1234"})
            assert response.status_code == expected


# ============================================================================
# Notifications
# ============================================================================


class TestNotificationRoutes:
    """Tests for /v1/notifications endpoints."""

    def test_list_with_unread_count(self, user_client: TestClient) -> None:
        views = [
            NotificationView(
                id=f"admin-{uuid4()}",
                source=NotificationSource.ADMIN,
                type=NotificationType.SYSTEM,
                title=f"n{i}",
                message="m",
                timestamp=datetime.now(UTC),
                read=i == 0,
            )
            for i in range(3)
        ]
        with patch("trial_clients.api.routes.NotificationService") as service_cls:
            service_cls.return_value.list_notifications = AsyncMock(return_value=views)
            response = user_client.get("/v1/notifications")

        body = response.json()
        assert len(body["notifications"]) == 3
        assert body["unread_count"] == 2

    def test_mark_read_unknown_is_404(self, user_client: TestClient) -> None:
        with patch("trial_clients.api.routes.NotificationService") as service_cls:
            service_cls.return_value.mark_read = AsyncMock(
                side_effect=ResourceNotFoundError("notification", "admin-x")
            )
            response = user_client.post("/v1/notifications/admin-x/read")

        assert response.status_code == 404

    def test_delete_one(self, user_client: TestClient, user_id: UUID) -> None:
        key = f"support-{uuid4()}"
        with patch("trial_clients.api.routes.NotificationService") as service_cls:
            service_cls.return_value.delete = AsyncMock(return_value=True)
            response = user_client.delete(f"/v1/notifications/{key}")

        assert response.json() == {"ok": True, "affected": 1}
        service_cls.return_value.delete.assert_awaited_once_with(user_id, key)

    def test_read_all_and_clear(self, user_client: TestClient) -> None:
        with patch("trial_clients.api.routes.NotificationService") as service_cls:
            service_cls.return_value.mark_all_read = AsyncMock(return_value=5)
            service_cls.return_value.clear_all = AsyncMock(return_value=2)

            assert user_client.post("/v1/notifications/read-all").json()["affected"] == 5
            assert user_client.delete("/v1/notifications").json()["affected"] == 2

    def test_support_message(self, user_client: TestClient) -> None:
        message_id = uuid4()
        with patch("trial_clients.api.routes.NotificationService") as service_cls:
            service_cls.return_value.create_support_message = AsyncMock(return_value=message_id)
            response = user_client.post(
                "/v1/support/messages", json={"subject": "Help", "body": "Quota looks wrong"}
            )

        assert response.status_code == 201
        assert response.json() == {"id": str(message_id)}


# ============================================================================
# Gamification
# ============================================================================


class TestGamificationRoutes:
    """Tests for /v1/gamification endpoints."""

    def test_overview(self, user_client: TestClient) -> None:
        with patch("trial_clients.api.routes.GamificationService") as service_cls:
            service = service_cls.return_value
            service.get_level_progress = AsyncMock(
                return_value=LevelProgress(
                    total_xp=1250, level=2, level_floor=1000, level_ceiling=2000
                )
            )
            service.list_badges = AsyncMock(return_value=[])
            response = user_client.get("/v1/gamification")

        body = response.json()
        assert body["level"] == 2
        assert body["progress_xp"] == 250
        assert body["progress_fraction"] == 0.25

    def test_daily_login_award(self, user_client: TestClient) -> None:
        with patch("trial_clients.api.routes.GamificationService") as service_cls:
            service_cls.return_value.award_xp = AsyncMock(
                return_value=XPAward(xp_gained=25, total_xp=25, level=1, leveled_up=False)
            )
            response = user_client.post("/v1/gamification/xp", json={"event_type": "daily_login"})

        assert response.status_code == 200
        assert response.json()["xp_gained"] == 25

    def test_server_awarded_event_refused(self, user_client: TestClient) -> None:
        """Clients cannot claim project or referral XP."""
        with patch("trial_clients.api.routes.GamificationService") as service_cls:
            response = user_client.post(
                "/v1/gamification/xp", json={"event_type": "project_completed"}
            )

        assert response.status_code == 400
        service_cls.return_value.award_xp.assert_not_called()

    def test_unknown_event(self, user_client: TestClient) -> None:
        response = user_client.post("/v1/gamification/xp", json={"event_type": "jackpot"})
        assert response.status_code == 400


# ============================================================================
# Projects
# ============================================================================


class TestProjectRoutes:
    """Tests for /v1/projects endpoints."""

    def test_start_accepted(self, user_client: TestClient, user_id: UUID) -> None:
        with patch("trial_clients.api.routes.ProjectService") as service_cls:
            service_cls.return_value.start_generation = AsyncMock(
                return_value=make_project(user_id)
            )
            response = user_client.post(
                "/v1/projects",
                json={"level": "beginner", "project_type": "Branding", "industry": "Food"},
            )

        assert response.status_code == 202
        assert response.json()["status"] == "generating"

    def test_locked_level(self, user_client: TestClient) -> None:
        with patch("trial_clients.api.routes.ProjectService") as service_cls:
            service_cls.return_value.start_generation = AsyncMock(
                side_effect=LevelLockedError("free", "veteran")
            )
            response = user_client.post(
                "/v1/projects",
                json={"level": "veteran", "project_type": "Web", "industry": "Retail"},
            )

        assert response.status_code == 403
        assert response.json()["detail"] == "Veteran projects are not available on the free plan"

    def test_quota_exhausted(self, user_client: TestClient, user_id: UUID) -> None:
        with patch("trial_clients.api.routes.ProjectService") as service_cls:
            service_cls.return_value.start_generation = AsyncMock(
                side_effect=QuotaExhaustedError(user_id, "intermediate")
            )
            response = user_client.post(
                "/v1/projects",
                json={"level": "intermediate", "project_type": "Web", "industry": "Retail"},
            )

        assert response.status_code == 402
        assert response.json()["detail"] == "No intermediate generations left this month"

    def test_get_missing_project(self, user_client: TestClient) -> None:
        with patch("trial_clients.api.routes.ProjectService") as service_cls:
            service_cls.return_value.get_project = AsyncMock(
                side_effect=ResourceNotFoundError("project", "x")
            )
            response = user_client.get(f"/v1/projects/{uuid4()}")

        assert response.status_code == 404

    def test_list(self, user_client: TestClient, user_id: UUID) -> None:
        with patch("trial_clients.api.routes.ProjectService") as service_cls:
            service_cls.return_value.list_projects = AsyncMock(
                return_value=[make_project(user_id, ProjectStatus.COMPLETED)]
            )
            response = user_client.get("/v1/projects")

        assert [p["status"] for p in response.json()["projects"]] == ["completed"]


# ============================================================================
# Maintenance / Health
# ============================================================================


class TestPublicRoutes:
    """Tests for unauthenticated endpoints."""

    def test_maintenance_flag(self, user_client: TestClient, db_session: AsyncMock) -> None:
        setting = MagicMock()
        setting.value = {"enabled": True, "message": "Back soon"}
        db_session.execute.return_value = make_result(scalar=setting)

        response = user_client.get("/v1/maintenance")

        assert response.json() == {"enabled": True, "message": "Back soon"}

    def test_health_ok(self, user_client: TestClient) -> None:
        response = user_client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_health_db_down(self, user_client: TestClient, db_session: AsyncMock) -> None:
        db_session.execute.side_effect = RuntimeError("connection refused")
        response = user_client.get("/health")
        assert response.status_code == 503
