"""
Tests for ProjectService.

Project start and brief completion run against the in-process database so
the quota, project, job and XP writes are checked as one transaction.
"""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trial_clients.db.models import GenerationJob, Project, Subscription, UserXP
from trial_clients.exceptions import LevelLockedError, QuotaExhaustedError, ResourceNotFoundError
from trial_clients.models.api import JobStatus, Level, Plan, ProjectStatus
from trial_clients.services.projects import (
    ProjectService,
    brief_description,
    brief_title,
    placeholder_title,
)
from trial_clients.services.quota import QuotaService

BRIEF = {
    "company_name": "Acme Bakery",
    "tagline": "Fresh bread, daily",
    "deliverables": ["Logo", "Landing page"],
}


async def _start(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: UUID,
    level: Level = Level.BEGINNER,
) -> UUID:
    async with session_factory() as db:
        project = await ProjectService(db).start_generation(user_id, level, "Branding", "Food")
    return project.project_id


class TestBriefFields:
    """Tests for title and description derivation."""

    def test_placeholder_title(self) -> None:
        assert placeholder_title("Branding") == "Branding Project"

    def test_brief_title_prefers_company_name(self) -> None:
        assert brief_title({"company_name": "A", "title": "B"}) == "A"
        assert brief_title({"title": "B"}) == "B"
        assert brief_title({}) is None

    def test_brief_description(self) -> None:
        assert brief_description({"description": "D"}) == "D"
        assert brief_description({"tagline": "T", "description": "D"}) == "T"


class TestStartGeneration:
    """Tests for start_generation()."""

    async def test_creates_project_job_and_xp(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """One call: generating project, queued job, 100 XP."""
        user_id = uuid4()
        project_id = await _start(session_factory, user_id)

        async with session_factory() as db:
            project = await db.get(Project, project_id)
            job = (
                await db.execute(select(GenerationJob).where(GenerationJob.project_id == project_id))
            ).scalar_one()
            xp = await db.get(UserXP, user_id)

        assert project is not None
        assert project.status == ProjectStatus.GENERATING.value
        assert project.title == "Branding Project"
        assert job.status == JobStatus.QUEUED.value
        assert job.attempts == 0
        assert xp is not None and xp.total_xp == 100

    async def test_consumes_counted_level(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Intermediate on free takes one of the two monthly generations."""
        user_id = uuid4()
        await _start(session_factory, user_id, Level.INTERMEDIATE)

        async with session_factory() as db:
            subscription = (
                await db.execute(select(Subscription).where(Subscription.user_id == user_id))
            ).scalar_one()
        assert subscription.intermediate_left == 1

    async def test_locked_level_writes_nothing(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        user_id = uuid4()
        async with session_factory() as db:
            with pytest.raises(LevelLockedError) as exc_info:
                await ProjectService(db).start_generation(user_id, Level.VETERAN, "Web", "Retail")

        assert exc_info.value.plan == Plan.FREE.value

        async with session_factory() as db:
            assert (await db.execute(select(Project))).scalars().all() == []

    async def test_exhausted_quota_writes_nothing(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """The third intermediate project on free is refused without a project row."""
        user_id = uuid4()
        await _start(session_factory, user_id, Level.INTERMEDIATE)
        await _start(session_factory, user_id, Level.INTERMEDIATE)

        async with session_factory() as db:
            with pytest.raises(QuotaExhaustedError):
                await ProjectService(db).start_generation(
                    user_id, Level.INTERMEDIATE, "Web", "Retail"
                )

        async with session_factory() as db:
            projects = (await db.execute(select(Project))).scalars().all()
            jobs = (await db.execute(select(GenerationJob))).scalars().all()
        assert len(projects) == 2
        assert len(jobs) == 2

    async def test_veteran_after_upgrade(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        user_id = uuid4()
        async with session_factory() as db:
            await QuotaService(db).change_plan(user_id, Plan.PRO)

        await _start(session_factory, user_id, Level.VETERAN)

        async with session_factory() as db:
            subscription = (
                await db.execute(select(Subscription).where(Subscription.user_id == user_id))
            ).scalar_one()
        assert subscription.veteran_left == 3


class TestCompleteBrief:
    """Tests for complete_brief()."""

    async def test_completes_and_stores_brief(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        user_id = uuid4()
        project_id = await _start(session_factory, user_id)

        async with session_factory() as db:
            project = await ProjectService(db).complete_brief(project_id, BRIEF)

        assert project.status == ProjectStatus.COMPLETED
        assert project.title == "Acme Bakery"
        assert project.description == "Fresh bread, daily"
        assert project.brief_data == BRIEF
        assert project.completed_at is not None

        async with session_factory() as db:
            xp = await db.get(UserXP, user_id)
        assert xp is not None and xp.total_xp == 250

    async def test_duplicate_callback_is_noop(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A repeated callback neither changes the brief nor awards XP again."""
        user_id = uuid4()
        project_id = await _start(session_factory, user_id)

        async with session_factory() as db:
            service = ProjectService(db)
            await service.complete_brief(project_id, BRIEF)
            again = await service.complete_brief(project_id, {"company_name": "Other"})

        assert again.title == "Acme Bakery"

        async with session_factory() as db:
            xp = await db.get(UserXP, user_id)
        assert xp is not None and xp.total_xp == 250

    async def test_late_brief_completes_failed_project(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        user_id = uuid4()
        project_id = await _start(session_factory, user_id)

        async with session_factory() as db:
            project = await db.get(Project, project_id)
            assert project is not None
            project.status = ProjectStatus.FAILED.value
            project.failure_reason = "Brief generation timed out"
            await db.commit()

        async with session_factory() as db:
            completed = await ProjectService(db).complete_brief(project_id, BRIEF)

        assert completed.status == ProjectStatus.COMPLETED
        assert completed.failure_reason is None

    async def test_callback_stops_further_delivery(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A brief arriving while the job is still queued takes it out of the queue."""
        project_id = await _start(session_factory, uuid4())

        async with session_factory() as db:
            await ProjectService(db).complete_brief(project_id, BRIEF)

        async with session_factory() as db:
            job = (
                await db.execute(select(GenerationJob).where(GenerationJob.project_id == project_id))
            ).scalar_one()
        assert job.status == JobStatus.DISPATCHED.value

    async def test_unknown_project(self, session: AsyncSession) -> None:
        with pytest.raises(ResourceNotFoundError):
            await ProjectService(session).complete_brief(uuid4(), BRIEF)


class TestReads:
    """Tests for list_projects() and get_project()."""

    async def test_owner_only(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        owner = uuid4()
        project_id = await _start(session_factory, owner)

        async with session_factory() as db:
            service = ProjectService(db)
            assert (await service.get_project(owner, project_id)).project_id == project_id
            with pytest.raises(ResourceNotFoundError):
                await service.get_project(uuid4(), project_id)
            assert [p.project_id for p in await service.list_projects(owner)] == [project_id]
            assert await service.list_projects(uuid4()) == []
