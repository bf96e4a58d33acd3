"""
Project Service - quota-gated project creation and brief completion.

NO DICTIONARIES - All operations return strongly typed domain models.
The brief payload itself is stored verbatim as JSON.

Starting a project consumes quota, inserts the project and queues its
generation job in one transaction. The job is delivered to the brief
generator by GenerationWorker; the generator answers through the
callback that lands in complete_brief().
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.db.models import GenerationJob, Project, as_utc, utc_now
from trial_clients.exceptions import (
    LevelLockedError,
    QuotaExhaustedError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from trial_clients.models.api import JobStatus, Level, ProjectStatus, XPEventType
from trial_clients.models.domain import ProjectData
from trial_clients.observability.logging import get_logger
from trial_clients.services.gamification import GamificationService
from trial_clients.services.plans import is_locked
from trial_clients.services.quota import QuotaService

logger = get_logger(__name__)


def placeholder_title(project_type: str) -> str:
    """Title shown while the brief is still being generated."""
    return f"{project_type} Project"


def placeholder_description(level: Level, project_type: str, industry: str) -> str:
    return f"A {level.value} level {project_type} project for {industry}"


def brief_title(brief: dict[str, Any]) -> str | None:
    return brief.get("company_name") or brief.get("title")


def brief_description(brief: dict[str, Any]) -> str | None:
    return brief.get("tagline") or brief.get("description")


class ProjectService:
    """Project lifecycle: generating -> completed | failed."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize project service with database session."""
        self.session = session

    async def start_generation(
        self, user_id: UUID, level: Level, project_type: str, industry: str
    ) -> ProjectData:
        """
        Consume one generation and queue the project for brief generation.

        Quota, project row, job row and the XP award commit together; a
        locked level or exhausted counter writes nothing.

        Raises:
            LevelLockedError: Level not available on the user's plan
            QuotaExhaustedError: No generations left this period
        """
        quota = QuotaService(self.session)
        subscription = await quota.ensure_subscription(user_id, commit=False)

        if is_locked(subscription.plan, level):
            await self.session.rollback()
            logger.info(
                "project_start_locked",
                user_id=str(user_id),
                plan=subscription.plan.value,
                level=level.value,
            )
            raise LevelLockedError(subscription.plan.value, level.value)

        if not await quota.consume(user_id, level, commit=False):
            await self.session.rollback()
            raise QuotaExhaustedError(user_id, level.value)

        now = utc_now()
        project = Project(
            user_id=user_id,
            title=placeholder_title(project_type),
            description=placeholder_description(level, project_type, industry),
            type=project_type,
            level=level.value,
            industry=industry,
            status=ProjectStatus.GENERATING.value,
            created_at=now,
        )
        self.session.add(project)
        await self.session.flush()

        self.session.add(
            GenerationJob(
                project_id=project.id,
                status=JobStatus.QUEUED.value,
                attempts=0,
                next_attempt_at=now,
            )
        )

        await GamificationService(self.session).award_xp(
            user_id, XPEventType.PROJECT_CREATED.value, commit=False
        )
        await self.session.commit()

        logger.info(
            "project_generation_started",
            user_id=str(user_id),
            project_id=str(project.id),
            level=level.value,
            project_type=project_type,
            industry=industry,
        )
        return self._to_domain(project)

    async def complete_brief(self, project_id: UUID, brief: dict[str, Any]) -> ProjectData:
        """
        Store a generated brief and mark the project completed.

        A repeat callback for a completed project changes nothing. A brief
        arriving after the project was marked failed still completes it.

        Raises:
            ResourceNotFoundError: Unknown project id
        """
        now = utc_now()
        values: dict[str, Any] = {
            "status": ProjectStatus.COMPLETED.value,
            "brief_data": brief,
            "failure_reason": None,
            "completed_at": now,
            "updated_at": now,
        }
        title = brief_title(brief)
        if title:
            values["title"] = title[:255]
        description = brief_description(brief)
        if description:
            values["description"] = description

        stmt = (
            update(Project)
            .where(Project.id == project_id, Project.status != ProjectStatus.COMPLETED.value)
            .values(values)
            .returning(Project.user_id)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).first()

        if row is None:
            project = await self._find(project_id)
            if project is None:
                raise ResourceNotFoundError("project", str(project_id))
            logger.info("project_brief_duplicate_callback", project_id=str(project_id))
            return self._to_domain(project)

        # The generator answered; no further delivery attempts
        await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.project_id == project_id,
                GenerationJob.status == JobStatus.QUEUED.value,
            )
            .values(status=JobStatus.DISPATCHED.value, dispatched_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        user_id: UUID = row[0]
        await GamificationService(self.session).award_xp(
            user_id, XPEventType.PROJECT_COMPLETED.value, commit=False
        )
        await self.session.commit()

        project = await self._find(project_id)
        if project is None or project.status != ProjectStatus.COMPLETED.value:
            raise WriteVerificationError(f"Project {project_id} not completed after commit")

        logger.info("project_completed", project_id=str(project_id), user_id=str(user_id))
        return self._to_domain(project)

    async def list_projects(self, user_id: UUID) -> list[ProjectData]:
        """User's projects, newest first."""
        stmt = (
            select(Project)
            .where(Project.user_id == user_id)
            .order_by(Project.created_at.desc())
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._to_domain(row) for row in rows]

    async def get_project(self, user_id: UUID, project_id: UUID) -> ProjectData:
        """
        Raises:
            ResourceNotFoundError: Unknown id, or owned by another user
        """
        project = await self._find(project_id)
        if project is None or project.user_id != user_id:
            raise ResourceNotFoundError("project", str(project_id))
        return self._to_domain(project)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find(self, project_id: UUID) -> Project | None:
        stmt = (
            select(Project)
            .where(Project.id == project_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    def _to_domain(self, project: Project) -> ProjectData:
        """Convert ORM project to domain model."""
        return ProjectData(
            project_id=project.id,
            user_id=project.user_id,
            title=project.title,
            description=project.description,
            project_type=project.type,
            level=Level(project.level),
            industry=project.industry,
            status=ProjectStatus(project.status),
            brief_data=project.brief_data,
            failure_reason=project.failure_reason,
            created_at=as_utc(project.created_at) or utc_now(),
            completed_at=as_utc(project.completed_at),
        )
