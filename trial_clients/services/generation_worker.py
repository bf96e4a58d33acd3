"""
Generation Worker - delivers queued brief-generation jobs to the webhook.

Jobs are claimed with FOR UPDATE SKIP LOCKED so several workers can poll
the same table. A claim pushes next_attempt_at out by the claim lease and
commits before any POST is sent, so no transaction or row lock is held
while the brief generator answers; each result is then recorded in its own
short transaction. Delivery is at least once: a failed POST is retried with
exponential backoff until max attempts, after which the job and its
project are marked failed, and a worker that dies mid-delivery leaves the
job due again once the lease runs out. Projects whose brief never comes
back are failed by sweep_stuck().
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trial_clients.config import settings
from trial_clients.db.models import GenerationJob, Project, utc_now
from trial_clients.models.api import JobStatus, ProjectStatus
from trial_clients.observability.logging import get_logger
from trial_clients.observability.metrics import metrics
from trial_clients.observability.tracing import trace_operation

logger = get_logger(__name__)

CALLBACK_PATH = "/v1/callbacks/project-brief"
CALLBACK_SECRET_HEADER = "X-Callback-Secret"
TIMEOUT_REASON = "Brief generation timed out"


def backoff_seconds(attempts: int, base: int, maximum: int) -> int:
    """Delay before the next attempt after `attempts` failures."""
    if attempts < 1:
        return 0
    return min(base * 2 ** (attempts - 1), maximum)


@dataclass(frozen=True)
class ClaimedJob:
    """A job taken off the queue, detached from the session that claimed it."""

    job_id: UUID
    project_id: UUID
    attempts: int
    payload: dict[str, Any]


def build_payload(project: Project, callback_url: str) -> dict[str, Any]:
    """Webhook body for one project."""
    return {
        "project_id": str(project.id),
        "level": project.level,
        "project_type": project.type,
        "industry": project.industry,
        "callback_url": callback_url,
        "timestamp": utc_now().isoformat(),
    }


class GenerationWorker:
    """Polls generation_jobs and POSTs due jobs to the brief generator."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: httpx.AsyncClient | None = None,
        *,
        webhook_url: str | None = None,
        callback_url: str | None = None,
        callback_secret: str | None = None,
        max_attempts: int | None = None,
        backoff_base_seconds: int | None = None,
        backoff_max_seconds: int | None = None,
        callback_timeout: timedelta | None = None,
        poll_interval: float | None = None,
        batch_size: int | None = None,
        claim_lease: timedelta | None = None,
    ) -> None:
        self.session_factory = session_factory
        self._http_client = http_client
        self._owns_client = http_client is None

        self.webhook_url = settings.brief_webhook_url if webhook_url is None else webhook_url
        self.callback_url = callback_url or (
            settings.public_base_url.rstrip("/") + CALLBACK_PATH
        )
        self.callback_secret = (
            settings.brief_callback_secret if callback_secret is None else callback_secret
        )
        self.max_attempts = max_attempts or settings.generation_max_attempts
        self.backoff_base_seconds = backoff_base_seconds or settings.generation_backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds or settings.generation_backoff_max_seconds
        self.callback_timeout = callback_timeout or timedelta(
            minutes=settings.generation_callback_timeout_minutes
        )
        self.poll_interval = poll_interval or settings.generation_poll_interval_seconds
        self.batch_size = batch_size or settings.generation_batch_size
        self.claim_lease = claim_lease or timedelta(
            seconds=settings.generation_claim_lease_seconds
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.brief_webhook_timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client if this worker created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    # ========================================================================
    # Polling
    # ========================================================================

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until `stop` is set."""
        logger.info("generation_worker_started", poll_interval=self.poll_interval)
        while not stop.is_set():
            try:
                await self.run_once()
                await self.sweep_stuck()
            except Exception as exc:
                metrics.record_error(type(exc).__name__, "generation_worker")
                logger.exception("generation_worker_cycle_failed", error=str(exc))

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except TimeoutError:
                pass
        logger.info("generation_worker_stopped")

    async def run_once(self, now: datetime | None = None) -> int:
        """Deliver every due job once. Returns the number of jobs attempted."""
        if not self.webhook_url:
            logger.debug("generation_webhook_not_configured")
            return 0

        now = now or utc_now()
        claimed = await self._claim(now)
        for claim in claimed:
            error = await self._deliver(claim)
            await self._record(claim, error, now)
        return len(claimed)

    async def sweep_stuck(self, now: datetime | None = None) -> list[UUID]:
        """Fail projects whose brief did not arrive within the callback timeout."""
        now = now or utc_now()
        cutoff = now - self.callback_timeout

        overdue_jobs = select(GenerationJob.project_id).where(
            GenerationJob.status == JobStatus.DISPATCHED.value,
            GenerationJob.dispatched_at <= cutoff,
        )
        stmt = (
            update(Project)
            .where(
                Project.status == ProjectStatus.GENERATING.value,
                Project.id.in_(overdue_jobs),
            )
            .values(
                status=ProjectStatus.FAILED.value,
                failure_reason=TIMEOUT_REASON,
                updated_at=now,
            )
            .returning(Project.id)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            failed = [row[0] for row in (await session.execute(stmt)).all()]
            await session.commit()

        for project_id in failed:
            metrics.generation_dispatches_total.labels(outcome="timed_out").inc()
            logger.warning("project_generation_timed_out", project_id=str(project_id))
        return failed

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _claim(self, now: datetime) -> list[ClaimedJob]:
        async with self.session_factory() as session:
            stmt = (
                select(GenerationJob, Project)
                .join(Project, GenerationJob.project_id == Project.id)
                .where(
                    GenerationJob.status == JobStatus.QUEUED.value,
                    GenerationJob.next_attempt_at <= now,
                )
                .order_by(GenerationJob.next_attempt_at)
                .limit(self.batch_size)
                .with_for_update(skip_locked=True, of=GenerationJob)
            )
            rows = (await session.execute(stmt)).all()

            claimed: list[ClaimedJob] = []
            for job, project in rows:
                job.next_attempt_at = now + self.claim_lease
                job.updated_at = now
                claimed.append(
                    ClaimedJob(
                        job_id=job.id,
                        project_id=project.id,
                        attempts=job.attempts,
                        payload=build_payload(project, self.callback_url),
                    )
                )
            await session.commit()
        return claimed

    async def _deliver(self, claim: ClaimedJob) -> httpx.HTTPError | None:
        """POST one claimed job. Returns the delivery error, if any."""
        headers = {}
        if self.callback_secret:
            headers[CALLBACK_SECRET_HEADER] = self.callback_secret

        start = time.perf_counter()
        try:
            with trace_operation(
                "generation_dispatch", project_id=str(claim.project_id), attempt=claim.attempts + 1
            ):
                response = await self.http_client.post(
                    self.webhook_url, json=claim.payload, headers=headers
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            return exc
        finally:
            metrics.generation_dispatch_duration_seconds.observe(time.perf_counter() - start)
        return None

    async def _record(
        self, claim: ClaimedJob, error: httpx.HTTPError | None, now: datetime
    ) -> None:
        async with self.session_factory() as session:
            stmt = (
                select(GenerationJob, Project)
                .join(Project, GenerationJob.project_id == Project.id)
                .where(
                    GenerationJob.id == claim.job_id,
                    GenerationJob.status == JobStatus.QUEUED.value,
                    GenerationJob.attempts == claim.attempts,
                )
                .with_for_update(of=GenerationJob)
            )
            row = (await session.execute(stmt)).first()
            if row is None:
                # Another worker or the brief callback already moved this job on
                logger.info("generation_job_claim_lost", job_id=str(claim.job_id))
                return

            job, project = row
            if error is None:
                self._record_success(job, project, now)
            else:
                self._record_failure(job, project, error, now)
            await session.commit()

    def _record_success(self, job: GenerationJob, project: Project, now: datetime) -> None:
        job.attempts += 1
        job.status = JobStatus.DISPATCHED.value
        job.dispatched_at = now
        job.last_error = None
        job.updated_at = now
        metrics.generation_dispatches_total.labels(outcome="dispatched").inc()
        logger.info(
            "generation_job_dispatched",
            job_id=str(job.id),
            project_id=str(project.id),
            attempts=job.attempts,
        )

    def _record_failure(
        self, job: GenerationJob, project: Project, exc: httpx.HTTPError, now: datetime
    ) -> None:
        if isinstance(exc, httpx.HTTPStatusError):
            error = f"Webhook returned {exc.response.status_code}"
        else:
            error = f"{type(exc).__name__}: {exc}"

        job.attempts += 1
        job.last_error = error
        job.updated_at = now

        if job.attempts >= self.max_attempts:
            job.status = JobStatus.FAILED.value
            if project.status == ProjectStatus.GENERATING.value:
                project.status = ProjectStatus.FAILED.value
                project.failure_reason = error
                project.updated_at = now
            metrics.generation_dispatches_total.labels(outcome="failed").inc()
            logger.error(
                "generation_job_failed",
                job_id=str(job.id),
                project_id=str(project.id),
                attempts=job.attempts,
                error=error,
            )
            return

        delay = backoff_seconds(job.attempts, self.backoff_base_seconds, self.backoff_max_seconds)
        job.next_attempt_at = now + timedelta(seconds=delay)
        metrics.generation_dispatches_total.labels(outcome="retry").inc()
        logger.warning(
            "generation_job_retry_scheduled",
            job_id=str(job.id),
            project_id=str(project.id),
            attempts=job.attempts,
            retry_in_seconds=delay,
            error=error,
        )
