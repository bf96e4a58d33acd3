"""
Callback routes - the brief generator reports finished briefs here.

Authenticated by the shared X-Callback-Secret header, not by user tokens.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.api.dependencies import verify_callback_secret
from trial_clients.db.session import get_write_db
from trial_clients.exceptions import ResourceNotFoundError, WriteVerificationError
from trial_clients.models.api import ProjectBriefCallback, ProjectBriefCallbackResponse
from trial_clients.observability.logging import get_logger
from trial_clients.services.projects import ProjectService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/callbacks", tags=["callbacks"])


@router.post(
    "/project-brief",
    response_model=ProjectBriefCallbackResponse,
    dependencies=[Depends(verify_callback_secret)],
)
async def project_brief_callback(
    callback: ProjectBriefCallback,
    db: AsyncSession = Depends(get_write_db),
) -> ProjectBriefCallbackResponse:
    """
    Store a generated brief.

    The whole body except project_id is kept as the brief. Repeat
    deliveries for a completed project are acknowledged without changes.
    """
    brief = callback.model_dump(mode="json", exclude={"project_id"}, exclude_none=True)
    logger.info("project_brief_received", project_id=str(callback.project_id))

    try:
        project = await ProjectService(db).complete_brief(callback.project_id, brief)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found",
        ) from exc
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    return ProjectBriefCallbackResponse(success=True, project_id=project.project_id)
