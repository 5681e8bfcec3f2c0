"""Workflow start endpoint."""

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from forgeflow.api.deps import get_workflow_service
from forgeflow.core.exceptions import TemplateNotFoundError
from forgeflow.domain.templates import get_template
from forgeflow.middleware.correlation import get_correlation_id
from forgeflow.schemas.workflow import WorkflowRequest, WorkflowStartResponse
from forgeflow.services.workflow_service import WorkflowService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("", response_model=WorkflowStartResponse)
async def start_workflow(
    body: WorkflowRequest,
    background_tasks: BackgroundTasks,
    service: WorkflowService = Depends(get_workflow_service),
) -> WorkflowStartResponse:
    """Create a session and run its pipeline in the background.

    The pipeline (full AI or standard) is chosen here, from whether
    user_requirements is present, and never changes for the session.

    Raises:
        HTTPException(400): Unknown template id
    """
    try:
        get_template(body.template_id)
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    session = await service.start(body, correlation_id=get_correlation_id())
    background_tasks.add_task(service.execute, session.id, body)
    logger.info("workflow_scheduled", session_id=session.id, pipeline="full" if body.wants_ai else "standard")

    base = service.deps.settings.public_base_url.rstrip("/")
    return WorkflowStartResponse(
        session_id=session.id,
        status_url=f"{base}/api/sessions/{session.id}",
    )
