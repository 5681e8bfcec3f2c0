"""Session status, listing and operator cancel."""

from fastapi import APIRouter, Depends, HTTPException

from forgeflow.api.deps import get_session_store, get_workflow_service
from forgeflow.core.exceptions import SessionNotFoundError, SessionTerminalError
from forgeflow.schemas.session import Session, SessionStatus, SessionSummary, SessionView
from forgeflow.services.workflow_service import WorkflowService
from forgeflow.storage.session_store import SessionStore

router = APIRouter()


@router.get("", response_model=list[SessionSummary])
async def list_sessions(
    status: SessionStatus | None = None,
    store: SessionStore = Depends(get_session_store),
) -> list[SessionSummary]:
    """All sessions, optionally filtered by status, oldest first."""
    sessions = await store.list_by_status(status) if status else await store.list_all()
    return [SessionSummary.model_validate(s.model_dump()) for s in sessions]


@router.get("/{session_id}", response_model=SessionView)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SessionView:
    """Full session with its log. A failed session is still a 200."""
    view = await store.get_view(session_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return view


@router.post("/{session_id}/cancel", response_model=Session)
async def cancel_session(
    session_id: str,
    service: WorkflowService = Depends(get_workflow_service),
) -> Session:
    """Cancel a running session. The pipeline stops at its next checkpoint.

    Raises:
        HTTPException(404): Unknown session
        HTTPException(400): Session already in a terminal state
    """
    try:
        return await service.cancel(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc
    except SessionTerminalError as exc:
        raise HTTPException(
            status_code=400, detail=f"Session is already {exc.status}"
        ) from exc
