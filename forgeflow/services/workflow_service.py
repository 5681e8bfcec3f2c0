"""WorkflowService: start, run and cancel workflow sessions.

start() only records a pending session; execute() is the long-running part
and is scheduled as a background task by the API layer.
"""

import structlog

from forgeflow.core.exceptions import ProjectNotFoundError
from forgeflow.queue.manager import QueueService
from forgeflow.schemas.project import Project, ProjectStatus
from forgeflow.schemas.queue import JobType
from forgeflow.schemas.session import Session, SessionStatus, new_session_id, utcnow
from forgeflow.schemas.workflow import WorkflowRequest
from forgeflow.storage.project_store import ProjectStore
from forgeflow.storage.session_store import SessionStore
from forgeflow.workflow.context import WorkflowContext
from forgeflow.workflow.executor import PhaseExecutor, RunOutcome
from forgeflow.workflow.pipelines import PhaseDependencies, pipeline_for, session_type_for
from forgeflow.workflow.tracker import SessionTracker

logger = structlog.get_logger(__name__)

NOTIFICATION_QUEUE = "notifications"
BACKUP_QUEUE = "backup"


class WorkflowService:
    def __init__(
        self,
        sessions: SessionStore,
        projects: ProjectStore,
        deps: PhaseDependencies,
        queue: QueueService,
    ):
        self.sessions = sessions
        self.projects = projects
        self.deps = deps
        self.queue = queue
        self.executor = PhaseExecutor(sessions)

    async def start(self, request: WorkflowRequest, correlation_id: str | None = None) -> Session:
        """Create the pending session for ``request``; the pipeline is chosen from it."""
        session_type = session_type_for(request)
        now = utcnow()
        session = Session(
            id=new_session_id(session_type, now),
            project_id=request.project_id,
            type=session_type,
            start_time=now,
            repository_url=request.repository_url,
            template_id=request.template_id,
            ai_provider=request.ai_provider.value,
            model=request.model or self.deps.settings.default_model,
            correlation_id=correlation_id,
        )
        await self.sessions.create(session)
        logger.info(
            "workflow_session_created",
            session_id=session.id,
            session_type=session_type.value,
            template_id=request.template_id,
        )
        return session

    async def execute(self, session_id: str, request: WorkflowRequest) -> RunOutcome | None:
        """Run the pipeline for a started session, then update project stats and enqueue followups.

        Background-task entry point: errors are logged, never raised to the caller.
        """
        if request.model is None:
            request = request.model_copy(update={"model": self.deps.settings.default_model})
        ctx = WorkflowContext(session_id=session_id, request=request)
        try:
            outcome = await self.executor.run(ctx, pipeline_for(request, self.deps))
        except Exception as exc:
            logger.error(
                "workflow_execution_failed",
                session_id=session_id,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return None

        await self._finalize_project(outcome)
        self._enqueue_followups(outcome.session)
        logger.info(
            "workflow_execution_finished",
            session_id=session_id,
            status=outcome.session.status.value,
            progress=outcome.session.progress,
        )
        return outcome

    async def cancel(self, session_id: str) -> Session:
        """Operator cancel; the running pipeline stops at its next checkpoint.

        Raises:
            SessionNotFoundError: Unknown session
            SessionTerminalError: Session already ended
        """
        tracker = SessionTracker(self.sessions, session_id)
        session = await tracker.checkpoint(status=SessionStatus.CANCELLED, error="Cancelled by operator")
        await tracker.log("Session cancelled by operator")
        logger.info("workflow_cancelled", session_id=session_id)
        return session

    async def _finalize_project(self, outcome: RunOutcome) -> None:
        project_id = outcome.context.project_id or outcome.session.project_id
        if not project_id:
            return
        session = outcome.session
        succeeded = session.status in (SessionStatus.COMPLETED, SessionStatus.DEPLOYED)
        failed = session.status == SessionStatus.FAILED

        def record(p: Project) -> None:
            if session.id in p.sessions.active:
                p.sessions.active.remove(session.id)
            if succeeded:
                p.stats.successful_deployments += 1
                p.status = ProjectStatus.ACTIVE
            elif failed:
                p.stats.failed_deployments += 1
                if p.status == ProjectStatus.INITIALIZING:
                    p.status = ProjectStatus.FAILED

        try:
            await self.projects.update_project(project_id, record)
        except ProjectNotFoundError as exc:
            logger.warning("project_finalize_failed", project_id=project_id, error=str(exc))

    def _enqueue_followups(self, session: Session) -> None:
        if session.status != SessionStatus.COMPLETED:
            return
        if self.deps.settings.notification_webhook_url:
            self.queue.add_job(
                NOTIFICATION_QUEUE,
                JobType.SEND_NOTIFICATION,
                {
                    "message": f"Deployment completed: {session.deployment_url or session.project_id}",
                    "session_id": session.id,
                },
                priority=5,
            )
        self.queue.add_job(BACKUP_QUEUE, JobType.BACKUP_DATA, {"session_id": session.id})
