"""PhaseExecutor: runs a pipeline against one session.

Before each phase the step's status is checkpointed, after it the step's
progress. A phase failure marks the session failed with the error and
stops; earlier phases are not compensated. A session that turns terminal
underneath the run (operator cancel) stops it at the next checkpoint.
"""

from dataclasses import dataclass

import structlog

from forgeflow.core.exceptions import (
    ForgeFlowError,
    PhaseContractError,
    SessionNotFoundError,
    SessionTerminalError,
    StoreError,
)
from forgeflow.core.logging import bind_workflow_context
from forgeflow.schemas.session import LogLevel, Session, SessionStatus
from forgeflow.storage.session_store import SessionStore
from forgeflow.workflow.context import WorkflowContext
from forgeflow.workflow.pipelines import COMPLETED_PROGRESS, UNCONFIRMED_PROGRESS, PipelineStep
from forgeflow.workflow.tracker import SessionTracker

logger = structlog.get_logger(__name__)


@dataclass
class RunOutcome:
    session: Session
    context: WorkflowContext


def _failure_message(phase: str, exc: Exception) -> str:
    if isinstance(exc, ForgeFlowError):
        return str(exc)
    return f"Unexpected error in {phase}: {type(exc).__name__}: {exc}"


class PhaseExecutor:
    def __init__(self, store: SessionStore):
        self.store = store

    async def run(self, ctx: WorkflowContext, steps: list[PipelineStep]) -> RunOutcome:
        tracker = SessionTracker(self.store, ctx.session_id)
        with bind_workflow_context(ctx.session_id, template_id=ctx.request.template_id):
            try:
                return await self._run_steps(ctx, steps, tracker)
            except StoreError as exc:
                logger.error(
                    "workflow_store_error",
                    session_id=ctx.session_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                raise

    async def _run_steps(
        self, ctx: WorkflowContext, steps: list[PipelineStep], tracker: SessionTracker
    ) -> RunOutcome:
        for step in steps:
            # ctx is rebound after every completed phase, so a stop reports
            # the context as of the last phase that finished
            try:
                session = await tracker.load()
                if session.is_terminal:
                    logger.info("workflow_stopped", session_id=ctx.session_id, status=session.status.value)
                    return RunOutcome(session=session, context=ctx)

                phase = step.phase
                await tracker.checkpoint(status=step.status, current_step=step.label)
                logger.info("phase_started", session_id=ctx.session_id, phase=phase.name)

                try:
                    updated = await phase.run(ctx, tracker)
                    stray = updated.changed_fields(ctx) - phase.produces
                    if stray:
                        raise PhaseContractError(phase.name, stray)
                except (SessionTerminalError, SessionNotFoundError):
                    raise
                except Exception as exc:
                    message = _failure_message(phase.name, exc)
                    logger.error(
                        "phase_failed",
                        session_id=ctx.session_id,
                        phase=phase.name,
                        error=str(exc),
                        error_type=type(exc).__name__,
                        exc_info=True,
                    )
                    await tracker.log(message, LogLevel.ERROR, phase=phase.name)
                    session = await tracker.fail(message)
                    return RunOutcome(session=session, context=ctx)

                ctx = updated
                await tracker.checkpoint(progress=step.progress)
                logger.info("phase_completed", session_id=ctx.session_id, phase=phase.name, progress=step.progress)
            except SessionTerminalError as exc:
                return await self._stopped(ctx, tracker, exc)

        try:
            return RunOutcome(session=await self._finalize(ctx, tracker), context=ctx)
        except SessionTerminalError as exc:
            return await self._stopped(ctx, tracker, exc)

    async def _stopped(
        self, ctx: WorkflowContext, tracker: SessionTracker, exc: SessionTerminalError
    ) -> RunOutcome:
        logger.info("workflow_stopped", session_id=ctx.session_id, status=exc.status)
        return RunOutcome(session=await tracker.load(), context=ctx)

    async def _finalize(self, ctx: WorkflowContext, tracker: SessionTracker) -> Session:
        deployment = ctx.deployment
        if deployment is None or deployment.confirmed:
            await tracker.log("Workflow completed successfully", url=deployment.url if deployment else None)
            return await tracker.checkpoint(status=SessionStatus.COMPLETED, progress=COMPLETED_PROGRESS)

        await tracker.log("Deployment triggered; final state not confirmed", LogLevel.WARNING)
        return await tracker.checkpoint(status=SessionStatus.DEPLOYED, progress=UNCONFIRMED_PROGRESS)
