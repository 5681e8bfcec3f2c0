"""Tests for PhaseExecutor with scripted phases."""

import pytest

from fakes import REPO_URL, TEMPLATE_ID
from forgeflow.schemas.session import Session, SessionStatus, SessionType, new_session_id
from forgeflow.schemas.workflow import WorkflowRequest
from forgeflow.workflow.context import DeploymentState, WorkflowContext
from forgeflow.workflow.executor import PhaseExecutor
from forgeflow.workflow.phases import Phase
from forgeflow.workflow.pipelines import PipelineStep
from forgeflow.workflow.tracker import SessionTracker

pytestmark = pytest.mark.unit


class SetProject(Phase):
    name = "set-project"
    produces = frozenset({"project_id"})

    async def run(self, ctx, tracker):
        return ctx.evolve(project_id="proj_1")


class Overreach(Phase):
    """Declares project_id but also writes deployment."""

    name = "overreach"
    produces = frozenset({"project_id"})

    async def run(self, ctx, tracker):
        return ctx.evolve(project_id="proj_1", deployment=DeploymentState(state="ready"))


class Explode(Phase):
    name = "explode"
    produces = frozenset()

    async def run(self, ctx, tracker):
        raise KeyError("missing")


class CancelFromOutside(Phase):
    """Simulates an operator cancelling while this phase runs."""

    name = "cancel"
    produces = frozenset()

    async def run(self, ctx, tracker):
        await SessionTracker(tracker.store, ctx.session_id).checkpoint(status=SessionStatus.CANCELLED)
        return ctx


class Recorder(Phase):
    name = "recorder"
    produces = frozenset()

    def __init__(self):
        self.ran = False

    async def run(self, ctx, tracker):
        self.ran = True
        return ctx


async def _context(session_store) -> WorkflowContext:
    session = await session_store.create(Session(id=new_session_id(SessionType.INIT), type=SessionType.INIT))
    request = WorkflowRequest(template_id=TEMPLATE_ID, repository_url=REPO_URL)
    return WorkflowContext(session_id=session.id, request=request)


def _step(phase, status=SessionStatus.INITIALIZING, progress=10) -> PipelineStep:
    return PipelineStep(phase=phase, status=status, progress=progress, label=phase.name)


async def test_successful_run_completes_and_bumps_version(session_store):
    """Phases' outputs flow into the final context; the session ends completed at 100."""
    ctx = await _context(session_store)

    outcome = await PhaseExecutor(session_store).run(ctx, [_step(SetProject())])

    assert outcome.context.project_id == "proj_1"
    assert outcome.context.version == 1
    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.session.progress == 100


async def test_phase_writing_undeclared_field_fails_session(session_store):
    """Touching a field outside ``produces`` is a contract violation."""
    ctx = await _context(session_store)
    after = Recorder()

    outcome = await PhaseExecutor(session_store).run(
        ctx, [_step(Overreach()), _step(after, SessionStatus.PREPARING, 30)]
    )

    assert outcome.session.status == SessionStatus.FAILED
    assert "deployment" in outcome.session.error
    assert after.ran is False


async def test_unexpected_exception_is_recorded_and_stops(session_store):
    """Non-domain errors fail the session with the exception type in the message."""
    ctx = await _context(session_store)
    after = Recorder()

    outcome = await PhaseExecutor(session_store).run(
        ctx, [_step(Explode()), _step(after, SessionStatus.PREPARING, 30)]
    )

    assert outcome.session.status == SessionStatus.FAILED
    assert "KeyError" in outcome.session.error
    assert outcome.session.end_time is not None
    assert after.ran is False
    logs = await session_store.get_logs(ctx.session_id)
    assert logs[-1].level == "error"


async def test_cancellation_stops_at_next_checkpoint(session_store):
    """A session cancelled mid-phase stays cancelled and later phases never run."""
    ctx = await _context(session_store)
    after = Recorder()

    outcome = await PhaseExecutor(session_store).run(
        ctx, [_step(CancelFromOutside()), _step(after, SessionStatus.PREPARING, 30)]
    )

    assert outcome.session.status == SessionStatus.CANCELLED
    assert after.ran is False


async def test_terminal_session_is_not_run(session_store):
    """A session that already ended is left untouched."""
    ctx = await _context(session_store)
    await SessionTracker(session_store, ctx.session_id).fail("earlier failure")
    phase = Recorder()

    outcome = await PhaseExecutor(session_store).run(ctx, [_step(phase)])

    assert phase.ran is False
    assert outcome.session.error == "earlier failure"


async def test_unconfirmed_deployment_finishes_deployed(session_store):
    """A pending deployment leaves the session soft-terminal at 98."""

    class PendingDeploy(Phase):
        name = "deploy"
        produces = frozenset({"deployment"})

        async def run(self, ctx, tracker):
            return ctx.evolve(deployment=DeploymentState(state="pending"))

    ctx = await _context(session_store)

    outcome = await PhaseExecutor(session_store).run(
        ctx, [_step(PendingDeploy(), SessionStatus.DEPLOYING, 90)]
    )

    assert outcome.session.status == SessionStatus.DEPLOYED
    assert outcome.session.progress == 98


async def test_cancelled_outcome_keeps_context_of_finished_phases(session_store):
    """A stop on a cancelled session reports what earlier phases produced."""
    ctx = await _context(session_store)

    outcome = await PhaseExecutor(session_store).run(
        ctx, [_step(SetProject()), _step(CancelFromOutside(), SessionStatus.PREPARING, 30)]
    )

    assert outcome.session.status == SessionStatus.CANCELLED
    assert outcome.context.project_id == "proj_1"
