"""Tests for the deployment RecoveryLoop.

Covers:
- type error fixed on the second attempt -> ready, retry_info.attempt == 2
- non-fixable classes fail immediately with zero redeploys
- exhaustion stops after max_retries redeploys, keeping the last diagnostic
- build-log transport failure aborts the loop
- a collaborator error during an attempt consumes that attempt only
"""

import pytest

from fakes import DEPENDENCY_ERROR_LOG, REPO, TYPE_ERROR_LOG, FakeHosting
from forgeflow.core.exceptions import DeploymentFailedError
from forgeflow.recovery.loop import RecoveryLoop
from forgeflow.schemas.session import Session, SessionStatus, SessionType, new_session_id
from forgeflow.workflow.tracker import SessionTracker

pytestmark = pytest.mark.unit


async def _deploying_tracker(session_store) -> SessionTracker:
    session = await session_store.create(Session(id=new_session_id(SessionType.INIT), type=SessionType.INIT))
    tracker = SessionTracker(session_store, session.id)
    await tracker.checkpoint(status=SessionStatus.DEPLOYING, progress=80)
    return tracker


async def _failed_deploy(hosting):
    deploy_id = await hosting.trigger_deploy("site-1")
    return await hosting.get_deployment_status(deploy_id)


def _loop(hosting, source_control, generator, make_watcher, max_retries=3) -> RecoveryLoop:
    return RecoveryLoop(hosting, source_control, generator, make_watcher(hosting), max_retries=max_retries)


async def test_type_error_fixed_on_second_attempt(session_store, source_control, generator, make_watcher):
    """Two failing builds then a ready one: two attempts, each file fixed in its own commit."""
    hosting = FakeHosting(
        deploy_script=[["error"], ["building", "error"], ["ready"]],
        build_logs=[TYPE_ERROR_LOG, TYPE_ERROR_LOG],
    )
    tracker = await _deploying_tracker(session_store)
    failed = await _failed_deploy(hosting)

    result = await _loop(hosting, source_control, generator, make_watcher).run(
        tracker=tracker, repo=REPO, branch="main", site_id="site-1", failed=failed
    )

    assert result.confirmed
    assert result.attempts == 2
    assert hosting.deploys == ["deploy-1", "deploy-2", "deploy-3"]
    messages = [commit[3] for commit in source_control.commits]
    assert messages[:2] == ["AI fix: src/App.tsx (TS2304)", "AI fix: src/pages/Landing.tsx (TS2305)"]
    assert len(messages) == 4
    assert all(len(commit[2]) == 1 for commit in source_control.commits)
    # fences are stripped before committing
    assert not source_control.files[(REPO, "src/App.tsx")].startswith("```")

    session = await tracker.load()
    assert session.retry_info.attempt == 2
    attempt_logs = [e for e in await session_store.get_logs(session.id) if "attempt" in e.metadata]
    assert [e.metadata["outcome"] for e in attempt_logs] == ["failed", "ready"]
    assert attempt_logs[0].metadata["classification"] == "type_error"


async def test_non_type_error_fails_without_redeploy(session_store, source_control, generator, make_watcher):
    """Dependency errors are not fixable: no AI call, no commit, no redeploy."""
    hosting = FakeHosting(deploy_script=[["error"]], build_logs=[DEPENDENCY_ERROR_LOG])
    tracker = await _deploying_tracker(session_store)
    failed = await _failed_deploy(hosting)

    with pytest.raises(DeploymentFailedError) as exc_info:
        await _loop(hosting, source_control, generator, make_watcher).run(
            tracker=tracker, repo=REPO, branch="main", site_id="site-1", failed=failed
        )

    assert exc_info.value.attempts == 0
    assert "dependency_error" in exc_info.value.diagnostic
    assert hosting.deploys == ["deploy-1"]
    assert generator.prompts == []
    assert source_control.commits == []


async def test_exhaustion_stops_after_max_retries(session_store, source_control, generator, make_watcher):
    """A build that keeps failing gets exactly max_retries redeploys."""
    hosting = FakeHosting(deploy_script=[["error"]], build_logs=[TYPE_ERROR_LOG])
    tracker = await _deploying_tracker(session_store)
    failed = await _failed_deploy(hosting)

    with pytest.raises(DeploymentFailedError) as exc_info:
        await _loop(hosting, source_control, generator, make_watcher, max_retries=3).run(
            tracker=tracker, repo=REPO, branch="main", site_id="site-1", failed=failed
        )

    assert exc_info.value.attempts == 3
    assert "src/App.tsx" in str(exc_info.value)
    assert len(hosting.deploys) == 1 + 3
    assert (await tracker.load()).retry_info.attempt == 3


async def test_build_log_transport_failure_aborts(session_store, source_control, generator, make_watcher):
    """Without a build log there is nothing to fix; the loop stops before any attempt."""
    hosting = FakeHosting(deploy_script=[["error"]], build_logs=[TYPE_ERROR_LOG])
    hosting.log_transport_failure = True
    tracker = await _deploying_tracker(session_store)
    failed = await _failed_deploy(hosting)

    with pytest.raises(DeploymentFailedError) as exc_info:
        await _loop(hosting, source_control, generator, make_watcher).run(
            tracker=tracker, repo=REPO, branch="main", site_id="site-1", failed=failed
        )

    assert exc_info.value.attempts == 0
    assert hosting.deploys == ["deploy-1"]


async def test_collaborator_error_consumes_one_attempt(session_store, source_control, generator, make_watcher):
    """A failed redeploy trigger uses up attempt 1; attempt 2 succeeds."""
    hosting = FakeHosting(deploy_script=[["error"], ["ready"]], build_logs=[TYPE_ERROR_LOG])
    tracker = await _deploying_tracker(session_store)
    failed = await _failed_deploy(hosting)
    hosting.trigger_failures = 1

    result = await _loop(hosting, source_control, generator, make_watcher).run(
        tracker=tracker, repo=REPO, branch="main", site_id="site-1", failed=failed
    )

    assert result.confirmed
    assert result.attempts == 2
    assert hosting.deploys == ["deploy-1", "deploy-2"]


async def test_build_log_api_error_consumes_one_attempt(session_store, source_control, generator, make_watcher):
    """A hosting API error on the first log fetch is retried inside attempt 1, not fatal."""
    hosting = FakeHosting(deploy_script=[["error"], ["ready"]], build_logs=[TYPE_ERROR_LOG])
    tracker = await _deploying_tracker(session_store)
    failed = await _failed_deploy(hosting)
    hosting.log_failures = 1

    result = await _loop(hosting, source_control, generator, make_watcher).run(
        tracker=tracker, repo=REPO, branch="main", site_id="site-1", failed=failed
    )

    assert result.confirmed
    assert result.attempts == 1
    assert hosting.deploys == ["deploy-1", "deploy-2"]
    assert (await tracker.load()).retry_info.attempt == 1


async def test_build_log_api_error_every_time_exhausts(session_store, source_control, generator, make_watcher):
    """If the log can never be fetched, each attempt is spent and nothing is redeployed."""
    hosting = FakeHosting(deploy_script=[["error"]], build_logs=[TYPE_ERROR_LOG])
    tracker = await _deploying_tracker(session_store)
    failed = await _failed_deploy(hosting)
    hosting.log_failures = 10

    with pytest.raises(DeploymentFailedError) as exc_info:
        await _loop(hosting, source_control, generator, make_watcher, max_retries=2).run(
            tracker=tracker, repo=REPO, branch="main", site_id="site-1", failed=failed
        )

    assert exc_info.value.attempts == 2
    assert "502" in str(exc_info.value)
    assert hosting.deploys == ["deploy-1"]
