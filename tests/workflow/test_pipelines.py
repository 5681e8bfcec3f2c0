"""End-to-end workflow runs through WorkflowService with fake collaborators.

Covers:
- standard pipeline status sequence (no AI statuses)
- full AI pipeline checkpoints, commits, env vars, project stats, followup jobs
- type error fixed by the recovery loop on attempt 2
- phase failure keeps earlier side effects and records the error
- unconfirmed deploy ends in deployed at 98
- pull_request commit strategy, tolerated database failure, unsupported provider
"""

import pytest

from fakes import REPO, REPO_URL, TEMPLATE_ID, TYPE_ERROR_LOG
from forgeflow.schemas.session import SessionStatus, SessionType
from forgeflow.schemas.workflow import WorkflowRequest

pytestmark = pytest.mark.integration


def _request(**overrides) -> WorkflowRequest:
    fields = {
        "template_id": TEMPLATE_ID,
        "repository_url": REPO_URL,
        "project_name": "demo-app",
        "user_requirements": "An ordering site for a neighbourhood bakery",
    }
    fields.update(overrides)
    return WorkflowRequest(**fields)


async def _run(container, request):
    session = await container.workflows.start(request)
    outcome = await container.workflows.execute(session.id, request)
    assert outcome is not None
    return outcome


def _progress_is_monotone(history) -> bool:
    values = [progress for _, progress in history]
    return values == sorted(values)


async def test_standard_pipeline_status_sequence(container, session_store):
    """Without requirements the template is deployed as-is and no AI status is ever written."""
    outcome = await _run(container, _request(user_requirements=None))

    assert outcome.session.type == SessionType.DEPLOYMENT
    assert outcome.session.status == SessionStatus.COMPLETED
    assert ["pending", *session_store.statuses()] == [
        "pending",
        "initializing",
        "setting_up_infrastructure",
        "deploying",
        "completed",
    ]
    assert _progress_is_monotone(session_store.history)
    assert outcome.session.progress == 100


async def test_full_pipeline_happy_path(container, session_store, source_control, hosting, generator, database):
    """Every phase runs, each file is committed on its own, the site gets its env vars."""
    outcome = await _run(container, _request())
    session = outcome.session

    assert session.status == SessionStatus.COMPLETED
    assert session.progress == 100
    assert session.end_time >= session.start_time
    assert session_store.statuses() == [
        "initializing", "preparing", "generating", "committing",
        "setting_up_infrastructure", "deploying", "completed",
    ]
    checkpoints = [p for _, p in session_store.history]
    assert _progress_is_monotone(session_store.history)
    for expected in (10, 30, 50, 60, 80, 90, 100):
        assert expected in checkpoints

    assert len(generator.prompts) == 5
    assert session.generated_files == [
        "src/App.tsx",
        "src/pages/Landing.tsx",
        "src/components/auth/Dashboard.tsx",
        "prisma/schema.prisma",
        "tailwind.config.js",
    ]
    assert [c[3] for c in source_control.commits][0] == "AI-generated: src/App.tsx for demo-app"
    assert all(c[0] == REPO and c[1] == "main" and len(c[2]) == 1 for c in source_control.commits)
    assert not any(content.startswith("```") for c in source_control.commits for content in c[2].values())

    env = hosting.env[session.site_id]
    assert env["VITE_APP_URL"] == hosting.site_url
    assert env["DATABASE_URL"].startswith("mongodb+srv://")
    assert env["VITE_APP_NAME"] == "demo-app"
    assert env["ANTHROPIC_API_KEY"] == "sk-test"
    assert database.created == ["demo-app"]
    assert session.deployment_url == hosting.site_url

    project = await container.projects.get_project(session.project_id)
    assert project.status == "active"
    assert project.sessions.initialization == session.id
    assert project.sessions.active == []
    assert project.stats.total_sessions == 1
    assert project.stats.successful_deployments == 1
    assert project.hosting_site_id == session.site_id
    assert project.database.name == "demo-app"

    backups = container.queue.jobs("backup")
    assert [job.payload["session_id"] for job in backups] == [session.id]
    assert container.queue.jobs("notifications") == []  # no webhook configured


async def test_type_error_fixed_on_second_attempt_completes(container, session_store, hosting):
    """Recovery succeeds on attempt 2: session completed, retry_info.attempt == 2."""
    hosting.deploy_script = [["building", "error"], ["error"], ["ready"]]
    hosting.build_logs = [TYPE_ERROR_LOG, TYPE_ERROR_LOG]

    outcome = await _run(container, _request())

    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.session.retry_info.attempt == 2
    assert outcome.context.deployment.recovery_attempts == 2
    assert len(hosting.deploys) == 3


async def test_phase_failure_marks_session_failed_without_rollback(container, source_control, hosting):
    """Site creation fails after commits: session failed with the error, commits stay."""
    hosting.fail_create_site = True

    outcome = await _run(container, _request())
    session = outcome.session

    assert session.status == SessionStatus.FAILED
    assert "Could not create site" in session.error
    assert session.end_time >= session.start_time
    assert session.progress == 60
    assert len(source_control.commits) == 5
    assert hosting.deploys == []

    project = await container.projects.get_project(session.project_id)
    assert project.stats.failed_deployments == 1
    assert project.status == "failed"
    assert container.queue.jobs("backup") == []


async def test_unconfirmed_deploy_ends_deployed(container, hosting):
    """A build still running at the poll timeout leaves the session deployed at 98."""
    hosting.deploy_script = [["building"]]

    outcome = await _run(container, _request(user_requirements=None))

    assert outcome.session.status == SessionStatus.DEPLOYED
    assert outcome.session.progress == 98
    assert outcome.session.end_time is None


async def test_pull_request_strategy(container, source_control):
    """Commits go to a session branch that is merged through a PR and then deleted."""
    outcome = await _run(container, _request(commit_strategy="pull_request"))
    branch = f"forgeflow/{outcome.session.id}"

    assert outcome.session.status == SessionStatus.COMPLETED
    assert source_control.branches == [branch]
    assert all(c[1] == branch for c in source_control.commits)
    assert source_control.merged == [1]
    assert source_control.deleted_branches == [branch]


async def test_database_failure_is_tolerated(container, hosting, database):
    """Provisioning errors are logged; the site deploys without database variables."""
    database.fail = True

    outcome = await _run(container, _request(user_requirements=None))

    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.session.database_name is None
    assert "DATABASE_URL" not in hosting.env[outcome.session.site_id]


async def test_unsupported_provider_fails_ai_phase(container, generator):
    """Only anthropic generation is wired; other providers fail the AI phase clearly."""
    outcome = await _run(container, _request(ai_provider="openai"))

    assert outcome.session.status == SessionStatus.FAILED
    assert "openai" in outcome.session.error
    assert generator.prompts == []


async def test_cancel_during_deploy_detaches_session_from_project(container, hosting):
    """An operator cancel mid-deploy ends the run cancelled and clears the project's active list."""
    trigger_deploy = hosting.trigger_deploy
    request = _request(user_requirements=None)
    session = await container.workflows.start(request)

    async def cancel_then_trigger(site_id):
        await container.workflows.cancel(session.id)
        return await trigger_deploy(site_id)

    hosting.trigger_deploy = cancel_then_trigger

    outcome = await container.workflows.execute(session.id, request)

    assert outcome.session.status == SessionStatus.CANCELLED
    assert outcome.context.project_id is not None
    project = await container.projects.get_project(outcome.context.project_id)
    assert session.id not in project.sessions.active
    assert project.stats.successful_deployments == 0
    assert project.stats.failed_deployments == 0
    assert container.queue.jobs("backup") == []
