"""Shared test fixtures for all test groups."""

import fakeredis.aioredis
import pytest

from fakes import (
    REPO,
    TEMPLATE_ID,
    FakeAIGenerator,
    FakeDatabaseProvisioner,
    FakeHosting,
    FakeSourceControl,
    RecordingSessionStore,
)
from forgeflow.core.config import Settings
from forgeflow.domain.templates import get_template
from forgeflow.services.container import ServiceContainer
from forgeflow.storage.project_store import ProjectStore
from forgeflow.workflow.deploy_watcher import DeployWatcher


@pytest.fixture
async def redis():
    """In-memory Redis (decode_responses=True, like the real pool)."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        github_token="gh-test",
        netlify_token="nf-test",
        anthropic_api_key="sk-test",
        deploy_timeout_seconds=30,
        deploy_poll_interval_seconds=1,
        recovery_max_retries=3,
    )


@pytest.fixture
def session_store(redis):
    return RecordingSessionStore(redis, key_prefix="test")


@pytest.fixture
def project_store(redis):
    return ProjectStore(redis, key_prefix="test")


@pytest.fixture
def source_control():
    """Source control holding every core file of the default template."""
    template = get_template(TEMPLATE_ID)
    files = {(template.repository, path): f"// original {path}\n" for path in template.core_files}
    files.update({(REPO, path): f"// deployed {path}\n" for path in template.core_files})
    return FakeSourceControl(files)


@pytest.fixture
def hosting():
    return FakeHosting()


@pytest.fixture
def generator():
    return FakeAIGenerator()


@pytest.fixture
def database():
    return FakeDatabaseProvisioner()


@pytest.fixture
def make_watcher():
    """Watcher factory with a fake clock: every poll advances time by one interval."""

    def build(hosting, timeout: float = 30, poll_interval: float = 1):
        now = [0.0]

        async def fake_sleep(seconds: float) -> None:
            now[0] += seconds

        return DeployWatcher(
            hosting,
            timeout=timeout,
            poll_interval=poll_interval,
            sleep=fake_sleep,
            clock=lambda: now[0],
        )

    return build


@pytest.fixture
def container(redis, settings, session_store, source_control, hosting, generator, database, make_watcher):
    """ServiceContainer wired to fakes, sharing the test stores."""
    return ServiceContainer.build(
        redis,
        settings,
        sessions=session_store,
        source_control=source_control,
        hosting=hosting,
        generator=generator,
        database=database,
        watcher=make_watcher(hosting),
    )
