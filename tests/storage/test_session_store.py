"""Tests for the Redis-backed SessionStore (fakeredis)."""

from datetime import timedelta

import pytest

from forgeflow.core.exceptions import (
    ProjectNotFoundError,
    SessionAlreadyExistsError,
    SessionNotFoundError,
    SessionTerminalError,
)
from forgeflow.schemas.project import Project
from forgeflow.schemas.session import (
    LogEntry,
    LogLevel,
    RetryInfo,
    Session,
    SessionStatus,
    SessionType,
    new_session_id,
    utcnow,
)

pytestmark = pytest.mark.unit


def _session(session_type=SessionType.INIT, **fields) -> Session:
    return Session(id=new_session_id(session_type), type=session_type, **fields)


async def test_put_get_round_trip_preserves_populated_fields(session_store):
    """Every populated field survives a put/get cycle."""
    session = await session_store.create(_session())
    updated = session.model_copy(update={
        "project_id": "proj_1",
        "status": SessionStatus.DEPLOYING,
        "progress": 80,
        "current_step": "Deploying",
        "retry_info": RetryInfo(attempt=1, max_retries=3, last_error="TS2304"),
        "deployment_url": "https://demo.netlify.app",
        "site_id": "site-1",
        "generated_files": ["src/App.tsx"],
        "changes": [{"path": "src/App.tsx"}],
    })

    await session_store.put(session.id, updated)
    loaded = await session_store.get(session.id)

    assert loaded.model_dump(exclude={"log_count"}) == updated.model_dump(exclude={"log_count"})


async def test_create_is_idempotent_for_identical_session(session_store):
    """Re-creating the same session is a no-op; a different payload under the same id is rejected."""
    session = _session()
    await session_store.create(session)
    await session_store.create(session)

    with pytest.raises(SessionAlreadyExistsError):
        await session_store.create(session.model_copy(update={"progress": 10}))


async def test_put_missing_session_raises(session_store):
    """put() never creates; an unknown id is an error."""
    session = _session()

    with pytest.raises(SessionNotFoundError):
        await session_store.put(session.id, session)


async def test_put_refuses_to_overwrite_terminal_session(session_store):
    """Once failed/completed/cancelled, the stored session can no longer change."""
    session = await session_store.create(_session())
    failed = session.model_copy(update={"status": SessionStatus.FAILED, "error": "boom", "end_time": utcnow()})
    await session_store.put(session.id, failed)

    await session_store.put(session.id, failed)  # identical write is allowed
    with pytest.raises(SessionTerminalError):
        await session_store.put(session.id, failed.model_copy(update={"status": SessionStatus.COMPLETED}))


async def test_append_log_on_missing_session_is_noop(session_store, redis):
    """Logging against an unknown session writes nothing."""
    written = await session_store.append_log("init_missing", LogEntry(message="hello"))

    assert written is False
    assert await redis.exists("test:logs:init_missing") == 0


async def test_logs_are_ordered_and_counted(session_store):
    """Log entries come back in append order and log_count reflects them."""
    session = await session_store.create(_session())
    for message in ("one", "two", "three"):
        await session_store.append_log(session.id, LogEntry(message=message, level=LogLevel.INFO))

    view = await session_store.get_view(session.id)

    assert [entry.message for entry in view.logs] == ["one", "two", "three"]
    assert view.log_count == 3


async def test_ttl_depends_on_session_type(session_store, redis):
    """Change requests expire after an hour; provisioning sessions are kept for 30 days."""
    change = await session_store.create(_session(SessionType.CHANGE_REQUEST))
    init = await session_store.create(_session(SessionType.INIT))

    assert 0 < await redis.ttl(f"test:session:{change.id}") <= 3600
    assert await redis.ttl(f"test:session:{init.id}") > 3600


async def test_put_keeps_ttl(session_store, redis):
    """Overwriting a session does not reset its expiry."""
    session = await session_store.create(_session(SessionType.CHANGE_REQUEST))
    await redis.expire(f"test:session:{session.id}", 100)

    await session_store.put(session.id, session.model_copy(update={"progress": 10}))

    assert 0 < await redis.ttl(f"test:session:{session.id}") <= 100


async def test_list_by_status_and_delete(session_store):
    """list_by_status filters; delete removes the session and its log."""
    first = await session_store.create(_session(start_time=utcnow() - timedelta(minutes=5)))
    second = await session_store.create(_session())
    await session_store.put(second.id, second.model_copy(update={"status": SessionStatus.INITIALIZING}))
    await session_store.append_log(first.id, LogEntry(message="x"))

    pending = await session_store.list_by_status(SessionStatus.PENDING)
    assert [s.id for s in pending] == [first.id]
    assert [s.id for s in await session_store.list_all()] == [first.id, second.id]

    assert await session_store.delete(first.id) is True
    assert await session_store.get(first.id) is None
    assert await session_store.get_logs(first.id) == []
    assert await session_store.delete(first.id) is False


async def test_project_create_returns_existing_and_put_requires_existing(project_store):
    """create_project never clobbers; put_project never creates."""
    original = await project_store.create_project(Project(id="proj_1", name="demo", template="vite-react-mongo"))
    again = await project_store.create_project(Project(id="proj_1", name="other", template="nextjs-mongo"))

    assert again.name == original.name == "demo"
    with pytest.raises(ProjectNotFoundError):
        await project_store.put_project(Project(id="proj_2", name="x", template="nextjs-mongo"))

    updated = await project_store.update_project("proj_1", lambda p: setattr(p, "hosting_url", "https://x.app"))
    assert (await project_store.get_project("proj_1")).hosting_url == updated.hosting_url == "https://x.app"
