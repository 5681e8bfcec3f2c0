"""Redis-backed session persistence.

Key layout (prefix defaults to ``forgeflow``):
    {prefix}:session:{id}  -> Session JSON (without log_count), TTL by session type
    {prefix}:logs:{id}     -> RPUSH list of LogEntry JSON, same TTL as the session

Writes are last-write-wins read-modify-write with no concurrency token;
each session has a single owner (its workflow task).
"""

from datetime import timedelta

import structlog
from redis.asyncio import Redis

from forgeflow.core.exceptions import (
    SessionAlreadyExistsError,
    SessionNotFoundError,
    SessionTerminalError,
)
from forgeflow.schemas.session import (
    TERMINAL_STATUSES,
    LogEntry,
    Session,
    SessionStatus,
    SessionType,
    SessionView,
)

logger = structlog.get_logger(__name__)

CHANGE_REQUEST_TTL = int(timedelta(hours=1).total_seconds())
PROVISIONING_TTL = int(timedelta(days=30).total_seconds())

# Fields not persisted inside the session document
_DERIVED_FIELDS = {"log_count"}


class SessionStore:
    """CRUD for sessions plus their append-only logs."""

    def __init__(
        self,
        redis: Redis,
        *,
        key_prefix: str = "forgeflow",
        change_request_ttl: int = CHANGE_REQUEST_TTL,
        provisioning_ttl: int = PROVISIONING_TTL,
    ):
        self.redis = redis
        self.key_prefix = key_prefix
        self.change_request_ttl = change_request_ttl
        self.provisioning_ttl = provisioning_ttl

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}:session:{session_id}"

    def _log_key(self, session_id: str) -> str:
        return f"{self.key_prefix}:logs:{session_id}"

    def ttl_for(self, session_type: SessionType) -> int:
        """Change requests are short-lived; provisioning sessions are kept for a month."""
        if session_type == SessionType.CHANGE_REQUEST:
            return self.change_request_ttl
        return self.provisioning_ttl

    @staticmethod
    def _serialize(session: Session) -> str:
        return session.model_dump_json(exclude=_DERIVED_FIELDS)

    async def create(self, session: Session) -> Session:
        """Store a new session.

        Re-creating an identical session is a no-op so the call is safe to retry.

        Raises:
            SessionAlreadyExistsError: If the id is taken by a different session
        """
        payload = self._serialize(session)
        created = await self.redis.set(
            self._key(session.id), payload, nx=True, ex=self.ttl_for(session.type)
        )
        if not created:
            existing = await self.redis.get(self._key(session.id))
            if existing != payload:
                raise SessionAlreadyExistsError(session.id)
            return session

        logger.info("session_created", session_id=session.id, session_type=session.type.value)
        return session

    async def get(self, session_id: str) -> Session | None:
        raw = await self.redis.get(self._key(session_id))
        if raw is None:
            return None
        session = Session.model_validate_json(raw)
        session.log_count = await self.redis.llen(self._log_key(session_id))
        return session

    async def put(self, session_id: str, session: Session) -> Session:
        """Overwrite a stored session, keeping its TTL.

        Raises:
            SessionNotFoundError: If the session does not exist (or expired)
            SessionTerminalError: If the stored session is terminal and the
                new payload differs from it
        """
        if session.id != session_id:
            raise ValueError(f"Session id mismatch: {session_id} != {session.id}")

        key = self._key(session_id)
        payload = self._serialize(session)

        raw = await self.redis.get(key)
        if raw is None:
            raise SessionNotFoundError(session_id)

        stored = Session.model_validate_json(raw)
        if stored.status in TERMINAL_STATUSES:
            if raw == payload:
                return session
            raise SessionTerminalError(session_id, stored.status.value)

        written = await self.redis.set(key, payload, xx=True, keepttl=True)
        if not written:
            raise SessionNotFoundError(session_id)
        return session

    async def append_log(self, session_id: str, entry: LogEntry) -> bool:
        """Append a log line. Missing sessions are ignored.

        Returns:
            True if the entry was written
        """
        ttl = await self.redis.ttl(self._key(session_id))
        if ttl == -2:
            logger.warning("session_log_dropped", session_id=session_id, message=entry.message)
            return False

        log_key = self._log_key(session_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.rpush(log_key, entry.model_dump_json())
            if ttl > 0:
                pipe.expire(log_key, ttl)
            await pipe.execute()
        return True

    async def get_logs(self, session_id: str, start: int = 0, end: int = -1) -> list[LogEntry]:
        raw_entries = await self.redis.lrange(self._log_key(session_id), start, end)
        return [LogEntry.model_validate_json(raw) for raw in raw_entries]

    async def get_view(self, session_id: str) -> SessionView | None:
        """Session with its full log attached."""
        session = await self.get(session_id)
        if session is None:
            return None
        logs = await self.get_logs(session_id)
        return SessionView(**session.model_dump(), logs=logs)

    async def list_all(self) -> list[Session]:
        """Every stored session, oldest first."""
        keys = [key async for key in self.redis.scan_iter(match=f"{self.key_prefix}:session:*")]
        if not keys:
            return []

        sessions = []
        for raw in await self.redis.mget(keys):
            # Key may expire between SCAN and MGET
            if raw is not None:
                sessions.append(Session.model_validate_json(raw))
        sessions.sort(key=lambda s: s.start_time)
        return sessions

    async def list_by_status(self, status: SessionStatus) -> list[Session]:
        return [s for s in await self.list_all() if s.status == status]

    async def delete(self, session_id: str) -> bool:
        """Remove a session and its log. Returns False if nothing was stored."""
        deleted = await self.redis.delete(self._key(session_id), self._log_key(session_id))
        if deleted:
            logger.info("session_deleted", session_id=session_id)
        return deleted > 0
