"""Background job handlers: notifications, session cleanup, backups, reports."""

import json
from collections import Counter
from datetime import timedelta

import httpx
import structlog

from forgeflow.core.config import Settings, get_settings
from forgeflow.queue.registry import JobHandlerRegistry
from forgeflow.schemas.queue import JobType
from forgeflow.schemas.session import utcnow
from forgeflow.storage.session_store import SessionStore

logger = structlog.get_logger(__name__)


class BackgroundJobHandlers:
    """Handlers for every JobType, bound to the session store they work on."""

    def __init__(
        self,
        store: SessionStore,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self._transport = transport

    def registry(self) -> JobHandlerRegistry:
        return JobHandlerRegistry({
            JobType.SEND_NOTIFICATION: self.send_notification,
            JobType.CLEANUP_SESSION: self.cleanup_session,
            JobType.BACKUP_DATA: self.backup_data,
            JobType.GENERATE_REPORT: self.generate_report,
        })

    def _key(self, *parts: str) -> str:
        return ":".join((self.store.key_prefix, *parts))

    async def send_notification(self, payload: dict) -> None:
        """POST a message to a Slack or Discord incoming webhook.

        Payload: message, optional session_id, optional webhook_url/kind
        (defaults from settings).
        """
        url = payload.get("webhook_url") or self.settings.notification_webhook_url
        if not url:
            raise ValueError("No notification webhook configured")

        message = payload["message"]
        if payload.get("session_id"):
            message = f"{message} (session {payload['session_id']})"

        kind = payload.get("kind") or self.settings.notification_webhook_kind
        body = {"content": message} if kind == "discord" else {"text": message}

        async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
            response = await client.post(url, json=body)
            response.raise_for_status()
        logger.info("notification_sent", kind=kind, session_id=payload.get("session_id"))

    async def cleanup_session(self, payload: dict) -> None:
        """Delete one session, or sweep terminal sessions older than the configured age."""
        session_id = payload.get("session_id")
        if session_id:
            await self.store.delete(session_id)
            return

        max_age = timedelta(hours=payload.get("max_age_hours", self.settings.cleanup_max_age_hours))
        cutoff = utcnow() - max_age
        removed = 0
        for session in await self.store.list_all():
            if session.is_terminal and session.end_time and session.end_time < cutoff:
                if await self.store.delete(session.id):
                    removed += 1
        logger.info("session_sweep_completed", removed=removed, max_age_hours=max_age.total_seconds() / 3600)

    async def backup_data(self, payload: dict) -> None:
        """Snapshot a session and its log under ``{prefix}:backup:{session_id}``."""
        session_id = payload["session_id"]
        view = await self.store.get_view(session_id)
        if view is None:
            raise ValueError(f"Session {session_id} not found")

        await self.store.redis.set(
            self._key("backup", session_id),
            view.model_dump_json(),
            ex=self.settings.backup_ttl_seconds,
        )
        logger.info("session_backed_up", session_id=session_id, log_entries=len(view.logs))

    async def generate_report(self, payload: dict) -> None:
        """Aggregate session counts by status and type.

        Stored at ``{prefix}:report:{report_type}:latest`` and a timestamped key.
        """
        report_type = payload.get("report_type", "sessions")
        sessions = await self.store.list_all()
        now = utcnow()
        report = {
            "report_type": report_type,
            "generated_at": now.isoformat(),
            "total": len(sessions),
            "by_status": dict(Counter(s.status.value for s in sessions)),
            "by_type": dict(Counter(s.type.value for s in sessions)),
        }

        encoded = json.dumps(report)
        ttl = self.settings.backup_ttl_seconds
        async with self.store.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._key("report", report_type, "latest"), encoded, ex=ttl)
            pipe.set(self._key("report", report_type, str(int(now.timestamp()))), encoded, ex=ttl)
            await pipe.execute()
        logger.info("report_generated", report_type=report_type, total=len(sessions))
