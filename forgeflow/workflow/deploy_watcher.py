"""Poll a hosting deploy until it is ready, fails, or the timeout passes."""

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

from forgeflow.integrations.base import DeployStatus, Hosting

logger = structlog.get_logger(__name__)

# Progress lines emitted when the hosting state changes
STATE_MESSAGES: dict[str, str] = {
    "new": "Build queued and starting",
    "enqueued": "Build queued and starting",
    "building": "Building application (installing dependencies, compiling)",
    "processing": "Processing build artifacts",
    "uploading": "Uploading build artifacts",
    "deploying": "Deploying to CDN",
    "ready": "Deployment completed successfully",
    "error": "Deployment failed",
}


class DeployWatcher:
    def __init__(
        self,
        hosting: Hosting,
        *,
        timeout: float = 300.0,
        poll_interval: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.hosting = hosting
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    async def wait(
        self,
        deploy_id: str,
        on_state: Callable[[str], Awaitable[None]] | None = None,
    ) -> DeployStatus:
        """Return the first final status, or the last status seen when the timeout passes.

        HostingError from the status endpoint propagates to the caller.
        """
        deadline = self._clock() + self.timeout
        last_state = None

        while True:
            status = await self.hosting.get_deployment_status(deploy_id)
            if status.state != last_state:
                last_state = status.state
                logger.info("deploy_state_changed", deploy_id=deploy_id, state=status.state)
                if on_state is not None:
                    await on_state(STATE_MESSAGES.get(status.state, f"Build status: {status.state}"))

            if status.is_final:
                return status
            if self._clock() >= deadline:
                logger.warning("deploy_wait_timed_out", deploy_id=deploy_id, state=status.state)
                return status

            await self._sleep(self.poll_interval)
