"""Deployment recovery: classify a failed build, fix it with AI, redeploy.

Flow for a failed deploy:
1. Fetch the build log and classify it. Anything but a type error fails
   the deployment straight away, with no retry.
2. Each attempt (bounded by max_retries) asks the model for a corrected
   version of every file with diagnostics, commits each file as its own
   commit, redeploys and waits. A ready deploy ends the loop.
3. A redeploy that fails again is re-classified before the next attempt.

Collaborator errors while diagnosing or during an attempt consume that
attempt. A transport failure while fetching the build log aborts the whole
loop, since there is nothing left to base a fix on.
"""

from dataclasses import dataclass, field

import structlog

from forgeflow.core.exceptions import (
    CollaboratorError,
    DeploymentFailedError,
    HostingTransportError,
    RecoveryAbortedError,
    RetryableAttemptError,
    RetryLimitExceededError,
)
from forgeflow.core.retry import RetryPolicy, bounded_retry
from forgeflow.integrations.base import AIGenerator, DeployStatus, Hosting, SourceControl
from forgeflow.integrations.llm import strip_code_fences
from forgeflow.recovery.classifier import DeploymentErrorInfo, classify_build_log
from forgeflow.schemas.session import LogLevel, RetryInfo
from forgeflow.workflow.deploy_watcher import DeployWatcher
from forgeflow.workflow.prompts import FIX_SYSTEM_PROMPT, fix_prompt
from forgeflow.workflow.tracker import SessionTracker

logger = structlog.get_logger(__name__)


@dataclass
class RecoveryResult:
    deploy: DeployStatus
    attempts: int
    files_fixed: list[str] = field(default_factory=list)

    @property
    def confirmed(self) -> bool:
        return self.deploy.is_ready


@dataclass
class _LoopState:
    deploy: DeployStatus
    info: DeploymentErrorInfo | None
    last_error: str
    attempts: int = 0
    files_fixed: list[str] = field(default_factory=list)


class RecoveryLoop:
    def __init__(
        self,
        hosting: Hosting,
        source_control: SourceControl,
        generator: AIGenerator,
        watcher: DeployWatcher,
        *,
        max_retries: int = 3,
    ):
        self.hosting = hosting
        self.source_control = source_control
        self.generator = generator
        self.watcher = watcher
        self.max_retries = max_retries

    async def _diagnose(self, deploy: DeployStatus) -> DeploymentErrorInfo:
        """Fetch and classify a failed deploy's build log.

        Raises:
            RecoveryAbortedError: Hosting unreachable, or the failure is not fixable
            CollaboratorError: Hosting answered with an error
        """
        try:
            build_log = await self.hosting.get_build_log(deploy.deploy_id)
        except HostingTransportError as exc:
            raise RecoveryAbortedError(f"Could not fetch build log: {exc}") from exc

        info = classify_build_log(build_log, deploy.error_message)
        if not info.can_fix:
            raise RecoveryAbortedError(
                f"Deployment failed with non-fixable {info.error_type.value}: {info.summary}"
            )
        return info

    async def _apply_fixes(
        self,
        info: DeploymentErrorInfo,
        *,
        repo: str,
        branch: str,
        model: str | None,
        tracker: SessionTracker,
    ) -> list[str]:
        """Generate and commit a corrected version of every file with diagnostics."""
        fixed: list[str] = []
        for path, errors in info.errors_by_file().items():
            current = await self.source_control.get_file_content(repo, path, branch)
            if current is None:
                await tracker.log(f"Skipping {path}: file not found in repository", LogLevel.WARNING)
                continue

            response = await self.generator.generate(
                fix_prompt(path, current, errors), model=model, system=FIX_SYSTEM_PROMPT
            )
            content = strip_code_fences(response)
            if not content:
                await tracker.log(f"No fix returned for {path}", LogLevel.WARNING)
                continue

            codes = ", ".join(sorted({e.code for e in errors if e.code}))
            await self.source_control.commit_files(
                repo, branch, {path: content}, f"AI fix: {path} ({codes})"
            )
            fixed.append(path)
        return fixed

    async def run(
        self,
        *,
        tracker: SessionTracker,
        repo: str,
        branch: str,
        site_id: str,
        failed: DeployStatus,
        model: str | None = None,
    ) -> RecoveryResult:
        """Try to turn ``failed`` into a live deploy.

        Returns:
            RecoveryResult for a ready deploy, or for one still building when
            the poll timed out (confirmed is False then)

        Raises:
            DeploymentFailedError: Not fixable, hosting unreachable, or retries exhausted.
                The diagnostic of the last failure is preserved on the error.
        """
        try:
            info = await self._diagnose(failed)
        except RecoveryAbortedError as exc:
            await tracker.log(str(exc), LogLevel.ERROR, outcome="not_fixable")
            raise DeploymentFailedError(str(exc), attempts=0) from exc
        except CollaboratorError as exc:
            # The first attempt fetches the log again
            info = None
            await tracker.log(
                f"Could not diagnose failed deploy: {exc}; starting recovery", LogLevel.WARNING
            )
        else:
            await tracker.log(
                f"Deployment failed with {len(info.errors)} type errors; starting recovery",
                LogLevel.WARNING,
                classification=info.error_type.value,
                files=list(info.errors_by_file()),
            )

        state = _LoopState(
            deploy=failed,
            info=info,
            last_error=info.summary if info else failed.error_message or "Deploy failed",
        )
        policy = RetryPolicy(max_attempts=self.max_retries, backoff_unit=0)

        async def attempt(number: int) -> RecoveryResult:
            state.attempts = number
            await tracker.record_retry(
                RetryInfo(attempt=number, max_retries=self.max_retries, last_error=state.last_error)
            )
            prefix = f"Recovery attempt {number}/{self.max_retries}"
            classification = state.info.error_type.value if state.info else None

            try:
                if state.info is None:
                    state.info = await self._diagnose(state.deploy)
                    classification = state.info.error_type.value
                files = await self._apply_fixes(
                    state.info, repo=repo, branch=branch, model=model, tracker=tracker
                )
                if not files:
                    raise RetryableAttemptError("No fixes could be generated")
                state.files_fixed.extend(files)

                deploy_id = await self.hosting.trigger_deploy(site_id)
                status = await self.watcher.wait(deploy_id, on_state=tracker.log)
            except RetryableAttemptError as exc:
                state.last_error = str(exc)
                await tracker.log(f"{prefix}: {exc}", LogLevel.WARNING, attempt=number,
                                  classification=classification, files_fixed=[], outcome="no_fix")
                raise
            except CollaboratorError as exc:
                state.last_error = str(exc)
                await tracker.log(f"{prefix} failed: {exc}", LogLevel.WARNING, attempt=number,
                                  classification=classification, files_fixed=[], outcome="error")
                raise RetryableAttemptError(str(exc)) from exc

            if status.is_ready or not status.is_final:
                outcome = "ready" if status.is_ready else "unconfirmed"
                await tracker.log(f"{prefix}: deploy {outcome}", attempt=number,
                                  classification=classification, files_fixed=files, outcome=outcome)
                return RecoveryResult(deploy=status, attempts=number, files_fixed=list(state.files_fixed))

            state.deploy = status
            state.info = None
            state.last_error = status.error_message or "Deploy failed"
            await tracker.log(f"{prefix}: redeploy failed", LogLevel.WARNING, attempt=number,
                              classification=classification, files_fixed=files, outcome="failed")

            # Re-classify now so a non-fixable failure stops without spending another attempt
            try:
                state.info = await self._diagnose(status)
                state.last_error = state.info.summary
            except CollaboratorError as exc:
                logger.warning("recovery_diagnosis_failed", deploy_id=status.deploy_id, error=str(exc))
            raise RetryableAttemptError(state.last_error)

        try:
            return await bounded_retry(policy, attempt, step="deployment_recovery")
        except RecoveryAbortedError as exc:
            await tracker.log(str(exc), LogLevel.ERROR, outcome="aborted")
            raise DeploymentFailedError(str(exc), attempts=state.attempts) from exc
        except RetryLimitExceededError as exc:
            last_error = exc.last_error or state.last_error
            message = f"Deployment still failing after {exc.attempts} fix attempts: {last_error}"
            await tracker.log(message, LogLevel.ERROR, outcome="exhausted")
            raise DeploymentFailedError(message, attempts=exc.attempts) from exc
