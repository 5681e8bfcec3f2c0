"""Session status transitions and progress rules."""

from forgeflow.core.exceptions import InvalidTransitionError
from forgeflow.schemas.session import TERMINAL_STATUSES, SessionStatus

# Label shown in current_step when a session enters a status
STATUS_LABELS: dict[SessionStatus, str] = {
    SessionStatus.PENDING: "Queued",
    SessionStatus.INITIALIZING: "Initializing session",
    SessionStatus.PREPARING: "Retrieving template files",
    SessionStatus.SANDBOX_CREATING: "Creating sandbox",
    SessionStatus.GENERATING: "Generating customized code",
    SessionStatus.AI_PROCESSING: "Processing with AI",
    SessionStatus.COMMITTING: "Committing generated files",
    SessionStatus.SETTING_UP_INFRASTRUCTURE: "Setting up infrastructure",
    SessionStatus.DEPLOYING: "Deploying",
    SessionStatus.DEPLOYED: "Deployed, waiting for confirmation",
    SessionStatus.COMPLETED: "Completed",
    SessionStatus.FAILED: "Failed",
    SessionStatus.CANCELLED: "Cancelled",
}


class SessionStateMachine:
    """Validates session status changes.

    Non-terminal statuses have a rank; a session may move to any status of
    equal or higher rank (phases can be skipped, checkpoints may repeat the
    current status). failed and cancelled are reachable from every
    non-terminal status. Terminal statuses accept nothing.
    """

    RANKS: dict[SessionStatus, int] = {
        SessionStatus.PENDING: 0,
        SessionStatus.INITIALIZING: 1,
        SessionStatus.PREPARING: 2,
        SessionStatus.SANDBOX_CREATING: 2,
        SessionStatus.GENERATING: 3,
        SessionStatus.AI_PROCESSING: 3,
        SessionStatus.COMMITTING: 4,
        SessionStatus.SETTING_UP_INFRASTRUCTURE: 5,
        SessionStatus.DEPLOYING: 6,
        SessionStatus.DEPLOYED: 7,
        SessionStatus.COMPLETED: 8,
    }

    ABORT_STATUSES = frozenset({SessionStatus.FAILED, SessionStatus.CANCELLED})

    @classmethod
    def can_transition(cls, current: SessionStatus, requested: SessionStatus) -> bool:
        if current in TERMINAL_STATUSES:
            return False
        if requested in cls.ABORT_STATUSES:
            return True
        if current == requested:
            return True
        # Alternates of one rank (preparing/sandbox_creating) are not interchangeable
        return cls.RANKS[requested] > cls.RANKS[current]

    @classmethod
    def validate(cls, current: SessionStatus, requested: SessionStatus) -> None:
        """Raise InvalidTransitionError unless ``current -> requested`` is allowed."""
        if not cls.can_transition(current, requested):
            raise InvalidTransitionError(current.value, requested.value)

    @staticmethod
    def validate_progress(current: int, requested: int, status: SessionStatus) -> None:
        """Progress never decreases, and only completed sessions report 100."""
        if requested < current:
            raise InvalidTransitionError(f"progress {current}", f"progress {requested}")
        if requested >= 100 and status != SessionStatus.COMPLETED:
            raise InvalidTransitionError(status.value, f"progress {requested}")
