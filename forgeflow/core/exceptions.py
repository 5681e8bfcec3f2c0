class ForgeFlowError(Exception):
    """Base exception for ForgeFlow."""

    pass


# ---------------------------------------------------------------------------
# Collaborator errors (external services)
# ---------------------------------------------------------------------------


class CollaboratorError(ForgeFlowError):
    """Raised when a call to an external service fails."""

    service = "external"


class GitOperationError(CollaboratorError):
    """Raised when source control operations fail."""

    service = "source_control"


class HostingError(CollaboratorError):
    """Raised when the hosting provider rejects or fails a request."""

    service = "hosting"


class HostingTransportError(HostingError):
    """Raised when the hosting provider cannot be reached at all."""

    pass


class DatabaseProvisioningError(CollaboratorError):
    """Raised when managed database provisioning fails."""

    service = "database"


class AIGenerationError(CollaboratorError):
    """Raised when the AI provider fails or returns nothing usable."""

    service = "ai"


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------


class StoreError(ForgeFlowError):
    """Raised when session/project persistence fails."""

    pass


class SessionNotFoundError(StoreError):
    """Raised when writing to a session that does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")


class ProjectNotFoundError(StoreError):
    """Raised when updating a project that does not exist."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project '{project_id}' not found")


class SessionAlreadyExistsError(StoreError):
    """Raised when creating a session id that is already taken by a different session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' already exists")


class SessionTerminalError(StoreError):
    """Raised when overwriting a session that already reached a terminal status."""

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session '{session_id}' is terminal ({status}) and cannot be modified")


# ---------------------------------------------------------------------------
# Orchestration errors
# ---------------------------------------------------------------------------


class InvalidTransitionError(ForgeFlowError):
    """Raised when a session status transition is out of pipeline order."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid session transition: {current} -> {requested}")


class TemplateNotFoundError(ForgeFlowError):
    """Raised when a template id is not in the catalog."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class PhaseError(ForgeFlowError):
    """Raised by a phase to stop the pipeline with a user-visible message."""

    def __init__(self, phase: str, message: str):
        self.phase = phase
        super().__init__(f"{phase} failed: {message}")


class PhaseContractError(ForgeFlowError):
    """Raised when a phase changes context fields it does not own."""

    def __init__(self, phase: str, fields: set[str]):
        self.phase = phase
        self.fields = fields
        super().__init__(f"Phase '{phase}' modified fields it does not produce: {sorted(fields)}")


class DeploymentFailedError(ForgeFlowError):
    """Raised when a deployment ends in error and could not be recovered."""

    def __init__(self, diagnostic: str, attempts: int = 0):
        self.diagnostic = diagnostic
        self.attempts = attempts
        super().__init__(diagnostic)


# ---------------------------------------------------------------------------
# Retry control
# ---------------------------------------------------------------------------


class RetryableAttemptError(ForgeFlowError):
    """Raised inside a bounded retry to consume one attempt and try again."""

    pass


class RecoveryAbortedError(ForgeFlowError):
    """Raised when the recovery loop must stop without consuming further attempts."""

    pass


class RetryLimitExceededError(ForgeFlowError):
    """Raised when retry limit is exceeded."""

    def __init__(self, step: str, attempts: int, last_error: str | None = None):
        self.step = step
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Retry limit exceeded for step '{step}' after {attempts} attempts")


# ---------------------------------------------------------------------------
# Queue errors
# ---------------------------------------------------------------------------


class UnknownJobTypeError(ForgeFlowError):
    """Raised when a job type has no registered handler."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")
