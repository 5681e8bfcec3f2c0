"""Immutable per-run workflow context.

Phases never mutate a context: they return ``ctx.evolve(field=...)``, which
bumps ``version``. The executor compares before/after to enforce that each
phase only touches the fields it declares in ``produces``.
"""

from pydantic import BaseModel, ConfigDict

from forgeflow.schemas.workflow import WorkflowRequest


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class TemplateFile(_Frozen):
    path: str
    purpose: str
    content: str


class TemplateBundle(_Frozen):
    template_id: str
    name: str
    repository: str
    branch: str
    env_vars: tuple[str, ...] = ()
    needs_database: bool = True
    files: tuple[TemplateFile, ...] = ()


class GeneratedFile(_Frozen):
    path: str
    content: str


class CommitRecord(_Frozen):
    sha: str
    message: str
    paths: tuple[str, ...]


class DatabaseHandle(_Frozen):
    name: str
    host: str | None = None
    username: str | None = None


class InfrastructureHandles(_Frozen):
    site_id: str | None = None
    site_name: str | None = None
    site_url: str | None = None
    database: DatabaseHandle | None = None
    env_var_names: tuple[str, ...] = ()


class DeploymentState(_Frozen):
    """Where the deploy phase ended up.

    state: "ready" (confirmed live), "pending" (triggered, not confirmed before
    the poll timeout) or "skipped" (no site to deploy).
    """

    state: str
    deploy_id: str | None = None
    url: str | None = None
    recovery_attempts: int = 0

    @property
    def confirmed(self) -> bool:
        return self.state in ("ready", "skipped")


# Fields phases may produce; session_id/request/version are fixed for the run
PHASE_OUTPUT_FIELDS = frozenset({
    "project_id",
    "template",
    "generated_files",
    "commits",
    "infrastructure",
    "deployment",
})


class WorkflowContext(_Frozen):
    session_id: str
    request: WorkflowRequest
    project_id: str | None = None
    template: TemplateBundle | None = None
    generated_files: tuple[GeneratedFile, ...] = ()
    commits: tuple[CommitRecord, ...] = ()
    infrastructure: InfrastructureHandles | None = None
    deployment: DeploymentState | None = None
    version: int = 0

    def evolve(self, **changes) -> "WorkflowContext":
        """Functional update: a new context with ``changes`` applied and version + 1."""
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown context fields: {sorted(unknown)}")
        return self.model_copy(update={**changes, "version": self.version + 1})

    def changed_fields(self, other: "WorkflowContext") -> set[str]:
        """Names of fields (excluding version) whose values differ from ``other``."""
        return {
            name
            for name in type(self).model_fields
            if name != "version" and getattr(self, name) != getattr(other, name)
        }
