"""Template catalog and template environment variables.

Each template points at a GitHub repository holding the starter code, lists
the core files the AI pipeline customizes, and names the environment
variables the deployed site needs.
"""

import secrets
from copy import deepcopy
from dataclasses import dataclass

import structlog

from forgeflow.core.exceptions import TemplateNotFoundError

logger = structlog.get_logger(__name__)

PLACEHOLDER_SITE_URL = "https://placeholder.netlify.app"

# Core files handed to the AI generator: {path: purpose}
CORE_TEMPLATE_FILES: dict[str, str] = {
    "src/App.tsx": "Main application component and routing",
    "src/pages/Landing.tsx": "Landing page with business-specific content",
    "src/components/auth/Dashboard.tsx": "User dashboard and authenticated experience",
    "prisma/schema.prisma": "Database schema and data models",
    "tailwind.config.js": "Styling configuration and theme",
}


@dataclass(frozen=True)
class TemplateSpec:
    id: str
    name: str
    repository: str  # owner/repo
    branch: str
    env_vars: tuple[str, ...]
    core_files: tuple[str, ...] = tuple(CORE_TEMPLATE_FILES)
    needs_database: bool = True

    def purpose_of(self, path: str) -> str:
        return CORE_TEMPLATE_FILES.get(path, "Template file for customization")


TEMPLATES: dict[str, TemplateSpec] = {
    "vite-react-mongo": TemplateSpec(
        id="vite-react-mongo",
        name="Vite + React + MongoDB",
        repository="forgeflow-templates/vite-react-mongo",
        branch="main",
        env_vars=(
            "DATABASE_URL",
            "MONGODB_DATABASE_NAME",
            "BETTER_AUTH_SECRET",
            "BETTER_AUTH_URL",
            "VITE_APP_NAME",
            "VITE_APP_URL",
        ),
    ),
    "nextjs-mongo": TemplateSpec(
        id="nextjs-mongo",
        name="Next.js + MongoDB",
        repository="forgeflow-templates/nextjs-mongo",
        branch="main",
        env_vars=(
            "MONGODB_URI",
            "MONGODB_DATABASE_NAME",
            "NEXTAUTH_SECRET",
            "NEXTAUTH_URL",
            "NEXT_PUBLIC_APP_NAME",
            "NEXT_PUBLIC_APP_URL",
        ),
    ),
    "vite-react-indexeddb": TemplateSpec(
        id="vite-react-indexeddb",
        name="Vite + React + IndexedDB",
        repository="forgeflow-templates/vite-react-indexeddb",
        branch="main",
        env_vars=("VITE_APP_NAME", "VITE_APP_URL", "VITE_APP_VERSION"),
        core_files=("src/App.tsx", "src/pages/Landing.tsx", "tailwind.config.js"),
        needs_database=False,
    ),
}


def get_template(template_id: str) -> TemplateSpec:
    """Look up a template by id.

    Raises:
        TemplateNotFoundError: If the id is not in the catalog
    """
    try:
        return TEMPLATES[template_id]
    except KeyError:
        raise TemplateNotFoundError(template_id) from None


def list_templates() -> list[TemplateSpec]:
    return list(TEMPLATES.values())


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------

_CONNECTION_STRING_VARS = {"MONGODB_URI", "DATABASE_URL"}
_AUTH_SECRET_VARS = {"BETTER_AUTH_SECRET", "NEXTAUTH_SECRET", "AUTH_SECRET", "NUXT_SECRET_KEY"}
_APP_NAME_VARS = {"VITE_APP_NAME", "NEXT_PUBLIC_APP_NAME", "NUXT_PUBLIC_APP_NAME"}
URL_VARS = frozenset({
    "VITE_APP_URL",
    "NEXT_PUBLIC_APP_URL",
    "NUXT_PUBLIC_API_URL",
    "VITE_API_URL",
    "BETTER_AUTH_URL",
    "NEXTAUTH_URL",
})
_VERSION_VARS = {"VITE_APP_VERSION", "NEXT_PUBLIC_APP_VERSION", "NUXT_PUBLIC_APP_VERSION"}

# Provider -> (API key variable, model variable)
PROVIDER_ENV_VARS: dict[str, tuple[str, str]] = {
    "anthropic": ("ANTHROPIC_API_KEY", "ANTHROPIC_MODEL"),
    "openai": ("OPENAI_API_KEY", "OPENAI_MODEL"),
    "google": ("GOOGLE_API_KEY", "GOOGLE_MODEL"),
    "grok": ("XAI_API_KEY", "XAI_MODEL"),
}


def template_environment(
    template: TemplateSpec,
    *,
    project_name: str,
    repository_url: str,
    base_branch: str,
    database: dict | None = None,
    site_url: str | None = None,
) -> dict[str, str]:
    """Values for every env var the template declares.

    Args:
        template: Catalog entry
        project_name: Used for the app-name variables
        repository_url: Exposed to the site as VITE_REPOSITORY_URL
        base_branch: Exposed as VITE_BASE_BRANCH
        database: {"connection_string", "name", "username"} when provisioned
        site_url: Real site URL; placeholder until the site exists

    Returns:
        Mapping of variable name to value. Unknown variables get a
        ``placeholder-<name>`` value and a warning.
    """
    env: dict[str, str] = {}
    for var in template.env_vars:
        if var in _CONNECTION_STRING_VARS:
            if database:
                env[var] = database["connection_string"]
        elif var == "MONGODB_DATABASE_NAME":
            if database:
                env[var] = database["name"]
        elif var == "MONGODB_USERNAME":
            if database:
                env[var] = database["username"]
        elif var in _AUTH_SECRET_VARS:
            env[var] = secrets.token_hex(32)
        elif var in _APP_NAME_VARS:
            env[var] = project_name or "My App"
        elif var in URL_VARS:
            env[var] = site_url or PLACEHOLDER_SITE_URL
        elif var in _VERSION_VARS:
            env[var] = "1.0.0"
        else:
            logger.warning("unknown_template_env_var", template_id=template.id, var=var)
            env[var] = f"placeholder-{var.lower()}"

    env["VITE_REPOSITORY_URL"] = repository_url
    env["VITE_BASE_BRANCH"] = base_branch
    return env


def url_environment(template: TemplateSpec, site_url: str) -> dict[str, str]:
    """URL variables only, rewritten once the real site URL is known."""
    return {var: site_url for var in template.env_vars if var in URL_VARS}


def provider_environment(api_keys: dict[str, str], provider: str, model: str | None) -> dict[str, str]:
    """API key (and model) for the selected AI provider, if a key is configured."""
    key_var, model_var = PROVIDER_ENV_VARS.get(provider, (None, None))
    if key_var is None or not api_keys.get(provider):
        return {}
    env = {key_var: api_keys[provider]}
    if model:
        env[model_var] = model
    return env


def catalog_snapshot() -> list[dict]:
    """Catalog as plain dicts for API responses."""
    return deepcopy([
        {
            "id": t.id,
            "name": t.name,
            "repository": t.repository,
            "branch": t.branch,
            "env_vars": list(t.env_vars),
            "core_files": [{"path": p, "purpose": t.purpose_of(p)} for p in t.core_files],
            "needs_database": t.needs_database,
        }
        for t in TEMPLATES.values()
    ])
