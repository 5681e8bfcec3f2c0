from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "ForgeFlow"
    debug: bool = False

    # API
    public_base_url: str = ""
    cors_allowed_origins: list[str] = ["http://localhost:3000"]

    # Redis (session store)
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "forgeflow"

    # GitHub
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    default_branch: str = "main"

    # Netlify
    netlify_token: str = ""
    netlify_api_url: str = "https://api.netlify.com/api/v1"

    # MongoDB Atlas
    atlas_public_key: str = ""
    atlas_private_key: str = ""
    atlas_project_id: str = ""
    atlas_api_url: str = "https://cloud.mongodb.com/api/atlas/v1.0"
    atlas_cluster_host: str = ""

    # Anthropic
    anthropic_api_key: str = ""
    default_ai_provider: str = "anthropic"
    default_model: str = "claude-sonnet-4-20250514"
    generation_max_tokens: int = 8192

    # Provider API keys forwarded into deployed sites
    openai_api_key: str = ""
    google_api_key: str = ""
    xai_api_key: str = ""

    # Deployment polling
    deploy_timeout_seconds: float = 300.0
    deploy_poll_interval_seconds: float = 10.0

    # Recovery loop
    recovery_max_retries: int = 3

    # Session retention
    change_request_session_ttl_seconds: int = 3600
    provisioning_session_ttl_seconds: int = 30 * 24 * 3600
    project_ttl_seconds: int = 30 * 24 * 3600

    # Rate limits per AI provider: {provider: {"window_seconds": .., "max_requests": ..}}
    provider_rate_limits: dict[str, dict[str, float]] = {
        "anthropic": {"window_seconds": 60, "max_requests": 50},
        "openai": {"window_seconds": 60, "max_requests": 60},
        "google": {"window_seconds": 60, "max_requests": 40},
        "grok": {"window_seconds": 60, "max_requests": 30},
    }

    # Background queues
    queue_names: list[str] = ["notifications", "cleanup", "backup", "reports"]
    notification_webhook_url: str = ""
    notification_webhook_kind: str = "slack"  # slack | discord
    cleanup_max_age_hours: int = 24
    backup_ttl_seconds: int = 30 * 24 * 3600


@lru_cache
def get_settings() -> Settings:
    return Settings()
