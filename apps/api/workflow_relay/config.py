"""Application settings using pydantic-settings."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Used when neither owner/name nor a repository slug is configured
DEFAULT_REPOSITORY = "Template-Doctor/template-doctor"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "Workflow Relay"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # ==========================================================================
    # GitHub API
    # ==========================================================================
    gh_workflow_token: str = Field(default="")
    github_api_url: str = "https://api.github.com"
    github_api_version: str = "2022-11-28"
    github_user_agent: str = "workflow-relay"
    github_timeout_seconds: float = 30.0

    # ==========================================================================
    # Repository targeting
    # ==========================================================================
    github_repo_owner: str | None = None
    github_repo_name: str | None = None
    github_repository: str | None = None  # "owner/repo" slug
    github_repo_branch: str = "main"
    github_workflow_file: str = "validation-template.yml"

    # Hosted instances set WEBSITE_INSTANCE_ID; its absence means local
    website_instance_id: str | None = None
    allow_repo_override: bool = False

    # ==========================================================================
    # Run discovery
    # ==========================================================================
    dispatch_max_attempts: int = Field(default=5, ge=1)
    dispatch_backoff_seconds: float = Field(default=5.0, ge=0.0)
    dispatch_lookback_minutes: int = Field(default=10, ge=1)
    status_lookback_minutes: int = Field(default=60 * 24, ge=0)  # 0 = unbounded

    # ==========================================================================
    # Validation workflow
    # ==========================================================================
    validation_custom_validators: str = "azd-up,azd-down"

    # ==========================================================================
    # API
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = Field(default=["http://localhost:3000"])

    @property
    def is_local(self) -> bool:
        return not self.website_instance_id

    @property
    def override_allowed(self) -> bool:
        """Whether callers may redirect requests to another repository."""
        return self.is_local or self.allow_repo_override

    @property
    def dispatch_lookback(self) -> timedelta:
        return timedelta(minutes=self.dispatch_lookback_minutes)

    @property
    def status_lookback(self) -> timedelta | None:
        """Discovery window for status and cancel; None disables the filter."""
        if not self.status_lookback_minutes:
            return None
        return timedelta(minutes=self.status_lookback_minutes)


class ResolverConfig(BaseModel):
    """Repository targeting inputs, captured once per request.

    Built at the request boundary from ``Settings`` and handed to
    ``resolve_target``; nothing below the boundary reads the environment.
    """

    model_config = {"frozen": True}

    owner: str | None = None
    repo: str | None = None
    repository_slug: str | None = None
    branch: str = "main"
    workflow_file: str = "validation-template.yml"
    fallback_repository: str = DEFAULT_REPOSITORY
    allow_override: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResolverConfig":
        return cls(
            owner=settings.github_repo_owner or None,
            repo=settings.github_repo_name or None,
            repository_slug=settings.github_repository or None,
            branch=settings.github_repo_branch,
            workflow_file=settings.github_workflow_file,
            allow_override=settings.override_allowed,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
