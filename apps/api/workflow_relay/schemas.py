"""Pydantic schemas for the relay's data contracts.

These schemas define the contracts between:
- API endpoints and callers (camelCase on the wire)
- GitHub workflow API payloads and the orchestrators
- The orchestrators themselves
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================

class RepoSource(str, Enum):
    """Where a resolved repository target came from."""
    EXPLICIT_CONFIG = "explicit-config"
    INFERRED_FROM_SLUG = "inferred-from-slug"
    DEFAULT = "default"
    QUERY_OVERRIDE = "query-override"


class RunState(str, Enum):
    """Caller-facing run status. GitHub may report others, passed through as-is."""
    PENDING = "pending"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ApiModel(BaseModel):
    """Base for caller-facing payloads: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Repository Targeting
# =============================================================================

class TargetOverrides(BaseModel):
    """Caller-supplied repository target values (query string)."""
    owner: str | None = None
    repo: str | None = None
    branch: str | None = None
    workflow: str | None = None


class RepoTarget(BaseModel):
    """Concrete repository/workflow a request operates on."""
    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    branch: str
    workflow_file: str
    source: RepoSource
    overridden: bool = False

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def source_tag(self) -> str:
        """Source label for diagnostics, e.g. ``explicit-config+override``."""
        if self.overridden and self.source is not RepoSource.QUERY_OVERRIDE:
            return f"{self.source.value}+override"
        return self.source.value

    def run_url(self, run_id: int) -> str:
        return f"https://github.com/{self.owner}/{self.repo}/actions/runs/{run_id}"


# =============================================================================
# GitHub Payloads
# =============================================================================

class DiscoveredRun(BaseModel):
    """A workflow run as reported by the GitHub API."""
    external_run_id: int
    html_url: str = ""
    status: str | None = None
    conclusion: str | None = None
    title: str = ""
    commit_message: str = ""
    started_at: str | None = None
    updated_at: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "DiscoveredRun":
        head_commit = data.get("head_commit") or {}
        return cls(
            external_run_id=int(data["id"]),
            html_url=data.get("html_url") or "",
            status=data.get("status"),
            conclusion=data.get("conclusion"),
            title=data.get("display_title") or data.get("name") or "",
            commit_message=head_commit.get("message") or "",
            started_at=data.get("run_started_at"),
            updated_at=data.get("updated_at"),
            raw=data,
        )


class JobSummary(BaseModel):
    """A single job within a workflow run."""
    id: int
    name: str = ""
    status: str | None = None
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "JobSummary":
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            status=data.get("status"),
            conclusion=data.get("conclusion"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


# =============================================================================
# Orchestrator Results
# =============================================================================

class DispatchOutcome(BaseModel):
    """Result of a dispatch whose run was discovered."""
    correlation_token: str
    external_run_id: int
    attempts_used: int
    run: DiscoveredRun


class JobLog(ApiModel):
    """Per-job log location included in a status snapshot."""
    id: int
    name: str
    status: str | None = None
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    logs_url: str | None = None


class RunStatusSnapshot(ApiModel):
    """Read-through projection of a run's current state.

    ``github_run_id`` is None while the run has not been discovered yet.
    """
    run_id: str
    github_run_id: int | None = None
    status: str = RunState.PENDING.value
    conclusion: str | None = None
    run_url: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    logs_archive_url: str | None = None
    job_logs: list[JobLog] | None = None
    debug: dict[str, Any] | None = None


class CancelResult(ApiModel):
    """Accepted cancellation of a workflow run."""
    message: str
    github_run_id: int
    run_url: str
    local_run_id: str | None = None
    repo: str


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class ValidationTriggerRequest(ApiModel):
    """API request to start a validation workflow."""
    target_repo_url: str | None = Field(default=None, description="Repository to validate")
    callback_url: str | None = Field(default=None, description="Optional completion callback")
    wait_for_run: bool = Field(
        default=False,
        description="Block until the dispatched run is discovered",
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "targetRepoUrl": "https://github.com/acme/widgets",
                "callbackUrl": "https://example.com/hooks/validation",
            }
        },
    )


class ValidationTriggerResponse(ApiModel):
    """API response for a dispatched validation workflow."""
    run_id: str
    message: str
    request_id: str
    github_run_id: int | None = None
    run_url: str | None = None
    attempts: int | None = None


class ActionTriggerRequest(ApiModel):
    """API request to dispatch an arbitrary workflow and wait for its run."""
    workflow_org_rep: str | None = Field(default=None, description="owner/repo")
    workflow_id: str | int | None = Field(default=None, description="Workflow file name or numeric id")
    workflow_input: dict[str, Any] = Field(default_factory=dict)
    run_id_input_property: str | None = Field(
        default=None,
        description="Key in workflowInput holding the correlation token",
    )


class ActionRunRequest(ApiModel):
    """API request addressing a known run (details or artifacts)."""
    workflow_org_rep: str | None = None
    workflow_run_id: str | int | None = None


class CancelRequest(ApiModel):
    """Identifiers accepted in the cancel request body."""
    run_id: str | None = None
    local_run_id: str | None = None
    github_run_id: str | int | None = None
    github_run_url: str | None = None


class ValidationCallbackRequest(ApiModel):
    """Completion notice posted by the validation workflow."""
    run_id: str | None = None
    github_run_id: str | int | None = None
    status: str | None = None
    result: Any = None
