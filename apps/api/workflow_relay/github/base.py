"""Abstract base class for workflow API clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from workflow_relay.schemas import DiscoveredRun, JobSummary, RepoTarget


class WorkflowClient(ABC):
    """Primitive operations against an external workflow service.

    Every method is a single network call with no internal retry. Failures
    are raised as ``UpstreamError`` subclasses, already classified as auth,
    not-found or transport problems, so callers never inspect raw responses.
    """

    @property
    @abstractmethod
    def has_credentials(self) -> bool:
        """Return True when calls carry a bearer credential."""
        ...

    @abstractmethod
    async def dispatch(self, target: RepoTarget, inputs: dict[str, Any]) -> None:
        """Start ``target.workflow_file`` on ``target.branch``.

        Acceptance carries no run identifier; the run has to be discovered
        afterwards.
        """
        ...

    @abstractmethod
    async def list_recent_runs(
        self,
        target: RepoTarget,
        since: datetime | None = None,
        per_page: int = 100,
    ) -> list[DiscoveredRun]:
        """List manually dispatched runs of the target workflow, newest first."""
        ...

    @abstractmethod
    async def list_repository_runs(
        self,
        target: RepoTarget,
        since: datetime | None = None,
        per_page: int = 100,
    ) -> list[DiscoveredRun]:
        """List manually dispatched runs of any workflow in the repository."""
        ...

    @abstractmethod
    async def get_run(self, target: RepoTarget, run_id: int) -> DiscoveredRun:
        """Fetch a single run by its external id."""
        ...

    @abstractmethod
    async def list_jobs(self, target: RepoTarget, run_id: int) -> list[JobSummary]:
        """List the jobs of a run."""
        ...

    @abstractmethod
    async def list_artifacts(self, target: RepoTarget, run_id: int) -> dict[str, Any]:
        """List the artifacts of a run (raw ``{total_count, artifacts}`` payload)."""
        ...

    @abstractmethod
    async def cancel_run(self, target: RepoTarget, run_id: int) -> None:
        """Request cancellation; returns once the service has accepted it."""
        ...

    @abstractmethod
    async def fetch_run_logs_url(self, target: RepoTarget, run_id: int) -> str | None:
        """Return the short-lived log archive URL of a run, or None."""
        ...

    @abstractmethod
    async def fetch_job_logs_url(self, target: RepoTarget, job_id: int) -> str | None:
        """Return the short-lived log URL of a job, or None."""
        ...

    async def close(self) -> None:
        """Release any underlying connections."""
        return None
