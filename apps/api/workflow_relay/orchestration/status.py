"""Status and cancellation of dispatched runs.

Neither operation loops: when the caller has no external run id, a single
discovery attempt is made against recent runs. Nothing is stored between
calls; GitHub remains the only record of a run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from workflow_relay.config import Settings
from workflow_relay.errors import (
    ConfigurationError,
    InputError,
    RunDiscoveryError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFoundError,
)
from workflow_relay.github.base import WorkflowClient
from workflow_relay.orchestration.discovery import (
    Matcher,
    SubstringMatcher,
    match,
    parse_run_id_from_url,
)
from workflow_relay.orchestration.dispatch import utcnow
from workflow_relay.schemas import (
    CancelResult,
    DiscoveredRun,
    JobLog,
    RepoTarget,
    RunState,
    RunStatusSnapshot,
)


logger = logging.getLogger(__name__)

DEFAULT_STATUS_LOOKBACK = timedelta(hours=24)


def parse_run_id(value: str | int | None) -> int | None:
    """Coerce a caller-supplied run id; InputError when it is not numeric."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text.isdigit():
        raise InputError("githubRunId must be numeric")
    return int(text)


@dataclass(frozen=True)
class StatusOptions:
    """Optional log enrichment for a status call."""

    include_logs_archive: bool = False
    include_job_logs: bool = False


class StatusOrchestrator:
    """Reports on and cancels runs identified by correlation token or run id."""

    def __init__(
        self,
        client: WorkflowClient,
        lookback: timedelta | None = DEFAULT_STATUS_LOOKBACK,
        matcher: Matcher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.lookback = lookback
        self.matcher = matcher or SubstringMatcher()
        self._clock = clock

    @classmethod
    def from_settings(cls, client: WorkflowClient, settings: Settings) -> "StatusOrchestrator":
        return cls(client, lookback=settings.status_lookback)

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover(self, target: RepoTarget, correlation_token: str) -> DiscoveredRun | None:
        """Single discovery attempt for ``correlation_token``.

        Falls back to the repository-wide run listing when the workflow file
        is unknown to GitHub. Credential failures propagate; other listing
        failures count as "not found yet".
        """
        since = self._clock() - self.lookback if self.lookback else None
        try:
            try:
                runs = await self.client.list_recent_runs(target, since=since)
            except UpstreamNotFoundError:
                logger.warning(
                    f"Workflow '{target.workflow_file}' not found on {target.slug}; "
                    f"falling back to repository-wide run listing"
                )
                runs = await self.client.list_repository_runs(target, since=since)
        except UpstreamAuthError:
            raise
        except UpstreamError as e:
            logger.warning(f"Run discovery for {correlation_token} failed: {e.message}")
            return None

        run = match(runs, correlation_token, self.matcher)
        if run is None:
            logger.info(f"No run on {target.slug} matches {correlation_token} yet")
        else:
            logger.info(
                f"Discovered run {run.external_run_id} on {target.slug} for {correlation_token}"
            )
        return run

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(
        self,
        target: RepoTarget,
        correlation_token: str,
        known_run_id: int | None = None,
        run_url: str | None = None,
        options: StatusOptions | None = None,
    ) -> RunStatusSnapshot:
        """Current state of the run behind ``correlation_token``.

        A supplied run id (or one parsed from ``run_url``) is trusted as-is
        and no discovery happens. An undiscovered run is reported as
        ``pending``, not as an error.

        Raises:
            UpstreamAuthError: GitHub rejected the credential
            UpstreamError: Fetching the run failed for another reason
        """
        options = options or StatusOptions()
        run_id = known_run_id
        if run_id is None:
            run_id = parse_run_id_from_url(run_url)
            if run_id is not None:
                logger.info(f"Parsed run id {run_id} from {run_url}")

        if run_id is None:
            discovered = await self.discover(target, correlation_token)
            if discovered is None:
                return RunStatusSnapshot(
                    run_id=correlation_token,
                    github_run_id=None,
                    status=RunState.PENDING.value,
                    conclusion=None,
                )
            run_id = discovered.external_run_id
            run_url = discovered.html_url or None

        run = await self.client.get_run(target, run_id)

        snapshot = RunStatusSnapshot(
            run_id=correlation_token,
            github_run_id=run_id,
            status=run.status or RunState.PENDING.value,
            conclusion=run.conclusion,
            run_url=run_url or run.html_url or target.run_url(run_id),
            start_time=run.started_at,
            end_time=run.updated_at,
        )

        if options.include_logs_archive:
            archive_url = await self.client.fetch_run_logs_url(target, run_id)
            if archive_url is not None:
                snapshot.logs_archive_url = archive_url

        if options.include_job_logs:
            job_logs = await self._collect_job_logs(target, run_id)
            if job_logs is not None:
                snapshot.job_logs = job_logs

        return snapshot

    async def _collect_job_logs(self, target: RepoTarget, run_id: int) -> list[JobLog] | None:
        try:
            jobs = await self.client.list_jobs(target, run_id)
        except UpstreamError as e:
            logger.warning(f"Fetching job logs for run {run_id} failed: {e.message}")
            return None

        job_logs = []
        for job in jobs:
            job_logs.append(
                JobLog(
                    id=job.id,
                    name=job.name,
                    status=job.status,
                    conclusion=job.conclusion,
                    started_at=job.started_at,
                    completed_at=job.completed_at,
                    logs_url=await self.client.fetch_job_logs_url(target, job.id),
                )
            )
        return job_logs

    async def describe_run(self, target: RepoTarget, run_id: int) -> DiscoveredRun:
        """Raw details of a known run."""
        if not self.client.has_credentials:
            raise ConfigurationError("Missing GH_WORKFLOW_TOKEN")
        return await self.client.get_run(target, run_id)

    async def list_run_artifacts(self, target: RepoTarget, run_id: int) -> dict[str, Any]:
        """Artifact listing of a known run, as returned by GitHub."""
        if not self.client.has_credentials:
            raise ConfigurationError("Missing GH_WORKFLOW_TOKEN")
        artifacts = await self.client.list_artifacts(target, run_id)
        logger.info(
            f"Run {run_id} on {target.slug} has {artifacts.get('total_count') or 0} artifacts"
        )
        return artifacts

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def resolve_run_id(
        self,
        target: RepoTarget,
        correlation_token: str | None = None,
        known_run_id: int | None = None,
        run_url: str | None = None,
    ) -> int:
        """Explicit id, then id parsed from ``run_url``, then one discovery attempt."""
        if known_run_id is not None:
            return known_run_id

        from_url = parse_run_id_from_url(run_url)
        if from_url is not None:
            return from_url

        if correlation_token:
            discovered = await self.discover(target, correlation_token)
            if discovered is not None:
                return discovered.external_run_id

        raise RunDiscoveryError("Missing githubRunId and discovery failed")

    async def cancel(
        self,
        target: RepoTarget,
        correlation_token: str | None = None,
        known_run_id: int | None = None,
        run_url: str | None = None,
    ) -> CancelResult:
        """Request cancellation of a run.

        Returns as soon as GitHub accepts the request; the run's transition
        to ``cancelled`` shows up in a later status call.

        Raises:
            InputError: No identifier was supplied at all
            ConfigurationError: No credential is configured
            RunDiscoveryError: No run id could be resolved
            UpstreamError: GitHub did not accept the cancellation
        """
        if known_run_id is None and not run_url and not correlation_token:
            raise InputError(
                "Missing githubRunId. Provide githubRunId or githubRunUrl, "
                "or include runId for discovery."
            )
        if not self.client.has_credentials:
            raise ConfigurationError("Missing GH_WORKFLOW_TOKEN")

        run_id = await self.resolve_run_id(target, correlation_token, known_run_id, run_url)
        await self.client.cancel_run(target, run_id)
        logger.info(f"Cancellation of run {run_id} on {target.slug} accepted")

        return CancelResult(
            message=f"Workflow run {run_id} cancellation requested (202 Accepted).",
            github_run_id=run_id,
            run_url=target.run_url(run_id),
            local_run_id=correlation_token,
            repo=target.slug,
        )
