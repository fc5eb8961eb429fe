"""GitHub Actions REST client.

Thin credentialed wrapper around the workflow endpoints:
- dispatch: POST /repos/{owner}/{repo}/actions/workflows/{file}/dispatches
- list runs: GET .../workflows/{file}/runs and GET .../actions/runs
- get run / list jobs / list artifacts / cancel run
- log redirects: GET .../runs/{id}/logs and .../jobs/{id}/logs (302, not followed)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from workflow_relay.config import Settings
from workflow_relay.errors import (
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamTransportError,
)
from workflow_relay.github.base import WorkflowClient
from workflow_relay.schemas import DiscoveredRun, JobSummary, RepoTarget


logger = logging.getLogger(__name__)

# Lower-cased body fragments used to classify failures
BAD_CREDENTIALS_SIGNATURE = "bad credentials"
RATE_LIMIT_SIGNATURE = "rate limit"


def classify_response(response: httpx.Response, action: str) -> UpstreamError:
    """Turn a failed GitHub response into the matching ``UpstreamError``."""
    status = response.status_code
    body = response.text or ""
    lowered = body.lower()
    message = f"GitHub {action} failed: {status} {response.reason_phrase}".rstrip()

    if status == 401:
        return UpstreamAuthError(message, status_code=status, body=body)
    if status == 403:
        if RATE_LIMIT_SIGNATURE in lowered:
            return UpstreamTransportError(message, status_code=status, body=body)
        return UpstreamAuthError(message, status_code=status, body=body)
    if BAD_CREDENTIALS_SIGNATURE in lowered:
        return UpstreamAuthError(message, status_code=status, body=body)
    if status == 404:
        return UpstreamNotFoundError(message, status_code=status, body=body)
    return UpstreamTransportError(message, status_code=status, body=body)


def format_since(since: datetime) -> str:
    """Format a lookback anchor the way the runs ``created`` filter expects."""
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class GitHubWorkflowClient(WorkflowClient):
    """GitHub Actions API client using httpx."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        api_version: str = "2022-11-28",
        user_agent: str = "workflow-relay",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token or None
        self.base_url = base_url.rstrip("/")

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": api_version,
            "User-Agent": user_agent,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            follow_redirects=False,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GitHubWorkflowClient":
        return cls(
            token=settings.gh_workflow_token,
            base_url=settings.github_api_url,
            api_version=settings.github_api_version,
            user_agent=settings.github_user_agent,
            timeout=settings.github_timeout_seconds,
            transport=transport,
        )

    @property
    def has_credentials(self) -> bool:
        return self.token is not None

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request; network failures become ``UpstreamTransportError``."""
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"GitHub {action} transport failure: {e}")
            raise UpstreamTransportError(
                f"GitHub {action} failed: {e.__class__.__name__}: {e}"
            ) from e

    async def _get_json(self, path: str, action: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request("GET", path, action, **kwargs)
        if not response.is_success:
            error = classify_response(response, action)
            logger.warning(f"{error.message} ({path}): {error.body[:200]}")
            raise error
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"GitHub {action} returned a non-JSON body ({path})")
            raise UpstreamTransportError(
                f"GitHub {action} returned an invalid JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from e

    @staticmethod
    def _repo_path(target: RepoTarget) -> str:
        return f"/repos/{quote(target.owner, safe='')}/{quote(target.repo, safe='')}"

    def _workflow_path(self, target: RepoTarget) -> str:
        workflow = quote(str(target.workflow_file), safe="")
        return f"{self._repo_path(target)}/actions/workflows/{workflow}"

    @staticmethod
    def _runs_params(
        target: RepoTarget,
        since: datetime | None,
        per_page: int,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "event": "workflow_dispatch",
            "branch": target.branch,
            "per_page": per_page,
        }
        if since is not None:
            params["created"] = f">={format_since(since)}"
        return params

    # =========================================================================
    # Operations
    # =========================================================================

    async def dispatch(self, target: RepoTarget, inputs: dict[str, Any]) -> None:
        path = f"{self._workflow_path(target)}/dispatches"
        logger.info(
            f"Dispatching {target.workflow_file} on {target.slug}@{target.branch}"
        )
        response = await self._request(
            "POST",
            path,
            "dispatch",
            json={"ref": target.branch, "inputs": inputs},
        )
        if not response.is_success:
            error = classify_response(response, "dispatch")
            logger.error(f"{error.message}: {error.body[:500]}")
            raise error

    async def list_recent_runs(
        self,
        target: RepoTarget,
        since: datetime | None = None,
        per_page: int = 100,
    ) -> list[DiscoveredRun]:
        data = await self._get_json(
            f"{self._workflow_path(target)}/runs",
            "list workflow runs",
            params=self._runs_params(target, since, per_page),
        )
        return [DiscoveredRun.from_api(run) for run in data.get("workflow_runs") or []]

    async def list_repository_runs(
        self,
        target: RepoTarget,
        since: datetime | None = None,
        per_page: int = 100,
    ) -> list[DiscoveredRun]:
        data = await self._get_json(
            f"{self._repo_path(target)}/actions/runs",
            "list repository runs",
            params=self._runs_params(target, since, per_page),
        )
        return [DiscoveredRun.from_api(run) for run in data.get("workflow_runs") or []]

    async def get_run(self, target: RepoTarget, run_id: int) -> DiscoveredRun:
        data = await self._get_json(
            f"{self._repo_path(target)}/actions/runs/{run_id}",
            "get workflow run",
        )
        return DiscoveredRun.from_api(data)

    async def list_jobs(self, target: RepoTarget, run_id: int) -> list[JobSummary]:
        data = await self._get_json(
            f"{self._repo_path(target)}/actions/runs/{run_id}/jobs",
            "list jobs",
            params={"per_page": 100},
        )
        return [JobSummary.from_api(job) for job in data.get("jobs") or []]

    async def list_artifacts(self, target: RepoTarget, run_id: int) -> dict[str, Any]:
        logger.info(f"Listing artifacts of run {run_id} on {target.slug}")
        return await self._get_json(
            f"{self._repo_path(target)}/actions/runs/{run_id}/artifacts",
            "artifacts fetch",
        )

    async def cancel_run(self, target: RepoTarget, run_id: int) -> None:
        path = f"{self._repo_path(target)}/actions/runs/{run_id}/cancel"
        logger.info(f"Requesting cancellation of run {run_id} on {target.slug}")
        response = await self._request("POST", path, "cancel")
        if response.status_code != 202:
            error = classify_response(response, "cancel")
            logger.error(f"{error.message}: {error.body[:500]}")
            raise error

    async def _fetch_redirect(self, path: str) -> str | None:
        """Capture a log redirect target without following it.

        Logs are an optional enrichment, so every failure here yields None.
        """
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as e:
            logger.warning(f"Log redirect lookup failed for {path}: {e}")
            return None
        if response.status_code in (301, 302, 303, 307, 308):
            return response.headers.get("location")
        if not response.is_success:
            logger.warning(
                f"Log redirect lookup for {path} returned {response.status_code}"
            )
        return None

    async def fetch_run_logs_url(self, target: RepoTarget, run_id: int) -> str | None:
        return await self._fetch_redirect(
            f"{self._repo_path(target)}/actions/runs/{run_id}/logs"
        )

    async def fetch_job_logs_url(self, target: RepoTarget, job_id: int) -> str | None:
        return await self._fetch_redirect(
            f"{self._repo_path(target)}/actions/jobs/{job_id}/logs"
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
