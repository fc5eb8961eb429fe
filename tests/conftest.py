"""Shared fixtures: a fake GitHub API behind httpx.MockTransport."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from workflow_relay.config import Settings
from workflow_relay.github.client import GitHubWorkflowClient


FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

RELAY_ENV_VARS = (
    "GH_WORKFLOW_TOKEN",
    "GITHUB_REPO_OWNER",
    "GITHUB_REPO_NAME",
    "GITHUB_REPOSITORY",
    "GITHUB_REPO_BRANCH",
    "GITHUB_WORKFLOW_FILE",
    "WEBSITE_INSTANCE_ID",
    "ALLOW_REPO_OVERRIDE",
)


def reply(
    status: int = 200,
    json: Any = None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """Build a fresh response per call."""

    def respond(request: httpx.Request) -> httpx.Response:
        if text is not None:
            return httpx.Response(status, text=text, headers=headers)
        return httpx.Response(status, json=json, headers=headers)

    return respond


def make_run(
    run_id: int,
    title: str = "",
    message: str = "",
    status: str = "queued",
    conclusion: str | None = None,
) -> dict[str, Any]:
    return {
        "id": run_id,
        "html_url": f"https://github.com/acme/relay/actions/runs/{run_id}",
        "status": status,
        "conclusion": conclusion,
        "display_title": title,
        "name": "Validate Template",
        "head_commit": {"message": message},
        "run_started_at": "2026-01-01T11:58:00Z",
        "updated_at": "2026-01-01T11:59:30Z",
    }


def runs_page(*runs: dict[str, Any]) -> Callable[[httpx.Request], httpx.Response]:
    return reply(200, {"total_count": len(runs), "workflow_runs": list(runs)})


class FakeGitHub:
    """Routes requests by (method, path); a route's last response repeats."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Callable[[httpx.Request], httpx.Response]]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *responses: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, path)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "Not Found"})
        respond = queue.pop(0) if len(queue) > 1 else queue[0]
        return respond(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in RELAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings() -> Settings:
    """Hosted (non-local) settings: caller overrides are not allowed."""
    return Settings(
        _env_file=None,
        gh_workflow_token="test-token",
        github_repo_owner="acme",
        github_repo_name="relay",
        github_workflow_file="validation-template.yml",
        website_instance_id="instance-1",
    )


@pytest_asyncio.fixture
async def client(github, settings):
    workflow_client = GitHubWorkflowClient.from_settings(settings, transport=github.transport)
    yield workflow_client
    await workflow_client.close()
