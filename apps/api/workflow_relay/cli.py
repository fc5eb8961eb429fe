"""CLI entrypoint (Typer).

Drives the same orchestrators as the HTTP API:
- `workflow-relay trigger <repo-url>`  dispatch the validation workflow
- `workflow-relay status <run-id>`     report a run's status
- `workflow-relay cancel <run-id>`     cancel a run
- `workflow-relay serve`               run the API server
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, NoReturn, Optional

import typer

from workflow_relay.config import ResolverConfig, Settings, get_settings
from workflow_relay.errors import WorkflowRelayError
from workflow_relay.github.client import GitHubWorkflowClient
from workflow_relay.orchestration.dispatch import (
    DispatchOrchestrator,
    build_validation_inputs,
    new_correlation_token,
)
from workflow_relay.orchestration.status import StatusOptions, StatusOrchestrator, parse_run_id
from workflow_relay.orchestration.target import resolve_target
from workflow_relay.schemas import TargetOverrides

app = typer.Typer(help="Workflow Relay CLI: dispatch, track and cancel workflow runs.")


def _echo(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _fail(e: WorkflowRelayError) -> NoReturn:
    _echo({"error": e.message, "errorType": e.error_type})
    raise typer.Exit(code=1)


def _overrides(
    owner: str | None,
    repo: str | None,
    branch: str | None,
    workflow: str | None,
) -> TargetOverrides:
    return TargetOverrides(owner=owner, repo=repo, branch=branch, workflow=workflow)


async def _trigger(
    settings: Settings,
    target_repo_url: str,
    callback_url: str | None,
    wait: bool,
    overrides: TargetOverrides,
) -> dict[str, Any]:
    target = resolve_target(ResolverConfig.from_settings(settings), overrides)
    client = GitHubWorkflowClient.from_settings(settings)
    orchestrator = DispatchOrchestrator.from_settings(client, settings)
    token = new_correlation_token()
    inputs = build_validation_inputs(
        target_repo_url,
        token,
        callback_url=callback_url,
        custom_validators=settings.validation_custom_validators,
    )
    try:
        if not wait:
            await orchestrator.dispatch(target, inputs)
            return {"runId": token, "message": "Workflow triggered"}
        outcome = await orchestrator.trigger(target, inputs, token)
        return {
            "runId": token,
            "message": "Workflow triggered",
            "githubRunId": outcome.external_run_id,
            "runUrl": outcome.run.html_url,
            "attempts": outcome.attempts_used,
        }
    finally:
        await client.close()


async def _status(
    settings: Settings,
    run_id: str,
    github_run_id: int | None,
    github_run_url: str | None,
    options: StatusOptions,
    overrides: TargetOverrides,
) -> dict[str, Any]:
    target = resolve_target(ResolverConfig.from_settings(settings), overrides)
    client = GitHubWorkflowClient.from_settings(settings)
    orchestrator = StatusOrchestrator.from_settings(client, settings)
    try:
        snapshot = await orchestrator.get_status(
            target, run_id, known_run_id=github_run_id, run_url=github_run_url, options=options
        )
    finally:
        await client.close()
    return snapshot.model_dump(by_alias=True, exclude_unset=True)


async def _cancel(
    settings: Settings,
    run_id: str | None,
    github_run_id: int | None,
    github_run_url: str | None,
    overrides: TargetOverrides,
) -> dict[str, Any]:
    target = resolve_target(ResolverConfig.from_settings(settings), overrides)
    client = GitHubWorkflowClient.from_settings(settings)
    orchestrator = StatusOrchestrator.from_settings(client, settings)
    try:
        result = await orchestrator.cancel(
            target, correlation_token=run_id, known_run_id=github_run_id, run_url=github_run_url
        )
    finally:
        await client.close()
    return result.model_dump(by_alias=True)


@app.command()
def trigger(
    target_repo_url: str,
    callback_url: Optional[str] = typer.Option(None, "--callback-url"),
    wait: bool = typer.Option(False, "--wait", help="Poll until the run is discovered"),
    owner: Optional[str] = typer.Option(None, "--owner"),
    repo: Optional[str] = typer.Option(None, "--repo"),
    branch: Optional[str] = typer.Option(None, "--branch"),
    workflow: Optional[str] = typer.Option(None, "--workflow"),
):
    """Dispatch the validation workflow for a repository."""
    try:
        payload = asyncio.run(
            _trigger(
                get_settings(),
                target_repo_url,
                callback_url,
                wait,
                _overrides(owner, repo, branch, workflow),
            )
        )
    except WorkflowRelayError as e:
        _fail(e)
    _echo(payload)


@app.command()
def status(
    run_id: str,
    github_run_id: Optional[str] = typer.Option(None, "--github-run-id"),
    github_run_url: Optional[str] = typer.Option(None, "--github-run-url"),
    logs: bool = typer.Option(False, "--logs", help="Include the log archive URL"),
    job_logs: bool = typer.Option(False, "--job-logs", help="Include per-job log URLs"),
    owner: Optional[str] = typer.Option(None, "--owner"),
    repo: Optional[str] = typer.Option(None, "--repo"),
    branch: Optional[str] = typer.Option(None, "--branch"),
    workflow: Optional[str] = typer.Option(None, "--workflow"),
):
    """Report the status of a run by correlation token."""
    try:
        payload = asyncio.run(
            _status(
                get_settings(),
                run_id,
                parse_run_id(github_run_id),
                github_run_url,
                StatusOptions(include_logs_archive=logs, include_job_logs=job_logs),
                _overrides(owner, repo, branch, workflow),
            )
        )
    except WorkflowRelayError as e:
        _fail(e)
    _echo(payload)


@app.command()
def cancel(
    run_id: Optional[str] = typer.Argument(None),
    github_run_id: Optional[str] = typer.Option(None, "--github-run-id"),
    github_run_url: Optional[str] = typer.Option(None, "--github-run-url"),
    owner: Optional[str] = typer.Option(None, "--owner"),
    repo: Optional[str] = typer.Option(None, "--repo"),
    branch: Optional[str] = typer.Option(None, "--branch"),
    workflow: Optional[str] = typer.Option(None, "--workflow"),
):
    """Cancel a run by correlation token, run id or run URL."""
    try:
        payload = asyncio.run(
            _cancel(
                get_settings(),
                run_id,
                parse_run_id(github_run_id),
                github_run_url,
                _overrides(owner, repo, branch, workflow),
            )
        )
    except WorkflowRelayError as e:
        _fail(e)
    _echo(payload)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "workflow_relay.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    app()
