"""FastAPI routes for the workflow relay.

Endpoints:
- POST /validation-template  - Dispatch the validation workflow
- GET  /validation-status    - Status of a run by correlation token or run id
- POST /validation-cancel    - Cancel a run
- POST /validation-callback  - Completion notice from the validation workflow
- POST /action-trigger       - Dispatch any workflow and wait for its run
- POST /action-run-status    - Raw details of a known run
- POST /action-run-artifacts - Artifacts of a known run
- GET  /health               - Health check

Repository overrides (owner, repo, branch, workflow) are honored only when
the override policy is open; otherwise they are ignored.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from workflow_relay.api.request_context import get_request_id
from workflow_relay.config import ResolverConfig, Settings, get_settings
from workflow_relay.errors import (
    ConfigurationError,
    InputError,
    RunDiscoveryError,
    RunNotFoundError,
    UpstreamAuthError,
    UpstreamError,
)
from workflow_relay.github.base import WorkflowClient
from workflow_relay.github.client import GitHubWorkflowClient
from workflow_relay.orchestration.dispatch import (
    DispatchOrchestrator,
    build_validation_inputs,
    new_correlation_token,
)
from workflow_relay.orchestration.polling import SleepFn
from workflow_relay.orchestration.status import (
    StatusOptions,
    StatusOrchestrator,
    parse_run_id,
)
from workflow_relay.orchestration.target import parse_owner_repo, resolve_target
from workflow_relay.schemas import (
    ActionRunRequest,
    ActionTriggerRequest,
    CancelRequest,
    RepoTarget,
    TargetOverrides,
    ValidationCallbackRequest,
    ValidationTriggerRequest,
    ValidationTriggerResponse,
)


logger = logging.getLogger(__name__)
router = APIRouter()

URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


# =============================================================================
# Dependencies
# =============================================================================

async def get_workflow_client(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[WorkflowClient, None]:
    """Dependency yielding a GitHub client for the duration of a request."""
    client = GitHubWorkflowClient.from_settings(settings)
    try:
        yield client
    finally:
        await client.close()


def get_sleep() -> SleepFn:
    """Sleep used between discovery attempts."""
    return asyncio.sleep


def get_dispatch_orchestrator(
    client: WorkflowClient = Depends(get_workflow_client),
    settings: Settings = Depends(get_settings),
    sleep: SleepFn = Depends(get_sleep),
) -> DispatchOrchestrator:
    return DispatchOrchestrator.from_settings(client, settings, sleep=sleep)


def get_status_orchestrator(
    client: WorkflowClient = Depends(get_workflow_client),
    settings: Settings = Depends(get_settings),
) -> StatusOrchestrator:
    return StatusOrchestrator.from_settings(client, settings)


def get_target_overrides(
    owner: str | None = Query(default=None),
    repo: str | None = Query(default=None),
    branch: str | None = Query(default=None),
    workflow: str | None = Query(default=None),
) -> TargetOverrides:
    return TargetOverrides(owner=owner, repo=repo, branch=branch, workflow=workflow)


# =============================================================================
# Helpers
# =============================================================================

def error_response(
    status_code: int,
    error: str,
    request_id: str,
    error_type: str | None = None,
    **extra: Any,
) -> JSONResponse:
    """Error body shared by all endpoints."""
    body: dict[str, Any] = {"error": error}
    if error_type:
        body["errorType"] = error_type
    body.update({k: v for k, v in extra.items() if v is not None})
    body["requestId"] = request_id
    return JSONResponse(status_code=status_code, content=body)


def upstream_response(status_code: int, e: UpstreamError, request_id: str) -> JSONResponse:
    return error_response(
        status_code,
        e.message,
        request_id,
        e.error_type,
        details=e.body or None,
        hint=getattr(e, "hint", None),
    )


def _resolve_known_run(
    body: ActionRunRequest,
    settings: Settings,
    request_id: str,
) -> tuple[RepoTarget, int] | JSONResponse:
    """Validate ``{workflowOrgRep, workflowRunId}``; an error response on bad input."""
    owner_repo = parse_owner_repo(body.workflow_org_rep)
    if owner_repo is None:
        return error_response(
            400, "workflowOrgRep must be in 'owner/repo' format", request_id, "INVALID_PARAMETER"
        )
    try:
        run_id = parse_run_id(body.workflow_run_id)
    except InputError as e:
        return error_response(400, e.message, request_id, e.error_type)
    if run_id is None:
        return error_response(400, "workflowRunId is required", request_id, "MISSING_PARAMETER")

    target = resolve_target(
        ResolverConfig.from_settings(settings),
        TargetOverrides(owner=owner_repo[0], repo=owner_repo[1]),
    )
    return target, run_id


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true")


def _debug_block(settings: Settings, target: RepoTarget) -> dict[str, Any] | None:
    """Diagnostics only returned by local instances."""
    if not settings.is_local:
        return None
    return {
        "repo": target.slug,
        "repoSource": target.source_tag,
        "usedAuth": bool(settings.gh_workflow_token),
        "overrideEnabled": settings.override_allowed,
        "workflowFile": target.workflow_file,
        "branch": target.branch,
    }


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health(settings: Settings = Depends(get_settings)) -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# =============================================================================
# Dispatch Endpoints
# =============================================================================

@router.post(
    "/validation-template",
    response_model=ValidationTriggerResponse,
    response_model_exclude_none=True,
)
async def trigger_validation(
    body: ValidationTriggerRequest | None = None,
    overrides: TargetOverrides = Depends(get_target_overrides),
    settings: Settings = Depends(get_settings),
    orchestrator: DispatchOrchestrator = Depends(get_dispatch_orchestrator),
    request_id: str = Depends(get_request_id),
):
    """Dispatch the validation workflow for a repository.

    Returns the correlation token as ``runId`` right after GitHub accepts
    the dispatch. With ``waitForRun`` the discovery loop runs first and the
    GitHub run id is included.
    """
    body = body or ValidationTriggerRequest()
    target_repo_url = body.target_repo_url
    if not target_repo_url or not URL_PATTERN.match(target_repo_url):
        return error_response(
            400,
            "targetRepoUrl is required and must be a valid URL",
            request_id,
            InputError.error_type,
        )

    target = resolve_target(ResolverConfig.from_settings(settings), overrides)
    token = new_correlation_token()
    inputs = build_validation_inputs(
        target_repo_url,
        token,
        callback_url=body.callback_url,
        custom_validators=settings.validation_custom_validators,
    )
    logger.info(
        f"[{request_id}] validation dispatch {token} for {target_repo_url} "
        f"via {target.slug}/{target.workflow_file}@{target.branch}"
    )

    try:
        if not body.wait_for_run:
            await orchestrator.dispatch(target, inputs)
            return ValidationTriggerResponse(
                run_id=token, message="Workflow triggered", request_id=request_id
            )
        outcome = await orchestrator.trigger(target, inputs, token)
    except ConfigurationError as e:
        return error_response(
            500, "Server not configured (missing GH_WORKFLOW_TOKEN)", request_id, e.error_type
        )
    except RunNotFoundError as e:
        return error_response(
            404, e.message, request_id, e.error_type, runId=token, attempts=e.attempts
        )
    except UpstreamError as e:
        return upstream_response(502, e, request_id)

    return ValidationTriggerResponse(
        run_id=token,
        message="Workflow triggered",
        request_id=request_id,
        github_run_id=outcome.external_run_id,
        run_url=outcome.run.html_url or target.run_url(outcome.external_run_id),
        attempts=outcome.attempts_used,
    )


@router.post("/action-trigger")
async def action_trigger(
    body: ActionTriggerRequest | None = None,
    settings: Settings = Depends(get_settings),
    orchestrator: DispatchOrchestrator = Depends(get_dispatch_orchestrator),
    request_id: str = Depends(get_request_id),
):
    """Dispatch an arbitrary workflow and wait until its run is discovered.

    The correlation token is read from ``workflowInput[runIdInputProperty]``.
    """
    body = body or ActionTriggerRequest()
    owner_repo = parse_owner_repo(body.workflow_org_rep)
    if owner_repo is None:
        return error_response(
            400, "workflowOrgRep must be in 'owner/repo' format", request_id, "INVALID_PARAMETER"
        )
    if body.workflow_id is None or body.workflow_id == "":
        return error_response(400, "workflowId is required", request_id, "MISSING_PARAMETER")
    if not body.run_id_input_property:
        return error_response(400, "runIdInputProperty is required", request_id, "MISSING_PARAMETER")

    correlation_token = body.workflow_input.get(body.run_id_input_property)
    if not correlation_token:
        return error_response(
            400,
            f"Input property {body.run_id_input_property} is missing in workflowInput",
            request_id,
            "MISSING_INPUT_PROPERTY",
        )
    correlation_token = str(correlation_token)

    target = resolve_target(
        ResolverConfig.from_settings(settings),
        TargetOverrides(owner=owner_repo[0], repo=owner_repo[1], workflow=str(body.workflow_id)),
    )
    context = {
        "uniqueInputId": correlation_token,
        "ownerRepo": f"{target.slug}/actions/workflows/{target.workflow_file}/runs",
        "requestId": request_id,
    }

    try:
        outcome = await orchestrator.trigger(target, body.workflow_input, correlation_token)
    except ConfigurationError as e:
        return error_response(
            500, "Server not configured (missing GH_WORKFLOW_TOKEN)", request_id, e.error_type
        )
    except RunNotFoundError as e:
        return JSONResponse(
            status_code=404,
            content={
                "error": f"trigger-action: {e.message}",
                "errorType": e.error_type,
                "data": None,
                "context": {**context, "attempts": e.attempts},
            },
        )
    except UpstreamError as e:
        return upstream_response(502, e, request_id)

    return {
        "error": None,
        "data": {"runId": outcome.external_run_id, "attempts": outcome.attempts_used},
        "context": {**context, "run": outcome.run.raw},
    }


# =============================================================================
# Status Endpoints
# =============================================================================

@router.get("/validation-status")
async def validation_status(
    runId: str | None = Query(default=None),
    localRunId: str | None = Query(default=None),
    githubRunId: str | None = Query(default=None),
    githubRunUrl: str | None = Query(default=None),
    includeLogsUrl: str | None = Query(default=None),
    includeJobLogs: str | None = Query(default=None),
    overrides: TargetOverrides = Depends(get_target_overrides),
    settings: Settings = Depends(get_settings),
    orchestrator: StatusOrchestrator = Depends(get_status_orchestrator),
    request_id: str = Depends(get_request_id),
):
    """Status of a run; ``pending`` while it has not been discovered."""
    correlation_token = (runId or localRunId or "").strip()
    if not correlation_token:
        return error_response(
            400, "Missing required parameter: runId", request_id, "MISSING_PARAMETER"
        )

    try:
        known_run_id = parse_run_id(githubRunId)
    except InputError as e:
        return error_response(400, e.message, request_id, e.error_type)

    target = resolve_target(ResolverConfig.from_settings(settings), overrides)
    options = StatusOptions(
        include_logs_archive=_flag(includeLogsUrl),
        include_job_logs=_flag(includeJobLogs),
    )

    try:
        snapshot = await orchestrator.get_status(
            target,
            correlation_token,
            known_run_id=known_run_id,
            run_url=githubRunUrl,
            options=options,
        )
    except UpstreamAuthError as e:
        logger.warning(
            f"[{request_id}] credential failure reading {target.slug} run "
            f"{known_run_id or githubRunUrl or correlation_token}. {e.hint}"
        )
        return JSONResponse(
            status_code=502,
            content={
                key: value
                for key, value in {
                    "error": e.message,
                    "type": "github_api_error",
                    "errorType": e.error_type,
                    "errorCode": e.error_type,
                    "hint": e.hint,
                    "repo": target.slug,
                    "repoSource": target.source_tag,
                    "githubRunId": known_run_id,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "debug": _debug_block(settings, target),
                    "requestId": request_id,
                }.items()
                if value is not None
            },
        )
    except UpstreamError as e:
        return upstream_response(500, e, request_id)

    debug = _debug_block(settings, target)
    if debug is not None:
        snapshot.debug = debug
    return snapshot.model_dump(by_alias=True, exclude_unset=True)


@router.post("/action-run-status")
async def action_run_status(
    body: ActionRunRequest | None = None,
    settings: Settings = Depends(get_settings),
    orchestrator: StatusOrchestrator = Depends(get_status_orchestrator),
    request_id: str = Depends(get_request_id),
):
    """Raw GitHub details of a run whose id is already known."""
    body = body or ActionRunRequest()
    resolved = _resolve_known_run(body, settings, request_id)
    if isinstance(resolved, JSONResponse):
        return resolved
    target, run_id = resolved

    try:
        run = await orchestrator.describe_run(target, run_id)
    except ConfigurationError as e:
        return error_response(
            500, "Server not configured (missing GH_WORKFLOW_TOKEN)", request_id, e.error_type
        )
    except UpstreamAuthError as e:
        return upstream_response(502, e, request_id)
    except UpstreamError as e:
        return upstream_response(500, e, request_id)

    return {
        "error": None,
        "data": run.raw,
        "context": {
            "workflowOrgRep": body.workflow_org_rep,
            "workflowRunId": body.workflow_run_id,
            "requestId": request_id,
        },
    }


@router.post("/action-run-artifacts")
async def action_run_artifacts(
    body: ActionRunRequest | None = None,
    settings: Settings = Depends(get_settings),
    orchestrator: StatusOrchestrator = Depends(get_status_orchestrator),
    request_id: str = Depends(get_request_id),
):
    """Artifacts uploaded by a run whose id is already known."""
    body = body or ActionRunRequest()
    resolved = _resolve_known_run(body, settings, request_id)
    if isinstance(resolved, JSONResponse):
        return resolved
    target, run_id = resolved

    try:
        artifacts = await orchestrator.list_run_artifacts(target, run_id)
    except ConfigurationError as e:
        return error_response(
            500, "Server not configured (missing GH_WORKFLOW_TOKEN)", request_id, e.error_type
        )
    except UpstreamAuthError as e:
        return upstream_response(502, e, request_id)
    except UpstreamError as e:
        return upstream_response(500, e, request_id)

    return {
        "error": None,
        "data": artifacts,
        "context": {
            "ownerRepo": target.slug,
            "workflowRunId": body.workflow_run_id,
            "artifactCount": artifacts.get("total_count") or 0,
            "requestId": request_id,
        },
    }


# =============================================================================
# Cancellation
# =============================================================================

@router.post("/validation-cancel")
async def validation_cancel(
    body: CancelRequest | None = None,
    runId: str | None = Query(default=None),
    localRunId: str | None = Query(default=None),
    githubRunId: str | None = Query(default=None),
    githubRunUrl: str | None = Query(default=None),
    overrides: TargetOverrides = Depends(get_target_overrides),
    settings: Settings = Depends(get_settings),
    orchestrator: StatusOrchestrator = Depends(get_status_orchestrator),
    request_id: str = Depends(get_request_id),
):
    """Request cancellation of a run.

    The run id is taken from ``githubRunId``, then ``githubRunUrl``, then a
    single discovery attempt using ``runId``.
    """
    body = body or CancelRequest()
    correlation_token = runId or body.run_id or localRunId or body.local_run_id or None
    run_url = githubRunUrl or body.github_run_url or None
    target = resolve_target(ResolverConfig.from_settings(settings), overrides)

    try:
        known_run_id = parse_run_id(githubRunId or body.github_run_id)
        result = await orchestrator.cancel(
            target,
            correlation_token=correlation_token,
            known_run_id=known_run_id,
            run_url=run_url,
        )
    except RunDiscoveryError as e:
        debug = None
        if settings.override_allowed:
            debug = {
                "owner": target.owner,
                "repo": target.repo,
                "branch": target.branch,
                "workflowFile": target.workflow_file,
                "localRunId": correlation_token,
            }
        return error_response(400, e.message, request_id, e.error_type, debug=debug)
    except InputError as e:
        return error_response(
            400,
            e.message,
            request_id,
            e.error_type,
            hint="Call validation-status first to resolve githubRunId then retry.",
        )
    except ConfigurationError as e:
        return error_response(
            401,
            e.message,
            request_id,
            e.error_type,
            hint="Set GH_WORKFLOW_TOKEN with workflow:write scope.",
        )
    except UpstreamAuthError as e:
        return error_response(
            401,
            f"Missing or invalid GH_WORKFLOW_TOKEN: {e.message}",
            request_id,
            e.error_type,
            details=e.body or None,
            suggestion="Verify GH_WORKFLOW_TOKEN scopes and SSO authorization.",
        )
    except UpstreamError as e:
        return upstream_response(500, e, request_id)

    return {**result.model_dump(by_alias=True), "requestId": request_id}


# =============================================================================
# Callback
# =============================================================================

RUN_ID_COOKIE = "relay_run_id"


@router.post("/validation-callback")
async def validation_callback(
    response: Response,
    body: ValidationCallbackRequest | None = None,
    overrides: TargetOverrides = Depends(get_target_overrides),
    settings: Settings = Depends(get_settings),
    request_id: str = Depends(get_request_id),
):
    """Acknowledge a run's completion notice.

    Stateless: the notice is logged and the correlation token is handed back
    in a cookie so a browser can resume polling ``validation-status``.
    """
    body = body or ValidationCallbackRequest()
    if not body.run_id or body.github_run_id in (None, ""):
        return error_response(
            400, "runId and githubRunId are required", request_id, "MISSING_PARAMETER"
        )
    try:
        github_run_id = parse_run_id(body.github_run_id)
    except InputError as e:
        return error_response(400, e.message, request_id, e.error_type)

    target = resolve_target(ResolverConfig.from_settings(settings), overrides)
    logger.info(
        f"[{request_id}] callback for {body.run_id}: run {github_run_id} "
        f"on {target.slug} reported {body.status or 'no status'}"
    )
    response.set_cookie(RUN_ID_COOKIE, body.run_id, max_age=86400, path="/", samesite="lax")
    return {
        "message": "Mapping updated",
        "runId": body.run_id,
        "githubRunId": github_run_id,
        "githubRunUrl": target.run_url(github_run_id),
        "requestId": request_id,
    }
