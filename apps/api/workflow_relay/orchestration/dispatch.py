"""Dispatch orchestration.

The dispatch call returns no run id. After GitHub accepts it, the run is
found by polling the recent runs of the workflow for one carrying the
correlation token:

attempt 1..5 -> wait 5s * attempt -> list runs since (now - lookback) -> match

Backoff is linear because the delay being waited out is GitHub's fixed
propagation lag, not contention.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from workflow_relay.config import Settings
from workflow_relay.errors import ConfigurationError, RunNotFoundError, UpstreamError
from workflow_relay.github.base import WorkflowClient
from workflow_relay.orchestration.discovery import Matcher, SubstringMatcher, match
from workflow_relay.orchestration.polling import (
    PollSchedule,
    SleepFn,
    linear_backoff,
    poll_until,
)
from workflow_relay.schemas import DiscoveredRun, DispatchOutcome, RepoTarget


logger = logging.getLogger(__name__)

DEFAULT_DISPATCH_LOOKBACK = timedelta(minutes=10)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_correlation_token() -> str:
    """Generate a fresh correlation token for a dispatch."""
    return str(uuid4())


def build_validation_inputs(
    target_repo_url: str,
    correlation_token: str,
    callback_url: str | None = None,
    custom_validators: str = "azd-up,azd-down",
) -> dict[str, Any]:
    """Workflow inputs for the template validation workflow."""
    return {
        "target_validate_template_url": target_repo_url,
        "callback_url": callback_url or "",
        "run_id": correlation_token,
        "customValidators": custom_validators,
    }


class DispatchOrchestrator:
    """Dispatches workflow runs and waits for them to become discoverable."""

    def __init__(
        self,
        client: WorkflowClient,
        schedule: PollSchedule | None = None,
        lookback: timedelta = DEFAULT_DISPATCH_LOOKBACK,
        matcher: Matcher | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.schedule = schedule or PollSchedule()
        self.lookback = lookback
        self.matcher = matcher or SubstringMatcher()
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        client: WorkflowClient,
        settings: Settings,
        sleep: SleepFn = asyncio.sleep,
    ) -> "DispatchOrchestrator":
        return cls(
            client,
            schedule=PollSchedule(
                max_attempts=settings.dispatch_max_attempts,
                backoff=linear_backoff(settings.dispatch_backoff_seconds),
            ),
            lookback=settings.dispatch_lookback,
            sleep=sleep,
        )

    async def dispatch(self, target: RepoTarget, inputs: dict[str, Any]) -> None:
        """Fire the workflow once. Never retried, to avoid double-triggering."""
        if not self.client.has_credentials:
            raise ConfigurationError("Missing GH_WORKFLOW_TOKEN")
        await self.client.dispatch(target, inputs)

    async def trigger(
        self,
        target: RepoTarget,
        inputs: dict[str, Any],
        correlation_token: str,
        lookback: timedelta | None = None,
    ) -> DispatchOutcome:
        """Dispatch the workflow, then poll until its run is discovered.

        Args:
            target: Repository, branch and workflow to run
            inputs: Workflow inputs; must already carry ``correlation_token``
            correlation_token: Token expected in the run title or commit message
            lookback: How far back listed runs may have been created

        Returns:
            DispatchOutcome with the run id and the attempt that found it

        Raises:
            UpstreamError: The dispatch itself was rejected
            RunNotFoundError: No matching run appeared within the schedule
        """
        since = self._clock() - (lookback or self.lookback)

        await self.dispatch(target, inputs)

        async def check(attempt: int) -> DiscoveredRun | None:
            try:
                runs = await self.client.list_recent_runs(target, since=since)
            except UpstreamError as e:
                logger.warning(
                    f"[{correlation_token}] listing runs failed on attempt {attempt}: {e.message}"
                )
                return None
            return match(runs, correlation_token, self.matcher)

        result = await poll_until(
            check,
            self.schedule,
            sleep=self._sleep,
            label=f"[{correlation_token}] waiting for run registration",
        )

        if not result.found:
            logger.warning(
                f"[{correlation_token}] no run found on {target.slug} after {result.attempts} attempts"
            )
            raise RunNotFoundError(correlation_token, result.attempts)

        run = result.value
        logger.info(
            f"[{correlation_token}] discovered run {run.external_run_id} on attempt {result.attempts}"
        )
        return DispatchOutcome(
            correlation_token=correlation_token,
            external_run_id=run.external_run_id,
            attempts_used=result.attempts,
            run=run,
        )
