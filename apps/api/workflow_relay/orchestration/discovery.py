"""Run discovery by correlation token.

Manual dispatch has no native slot for a caller id, so the token travels in
the workflow inputs and is expected to show up in the run title or in the
triggering commit message. Matching is therefore a heuristic.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Iterable

from workflow_relay.schemas import DiscoveredRun


RUN_URL_PATTERN = re.compile(r"/actions/runs/(\d+)")


class Matcher(ABC):
    """Decides whether a run belongs to a correlation token."""

    @abstractmethod
    def matches(self, run: DiscoveredRun, token: str) -> bool:
        ...


class SubstringMatcher(Matcher):
    """Case-sensitive containment in the run title or commit message."""

    def matches(self, run: DiscoveredRun, token: str) -> bool:
        if not token:
            return False
        return token in run.title or token in run.commit_message


def match(
    candidates: Iterable[DiscoveredRun],
    token: str,
    matcher: Matcher | None = None,
) -> DiscoveredRun | None:
    """Return the first candidate matching ``token``, in the order given.

    Candidates come newest-first from the API, so ties resolve to the most
    recent run.
    """
    matcher = matcher or SubstringMatcher()
    for run in candidates:
        if matcher.matches(run, token):
            return run
    return None


def parse_run_id_from_url(url: str | None) -> int | None:
    """Extract the run id from a ``.../actions/runs/<id>`` URL."""
    if not url:
        return None
    found = RUN_URL_PATTERN.search(url)
    return int(found.group(1)) if found else None
