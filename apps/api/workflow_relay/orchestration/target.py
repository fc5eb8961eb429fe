"""Repository target resolution.

Precedence, highest first:
1. explicit owner + repo configuration
2. an "owner/repo" slug configuration
3. the built-in fallback repository

Caller overrides replace the resolved values only when the config allows it.
"""

from __future__ import annotations

import logging

from workflow_relay.config import ResolverConfig
from workflow_relay.schemas import RepoSource, RepoTarget, TargetOverrides


logger = logging.getLogger(__name__)


def _split_slug(slug: str | None) -> tuple[str, str] | None:
    if not slug or "/" not in slug:
        return None
    owner, _, repo = slug.strip().partition("/")
    if not owner or not repo:
        return None
    return owner, repo


def resolve_target(
    config: ResolverConfig,
    overrides: TargetOverrides | None = None,
) -> RepoTarget:
    """Resolve the repository and workflow a request operates on.

    Overrides are used as-is; an unknown owner or repo surfaces later as a
    401/404 from GitHub rather than being validated here.
    """
    owner, repo = config.owner, config.repo
    source = RepoSource.EXPLICIT_CONFIG

    if not owner or not repo:
        from_slug = _split_slug(config.repository_slug)
        if from_slug:
            owner, repo = owner or from_slug[0], repo or from_slug[1]
            source = RepoSource.INFERRED_FROM_SLUG

    if not owner or not repo:
        fallback_owner, fallback_repo = _split_slug(config.fallback_repository) or ("", "")
        owner, repo = owner or fallback_owner, repo or fallback_repo
        source = RepoSource.DEFAULT

    branch = config.branch
    workflow_file = config.workflow_file
    overridden = False

    if config.allow_override and overrides is not None:
        if overrides.owner:
            owner, overridden = overrides.owner, True
        if overrides.repo:
            repo, overridden = overrides.repo, True
        if overrides.owner and overrides.repo:
            source = RepoSource.QUERY_OVERRIDE
        if overrides.branch:
            branch, overridden = overrides.branch, True
        if overrides.workflow:
            workflow_file, overridden = overrides.workflow, True

    target = RepoTarget(
        owner=owner,
        repo=repo,
        branch=branch,
        workflow_file=workflow_file,
        source=source,
        overridden=overridden,
    )
    logger.info(
        f"Targeting {target.slug} workflow '{target.workflow_file}' on "
        f"'{target.branch}' (source: {target.source_tag})"
    )
    return target


def parse_owner_repo(value: str | None) -> tuple[str, str] | None:
    """Parse an "owner/repo" string; None when malformed."""
    if not value or value.count("/") != 1:
        return None
    return _split_slug(value)
