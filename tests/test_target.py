"""Tests for repository target resolution and the override policy."""

from datetime import timedelta

from workflow_relay.config import DEFAULT_REPOSITORY, ResolverConfig, Settings
from workflow_relay.orchestration.target import parse_owner_repo, resolve_target
from workflow_relay.schemas import RepoSource, TargetOverrides


def test_explicit_owner_and_repo_win():
    config = ResolverConfig(owner="acme", repo="relay", repository_slug="other/slug")
    target = resolve_target(config)

    assert (target.owner, target.repo) == ("acme", "relay")
    assert target.source is RepoSource.EXPLICIT_CONFIG
    assert target.source_tag == "explicit-config"


def test_slug_used_when_owner_or_repo_missing():
    target = resolve_target(ResolverConfig(owner="acme", repository_slug="octo/tools"))

    assert (target.owner, target.repo) == ("acme", "tools")
    assert target.source is RepoSource.INFERRED_FROM_SLUG


def test_fallback_repository_when_nothing_configured():
    target = resolve_target(ResolverConfig())

    assert target.slug == DEFAULT_REPOSITORY
    assert target.source is RepoSource.DEFAULT
    assert target.branch == "main"
    assert target.workflow_file == "validation-template.yml"


def test_malformed_slug_falls_through_to_default():
    target = resolve_target(ResolverConfig(repository_slug="no-slash"))
    assert target.source is RepoSource.DEFAULT


def test_overrides_applied_when_allowed():
    config = ResolverConfig(owner="acme", repo="relay", allow_override=True)
    target = resolve_target(
        config,
        TargetOverrides(owner="octo", repo="tools", branch="dev", workflow="build.yml"),
    )

    assert target.slug == "octo/tools"
    assert target.branch == "dev"
    assert target.workflow_file == "build.yml"
    assert target.source is RepoSource.QUERY_OVERRIDE
    assert target.overridden


def test_partial_override_gains_suffix():
    config = ResolverConfig(owner="acme", repo="relay", allow_override=True)
    target = resolve_target(config, TargetOverrides(branch="feature"))

    assert target.slug == "acme/relay"
    assert target.branch == "feature"
    assert target.source_tag == "explicit-config+override"


def test_overrides_ignored_when_policy_closed():
    config = ResolverConfig(owner="acme", repo="relay", allow_override=False)

    attacked = resolve_target(
        config,
        TargetOverrides(owner="attacker", repo="evil", branch="x", workflow="steal.yml"),
    )
    baseline = resolve_target(config, TargetOverrides())

    assert attacked == baseline
    assert attacked.slug == "acme/relay"
    assert not attacked.overridden


def test_override_policy_from_settings():
    hosted = Settings(_env_file=None, website_instance_id="instance-1")
    opted_in = Settings(_env_file=None, website_instance_id="instance-1", allow_repo_override="1")
    local = Settings(_env_file=None)

    assert not ResolverConfig.from_settings(hosted).allow_override
    assert ResolverConfig.from_settings(opted_in).allow_override
    assert ResolverConfig.from_settings(local).allow_override


def test_resolver_config_reads_environment(monkeypatch):
    monkeypatch.setenv("GITHUB_REPOSITORY", "octo/tools")
    monkeypatch.setenv("GITHUB_REPO_BRANCH", "release")
    monkeypatch.setenv("GITHUB_WORKFLOW_FILE", "ci.yml")

    target = resolve_target(ResolverConfig.from_settings(Settings(_env_file=None)))

    assert target.slug == "octo/tools"
    assert target.branch == "release"
    assert target.workflow_file == "ci.yml"
    assert target.source is RepoSource.INFERRED_FROM_SLUG


def test_parse_owner_repo():
    assert parse_owner_repo("acme/widgets") == ("acme", "widgets")
    assert parse_owner_repo("acme") is None
    assert parse_owner_repo("a/b/c") is None
    assert parse_owner_repo("/widgets") is None
    assert parse_owner_repo(None) is None


def test_lookback_windows_from_settings():
    settings = Settings(_env_file=None, dispatch_lookback_minutes=15, status_lookback_minutes=90)

    assert settings.dispatch_lookback == timedelta(minutes=15)
    assert settings.status_lookback == timedelta(minutes=90)
    assert Settings(_env_file=None, status_lookback_minutes=0).status_lookback is None
