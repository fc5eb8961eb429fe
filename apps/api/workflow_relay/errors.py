"""Error taxonomy shared by the GitHub client, orchestrators and API layer.

Upstream failures are classified once, inside the client. The orchestrators
let them through untouched and the API layer only decides which HTTP status
each one maps to for a given operation.
"""

from __future__ import annotations


# Raw upstream bodies are truncated to this many characters in errors
MAX_DETAIL_CHARS = 1000

CREDENTIAL_HINT = (
    "Private repo access requires a valid GH_WORKFLOW_TOKEN with repo/workflow "
    "scopes (or fine-grained: Actions Read, Contents Read, Metadata Read) and "
    "SAML SSO authorization if enforced."
)


class WorkflowRelayError(Exception):
    """Base class for all relay errors."""

    error_type = "WORKFLOW_RELAY_ERROR"

    def __init__(self, message: str, *, error_type: str | None = None):
        super().__init__(message)
        self.message = message
        if error_type:
            self.error_type = error_type


class InputError(WorkflowRelayError):
    """Malformed or missing caller parameters."""

    error_type = "INVALID_INPUT"


class ConfigurationError(WorkflowRelayError):
    """Server-side configuration is missing, e.g. no workflow token."""

    error_type = "SERVER_NOT_CONFIGURED"


class UpstreamError(WorkflowRelayError):
    """A GitHub API call did not succeed."""

    error_type = "GITHUB_API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = (body or "")[:MAX_DETAIL_CHARS]


class UpstreamAuthError(UpstreamError):
    """GitHub rejected the credential (401, or 403 without a rate-limit signature)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        hint: str = CREDENTIAL_HINT,
    ):
        super().__init__(message, status_code=status_code, body=body)
        self.hint = hint


class UpstreamTransportError(UpstreamError):
    """Any other non-2xx response, timeout or connection failure."""


class UpstreamNotFoundError(UpstreamTransportError):
    """GitHub answered 404 for the run, workflow or repository."""


class RunNotFoundError(WorkflowRelayError):
    """The dispatched run did not become visible within the polling budget."""

    error_type = "RUN_NOT_FOUND"

    def __init__(self, correlation_token: str, attempts: int):
        super().__init__(
            f"Could not find the triggered workflow run after {attempts} attempts"
        )
        self.correlation_token = correlation_token
        self.attempts = attempts


class RunDiscoveryError(WorkflowRelayError):
    """No external run id could be resolved for a cancel request."""

    error_type = "RUN_ID_UNRESOLVED"
