"""Error taxonomy for the pipeline.

Every domain failure subclasses PipelineError and carries the HTTP status
code the API surfaces for it:

  404  unresolvable configuration  (UnknownModelFamily, NoActiveBinding, AgentNotFound)
  404  unknown run                 (RunNotFound)
  400  malformed input             (InvalidInput)
  401  unauthenticated             (Unauthorized)
  429  rate limited                (RateLimited)
  500  provider / internal         (ProviderError, ProviderTimeout, MissingCredential,
                                    MalformedStepOutput)

RunAlreadyFinalized is a programming error and deliberately not a PipelineError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class PipelineError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        # Extra keys merged into the error response (runId, nodeRunId, ...)
        self.context: dict[str, Any] = {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.context}


# ---------------------------------------------------------------------------
# Configuration / resolution
# ---------------------------------------------------------------------------


class UnknownModelFamily(PipelineError):
    status_code = 404
    code = "unknown_model_family"

    def __init__(self, family_id: str) -> None:
        super().__init__(f"Unknown model family: {family_id}")
        self.family_id = family_id


class NoActiveBinding(PipelineError):
    status_code = 404
    code = "no_active_binding"

    def __init__(self, agent: str, environment: str) -> None:
        super().__init__(f"No active prompt binding for agent '{agent}' in '{environment}'")
        self.agent = agent
        self.environment = environment


class AgentNotFound(PipelineError):
    status_code = 404
    code = "agent_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"Agent not found: {name}")
        self.name = name


class RunNotFound(PipelineError):
    status_code = 404
    code = "run_not_found"

    def __init__(self, run_id: Any) -> None:
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class MissingCredential(PipelineError):
    code = "missing_credential"

    def __init__(self, endpoint: str) -> None:
        super().__init__(f"API key not configured for {endpoint}")
        self.endpoint = endpoint


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class ProviderError(PipelineError):
    code = "provider_error"

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"AI provider error ({status}): {body[:500]}")
        self.status = status
        self.body = body
        self.context = {"providerStatus": status}


class ProviderTimeout(PipelineError):
    code = "provider_timeout"

    def __init__(self, endpoint: str, timeout: float) -> None:
        super().__init__(f"AI provider did not respond within {timeout:.1f}s ({endpoint})")
        self.endpoint = endpoint
        self.timeout = timeout


class MalformedStepOutput(PipelineError):
    code = "malformed_step_output"

    def __init__(self, message: str, *, errors: list[Any] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


class RateLimited(PipelineError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, reset_at: datetime) -> None:
        super().__init__("Rate limit exceeded")
        self.reset_at = reset_at
        self.context = {"resetAt": reset_at.isoformat()}


class Unauthorized(PipelineError):
    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class InvalidInput(PipelineError):
    status_code = 400
    code = "invalid_input"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.context = {"field": field}


# ---------------------------------------------------------------------------
# Programming errors
# ---------------------------------------------------------------------------


class RunAlreadyFinalized(RuntimeError):
    """end_run() called on a run that already has a terminal status."""

    def __init__(self, run_id: Any, status: str) -> None:
        super().__init__(f"Run {run_id} already finalized with status '{status}'")
        self.run_id = run_id
        self.status = status
