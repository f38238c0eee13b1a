"""Error taxonomy shared by the engine, the HTTP surface and the CLI.

Every error carries a stable ``code`` and an HTTP ``status_code`` so callers
can surface a structured response without leaking stack traces.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class LaunchGridError(Exception):
    """Base class for all expected LaunchGrid failures."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LaunchGridError):
    code = "VALIDATION_FAILED"
    status_code = 400


class AuthenticationError(LaunchGridError):
    code = "AUTH_REQUIRED"
    status_code = 401

    def __init__(self, message: str = "Authentication required", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(LaunchGridError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None) -> None:
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} {identifier} not found"
        super().__init__(message, details={"resource": resource, "id": identifier})


class ConflictError(LaunchGridError):
    """A concurrent writer won the race; re-reading and retrying is safe."""

    code = "CONFLICT"
    status_code = 409
    retryable = True


class BusinessRuleError(LaunchGridError):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


class WorkflowError(LaunchGridError):
    """The next step cannot run yet because its dependencies are not done."""

    code = "WORKFLOW_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str,
        *,
        workflow_id: Optional[str] = None,
        blocked_by: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if workflow_id is not None:
            details["workflow_id"] = workflow_id
        if blocked_by is not None:
            details["blocked_by"] = list(blocked_by)
        super().__init__(message, details=details, **kwargs)
        self.workflow_id = workflow_id
        self.blocked_by = list(blocked_by or [])


class StepExecutionError(LaunchGridError):
    code = "STEP_EXECUTION_ERROR"
    status_code = 500


class UnsupportedStepType(StepExecutionError):
    code = "UNSUPPORTED_STEP_TYPE"
    status_code = 422

    def __init__(self, step_type: Any) -> None:
        value = getattr(step_type, "value", step_type)
        super().__init__(
            f"Unsupported step type: {value}", details={"step_type": value}
        )


class NoTargets(StepExecutionError):
    """Terminal for the current run: upstream selection must be fixed first."""

    code = "NO_TARGETS"
    status_code = 422

    def __init__(self, message: str = "No targets to reply to.", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ProviderError(LaunchGridError):
    code = "AI_PROVIDER_ERROR"
    status_code = 502
    retryable = True


class GenerationFailed(ProviderError):
    """AI generation failed or timed out. Re-invoking execute is safe."""

    code = "GENERATION_FAILED"


class StoreError(LaunchGridError):
    code = "DATABASE_ERROR"
    status_code = 500


class ConfigurationError(LaunchGridError):
    code = "CONFIGURATION_ERROR"
    status_code = 500


def normalize_error(exc: BaseException) -> LaunchGridError:
    """Return ``exc`` as a :class:`LaunchGridError`, hiding unexpected details."""
    if isinstance(exc, LaunchGridError):
        return exc
    logger.error(f"Unexpected error: {type(exc).__name__}: {exc}")
    return LaunchGridError("An unexpected error occurred")


def format_error_response(exc: BaseException) -> Dict[str, Any]:
    """Build the ``{"success": false, "error": {...}}`` response body."""
    return {"success": False, "error": normalize_error(exc).to_dict()}
