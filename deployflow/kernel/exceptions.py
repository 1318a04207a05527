"""Core exception hierarchy for deployflow.

All deployflow exceptions inherit from DeployFlowError so callers can catch
the whole family at the control-surface boundary.
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class DeployFlowError(Exception):
    """Base exception for all deployflow errors."""

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigError(DeployFlowError):
    """Raised when a pipeline definition or config file is invalid.

    Non-retryable: surfaces before any run starts.

    Examples
    --------
    Example usage::

        raise ConfigError("stages[1].name", "duplicate stage name 'build'")
    """

    def __init__(self, field: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            field: Dotted path of the offending field
            reason: Explanation of what's wrong
        """
        super().__init__(f"Invalid configuration at '{field}': {reason}")
        self.field = field
        self.reason = reason


# ============================================================================
# Action Errors (retryable per stage policy)
# ============================================================================


class ActionError(DeployFlowError):
    """Raised by an action adapter when its external operation fails.

    The engine retries ActionErrors according to the stage's retry policy.
    """

    def __init__(self, message: str, *, output: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.output = output


class NotFoundError(ActionError):
    """The requested source reference does not exist."""

    def __init__(self, repository: str, revision: str) -> None:
        super().__init__(f"Revision '{revision}' not found in '{repository}'")
        self.repository = repository
        self.revision = revision


class BuildFailedError(ActionError):
    """A build command exited non-zero."""

    def __init__(self, command: str, exit_code: int, output: str) -> None:
        super().__init__(f"Command '{command}' exited with code {exit_code}", output=output)
        self.command = command
        self.exit_code = exit_code


class DeployRejectedError(ActionError):
    """The target environment rejected the manifest."""

    def __init__(self, environment: str, reason: str) -> None:
        super().__init__(f"Environment '{environment}' rejected deployment: {reason}")
        self.environment = environment
        self.reason = reason


class ActionTimeoutError(ActionError):
    """A single adapter attempt exceeded the stage timeout."""

    def __init__(self, stage_name: str, timeout: float) -> None:
        super().__init__(f"Stage '{stage_name}' timed out after {timeout}s")
        self.stage_name = stage_name
        self.timeout = timeout


class ActionAbortedError(ActionError):
    """An adapter stopped early because its run was cancelled."""

    pass


# ============================================================================
# Run Lifecycle Errors
# ============================================================================


class ApprovalTimeoutError(DeployFlowError):
    """No approval decision arrived within the configured window."""

    def __init__(self, stage_name: str, timeout: float) -> None:
        super().__init__(f"Approval '{stage_name}' received no decision within {timeout}s")
        self.stage_name = stage_name
        self.timeout = timeout


class ApprovalRejectedError(DeployFlowError):
    """An approver rejected the gated stage."""

    def __init__(self, stage_name: str, decided_by: str | None = None) -> None:
        who = f" by {decided_by}" if decided_by else ""
        super().__init__(f"Approval '{stage_name}' rejected{who}")
        self.stage_name = stage_name
        self.decided_by = decided_by


class RunCancelledError(DeployFlowError):
    """A run was cancelled by an operator."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run '{run_id}' cancelled by operator")
        self.run_id = run_id


class InvalidTransitionError(DeployFlowError):
    """Raised when a state transition or control call is not allowed."""

    pass


class ResourceNotFoundError(DeployFlowError):
    """Raised when a required resource cannot be found.

    Examples
    --------
    Example usage::

        raise ResourceNotFoundError("artifact", "web:1.2.0", ["web:1.1.0"])
    """

    def __init__(
        self, resource_type: str, resource_id: str, available: list[str] | None = None
    ) -> None:
        """Initialize resource not found error.

        Args
        ----
            resource_type: Type of resource (e.g., "run", "artifact", "revision")
            resource_id: Identifier of the missing resource
            available: List of available resources (optional)
        """
        msg = f"{resource_type.title()} '{resource_id}' not found"
        if available:
            msg += f". Available: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available


class RunNotFoundError(ResourceNotFoundError):
    """Unknown run id."""

    def __init__(self, run_id: str) -> None:
        super().__init__("run", run_id)


# ============================================================================
# Driver Errors
# ============================================================================


class CollaboratorError(DeployFlowError):
    """Failure reported by an external collaborator driver.

    Adapters translate these into the matching ActionError.
    """

    def __init__(self, collaborator: str, reason: str) -> None:
        super().__init__(f"{collaborator} failed: {reason}")
        self.collaborator = collaborator
        self.reason = reason


def describe_error(error: BaseException) -> str:
    """Render an error verbatim for storage on a StageResult or run."""
    return f"{type(error).__name__}: {error}"


__all__ = [
    "ActionAbortedError",
    "ActionError",
    "ActionTimeoutError",
    "ApprovalRejectedError",
    "ApprovalTimeoutError",
    "BuildFailedError",
    "CollaboratorError",
    "ConfigError",
    "DeployFlowError",
    "DeployRejectedError",
    "InvalidTransitionError",
    "NotFoundError",
    "ResourceNotFoundError",
    "RunCancelledError",
    "RunNotFoundError",
    "describe_error",
]
