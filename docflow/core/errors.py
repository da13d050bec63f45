"""
Domain-specific exception hierarchy for the orchestration engine.

All exceptions inherit from OrchestrationError so callers can catch
broadly or narrowly as needed.  Each exception carries structured
context (execution ID, node ID, details) for logging and API responses.

``retryable`` tells the job queue whether re-running the whole job could
change the outcome.  Structural problems never get better on retry.
"""

from __future__ import annotations


class OrchestrationError(Exception):
    """Base exception for all orchestration errors."""

    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        execution_id: str | None = None,
        node_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.execution_id = execution_id
        self.node_id = node_id
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialise for API error bodies."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "details": self.details,
        }


class ValidationError(OrchestrationError):
    """Malformed graph: dangling edge, unknown operation, no entry node."""

    retryable = False

    def __init__(self, message: str, *, problems: list[str] | None = None, **kwargs) -> None:
        self.problems = problems or []
        kwargs.setdefault("details", {"problems": self.problems})
        super().__init__(message, **kwargs)


class UnknownOperationError(ValidationError):
    """A node references an operation nobody registered."""

    def __init__(self, operation: str, **kwargs) -> None:
        self.operation = operation
        super().__init__(f"Unknown operation: {operation}", **kwargs)


class InactiveWorkflowError(ValidationError):
    """Runs can only be submitted for active workflows."""
    pass


class CycleError(OrchestrationError):
    """The graph contains a cycle."""

    retryable = False

    def __init__(self, message: str, *, cycle: list[str] | None = None, **kwargs) -> None:
        self.cycle = cycle or []
        kwargs.setdefault("details", {"cycle": self.cycle})
        super().__init__(message, **kwargs)


class PlanningError(CycleError):
    """No ready set while unscheduled nodes remain."""
    pass


class ConditionError(OrchestrationError):
    """An edge condition could not be evaluated."""

    retryable = False


class HandlerError(OrchestrationError):
    """An operation handler failed."""

    def __init__(self, message: str, *, operation: str | None = None, retryable: bool = True, **kwargs) -> None:
        self.operation = operation
        self.retryable = retryable
        super().__init__(message, **kwargs)


class WorkflowNotFoundError(OrchestrationError):
    """No workflow with the given id."""

    retryable = False


class ExecutionNotFoundError(OrchestrationError):
    """No execution record with the given id."""

    retryable = False


class QueueUnavailableError(OrchestrationError):
    """The job queue backend cannot be reached."""
    pass


class UnknownJobTypeError(OrchestrationError):
    """A job was submitted for a type with no registered handler."""

    retryable = False
