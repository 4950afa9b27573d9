"""Error taxonomy shared across the event pipeline."""

from __future__ import annotations


class FlowRelayError(Exception):
    """Base error carrying a machine-readable ``error_type``."""

    error_type: str = "flowrelay_error"

    def __init__(self, message: str, error_type: str | None = None):
        if error_type is not None:
            self.error_type = error_type
        super().__init__(message)


class NotFoundError(FlowRelayError):
    error_type = "not_found"


class WorkflowNotFound(NotFoundError):
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")


class ExecutionNotFound(NotFoundError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} not found")


class ExecutionConflict(FlowRelayError):
    """Raised when completing an execution that already has a terminal status."""

    error_type = "conflict"

    def __init__(self, execution_id: str, status: str):
        self.execution_id = execution_id
        self.status = status
        super().__init__(f"Execution {execution_id} already completed with status {status}")


class BrokerUnavailable(FlowRelayError):
    error_type = "broker_unavailable"


class UnknownEventType(FlowRelayError):
    error_type = "unknown_event_type"

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unknown workflow event type: {event_type!r}")


class DispatchError(FlowRelayError):
    """A destination call failed."""

    error_type = "dispatch_error"


class RateLimited(DispatchError):
    """The remote service asked us to slow down."""

    error_type = "rate_limit"

    def __init__(self, message: str, retry_after: float | None = None):
        self.retry_after = retry_after
        super().__init__(message)


class RetriesExhausted(DispatchError):
    """Terminal: the retry budget was spent on rate-limit responses."""

    error_type = "retries_exhausted"

    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)
