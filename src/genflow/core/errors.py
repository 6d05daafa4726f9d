"""
Workflow Errors - Exception taxonomy for graph validation and execution.

Every error carries a machine-readable ``code`` so execution records and
CLI output can report failures without parsing messages.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base exception for workflow errors."""
    code: str = "WORKFLOW_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(WorkflowError):
    """The graph or a node input is structurally invalid."""
    code = "VALIDATION_ERROR"


class CycleError(ValidationError):
    """The graph contains a dependency cycle."""
    code = "CYCLE_DETECTED"


class IncompatibleConnectionError(ValidationError):
    """An edge connects handles whose data types do not match."""
    code = "INCOMPATIBLE_CONNECTION"


class WorkflowFormatError(ValidationError):
    """Serialized workflow could not be parsed."""
    code = "INVALID_WORKFLOW_FORMAT"


class ConfigError(WorkflowError):
    """A node type is referenced but was never registered."""
    code = "UNKNOWN_NODE_TYPE"


class InsufficientCreditsError(WorkflowError):
    """The user's balance cannot cover a reservation."""
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, Available: {available}"
        )
        self.required = required
        self.available = available

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)
