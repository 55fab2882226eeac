"""Custom exceptions for the workflow engine."""

from typing import Any


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidDefinitionError(WorkflowEngineError):
    """Raised when a workflow definition breaks a structural invariant."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(
            message=message,
            details={"problems": problems} if problems else {},
        )
        self.problems = problems or []


class NodeNotFoundError(WorkflowEngineError):
    """Raised when a node is not present in a workflow."""

    def __init__(self, node_name: str) -> None:
        super().__init__(
            message=f'Node not found: "{node_name}"',
            details={"node_name": node_name},
        )
        self.node_name = node_name


class NoStartNodeError(WorkflowEngineError):
    """Raised when no eligible start node exists."""

    def __init__(self, message: str = "Workflow has no node to start from") -> None:
        super().__init__(message)


class UnknownTypeError(WorkflowEngineError):
    """Raised when a node type is not registered."""

    def __init__(self, node_type: str) -> None:
        super().__init__(
            message=f'Unknown node type: "{node_type}"',
            details={"node_type": node_type},
        )
        self.node_type = node_type


class DuplicateTypeError(WorkflowEngineError):
    """Raised when a node type name is registered twice."""

    def __init__(self, node_type: str) -> None:
        super().__init__(
            message=f'Node type already registered: "{node_type}"',
            details={"node_type": node_type},
        )
        self.node_type = node_type


class RegistryFrozenError(WorkflowEngineError):
    """Raised when registering into a registry after startup."""

    def __init__(self, node_type: str) -> None:
        super().__init__(
            message=f'Registry is frozen, cannot register "{node_type}"',
            details={"node_type": node_type},
        )
        self.node_type = node_type


class NodeError(WorkflowEngineError):
    """Failure attributed to a single node during a run."""

    retryable = False

    def __init__(self, node_name: str, message: str, description: str | None = None) -> None:
        super().__init__(
            message=message,
            details={"node_name": node_name, "description": description},
        )
        self.node_name = node_name
        self.description = description


class UnresolvedReferenceError(NodeError):
    """Raised when an expression references a node whose output is not available."""

    def __init__(self, node_name: str, referenced_node: str, reason: str) -> None:
        super().__init__(
            node_name,
            f'Cannot resolve reference to node "{referenced_node}": {reason}',
        )
        self.referenced_node = referenced_node


class ExpressionEvaluationError(NodeError):
    """Raised for malformed expressions or failures while evaluating them."""

    def __init__(self, node_name: str, expression: str, reason: str) -> None:
        super().__init__(
            node_name,
            f"Expression error: {reason}",
            description=f"Expression: {expression}",
        )
        self.expression = expression


class ParameterValidationError(NodeError):
    """Raised when resolved parameters fail node type validation."""

    def __init__(self, node_name: str, problems: list[str]) -> None:
        super().__init__(node_name, "Invalid parameters: " + "; ".join(problems))
        self.problems = problems


class StopWorkflowError(NodeError):
    """Raised by a node that deliberately stops the branch with an error."""


class NodeExecutionFailedError(NodeError):
    """Raised when a node's execute routine fails."""

    retryable = True

    def __init__(self, node_name: str, message: str, attempts: int = 1) -> None:
        suffix = f" (after {attempts} attempts)" if attempts > 1 else ""
        super().__init__(node_name, f"{message}{suffix}")
        self.attempts = attempts


class NodeTimeoutError(NodeExecutionFailedError):
    """Raised when a node exceeds its execution timeout."""

    def __init__(self, node_name: str, timeout: float) -> None:
        super().__init__(node_name, f"Node execution timed out after {timeout}s")
        self.timeout = timeout
