"""Core module for the workflow engine - config, exceptions and logging."""

from .config import settings, Settings, RateLimitSettings
from .exceptions import (
    WorkflowEngineError,
    InvalidDefinitionError,
    NodeNotFoundError,
    NoStartNodeError,
    UnknownTypeError,
    DuplicateTypeError,
    RegistryFrozenError,
    NodeError,
    UnresolvedReferenceError,
    ExpressionEvaluationError,
    ParameterValidationError,
    StopWorkflowError,
    NodeExecutionFailedError,
    NodeTimeoutError,
)
from .logging import configure_logging

__all__ = [
    # Config
    "settings",
    "Settings",
    "RateLimitSettings",
    "configure_logging",
    # Exceptions
    "WorkflowEngineError",
    "InvalidDefinitionError",
    "NodeNotFoundError",
    "NoStartNodeError",
    "UnknownTypeError",
    "DuplicateTypeError",
    "RegistryFrozenError",
    "NodeError",
    "UnresolvedReferenceError",
    "ExpressionEvaluationError",
    "ParameterValidationError",
    "StopWorkflowError",
    "NodeExecutionFailedError",
    "NodeTimeoutError",
]
