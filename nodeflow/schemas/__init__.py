"""Pydantic schemas for persisted workflows and execution records."""

from .workflow import (
    NodeSchema,
    ConnectionSchema,
    NodeDataSchema,
    WorkflowDefinitionSchema,
    load_workflow,
    dump_workflow,
)
from .execution import (
    ExecutionErrorSchema,
    NodeRunSchema,
    ExecutionRecordSchema,
    ExecutionListItem,
)

__all__ = [
    # Workflow schemas
    "NodeSchema",
    "ConnectionSchema",
    "NodeDataSchema",
    "WorkflowDefinitionSchema",
    "load_workflow",
    "dump_workflow",
    # Execution schemas
    "ExecutionErrorSchema",
    "NodeRunSchema",
    "ExecutionRecordSchema",
    "ExecutionListItem",
]
