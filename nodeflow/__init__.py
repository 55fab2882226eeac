"""nodeflow - workflow graph engine with typed pluggable nodes."""

from .engine import (
    Connection,
    ExecutionRecord,
    NodeData,
    NodeDefinition,
    Workflow,
    WorkflowRunner,
    register_all_nodes,
)
from .schemas import dump_workflow, load_workflow

__version__ = "0.1.0"

__all__ = [
    "Connection",
    "ExecutionRecord",
    "NodeData",
    "NodeDefinition",
    "Workflow",
    "WorkflowRunner",
    "register_all_nodes",
    "load_workflow",
    "dump_workflow",
]
