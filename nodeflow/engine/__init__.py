"""Core workflow engine components."""

from .types import (
    NodeConnectionType,
    NodeData,
    NodeDefinition,
    Connection,
    NodeExecutionResult,
    NodeStatus,
    RunStatus,
    SkipReason,
    ExecutionContext,
    ExecutionError,
    ExecutionRecord,
    ExecutionRequest,
    NodeRunRecord,
    ExecutionEvent,
    ExecutionEventType,
)
from .workflow import Workflow
from .graph import (
    get_parent_nodes,
    get_child_nodes,
    get_highest_node,
    get_parent_main_input_node,
    get_start_node,
    find_cycle,
    topological_sort,
    rename_node,
)
from .expression_engine import ExpressionEngine, ExpressionContext, expression_engine
from .input_mapping import apply_input_mapping
from .rate_limiter import RateLimiter, RateLimiterRegistry, rate_limiters
from .node_registry import NodeRegistry, node_registry, register_all_nodes
from .workflow_runner import WorkflowRunner

__all__ = [
    # Types
    "NodeConnectionType",
    "NodeData",
    "NodeDefinition",
    "Connection",
    "NodeExecutionResult",
    "NodeStatus",
    "RunStatus",
    "SkipReason",
    "ExecutionContext",
    "ExecutionError",
    "ExecutionRecord",
    "ExecutionRequest",
    "NodeRunRecord",
    "ExecutionEvent",
    "ExecutionEventType",
    # Graph
    "Workflow",
    "get_parent_nodes",
    "get_child_nodes",
    "get_highest_node",
    "get_parent_main_input_node",
    "get_start_node",
    "find_cycle",
    "topological_sort",
    "rename_node",
    # Expressions
    "ExpressionEngine",
    "ExpressionContext",
    "expression_engine",
    "apply_input_mapping",
    # Execution
    "RateLimiter",
    "RateLimiterRegistry",
    "rate_limiters",
    "NodeRegistry",
    "node_registry",
    "register_all_nodes",
    "WorkflowRunner",
]
