"""Core type definitions for the workflow engine."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Literal

if TYPE_CHECKING:
    from ..nodes.base import BaseNode
    from .expression_engine import ExpressionContext
    from .rate_limiter import RateLimiterRegistry
    from .workflow import Workflow


ExecutionMode = Literal["manual", "trigger", "webhook", "cron"]


class NodeConnectionType:
    """Connection types and traversal filters."""

    MAIN = "main"
    ERROR = "error"

    # Traversal filters, never stored on a connection
    ALL = "ALL"
    ALL_NON_MAIN = "ALL_NON_MAIN"

    # Types that carry items between nodes and order execution
    DISPATCH = (MAIN, ERROR)


@dataclass
class NodeData:
    """Data item passed between nodes."""

    json: dict[str, Any]
    binary: dict[str, bytes] | None = None


@dataclass
class NodeExecutionResult:
    """
    Multi-output result from node execution.

    outputs[i] holds the items emitted on output port i. An empty list or
    None means the branch produced nothing.
    """

    outputs: list[list[NodeData] | None]


# --- Workflow Schema Types ---


@dataclass
class NodeDefinition:
    """Definition of a node in a workflow."""

    name: str
    type: str
    parameters: dict[str, Any] = field(default_factory=dict)
    type_version: int = 1
    display_name: str | None = None
    position: dict[str, float] | None = None
    disabled: bool = False
    retry_on_fail: int = 0
    retry_delay: int | None = None
    continue_on_fail: bool = False
    timeout: float | None = None
    input_mapping: str | dict[str, Any] | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Connection:
    """Directed edge from an output port of one node to an input port of another."""

    source_node: str
    target_node: str
    type: str = NodeConnectionType.MAIN
    source_index: int = 0
    target_index: int = 0


# --- Execution State Types ---


class NodeStatus(str, Enum):
    """Lifecycle of one node within one run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED)


class RunStatus(str, Enum):
    """Lifecycle of one workflow run."""

    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELED = "canceled"


class SkipReason(str, Enum):
    """Why a node was skipped."""

    DISABLED = "disabled"
    UPSTREAM_FAILED = "upstream_failed"
    BRANCH_NOT_TAKEN = "branch_not_taken"
    CANCELED = "canceled"


@dataclass
class ExecutionError:
    """Error that occurred during execution."""

    node_name: str
    error: str
    timestamp: datetime
    error_type: str = "NodeExecutionFailedError"
    description: str | None = None


@dataclass
class NodeRunRecord:
    """Per-node outcome of a run."""

    node_name: str
    node_type: str
    status: NodeStatus = NodeStatus.PENDING
    outputs: list[list[NodeData]] | None = None
    error: ExecutionError | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    retry_count: int = 0
    skip_reason: SkipReason | None = None
    source: Literal["executed", "pinned", "passthrough"] | None = None

    @property
    def main_output(self) -> list[NodeData]:
        """Items emitted on output port 0."""
        if not self.outputs:
            return []
        return self.outputs[0]


@dataclass
class ExecutionRecord:
    """Execution record for history."""

    id: str
    workflow_id: str | None
    workflow_name: str
    mode: ExecutionMode
    start_time: datetime
    status: RunStatus = RunStatus.PENDING
    end_time: datetime | None = None
    start_node: str | None = None
    destination_node: str | None = None
    user_id: str | None = None
    nodes: dict[str, NodeRunRecord] = field(default_factory=dict)
    errors: list[ExecutionError] = field(default_factory=list)
    static_data: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.status == RunStatus.FINISHED

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED

    def node_output(self, node_name: str) -> list[NodeData]:
        """Main output of a node, empty when it produced nothing."""
        run = self.nodes.get(node_name)
        return run.main_output if run else []


@dataclass
class ExecutionRequest:
    """Request to run a workflow."""

    workflow: Workflow
    start_node: str | None = None
    destination_node: str | None = None
    input_data: list[NodeData] | None = None
    mode: ExecutionMode = "manual"
    user_id: str | None = None


@dataclass
class ExecutionContext:
    """Context for a workflow execution."""

    workflow: Workflow
    execution_id: str
    start_time: datetime
    mode: ExecutionMode
    record: ExecutionRecord

    # Items delivered to each node, keyed by input port
    node_inputs: dict[str, dict[int, list[NodeData]]] = field(default_factory=dict)

    # Run-level cancellation signal
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    # Shared HTTP client for performance
    http_client: Any | None = None  # httpx.AsyncClient

    # Per node-type call budgets shared with other runs
    rate_limiters: RateLimiterRegistry | None = None

    # Items the caller handed to the run, None when nothing was supplied
    trigger_data: list[NodeData] | None = None

    @property
    def canceled(self) -> bool:
        return self.cancel_event.is_set()

    async def acquire_rate_limit(self, node: BaseNode) -> None:
        """Take one call slot from the node type's limiter, waiting if needed."""
        if self.rate_limiters is None:
            return
        limiter = self.rate_limiters.for_node(node)
        if limiter is not None:
            await limiter.acquire()

    def get_static_data(self, node_name: str, scope: Literal["global", "node"] = "node") -> dict[str, Any]:
        """Snapshot of a static data namespace for reading."""
        namespace = static_namespace(node_name, scope)
        return dict(self.workflow.get_static_data(namespace))

    @asynccontextmanager
    async def static_data(
        self,
        node_name: str,
        scope: Literal["global", "node"] = "node",
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Live static data namespace, held for a read-modify-write.

        Other writers of the namespace wait until the block exits, so a
        value read inside the block is still current when it is written back.

            async with context.static_data(node_definition.name) as cursor:
                cursor["last"] = cursor.get("last", 0) + 1
        """
        namespace = static_namespace(node_name, scope)
        async with self.workflow.static_data_lock(namespace):
            yield self.workflow.get_static_data(namespace)

    def node_outputs(self) -> dict[str, list[NodeData]]:
        """Main output of every node that has produced one so far."""
        return {
            name: run.main_output
            for name, run in self.record.nodes.items()
            if run.outputs is not None
        }

    def expression_context(
        self,
        node_name: str,
        input_data: list[NodeData],
        item_index: int = 0,
    ) -> ExpressionContext:
        """Expression context for one item of a node's input."""
        from ..core.config import settings
        from .expression_engine import ExpressionEngine
        from .graph import get_parent_nodes

        ancestors = frozenset(
            get_parent_nodes(self.workflow, node_name, NodeConnectionType.ALL)
        )
        return ExpressionEngine.create_context(
            input_data,
            self.node_outputs(),
            self.execution_id,
            item_index,
            ancestors=ancestors,
            pin_data={k: v for k, v in self.workflow.pin_data.items() if k in ancestors},
            static_data=self.workflow.static_data_snapshot(),
            mode=self.mode,
            workflow={
                "id": self.workflow.id,
                "name": self.workflow.name,
                "active": self.workflow.active,
            },
            timezone=self.workflow.settings.get("timezone", "UTC"),
            allow_env=settings.allow_env_access,
        )

    def resolve(
        self,
        value: Any,
        node_name: str,
        input_data: list[NodeData],
        item_index: int = 0,
    ) -> Any:
        """Resolve expressions in a value against one input item."""
        from .expression_engine import expression_engine

        return expression_engine.resolve(
            value, self.expression_context(node_name, input_data, item_index), node_name
        )


def static_namespace(node_name: str, scope: Literal["global", "node"]) -> str:
    """Static data namespace key for a scope."""
    if scope == "global":
        return "global"
    return f"node:{node_name}"


class ExecutionEventType(str, Enum):
    """Types of execution events."""

    EXECUTION_START = "execution:start"
    NODE_START = "node:start"
    NODE_COMPLETE = "node:complete"
    NODE_ERROR = "node:error"
    NODE_SKIPPED = "node:skipped"
    EXECUTION_COMPLETE = "execution:complete"
    EXECUTION_ERROR = "execution:error"


@dataclass
class ExecutionEvent:
    """Real-time execution event."""

    type: ExecutionEventType
    execution_id: str
    timestamp: datetime
    node_name: str | None = None
    node_type: str | None = None
    data: list[NodeData] | None = None
    error: str | None = None
    progress: dict[str, int] | None = None


# Callback type for receiving execution events
ExecutionEventCallback = Callable[[ExecutionEvent], None]
