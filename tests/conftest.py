"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

from nodeflow.engine.node_registry import NodeRegistry, register_builtin_nodes
from nodeflow.engine.rate_limiter import RateLimiterRegistry
from nodeflow.engine.types import NodeData
from nodeflow.engine.workflow_runner import WorkflowRunner
from nodeflow.nodes.base import BaseNode, NodeProperty, NodeTypeDescription
from nodeflow.storage import ExecutionStore

if TYPE_CHECKING:
    from nodeflow.engine.types import ExecutionContext, NodeDefinition, NodeExecutionResult


class FlakyNode(BaseNode):
    """Fails the first `failTimes` attempts of each run, then passes items through."""

    node_description = NodeTypeDescription(
        name="Flaky",
        display_name="Flaky",
        description="Fails a configurable number of times",
        properties=[
            NodeProperty(display_name="Fail Times", name="failTimes", type="number", default=0),
        ],
    )

    def __init__(self) -> None:
        self.attempts: dict[tuple[str, str], int] = {}

    @property
    def type(self) -> str:
        return "Flaky"

    @property
    def description(self) -> str:
        return "Fails a configurable number of times"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        key = (context.execution_id, node_definition.name)
        self.attempts[key] = self.attempts.get(key, 0) + 1
        if self.attempts[key] <= node_definition.parameters.get("failTimes", 0):
            raise RuntimeError(f"attempt {self.attempts[key]} failed")
        return self.output(input_data)


class SleepNode(BaseNode):
    """Sleeps, tracking how many sleepers overlap."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0

    @property
    def type(self) -> str:
        return "Sleep"

    @property
    def description(self) -> str:
        return "Sleeps for a while"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(node_definition.parameters.get("seconds", 0.05))
        finally:
            self.active -= 1
        return self.output(input_data)


class CounterNode(BaseNode):
    """Counts its runs in global static data."""

    @property
    def type(self) -> str:
        return "Counter"

    @property
    def description(self) -> str:
        return "Counts runs in static data"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        async with context.static_data(node_definition.name, "global") as data:
            runs = data.get("runs", 0) + 1
            # Let other counters run between the read and the write
            await asyncio.sleep(0.01)
            data["runs"] = runs
        return self.output([NodeData(json={"runs": runs})])


class BrokenValidateNode(BaseNode):
    """Plugin whose validate() raises instead of returning problems."""

    @property
    def type(self) -> str:
        return "BrokenValidate"

    @property
    def description(self) -> str:
        return "Raises from validate"

    def validate(self, parameters: dict[str, Any]) -> list[str]:
        raise ValueError("validate blew up")

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        return self.output(input_data)


@pytest.fixture
def registry() -> NodeRegistry:
    """Fresh frozen registry with the built-in and test node types."""
    registry = NodeRegistry()
    register_builtin_nodes(registry)
    for node_class in (FlakyNode, SleepNode, CounterNode, BrokenValidateNode):
        registry.register(node_class)
    registry.freeze()
    return registry


@pytest.fixture
def store() -> ExecutionStore:
    return ExecutionStore(max_records=10)


@pytest.fixture
def runner(registry: NodeRegistry, store: ExecutionStore) -> WorkflowRunner:
    return WorkflowRunner(
        registry=registry,
        store=store,
        rate_limiters=RateLimiterRegistry(overrides={}),
    )
