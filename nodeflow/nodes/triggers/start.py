"""Start node - manual trigger entry point."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..base import BaseNode, NodeTypeDescription

if TYPE_CHECKING:
    from ...engine.types import ExecutionContext, NodeData, NodeDefinition, NodeExecutionResult


def trigger_item(context: ExecutionContext, **extra: Any) -> NodeData:
    """Item describing what fired the run, stamped with the run's start time."""
    from ...engine.types import NodeData

    return NodeData(json={
        "triggeredAt": context.start_time.isoformat(),
        "mode": context.mode,
        "executionId": context.execution_id,
        **extra,
    })


class StartNode(BaseNode):
    """
    Manual trigger.

    Emits the items the caller handed to the run (after any input mapping),
    or a single trigger item when the run was started without input.
    """

    is_trigger = True

    node_description = NodeTypeDescription(
        name="Start",
        display_name="Start",
        description="Manual trigger to start workflow execution",
        group=["trigger"],
        inputs=[],
    )

    @property
    def type(self) -> str:
        return "Start"

    @property
    def description(self) -> str:
        return "Manual trigger to start workflow execution"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        if context.trigger_data:
            return self.output(input_data)
        return self.output([trigger_item(context)])
