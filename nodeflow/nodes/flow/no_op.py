"""NoOp node - pass items through unchanged."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..base import BaseNode, NodeTypeDescription

if TYPE_CHECKING:
    from ...engine.types import ExecutionContext, NodeData, NodeDefinition, NodeExecutionResult


class NoOpNode(BaseNode):
    """Does nothing. Useful as a join point or placeholder."""

    node_description = NodeTypeDescription(
        name="NoOp",
        display_name="No Operation",
        description="Pass items through unchanged",
        icon="fa:arrow-right",
        group=["flow"],
    )

    @property
    def type(self) -> str:
        return "NoOp"

    @property
    def description(self) -> str:
        return "Pass items through unchanged"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        return self.output(input_data)
