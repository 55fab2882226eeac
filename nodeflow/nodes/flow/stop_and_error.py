"""StopAndError node - terminate a branch with a custom error."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...core.exceptions import StopWorkflowError
from ..base import (
    BaseNode,
    NodeTypeDescription,
    NodeInputDefinition,
    NodeOutputDefinition,
    NodeProperty,
    NodePropertyOption,
)

if TYPE_CHECKING:
    from ...engine.types import ExecutionContext, NodeData, NodeDefinition, NodeExecutionResult


class StopAndErrorNode(BaseNode):
    """Stop workflow execution with a custom error message."""

    node_description = NodeTypeDescription(
        name="StopAndError",
        display_name="Stop and Error",
        description="Stop workflow execution with a custom error message",
        icon="fa:stop-circle",
        group=["flow"],
        inputs=[NodeInputDefinition(name="main", display_name="Input")],
        outputs=[
            NodeOutputDefinition(
                name="main",
                display_name="Output",
                schema={"type": "unknown", "passthrough": True},
            ),
        ],
        properties=[
            NodeProperty(
                display_name="Error Type",
                name="errorType",
                type="options",
                default="error",
                options=[
                    NodePropertyOption(
                        name="Error",
                        value="error",
                        description="Fail the node and the run",
                    ),
                    NodePropertyOption(
                        name="Warning",
                        value="warning",
                        description="Annotate items with a warning and continue",
                    ),
                ],
                description="Whether to stop execution or just attach a warning",
            ),
            NodeProperty(
                display_name="Error Message",
                name="message",
                type="string",
                default="Workflow stopped",
                placeholder="Enter error message or expression",
                description="Error message to display. Supports expressions like {{ $json.errorReason }}",
            ),
        ],
    )

    @property
    def type(self) -> str:
        return "StopAndError"

    @property
    def description(self) -> str:
        return "Stop workflow execution with a custom error message"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        from ...engine.types import NodeData

        error_type = self.get_parameter(node_definition, "errorType", "error")
        message_template = self.get_parameter(node_definition, "message", "Workflow stopped")
        message = str(context.resolve(message_template, node_definition.name, input_data))

        if error_type == "error":
            raise StopWorkflowError(node_definition.name, message)

        results = []
        for item in input_data:
            new_json = dict(item.json)
            new_json["_warning"] = message
            results.append(NodeData(json=new_json, binary=item.binary))

        return self.output(results or [NodeData(json={"_warning": message})])
