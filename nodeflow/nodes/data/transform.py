"""
Transform node - reshape items with a JMESPath pipeline.

Each item passes through four optional steps:

1. Input Path: JMESPath selecting the part of the item to work on
2. Parameters: object shallow-merged over the selection (keys win)
3. Result Path: dotted path where the result is embedded into the original item
4. Output Path: JMESPath selecting what is finally emitted
"""

from __future__ import annotations

import copy
from typing import Any, TYPE_CHECKING

import jmespath
from jmespath.exceptions import JMESPathError

from ...core.exceptions import ParameterValidationError
from ..base import BaseNode, NodeTypeDescription, NodeProperty
from .paths import set_path

if TYPE_CHECKING:
    from ...engine.types import ExecutionContext, NodeData, NodeDefinition, NodeExecutionResult


class TransformNode(BaseNode):
    """Reshape items with input path, parameters, result path and output path."""

    node_description = NodeTypeDescription(
        name="Transform",
        display_name="Transform",
        description="Reshape items with JMESPath selections and merges",
        icon="fa:random",
        group=["transform"],
        properties=[
            NodeProperty(
                display_name="Input Path",
                name="inputPath",
                type="string",
                default="",
                placeholder="body.items[0]",
                description="JMESPath selecting the data to transform",
            ),
            NodeProperty(
                display_name="Parameters",
                name="parameters",
                type="json",
                default=None,
                description="Object merged over the selected data. Supports expressions.",
            ),
            NodeProperty(
                display_name="Result Path",
                name="resultPath",
                type="string",
                default="",
                placeholder="body.transformed",
                description="Dotted path where the result is placed inside the original item",
            ),
            NodeProperty(
                display_name="Output Path",
                name="outputPath",
                type="string",
                default="",
                description="JMESPath selecting what the node emits",
            ),
        ],
    )

    @property
    def type(self) -> str:
        return "Transform"

    @property
    def description(self) -> str:
        return "Reshape items with JMESPath selections and merges"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        from ...engine.types import NodeData

        name = node_definition.name
        input_path = self.get_parameter(node_definition, "inputPath", "")
        parameters = self.get_parameter(node_definition, "parameters")
        result_path = self.get_parameter(node_definition, "resultPath", "")
        output_path = self.get_parameter(node_definition, "outputPath", "")

        results: list[NodeData] = []
        for idx, item in enumerate(input_data):
            overlay = context.resolve(parameters, name, input_data, idx) if parameters else None
            value = self.transform(name, item.json, input_path, overlay, result_path, output_path)
            results.append(NodeData(json=value if isinstance(value, dict) else {"value": value}, binary=item.binary))

        return self.output(results)

    def transform(
        self,
        node_name: str,
        data: dict[str, Any],
        input_path: str = "",
        parameters: dict[str, Any] | None = None,
        result_path: str = "",
        output_path: str = "",
    ) -> Any:
        """Run the four-step pipeline on one item."""
        selected = self._query(node_name, input_path, data) if input_path else copy.deepcopy(data)

        if parameters:
            if not isinstance(parameters, dict):
                raise ParameterValidationError(node_name, ["parameters must be an object"])
            if isinstance(selected, dict):
                selected = {**selected, **parameters}

        if result_path:
            final = copy.deepcopy(data)
            set_path(final, result_path, selected)
        else:
            final = selected

        if output_path:
            final = self._query(node_name, output_path, final)
        return final

    def _query(self, node_name: str, expression: str, data: Any) -> Any:
        try:
            return jmespath.search(expression, data)
        except JMESPathError as e:
            raise ParameterValidationError(node_name, [f'Invalid JMESPath "{expression}": {e}']) from e
