"""Set node - create, update, or delete fields on items."""

from __future__ import annotations

import copy
import json
from typing import Any, TYPE_CHECKING

from ...core.exceptions import ParameterValidationError
from ..base import (
    BaseNode,
    NodeTypeDescription,
    NodeProperty,
    NodePropertyOption,
)
from .paths import delete_path, get_path, set_path

if TYPE_CHECKING:
    from ...engine.types import ExecutionContext, NodeData, NodeDefinition, NodeExecutionResult


class SetNode(BaseNode):
    """Set node - set, rename, or delete fields on items."""

    node_description = NodeTypeDescription(
        name="Set",
        display_name="Set",
        description="Set, rename, or delete fields on items",
        icon="fa:edit",
        group=["transform"],
        properties=[
            NodeProperty(
                display_name="Mode",
                name="mode",
                type="options",
                default="manual",
                options=[
                    NodePropertyOption(name="Manual", value="manual", description="Define fields individually"),
                    NodePropertyOption(name="JSON", value="json", description="Merge a JSON object"),
                ],
            ),
            NodeProperty(
                display_name="Fields to Set",
                name="fields",
                type="collection",
                default=[],
                type_options={"multipleValues": True},
                display_options={"show": {"mode": ["manual"]}},
                properties=[
                    NodeProperty(display_name="Field Name", name="name", type="string", default=""),
                    NodeProperty(
                        display_name="Value",
                        name="value",
                        type="string",
                        default="",
                        description="Supports expressions: {{ $json.existingField }}",
                    ),
                ],
            ),
            NodeProperty(
                display_name="JSON Data",
                name="jsonData",
                type="json",
                default="{}",
                description="JSON object to merge into each item",
                display_options={"show": {"mode": ["json"]}},
            ),
            NodeProperty(
                display_name="Keep Only Set",
                name="keepOnlySet",
                type="boolean",
                default=False,
                description="If true, removes all existing fields and only keeps new ones",
            ),
            NodeProperty(
                display_name="Fields to Delete",
                name="deleteFields",
                type="collection",
                default=[],
                type_options={"multipleValues": True},
                properties=[
                    NodeProperty(display_name="Field Path", name="path", type="string", default=""),
                ],
            ),
            NodeProperty(
                display_name="Fields to Rename",
                name="renameFields",
                type="collection",
                default=[],
                type_options={"multipleValues": True},
                properties=[
                    NodeProperty(display_name="From", name="from", type="string", default=""),
                    NodeProperty(display_name="To", name="to", type="string", default=""),
                ],
            ),
        ],
    )

    @property
    def type(self) -> str:
        return "Set"

    @property
    def description(self) -> str:
        return "Set, rename, or delete fields on items"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        from ...engine.types import NodeData

        name = node_definition.name
        mode = self.get_parameter(node_definition, "mode", "manual")
        keep_only_set = self.get_parameter(node_definition, "keepOnlySet", False)
        fields = self.get_parameter(node_definition, "fields", [])
        json_template = self.get_parameter(node_definition, "jsonData", {})
        delete_fields = self.get_parameter(node_definition, "deleteFields", [])
        rename_fields = self.get_parameter(node_definition, "renameFields", [])

        items = input_data or [NodeData(json={})]
        results: list[NodeData] = []

        for idx, item in enumerate(items):
            new_json: dict[str, Any] = {} if keep_only_set else copy.deepcopy(item.json)

            if mode == "manual":
                for field in fields:
                    if field.get("name"):
                        value = context.resolve(field.get("value", ""), name, items, idx)
                        set_path(new_json, field["name"], value)
            elif mode == "json":
                new_json.update(self._json_data(context, name, json_template, items, idx))

            for field in delete_fields:
                path = field.get("path") if isinstance(field, dict) else field
                if path:
                    delete_path(new_json, path)

            for rename in rename_fields:
                source, target = rename.get("from", ""), rename.get("to", "")
                if source and target:
                    value = get_path(new_json, source)
                    if value is not None:
                        delete_path(new_json, source)
                        set_path(new_json, target, value)

            results.append(NodeData(json=new_json, binary=item.binary))

        return self.output(results)

    def _json_data(
        self,
        context: ExecutionContext,
        node_name: str,
        template: Any,
        items: list[NodeData],
        idx: int,
    ) -> dict[str, Any]:
        data = context.resolve(template, node_name, items, idx)
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise ParameterValidationError(node_name, [f"jsonData is not valid JSON: {e}"]) from e
            data = context.resolve(data, node_name, items, idx)
        if not isinstance(data, dict):
            raise ParameterValidationError(node_name, ["jsonData must be a JSON object"])
        return data
