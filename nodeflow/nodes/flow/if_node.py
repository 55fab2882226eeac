"""If node - route items based on a condition (true/false outputs)."""

from __future__ import annotations

import re
from typing import Any, TYPE_CHECKING

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


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _compare(op: str, left: Any, right: Any) -> bool:
    a, b = _as_float(left), _as_float(right)
    if a is None or b is None:
        return False
    return {
        "gt": a > b,
        "gte": a >= b,
        "lt": a < b,
        "lte": a <= b,
    }[op]


def _regex(value: Any, pattern: Any) -> bool:
    try:
        return bool(re.search(str(pattern), str(value)))
    except re.error:
        return False


OPERATIONS = {
    "equals": lambda v, c: v == c,
    "notEquals": lambda v, c: v != c,
    "contains": lambda v, c: str(c) in str(v),
    "notContains": lambda v, c: str(c) not in str(v),
    "gt": lambda v, c: _compare("gt", v, c),
    "gte": lambda v, c: _compare("gte", v, c),
    "lt": lambda v, c: _compare("lt", v, c),
    "lte": lambda v, c: _compare("lte", v, c),
    "isEmpty": lambda v, c: v is None or v == "" or v == [] or v == {},
    "isNotEmpty": lambda v, c: not (v is None or v == "" or v == [] or v == {}),
    "isTrue": lambda v, c: v is True or v == "true" or v == 1,
    "isFalse": lambda v, c: v is False or v == "false" or v == 0,
    "regex": _regex,
}


class IfNode(BaseNode):
    """If node - route items based on a condition with true/false outputs."""

    node_description = NodeTypeDescription(
        name="If",
        display_name="If",
        description="Route items based on a condition (true/false outputs)",
        icon="fa:code-branch",
        group=["flow"],
        inputs=[NodeInputDefinition(name="main", display_name="Input")],
        outputs=[
            NodeOutputDefinition(
                name="true",
                display_name="True",
                schema={"type": "unknown", "passthrough": True},
            ),
            NodeOutputDefinition(
                name="false",
                display_name="False",
                schema={"type": "unknown", "passthrough": True},
            ),
        ],
        properties=[
            NodeProperty(
                display_name="Condition",
                name="condition",
                type="string",
                default="",
                placeholder="{{ $json.score >= 70 }}",
                description="Expression that evaluates to true/false. If provided, field/operation/value are ignored.",
            ),
            NodeProperty(
                display_name="Field",
                name="field",
                type="string",
                default="",
                placeholder="status",
                description="Field path to evaluate (supports dot notation). Leave empty to evaluate entire input.",
            ),
            NodeProperty(
                display_name="Operation",
                name="operation",
                type="options",
                default="isTrue",
                options=[
                    NodePropertyOption(name="Equals", value="equals"),
                    NodePropertyOption(name="Not Equals", value="notEquals"),
                    NodePropertyOption(name="Contains", value="contains"),
                    NodePropertyOption(name="Not Contains", value="notContains"),
                    NodePropertyOption(name="Greater Than", value="gt"),
                    NodePropertyOption(name="Greater or Equal", value="gte"),
                    NodePropertyOption(name="Less Than", value="lt"),
                    NodePropertyOption(name="Less or Equal", value="lte"),
                    NodePropertyOption(name="Is Empty", value="isEmpty"),
                    NodePropertyOption(name="Is Not Empty", value="isNotEmpty"),
                    NodePropertyOption(name="Is True", value="isTrue"),
                    NodePropertyOption(name="Is False", value="isFalse"),
                    NodePropertyOption(name="Regex Match", value="regex"),
                ],
            ),
            NodeProperty(
                display_name="Value",
                name="value",
                type="string",
                default="",
                description="Value to compare against. Supports expressions.",
                display_options={"hide": {"operation": ["isEmpty", "isNotEmpty", "isTrue", "isFalse"]}},
            ),
        ],
    )

    @property
    def type(self) -> str:
        return "If"

    @property
    def description(self) -> str:
        return "Route items based on a condition (true/false outputs)"

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        condition = self.get_parameter(node_definition, "condition", "")
        field = self.get_parameter(node_definition, "field", "")
        operation = self.get_parameter(node_definition, "operation", "isTrue")
        value = node_definition.parameters.get("value")

        true_output: list[NodeData] = []
        false_output: list[NodeData] = []

        for idx, item in enumerate(input_data):
            if condition != "":
                result = bool(context.resolve(condition, node_definition.name, input_data, idx))
            else:
                compare_value = context.resolve(value, node_definition.name, input_data, idx)
                field_value = self._get_nested_value(item.json, field)
                check = OPERATIONS.get(operation)
                result = check(field_value, compare_value) if check else bool(field_value)

            if result:
                true_output.append(item)
            else:
                false_output.append(item)

        return self.outputs(true_output or None, false_output or None)

    def _get_nested_value(self, obj: dict[str, Any], path: str) -> Any:
        """Get value at nested path."""
        if not path:
            return obj
        current: Any = obj
        for key in path.split("."):
            if isinstance(current, dict):
                current = current.get(key)
            else:
                return None
        return current
