"""Base node class for all workflow nodes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from ..core.config import RateLimitSettings
from ..core.exceptions import ParameterValidationError

if TYPE_CHECKING:
    from ..engine.types import (
        ExecutionContext,
        NodeData,
        NodeDefinition,
        NodeExecutionResult,
    )


@dataclass
class NodePropertyOption:
    """Option for a node property."""

    name: str
    value: str
    description: str | None = None


@dataclass
class NodeProperty:
    """Property definition for node schema."""

    display_name: str
    name: str
    type: str  # string, number, boolean, options, collection, json
    default: Any = None
    required: bool = False
    description: str | None = None
    placeholder: str | None = None
    options: list[NodePropertyOption] | None = None
    properties: list[NodeProperty] | None = None  # For collection type
    display_options: dict[str, Any] | None = None
    type_options: dict[str, Any] | None = None


@dataclass
class NodeInputDefinition:
    """Input definition for a node."""

    name: str
    display_name: str
    type: str = "main"


@dataclass
class NodeOutputDefinition:
    """Output definition for a node."""

    name: str
    display_name: str
    type: str = "main"
    schema: dict[str, Any] | None = None


@dataclass
class NodeTypeDescription:
    """Full description of a node type."""

    name: str
    display_name: str
    description: str
    icon: str | None = None
    group: list[str] = field(default_factory=lambda: ["transform"])
    inputs: list[NodeInputDefinition] | str = field(
        default_factory=lambda: [NodeInputDefinition(name="main", display_name="Input")]
    )
    outputs: list[NodeOutputDefinition] | str = field(
        default_factory=lambda: [NodeOutputDefinition(name="main", display_name="Output")]
    )
    properties: list[NodeProperty] = field(default_factory=list)


@dataclass
class NodeTypeInfo:
    """Serializable node type schema, as returned by describe()."""

    type: str
    display_name: str
    description: str
    icon: str | None = None
    group: list[str] | None = None
    input_count: int | str = 1
    output_count: int | str = 1
    properties: list[dict[str, Any]] = field(default_factory=list)
    inputs: list[dict[str, Any]] | None = None
    outputs: list[dict[str, Any]] | None = None
    is_trigger: bool = False
    is_poll: bool = False


class BaseNode(ABC):
    """
    Abstract base class for all workflow nodes.

    Nodes should define a class-level `node_description` for schema-driven
    validation and describe(). Instances are shared across runs and must not
    keep per-run state.
    """

    node_description: NodeTypeDescription | None = None

    # Capability flags used for start node selection
    is_trigger: bool = False
    is_poll: bool = False

    # Default call budget for this type, None means unlimited
    rate_limit: RateLimitSettings | None = None

    # True when execute() takes a slot per external call through
    # context.acquire_rate_limit(); otherwise each attempt takes one slot
    limits_own_calls: bool = False

    @property
    @abstractmethod
    def type(self) -> str:
        """Node type identifier."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Short description of what the node does."""
        ...

    @property
    def input_count(self) -> int | float:
        """Number of inputs this node expects. Use float('inf') for dynamic."""
        return 1

    @abstractmethod
    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        """Execute the node logic."""
        ...

    def validate(self, parameters: dict[str, Any]) -> list[str]:
        """
        Check resolved parameters against the declared properties.

        Returns a list of problems, empty when the parameters are valid.
        Values still holding a per-item template are not checked.
        """
        if not self.node_description:
            return []

        problems = []
        for prop in self.node_description.properties:
            value = parameters.get(prop.name)
            if isinstance(value, str) and "{{" in value:
                continue
            if value is None or value == "":
                if prop.required and prop.default in (None, ""):
                    problems.append(f'Missing required parameter "{prop.name}"')
                continue
            if prop.type == "options" and prop.options:
                allowed = [o.value for o in prop.options]
                if value not in allowed:
                    problems.append(
                        f'Invalid value "{value}" for "{prop.name}", expected one of: {", ".join(allowed)}'
                    )
            elif prop.type == "number" and (
                isinstance(value, bool) or not isinstance(value, (int, float))
            ):
                problems.append(f'Parameter "{prop.name}" must be a number')
            elif prop.type == "boolean" and not isinstance(value, bool):
                problems.append(f'Parameter "{prop.name}" must be a boolean')
        return problems

    def describe(self) -> NodeTypeInfo:
        """Schema of this node type."""
        desc = self.node_description

        input_count: int | str = 1
        inputs: list[dict[str, Any]] | None = [
            {"name": "main", "displayName": "Input", "type": "main"}
        ]
        if (desc and desc.inputs == "dynamic") or self.input_count == float("inf"):
            input_count = "dynamic"
            inputs = None
        elif desc and isinstance(desc.inputs, list):
            inputs = [
                {"name": i.name, "displayName": i.display_name, "type": i.type}
                for i in desc.inputs
            ]
            input_count = len(inputs)

        output_count: int | str = 1
        outputs: list[dict[str, Any]] | None = [
            {"name": "main", "displayName": "Output", "type": "main"}
        ]
        if desc and desc.outputs == "dynamic":
            output_count = "dynamic"
            outputs = None
        elif desc and isinstance(desc.outputs, list):
            outputs = [
                {
                    "name": o.name,
                    "displayName": o.display_name,
                    "type": o.type,
                    "schema": o.schema,
                }
                for o in desc.outputs
            ]
            output_count = len(outputs)

        return NodeTypeInfo(
            type=self.type,
            display_name=desc.display_name if desc else self.type,
            description=self.description,
            icon=desc.icon if desc else None,
            group=desc.group if desc else None,
            input_count=input_count,
            output_count=output_count,
            properties=_convert_properties(desc.properties) if desc else [],
            inputs=inputs,
            outputs=outputs,
            is_trigger=self.is_trigger,
            is_poll=self.is_poll,
        )

    def get_parameter(
        self,
        node_definition: NodeDefinition,
        key: str,
        default: Any = None,
    ) -> Any:
        """Get a parameter value from node definition."""
        value = node_definition.parameters.get(key)
        if value is None:
            if default is None and self._is_required_parameter(key):
                raise ParameterValidationError(
                    node_definition.name, [f'Missing required parameter "{key}"']
                )
            return default
        return value

    def _is_required_parameter(self, key: str) -> bool:
        """Check if a parameter is required."""
        if not self.node_description:
            return False
        for prop in self.node_description.properties:
            if prop.name == key:
                return prop.required
        return False

    def output(self, data: list[NodeData]) -> NodeExecutionResult:
        """Helper to create single-output result."""
        from ..engine.types import NodeExecutionResult

        return NodeExecutionResult(outputs=[data])

    def outputs(self, *outputs: list[NodeData] | None) -> NodeExecutionResult:
        """Helper to create multi-output result, one argument per output port."""
        from ..engine.types import NodeExecutionResult

        return NodeExecutionResult(outputs=list(outputs))


def _convert_properties(properties: list[NodeProperty]) -> list[dict[str, Any]]:
    """Convert properties to dict format."""
    result = []
    for prop in properties:
        prop_dict: dict[str, Any] = {
            "displayName": prop.display_name,
            "name": prop.name,
            "type": prop.type,
            "default": prop.default,
        }
        if prop.required:
            prop_dict["required"] = True
        if prop.description:
            prop_dict["description"] = prop.description
        if prop.placeholder:
            prop_dict["placeholder"] = prop.placeholder
        if prop.options:
            prop_dict["options"] = [
                {"name": o.name, "value": o.value, "description": o.description}
                for o in prop.options
            ]
        if prop.properties:
            prop_dict["properties"] = _convert_properties(prop.properties)
        if prop.display_options:
            prop_dict["displayOptions"] = prop.display_options
        if prop.type_options:
            prop_dict["typeOptions"] = prop.type_options
        result.append(prop_dict)
    return result
