"""Workflow definition Pydantic schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.exceptions import InvalidDefinitionError
from ..engine.types import Connection, NodeConnectionType, NodeData, NodeDefinition
from ..engine.workflow import Workflow


class NodeSchema(BaseModel):
    """Schema for node definition in a workflow."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "Fetch Users",
                "type": "HttpRequest",
                "parameters": {"url": "https://api.example.com/users", "method": "GET"},
                "position": {"x": 100, "y": 200},
            }
        },
    )

    name: str = Field(..., min_length=1, description="Unique name for this node in the workflow")
    type: str = Field(..., min_length=1, description="Node type identifier")
    type_version: int = Field(1, alias="typeVersion", ge=1, description="Node type version")
    display_name: str | None = Field(None, alias="displayName", description="Display label for the node")
    parameters: dict[str, Any] = Field(default_factory=dict, description="Node parameters")
    position: dict[str, float] | None = Field(None, description="UI position {x, y}")
    disabled: bool = Field(False, description="Skip this node and pass its input through")
    retry_on_fail: int = Field(0, alias="retryOnFail", ge=0, description="Number of retries on failure")
    retry_delay: int | None = Field(None, alias="retryDelay", ge=0, description="Delay between retries in ms")
    continue_on_fail: bool = Field(False, alias="continueOnFail", description="Emit an error item instead of stopping the branch")
    timeout: float | None = Field(None, gt=0, description="Execution timeout in seconds")
    input_mapping: str | dict[str, Any] | None = Field(None, alias="inputMapping", description="JMESPath applied to each input item")
    notes: str | None = None

    def to_definition(self) -> NodeDefinition:
        return NodeDefinition(**self.model_dump(by_alias=False))

    @classmethod
    def from_definition(cls, node: NodeDefinition) -> NodeSchema:
        return cls.model_validate(vars(node))


class ConnectionSchema(BaseModel):
    """Schema for connection between nodes."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "source_node": "Start",
                "target_node": "Fetch Users",
                "type": "main",
                "source_index": 0,
                "target_index": 0,
            }
        },
    )

    source_node: str = Field(..., alias="sourceNode", description="Source node name")
    target_node: str = Field(..., alias="targetNode", description="Target node name")
    type: str = Field(NodeConnectionType.MAIN, description="Connection type, main for data flow")
    source_index: int = Field(0, alias="sourceIndex", ge=0, description="Source output port")
    target_index: int = Field(0, alias="targetIndex", ge=0, description="Target input port")

    @field_validator("type")
    @classmethod
    def _not_a_filter(cls, value: str) -> str:
        if value in (NodeConnectionType.ALL, NodeConnectionType.ALL_NON_MAIN):
            raise ValueError(f'"{value}" is a traversal filter, not a connection type')
        return value

    def to_connection(self) -> Connection:
        return Connection(
            source_node=self.source_node,
            target_node=self.target_node,
            type=self.type,
            source_index=self.source_index,
            target_index=self.target_index,
        )


class NodeDataSchema(BaseModel):
    """Schema for one data item."""

    json_: dict[str, Any] = Field(default_factory=dict, alias="json")
    binary: dict[str, bytes] | None = None

    model_config = ConfigDict(populate_by_name=True)

    def to_item(self) -> NodeData:
        return NodeData(json=self.json_, binary=self.binary)


class WorkflowDefinitionSchema(BaseModel):
    """
    Schema for a persisted workflow definition.

    Connections are accepted either as a flat list of ConnectionSchema
    objects or as the nested source-indexed mapping
    `{source: {type: [[{node, type, index}, ...], ...]}}`, where the outer
    list position is the source output port.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    name: str = Field(..., min_length=1, max_length=255, description="Workflow name")
    nodes: list[NodeSchema] = Field(..., description="List of nodes")
    connections: list[ConnectionSchema] = Field(default_factory=list, description="List of connections")
    active: bool = False
    settings: dict[str, Any] = Field(default_factory=dict, description="Workflow settings")
    static_data: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="staticData")
    pin_data: dict[str, list[NodeDataSchema]] = Field(default_factory=dict, alias="pinData")
    owner_id: str | None = Field(None, alias="ownerId")
    description: str | None = Field(None, max_length=1000, description="Workflow description")

    @field_validator("connections", mode="before")
    @classmethod
    def _flatten_connections(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value

        flat = []
        for source, by_type in value.items():
            if not isinstance(by_type, dict):
                raise ValueError(f'connections of "{source}" must be an object keyed by type')
            for conn_type, ports in by_type.items():
                if not isinstance(ports, list):
                    raise ValueError(f'"{source}".{conn_type} must be a list of output ports')
                for source_index, targets in enumerate(ports):
                    for target in targets or []:
                        if not isinstance(target, dict) or "node" not in target:
                            raise ValueError(f'"{source}".{conn_type} targets must be objects with a node')
                        flat.append({
                            "source_node": source,
                            "target_node": target["node"],
                            "type": target.get("type", conn_type),
                            "source_index": source_index,
                            "target_index": target.get("index", 0),
                        })
        return flat

    def to_workflow(self) -> Workflow:
        return Workflow(
            name=self.name,
            nodes=[n.to_definition() for n in self.nodes],
            connections=[c.to_connection() for c in self.connections],
            id=self.id,
            active=self.active,
            settings=self.settings,
            static_data=self.static_data,
            pin_data={name: [i.to_item() for i in items] for name, items in self.pin_data.items()},
            owner_id=self.owner_id,
            description=self.description,
        )


def load_workflow(data: dict[str, Any]) -> Workflow:
    """
    Build a Workflow from a persisted definition.

    Raises:
        InvalidDefinitionError: If the definition is malformed or breaks a
            structural invariant
    """
    try:
        schema = WorkflowDefinitionSchema.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise InvalidDefinitionError("Invalid workflow definition", problems) from e
    return schema.to_workflow()


def dump_workflow(workflow: Workflow) -> dict[str, Any]:
    """Serialize a Workflow back to a persisted definition with flat connections."""
    schema = WorkflowDefinitionSchema(
        id=workflow.id,
        name=workflow.name,
        nodes=[NodeSchema.from_definition(n) for n in workflow.nodes.values()],
        connections=[ConnectionSchema.model_validate(vars(c)) for c in workflow.connections],
        active=workflow.active,
        settings=workflow.settings,
        static_data=workflow.static_data_snapshot(),
        pin_data={
            name: [NodeDataSchema(json=i.json, binary=i.binary) for i in items]
            for name, items in workflow.pin_data.items()
        },
        owner_id=workflow.owner_id,
        description=workflow.description,
    )
    return schema.model_dump(mode="json", by_alias=True, exclude_none=True)
