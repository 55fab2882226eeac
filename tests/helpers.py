"""Builders shared by the test modules."""

from __future__ import annotations

from typing import Any, Iterable

from nodeflow.engine.types import Connection, NodeConnectionType, NodeData, NodeDefinition
from nodeflow.engine.workflow import Workflow


def node(name: str, type: str = "NoOp", **kwargs: Any) -> NodeDefinition:
    return NodeDefinition(name=name, type=type, **kwargs)


def edge(
    source: str,
    target: str,
    type: str = NodeConnectionType.MAIN,
    source_index: int = 0,
    target_index: int = 0,
) -> Connection:
    return Connection(source, target, type, source_index, target_index)


def chain(*names: str) -> list[Connection]:
    """Main connections linking the names in order."""
    return [edge(a, b) for a, b in zip(names, names[1:])]


def build(
    nodes: Iterable[NodeDefinition],
    connections: Iterable[Connection] = (),
    name: str = "test",
    **kwargs: Any,
) -> Workflow:
    return Workflow(name=name, nodes=nodes, connections=connections, **kwargs)


def items(*payloads: dict[str, Any]) -> list[NodeData]:
    return [NodeData(json=p) for p in payloads]


def jsons(data: list[NodeData]) -> list[dict[str, Any]]:
    return [item.json for item in data]
