"""
Workflow graph model.

The connection list is the single source of truth. Both lookup indexes
(by source node and by destination node) are derived from it and rebuilt
together whenever the structure changes.
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import Any, Callable, Iterable

from ..core.exceptions import InvalidDefinitionError, NodeNotFoundError
from .types import Connection, NodeConnectionType, NodeData, NodeDefinition

# node name -> connection type -> connections
ConnectionIndex = dict[str, dict[str, list[Connection]]]


class Workflow:
    """A directed graph of typed nodes plus its settings and persistent state."""

    def __init__(
        self,
        name: str,
        nodes: Iterable[NodeDefinition],
        connections: Iterable[Connection] = (),
        id: str | None = None,
        active: bool = False,
        settings: dict[str, Any] | None = None,
        static_data: dict[str, dict[str, Any]] | None = None,
        pin_data: dict[str, list[NodeData]] | None = None,
        owner_id: str | None = None,
        description: str | None = None,
    ) -> None:
        self.id = id
        self.name = name
        self.active = active
        self.settings: dict[str, Any] = dict(settings or {})
        self.owner_id = owner_id
        self.description = description

        self.static_data: dict[str, dict[str, Any]] = {
            key: dict(value) for key, value in (static_data or {}).items()
        }
        self._static_locks: dict[str, asyncio.Lock] = {}

        node_list = list(nodes)
        duplicates = _duplicates(n.name for n in node_list)
        if duplicates:
            raise InvalidDefinitionError(
                "Duplicate node names in workflow",
                [f'Node "{name}" is defined more than once' for name in duplicates],
            )

        self.nodes: dict[str, NodeDefinition] = {n.name: n for n in node_list}
        self.pin_data: dict[str, list[NodeData]] = dict(pin_data or {})
        self._connections: list[Connection] = list(connections)
        self.connections_by_source: ConnectionIndex = {}
        self.connections_by_destination: ConnectionIndex = {}
        self._reindex()

        self.validate()

    # --- Structure ---

    @property
    def connections(self) -> list[Connection]:
        """All connections, in definition order."""
        return list(self._connections)

    def _reindex(self) -> None:
        """Rebuild both connection indexes from the connection list."""
        by_source: ConnectionIndex = defaultdict(lambda: defaultdict(list))
        by_destination: ConnectionIndex = defaultdict(lambda: defaultdict(list))

        for conn in self._connections:
            by_source[conn.source_node][conn.type].append(conn)
            by_destination[conn.target_node][conn.type].append(conn)

        self.connections_by_source = {k: dict(v) for k, v in by_source.items()}
        self.connections_by_destination = {k: dict(v) for k, v in by_destination.items()}

    def _apply(
        self,
        nodes: dict[str, NodeDefinition],
        connections: list[Connection],
        pin_data: dict[str, list[NodeData]] | None = None,
        static_data: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        """Swap in a new structure in one step."""
        self.nodes = nodes
        self._connections = connections
        if pin_data is not None:
            self.pin_data = pin_data
        if static_data is not None:
            self.static_data = static_data
        self._reindex()

    def validate(self) -> None:
        """
        Check structural invariants.

        Raises:
            InvalidDefinitionError: On dangling connections or a cycle
        """
        problems = []
        for conn in self._connections:
            if conn.source_node not in self.nodes:
                problems.append(
                    f'Connection source "{conn.source_node}" -> "{conn.target_node}" '
                    "references a missing node"
                )
            if conn.target_node not in self.nodes:
                problems.append(
                    f'Connection target "{conn.source_node}" -> "{conn.target_node}" '
                    "references a missing node"
                )
        for name in self.pin_data:
            if name not in self.nodes:
                problems.append(f'Pinned data references a missing node "{name}"')

        if problems:
            raise InvalidDefinitionError("Workflow has dangling references", problems)

        from .graph import find_cycle

        cycle = find_cycle(self)
        if cycle:
            raise InvalidDefinitionError(
                "Workflow contains a cycle",
                [" -> ".join(cycle)],
            )

    def add_node(self, node: NodeDefinition) -> None:
        """Add a node to the workflow."""
        if node.name in self.nodes:
            raise InvalidDefinitionError(f'Node "{node.name}" already exists')
        self.nodes[node.name] = node

    def remove_node(self, name: str) -> NodeDefinition:
        """Remove a node together with its connections, pinned and static data."""
        node = self.get_node(name)
        nodes = {k: v for k, v in self.nodes.items() if k != name}
        connections = [
            c for c in self._connections if c.source_node != name and c.target_node != name
        ]
        pin_data = {k: v for k, v in self.pin_data.items() if k != name}
        static_data = {k: v for k, v in self.static_data.items() if k != f"node:{name}"}
        self._apply(nodes, connections, pin_data, static_data)
        return node

    def connect(
        self,
        source_node: str,
        target_node: str,
        type: str = NodeConnectionType.MAIN,
        source_index: int = 0,
        target_index: int = 0,
    ) -> Connection:
        """Connect an output of one node to an input of another."""
        self.get_node(source_node)
        self.get_node(target_node)

        conn = Connection(source_node, target_node, type, source_index, target_index)
        if conn not in self._connections:
            self._connections.append(conn)
            self._reindex()
        return conn

    def disconnect(
        self,
        source_node: str,
        target_node: str,
        type: str | None = None,
    ) -> int:
        """Remove connections between two nodes. Returns how many were removed."""
        kept = [
            c
            for c in self._connections
            if not (
                c.source_node == source_node
                and c.target_node == target_node
                and (type is None or c.type == type)
            )
        ]
        removed = len(self._connections) - len(kept)
        if removed:
            self._connections = kept
            self._reindex()
        return removed

    # --- Lookup ---

    def get_node(self, name: str) -> NodeDefinition:
        """
        Get a node by name.

        Raises:
            NodeNotFoundError: If the node does not exist
        """
        node = self.nodes.get(name)
        if node is None:
            raise NodeNotFoundError(name)
        return node

    def get_nodes(self, predicate: Callable[[NodeDefinition], bool]) -> list[NodeDefinition]:
        """Nodes matching a predicate, in insertion order."""
        return [node for node in self.nodes.values() if predicate(node)]

    def get_pinned_data(self, name: str) -> list[NodeData] | None:
        """Pinned output for a node, if any."""
        return self.pin_data.get(name)

    def outgoing(self, name: str, type: str | None = None) -> list[Connection]:
        """Connections leaving a node, optionally of one type."""
        by_type = self.connections_by_source.get(name, {})
        if type is not None:
            return list(by_type.get(type, []))
        return [c for conns in by_type.values() for c in conns]

    def incoming(self, name: str, type: str | None = None) -> list[Connection]:
        """Connections entering a node, optionally of one type."""
        by_type = self.connections_by_destination.get(name, {})
        if type is not None:
            return list(by_type.get(type, []))
        return [c for conns in by_type.values() for c in conns]

    def get_root_nodes(self) -> list[str]:
        """Nodes without incoming main connections."""
        return [n for n in self.nodes if not self.incoming(n, NodeConnectionType.MAIN)]

    def get_leaf_nodes(self) -> list[str]:
        """Nodes without outgoing main connections."""
        return [n for n in self.nodes if not self.outgoing(n, NodeConnectionType.MAIN)]

    # --- Static data ---

    def get_static_data(self, namespace: str) -> dict[str, Any]:
        """Live static data namespace, created on first access."""
        return self.static_data.setdefault(namespace, {})

    def set_static_data(self, namespace: str, values: dict[str, Any]) -> None:
        """Merge values into a namespace. Other namespaces are left untouched."""
        self.get_static_data(namespace).update(values)

    def static_data_lock(self, namespace: str) -> asyncio.Lock:
        """Lock serializing writers of one namespace."""
        lock = self._static_locks.get(namespace)
        if lock is None:
            lock = self._static_locks[namespace] = asyncio.Lock()
        return lock

    def static_data_snapshot(self) -> dict[str, dict[str, Any]]:
        """Deep copy of all static data."""
        return copy.deepcopy(self.static_data)

    def __repr__(self) -> str:
        return f"Workflow(name={self.name!r}, nodes={len(self.nodes)}, connections={len(self._connections)})"


def _duplicates(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for name in names:
        if name in seen and name not in dupes:
            dupes.append(name)
        seen.add(name)
    return dupes
