"""
Graph algorithms over a Workflow.

All traversals are breadth-first and track a visited set, so a node
reachable over several paths is returned once and a cycle terminates.
"""

from __future__ import annotations

import copy
import dataclasses
from collections import deque
from typing import TYPE_CHECKING, Iterable, Union

from ..core.exceptions import InvalidDefinitionError, NoStartNodeError, NodeNotFoundError
from .expression_engine import rename_node_references
from .types import Connection, NodeConnectionType

# A connection type, a tuple of types, or the ALL / ALL_NON_MAIN filters
ConnectionFilter = Union[str, tuple[str, ...]]

if TYPE_CHECKING:
    from .node_registry import NodeRegistry
    from .workflow import ConnectionIndex, Workflow


def _type_matches(conn_type: str, connection_type: ConnectionFilter) -> bool:
    if isinstance(connection_type, tuple):
        return conn_type in connection_type
    if connection_type == NodeConnectionType.ALL:
        return True
    if connection_type == NodeConnectionType.ALL_NON_MAIN:
        return conn_type != NodeConnectionType.MAIN
    return conn_type == connection_type


def _neighbors(
    index: ConnectionIndex,
    name: str,
    connection_type: ConnectionFilter,
    upstream: bool,
) -> list[str]:
    result: list[str] = []
    for conn_type, conns in index.get(name, {}).items():
        if not _type_matches(conn_type, connection_type):
            continue
        for conn in conns:
            neighbor = conn.source_node if upstream else conn.target_node
            if neighbor not in result:
                result.append(neighbor)
    return result


def _traverse(
    workflow: Workflow,
    name: str,
    connection_type: ConnectionFilter,
    depth: int,
    upstream: bool,
) -> list[str]:
    workflow.get_node(name)
    index = workflow.connections_by_destination if upstream else workflow.connections_by_source

    visited = {name}
    found: list[str] = []
    queue: deque[tuple[str, int]] = deque([(name, 0)])

    while queue:
        current, level = queue.popleft()
        if depth != -1 and level >= depth:
            continue
        for neighbor in _neighbors(index, current, connection_type, upstream):
            if neighbor in visited:
                continue
            visited.add(neighbor)
            found.append(neighbor)
            queue.append((neighbor, level + 1))

    return found


def get_parent_nodes(
    workflow: Workflow,
    name: str,
    connection_type: ConnectionFilter = NodeConnectionType.MAIN,
    depth: int = -1,
) -> list[str]:
    """
    Ancestors of a node, nearest first.

    Args:
        workflow: Workflow to traverse
        name: Node to start from (not included in the result)
        connection_type: A connection type, a tuple of types, or the ALL / ALL_NON_MAIN filters
        depth: Maximum number of hops, -1 for unbounded
    """
    return _traverse(workflow, name, connection_type, depth, upstream=True)


def get_child_nodes(
    workflow: Workflow,
    name: str,
    connection_type: ConnectionFilter = NodeConnectionType.MAIN,
    depth: int = -1,
) -> list[str]:
    """Descendants of a node, nearest first. See get_parent_nodes."""
    return _traverse(workflow, name, connection_type, depth, upstream=False)


def get_highest_node(
    workflow: Workflow,
    name: str,
    visited: dict[str, list[str]] | None = None,
) -> list[str]:
    """
    Topmost enabled ancestors of a node along main connections.

    Returns the node itself when nothing enabled sits above it. Disabled
    ancestors are walked through but never returned. `visited` memoizes the
    result per node, so a node reachable over several paths is walked once.
    """
    workflow.get_node(name)
    if visited is None:
        visited = {}
    if name in visited:
        return visited[name]
    visited[name] = []

    highest: list[str] = []
    for conn in workflow.incoming(name, NodeConnectionType.MAIN):
        for top in get_highest_node(workflow, conn.source_node, visited):
            if top not in highest:
                highest.append(top)

    if not highest and not workflow.nodes[name].disabled:
        highest = [name]
    visited[name] = highest
    return highest


def get_parent_main_input_node(workflow: Workflow, name: str) -> str:
    """
    Node that consumes a sub-node.

    A node connected only through non-main outputs (a tool or model feeding
    another node) runs as part of the node it feeds; follow those outputs
    until a node with main data flow is reached.
    """
    workflow.get_node(name)
    visited = {name}
    current = name

    while True:
        aux = [
            c.target_node
            for c in workflow.outgoing(current)
            if c.type not in NodeConnectionType.DISPATCH
        ]
        nxt = next((t for t in aux if t not in visited), None)
        if nxt is None:
            return current
        visited.add(nxt)
        current = nxt


def get_start_node(
    workflow: Workflow,
    registry: NodeRegistry,
    node_names: Iterable[str] | None = None,
    destination_node: str | None = None,
) -> str:
    """
    Pick the node a run starts from.

    With a destination node, its entry points are found first by walking up
    from the node that consumes it. Among the candidates, trigger nodes win
    over polling nodes, ties break by insertion order, and otherwise the
    first enabled node without main parents is used.

    Raises:
        NoStartNodeError: If no enabled candidate exists
    """
    if destination_node is not None:
        entry = get_parent_main_input_node(workflow, destination_node)
        candidates = get_highest_node(workflow, entry)
    elif node_names is not None:
        candidates = list(node_names)
        for candidate in candidates:
            workflow.get_node(candidate)
    else:
        candidates = list(workflow.nodes)

    ordered = [
        n for n in workflow.nodes if n in candidates and not workflow.nodes[n].disabled
    ]
    if not ordered:
        raise NoStartNodeError()

    for capability in ("is_trigger", "is_poll"):
        for name in ordered:
            node_type = workflow.nodes[name].type
            if registry.has(node_type) and getattr(registry.get(node_type), capability, False):
                return name

    for name in ordered:
        if not workflow.incoming(name, NodeConnectionType.MAIN):
            return name

    raise NoStartNodeError(
        "No trigger node and no node without inputs among the candidates"
    )


def find_cycle(
    workflow: Workflow,
    connection_types: tuple[str, ...] = NodeConnectionType.DISPATCH,
) -> list[str] | None:
    """Return one cycle as a closed path of node names, or None."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {name: WHITE for name in workflow.nodes}

    def children(name: str) -> list[str]:
        return [c.target_node for c in workflow.outgoing(name) if c.type in connection_types]

    for root in workflow.nodes:
        if color[root] != WHITE:
            continue
        path: list[str] = [root]
        stack = [iter(children(root))]
        color[root] = GREY

        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                color[path.pop()] = BLACK
                continue
            if child not in color:
                continue
            if color[child] == GREY:
                return path[path.index(child):] + [child]
            if color[child] == WHITE:
                color[child] = GREY
                path.append(child)
                stack.append(iter(children(child)))

    return None


def topological_sort(
    workflow: Workflow,
    connection_types: tuple[str, ...] = NodeConnectionType.DISPATCH,
) -> list[str]:
    """
    Order nodes so every node follows its parents (Kahn's algorithm).

    Ties break by insertion order.

    Raises:
        InvalidDefinitionError: If the selected connections form a cycle
    """
    in_degree = {name: 0 for name in workflow.nodes}
    for conn in workflow.connections:
        if conn.type in connection_types:
            in_degree[conn.target_node] += 1

    position = {name: i for i, name in enumerate(workflow.nodes)}
    ready = sorted((n for n, d in in_degree.items() if d == 0), key=position.__getitem__)
    order: list[str] = []

    while ready:
        current = ready.pop(0)
        order.append(current)
        released = []
        for conn in workflow.outgoing(current):
            if conn.type not in connection_types:
                continue
            in_degree[conn.target_node] -= 1
            if in_degree[conn.target_node] == 0:
                released.append(conn.target_node)
        if released:
            ready = sorted(ready + released, key=position.__getitem__)

    if len(order) < len(workflow.nodes):
        remaining = [n for n in workflow.nodes if n not in order]
        raise InvalidDefinitionError("Workflow contains a cycle", remaining)
    return order


def rename_node(workflow: Workflow, old_name: str, new_name: str) -> None:
    """
    Rename a node everywhere it is referenced.

    Updates the node table, every connection, pinned data, the node's static
    data namespace and node references inside all parameters. Renaming a
    node that has already been renamed is a no-op.

    Raises:
        NodeNotFoundError: If neither name exists
        InvalidDefinitionError: If the new name belongs to another node or
            holds both quote characters
    """
    if old_name == new_name:
        workflow.get_node(old_name)
        return
    if old_name not in workflow.nodes:
        if new_name in workflow.nodes:
            return
        raise NodeNotFoundError(old_name)
    if new_name in workflow.nodes:
        raise InvalidDefinitionError(f'Cannot rename "{old_name}": node "{new_name}" already exists')
    if '"' in new_name and "'" in new_name:
        raise InvalidDefinitionError(
            f'Cannot rename "{old_name}": a node name cannot contain both quote characters'
        )

    nodes = {}
    for name, node in workflow.nodes.items():
        parameters = rename_node_references(copy.deepcopy(node.parameters), old_name, new_name)
        if name == old_name:
            nodes[new_name] = dataclasses.replace(node, name=new_name, parameters=parameters)
        else:
            nodes[name] = dataclasses.replace(node, parameters=parameters)

    connections = [_rename_connection(c, old_name, new_name) for c in workflow.connections]

    pin_data = {
        (new_name if name == old_name else name): items
        for name, items in workflow.pin_data.items()
    }
    static_data = {
        (f"node:{new_name}" if key == f"node:{old_name}" else key): value
        for key, value in workflow.static_data.items()
    }

    workflow._apply(nodes, connections, pin_data, static_data)


def _rename_connection(conn: Connection, old_name: str, new_name: str) -> Connection:
    if old_name not in (conn.source_node, conn.target_node):
        return conn
    return dataclasses.replace(
        conn,
        source_node=new_name if conn.source_node == old_name else conn.source_node,
        target_node=new_name if conn.target_node == old_name else conn.target_node,
    )
