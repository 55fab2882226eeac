"""Node registry for managing workflow node types."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..core.exceptions import DuplicateTypeError, RegistryFrozenError, UnknownTypeError

if TYPE_CHECKING:
    from ..nodes.base import BaseNode, NodeTypeInfo

logger = logging.getLogger(__name__)


class NodeRegistry:
    """
    Registry for workflow node types.

    Registration is a setup step. Once frozen, the registry is read-only and
    lookups need no locking.
    """

    def __init__(self) -> None:
        self._instances: dict[str, BaseNode] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, node: type[BaseNode] | BaseNode, type_name: str | None = None) -> BaseNode:
        """
        Register a node class or instance under its type name.

        Raises:
            DuplicateTypeError: If the type name is already registered
            RegistryFrozenError: If the registry has been frozen
        """
        instance = node() if isinstance(node, type) else node
        name = type_name or instance.type

        if self._frozen:
            raise RegistryFrozenError(name)
        if name in self._instances:
            raise DuplicateTypeError(name)

        self._instances[name] = instance
        logger.debug("Registered node type %s", name)
        return instance

    def freeze(self) -> None:
        """Disallow further registration."""
        self._frozen = True

    def get(self, node_type: str) -> BaseNode:
        """
        Get a cached node instance by type.

        Node instances are stateless, so the same instance serves every run.

        Raises:
            UnknownTypeError: If node type is not registered
        """
        instance = self._instances.get(node_type)
        if instance is None:
            raise UnknownTypeError(node_type)
        return instance

    def has(self, node_type: str) -> bool:
        """Check if node type is registered."""
        return node_type in self._instances

    def list(self) -> list[str]:
        """List all registered node types."""
        return list(self._instances.keys())

    def get_node_info_full(self) -> list[NodeTypeInfo]:
        """Full schema of every registered node type."""
        return [instance.describe() for instance in self._instances.values()]

    def get_node_type_info(self, node_type: str) -> NodeTypeInfo:
        """Full schema of one node type."""
        return self.get(node_type).describe()


# Process-wide registry, populated by register_all_nodes()
node_registry = NodeRegistry()


def register_builtin_nodes(registry: NodeRegistry) -> None:
    """Register all built-in node types into a registry."""
    from ..nodes import (
        # Triggers
        StartNode,
        CronNode,
        # Flow control
        IfNode,
        MergeNode,
        WaitNode,
        NoOpNode,
        StopAndErrorNode,
        # Transform
        SetNode,
        TransformNode,
        # Integrations
        HttpRequestNode,
        OpenAIChatNode,
    )

    all_node_classes: list[type[BaseNode]] = [
        StartNode,
        CronNode,
        IfNode,
        MergeNode,
        WaitNode,
        NoOpNode,
        StopAndErrorNode,
        SetNode,
        TransformNode,
        HttpRequestNode,
        OpenAIChatNode,
    ]

    for node_class in all_node_classes:
        registry.register(node_class)


def register_all_nodes() -> NodeRegistry:
    """Register all built-in nodes into the process-wide registry and freeze it."""
    if node_registry.frozen:
        return node_registry
    register_builtin_nodes(node_registry)
    node_registry.freeze()
    return node_registry
