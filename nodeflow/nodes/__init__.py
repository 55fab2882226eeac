"""Workflow node implementations."""

from .base import BaseNode, NodeTypeInfo
from .triggers import StartNode, CronNode
from .flow import IfNode, MergeNode, WaitNode, NoOpNode, StopAndErrorNode
from .data import SetNode, TransformNode
from .integrations import HttpRequestNode, OpenAIChatNode

__all__ = [
    "BaseNode",
    "NodeTypeInfo",
    # Triggers
    "StartNode",
    "CronNode",
    # Flow control
    "IfNode",
    "MergeNode",
    "WaitNode",
    "NoOpNode",
    "StopAndErrorNode",
    # Transform
    "SetNode",
    "TransformNode",
    # Integrations
    "HttpRequestNode",
    "OpenAIChatNode",
]
