"""Data transformation nodes."""

from .set_node import SetNode
from .transform import TransformNode

__all__ = ["SetNode", "TransformNode"]
