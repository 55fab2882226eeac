"""Flow control nodes."""

from .if_node import IfNode
from .merge import MergeNode
from .wait import WaitNode
from .no_op import NoOpNode
from .stop_and_error import StopAndErrorNode

__all__ = ["IfNode", "MergeNode", "WaitNode", "NoOpNode", "StopAndErrorNode"]
