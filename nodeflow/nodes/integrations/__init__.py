"""Integration nodes - external service calls."""

from .http_request import HttpRequestNode
from .openai_chat import OpenAIChatNode

__all__ = ["HttpRequestNode", "OpenAIChatNode"]
