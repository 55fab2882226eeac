"""Trigger nodes - workflow entry points."""

from .start import StartNode
from .cron import CronNode

__all__ = ["StartNode", "CronNode"]
