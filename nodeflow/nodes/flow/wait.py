"""Wait node - pause a branch for a while."""

from __future__ import annotations

import asyncio
from typing import Any, TYPE_CHECKING

from ...core.config import settings
from ...core.exceptions import ParameterValidationError
from ..base import BaseNode, NodeTypeDescription, NodeProperty, NodePropertyOption

if TYPE_CHECKING:
    from ...engine.types import ExecutionContext, NodeData, NodeDefinition, NodeExecutionResult

UNIT_SECONDS = {"seconds": 1, "minutes": 60, "hours": 3600}


def wait_seconds(duration: Any, unit: str) -> float:
    """Delay in seconds, clamped to [0, NODEFLOW_WAIT_MAX_SECONDS]."""
    seconds = float(duration) * UNIT_SECONDS.get(unit, 1)
    return max(0.0, min(seconds, settings.wait_max_seconds))


class WaitNode(BaseNode):
    """Pauses, then passes its items through unchanged. Wakes early when the run is canceled."""

    node_description = NodeTypeDescription(
        name="Wait",
        display_name="Wait",
        description="Pause execution for a while",
        group=["flow"],
        properties=[
            NodeProperty(
                display_name="Duration",
                name="duration",
                type="number",
                default=1,
                description="How long to wait, may reference $json",
            ),
            NodeProperty(
                display_name="Unit",
                name="unit",
                type="options",
                default="seconds",
                options=[NodePropertyOption(name=unit.title(), value=unit) for unit in UNIT_SECONDS],
            ),
        ],
    )

    @property
    def type(self) -> str:
        return "Wait"

    @property
    def description(self) -> str:
        return "Pause execution for a while"

    def validate(self, parameters: dict[str, Any]) -> list[str]:
        problems = super().validate(parameters)
        duration = parameters.get("duration")
        if isinstance(duration, (int, float)) and not isinstance(duration, bool) and duration < 0:
            problems.append('Parameter "duration" must not be negative')
        return problems

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        duration = context.resolve(
            self.get_parameter(node_definition, "duration", 1), node_definition.name, input_data
        )
        try:
            seconds = wait_seconds(duration, self.get_parameter(node_definition, "unit", "seconds"))
        except (TypeError, ValueError) as e:
            raise ParameterValidationError(
                node_definition.name, [f'Parameter "duration" must be a number, got {duration!r}']
            ) from e

        if seconds and not context.canceled:
            waiter = asyncio.ensure_future(context.cancel_event.wait())
            try:
                await asyncio.wait({waiter}, timeout=seconds)
            finally:
                waiter.cancel()

        return self.output(input_data)
