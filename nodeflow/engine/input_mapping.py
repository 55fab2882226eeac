"""
JMESPath input mapping applied to a node's items before it executes.

A mapping is either a single expression, whose result becomes the item, or
a set of named fields:

    "json.body.items[0]"
    {"fields": {"city": "json.body.city", "count": "length(items)"}, "default": null}

Expressions are evaluated per item against {"json": <item>, "items": [<all items>]}.
"""

from __future__ import annotations

import logging
from typing import Any

import jmespath
from jmespath.exceptions import JMESPathError

from ..core.exceptions import ExpressionEvaluationError
from .types import NodeData

logger = logging.getLogger(__name__)


def apply_input_mapping(
    mapping: str | dict[str, Any] | None,
    input_data: list[NodeData],
    node_name: str = "",
) -> list[NodeData]:
    """
    Map every input item through a JMESPath mapping.

    Raises:
        ExpressionEvaluationError: On invalid expressions or a malformed mapping
    """
    if not mapping:
        return input_data

    all_items = [item.json for item in input_data]
    result: list[NodeData] = []

    for item in input_data:
        document = {"json": item.json, "items": all_items}

        if isinstance(mapping, str):
            value = _search(mapping, document, node_name)
            json_data = value if isinstance(value, dict) else {"value": value}
        elif isinstance(mapping, dict) and isinstance(mapping.get("fields"), dict):
            default = mapping.get("default")
            json_data = {}
            for field_name, expression in mapping["fields"].items():
                value = _search(expression, document, node_name)
                json_data[field_name] = default if value is None else value
        else:
            raise ExpressionEvaluationError(
                node_name,
                str(mapping),
                'input mapping must be a string or {"fields": {...}, "default": ...}',
            )

        result.append(NodeData(json=json_data, binary=item.binary))

    return result


def _search(expression: Any, document: dict[str, Any], node_name: str) -> Any:
    if not isinstance(expression, str):
        raise ExpressionEvaluationError(node_name, str(expression), "JMESPath expression must be a string")
    try:
        return jmespath.search(expression, document)
    except JMESPathError as e:
        logger.debug("Input mapping failed: %s (expression: %s)", e, expression)
        raise ExpressionEvaluationError(node_name, expression, str(e)) from e
