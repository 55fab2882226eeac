"""
Expression engine for resolving {{ }} template expressions.

Uses simpleeval for safe expression evaluation (no eval() or exec()).
Resolution is a pure function of the ExpressionContext it is given.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from simpleeval import DEFAULT_FUNCTIONS, DEFAULT_OPERATORS, SimpleEval

from ..core.exceptions import ExpressionEvaluationError, NodeError, UnresolvedReferenceError
from .types import NodeData

logger = logging.getLogger(__name__)

# A whole string that is exactly one template
SINGLE_EXPRESSION = re.compile(r"\s*\{\{((?:(?!\}\}).)+)\}\}\s*", re.DOTALL)
EXPRESSION = re.compile(r"\{\{(.+?)\}\}", re.DOTALL)

# $node["Name"], $node['Name'], $("Name") with an optional .json / .json.field / .data tail
NODE_REFERENCE = re.compile(
    r"""(?:\$node\[(?P<q1>["'])(?P<n1>.+?)(?P=q1)\]|\$\((?P<q2>["'])(?P<n2>.+?)(?P=q2)\)|\$node\.(?P<n3>\w+))"""
    r"""(?P<tail>\.json\.(?P<field>\w+)|\.json|\.data)?"""
)

BASE_FUNCTIONS: dict[str, Any] = {
    **DEFAULT_FUNCTIONS,
    # Type conversion
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "list": list,
    "dict": dict,
    # String functions
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
    "trim": lambda s: str(s).strip(),
    "split": lambda s, sep=" ": str(s).split(sep),
    "join": lambda arr, sep="": sep.join(str(x) for x in arr),
    "includes": lambda s, search: search in s if isinstance(s, (list, dict)) else search in str(s),
    "replace": lambda s, old, new: str(s).replace(old, new),
    "substring": lambda s, start, end=None: str(s)[start:end],
    "length": lambda x: len(x),
    "startswith": lambda s, prefix: str(s).startswith(prefix),
    "endswith": lambda s, suffix: str(s).endswith(suffix),
    # Array functions
    "first": lambda arr: arr[0] if arr else None,
    "last": lambda arr: arr[-1] if arr else None,
    "at": lambda arr, idx: arr[idx] if 0 <= idx < len(arr) else None,
    "slice": lambda arr, start, end=None: arr[start:end],
    "reverse": lambda arr: list(reversed(arr)),
    "sort": lambda arr: sorted(arr),
    "unique": lambda arr: list(dict.fromkeys(arr)),
    "flatten": lambda arr: [item for sublist in arr for item in sublist],
    # Math functions
    "abs": abs,
    "min": min,
    "max": max,
    "sum": sum,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    # JSON functions
    "json_stringify": lambda v: json.dumps(v),
    "json_parse": lambda s: json.loads(s) if s else None,
    # Type checking
    "typeof": lambda v: type(v).__name__,
    "is_array": lambda v: isinstance(v, list),
    "is_empty": lambda v: v is None or v == "" or (isinstance(v, (list, dict)) and len(v) == 0),
    "is_none": lambda v: v is None,
    # Object functions
    "keys": lambda d: list(d.keys()) if isinstance(d, dict) else [],
    "values": lambda d: list(d.values()) if isinstance(d, dict) else [],
    "get": lambda d, key, default=None: d.get(key, default) if isinstance(d, dict) else default,
}


@dataclass
class ExpressionContext:
    """Context for expression evaluation."""

    json_data: dict[str, Any]  # $json
    input_data: list[NodeData]  # $input
    node_outputs: dict[str, list[NodeData]]  # $node, pinned data already applied
    static_data: dict[str, dict[str, Any]] = field(default_factory=dict)  # $static
    env: dict[str, str | None] = field(default_factory=dict)  # $env
    execution: dict[str, Any] = field(default_factory=dict)  # $execution
    workflow: dict[str, Any] = field(default_factory=dict)  # $workflow
    item_index: int = 0  # $itemIndex
    # Nodes that may be referenced; None allows any node with output
    ancestors: frozenset[str] | None = None
    timezone: str = "UTC"


class ExpressionEngine:
    """
    Safe expression parser that doesn't use eval() or exec().

    Uses simpleeval library with a whitelist of allowed functions.
    """

    def resolve(
        self,
        value: Any,
        context: ExpressionContext,
        node_name: str = "",
        skip_json: bool = False,
    ) -> Any:
        """
        Resolve all {{ }} expressions in a value.

        Handles strings, objects, and arrays recursively.

        Args:
            value: The value to resolve expressions in
            context: Expression context with $json, $node, etc.
            node_name: Node owning the value, used to attribute errors
            skip_json: If True, leave $json expressions unresolved (for per-item evaluation)

        Raises:
            UnresolvedReferenceError: If a referenced node is not an ancestor or has no output
            ExpressionEvaluationError: On malformed templates or evaluation failures
        """
        if isinstance(value, str):
            return self._resolve_string(value, context, node_name, skip_json)

        if isinstance(value, list):
            return [self.resolve(item, context, node_name, skip_json) for item in value]

        if isinstance(value, dict):
            return {key: self.resolve(val, context, node_name, skip_json) for key, val in value.items()}

        return value

    def _resolve_string(
        self,
        string: str,
        context: ExpressionContext,
        node_name: str,
        skip_json: bool,
    ) -> Any:
        if "{{" not in string:
            return string

        # Entire string is a single expression: return the typed value
        single = SINGLE_EXPRESSION.fullmatch(string)
        if single:
            inner = single.group(1).strip()
            if skip_json and _uses_item(inner):
                return string
            return self._evaluate(inner, context, node_name)

        return self._replace_expressions(string, context, node_name, skip_json)

    def _replace_expressions(
        self,
        string: str,
        context: ExpressionContext,
        node_name: str,
        skip_json: bool,
    ) -> str:
        """Replace all {{ }} expressions in a string with evaluated values."""
        parts: list[str] = []
        position = 0

        for match in EXPRESSION.finditer(string):
            parts.append(string[position:match.start()])
            expr = match.group(1).strip()
            if skip_json and _uses_item(expr):
                parts.append(match.group(0))
            else:
                parts.append(self._stringify(self._evaluate(expr, context, node_name)))
            position = match.end()

        rest = string[position:]
        if "{{" in rest:
            raise ExpressionEvaluationError(node_name, string, "unterminated '{{' in template")
        parts.append(rest)
        return "".join(parts)

    def _evaluate(self, expression: str, context: ExpressionContext, node_name: str) -> Any:
        """Evaluate a single expression safely using simpleeval."""
        if not expression:
            raise ExpressionEvaluationError(node_name, expression, "empty expression")

        transformed = self._transform_expression(expression)
        evaluator = SimpleEval(
            operators=DEFAULT_OPERATORS.copy(),
            functions=self._build_functions(context, node_name),
            names=self._build_eval_context(context),
        )

        try:
            return evaluator.eval(transformed)
        except NodeError:
            raise
        except Exception as e:
            logger.debug("Expression evaluation failed: %s (expression: %s)", e, expression)
            raise ExpressionEvaluationError(node_name, expression, str(e)) from e

    def _transform_expression(self, expression: str) -> str:
        """Transform n8n-style expressions to Python-compatible syntax."""

        def node_replacer(match: re.Match[str]) -> str:
            name = match.group("n1") or match.group("n2") or match.group("n3")
            ref = f"node_ref({json.dumps(name)})"
            tail = match.group("tail")
            if not tail:
                return ref
            if tail == ".data":
                return f'{ref}["data"]'
            if match.group("field"):
                return f'{ref}["json"].get("{match.group("field")}")'
            return f'{ref}["json"]'

        result = NODE_REFERENCE.sub(node_replacer, expression)

        # Handle $json.field -> json_data.get("field")
        result = re.sub(r"\$json\.(\w+)", r'json_data.get("\1")', result)
        result = result.replace("$json", "json_data")

        result = result.replace("$input", "input_data")

        # $static.global -> static_data.get("global", {})
        result = re.sub(r"\$static\.(\w+)", r'static_data.get("\1", {})', result)
        result = result.replace("$static", "static_data")

        result = re.sub(r"\$env\.(\w+)", r'env.get("\1")', result)
        result = result.replace("$env", "env")

        result = re.sub(r"\$(execution|workflow)\.(\w+)", r'\1.get("\2")', result)
        result = result.replace("$execution", "execution")
        result = result.replace("$workflow", "workflow")

        result = result.replace("$itemIndex", "item_index")

        return result

    def _build_eval_context(self, context: ExpressionContext) -> dict[str, Any]:
        """Build the evaluation context dictionary."""
        return {
            "json_data": context.json_data,
            "input_data": [item.json for item in context.input_data],
            "static_data": context.static_data,
            "env": context.env,
            "execution": context.execution,
            "workflow": context.workflow,
            "item_index": context.item_index,
            "None": None,
            "True": True,
            "False": False,
        }

    def _build_functions(self, context: ExpressionContext, node_name: str) -> dict[str, Any]:
        """Whitelisted helpers plus the ones bound to this context."""
        tz = _zone(context.timezone)

        def node_ref(name: str) -> dict[str, Any]:
            if context.ancestors is not None and name not in context.ancestors:
                raise UnresolvedReferenceError(node_name, name, "node is not an ancestor")
            items = context.node_outputs.get(name)
            if items is None:
                raise UnresolvedReferenceError(node_name, name, "node has not been executed")
            return {
                "json": items[0].json if items else {},
                "data": [item.json for item in items],
            }

        return {
            **BASE_FUNCTIONS,
            "node_ref": node_ref,
            # Date functions, in the workflow timezone
            "now": lambda: int(datetime.now(tz).timestamp() * 1000),
            "date_now": lambda: datetime.now(tz).isoformat(),
            "today": lambda: datetime.now(tz).date().isoformat(),
            "timestamp": lambda: int(datetime.now(tz).timestamp()),
            "format_date": lambda ts, fmt="%Y-%m-%d %H:%M:%S": datetime.fromtimestamp(
                ts / 1000 if ts > 1e11 else ts, tz
            ).strftime(fmt),
        }

    def _stringify(self, value: Any) -> str:
        """Convert value to string for interpolation."""
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    @staticmethod
    def create_context(
        current_data: list[NodeData],
        node_outputs: dict[str, list[NodeData]],
        execution_id: str,
        item_index: int = 0,
        *,
        ancestors: frozenset[str] | None = None,
        pin_data: dict[str, list[NodeData]] | None = None,
        static_data: dict[str, dict[str, Any]] | None = None,
        mode: str = "manual",
        workflow: dict[str, Any] | None = None,
        timezone: str = "UTC",
        allow_env: bool = True,
    ) -> ExpressionContext:
        """Create expression context from execution state."""
        current_item = current_data[item_index] if item_index < len(current_data) else NodeData(json={})

        # Pinned output wins over live output
        outputs = dict(node_outputs)
        outputs.update(pin_data or {})

        return ExpressionContext(
            json_data=current_item.json,
            input_data=current_data,
            node_outputs=outputs,
            static_data=static_data or {},
            env=dict(os.environ) if allow_env else {},
            execution={"id": execution_id, "mode": mode},
            workflow=workflow or {},
            item_index=item_index,
            ancestors=ancestors,
            timezone=timezone,
        )


def _uses_item(expression: str) -> bool:
    return "$json" in expression or "$itemIndex" in expression


def _zone(name: str) -> dt_timezone | ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return dt_timezone.utc


def rename_node_references(value: Any, old_name: str, new_name: str) -> Any:
    """
    Rewrite node references to old_name inside a parameter value.

    Walks nested lists and dicts. Only the reference syntaxes $node["x"],
    $node['x'], $node.x and $("x") are touched, so names that merely share
    a prefix are left alone.
    """
    if isinstance(value, str):
        return _rename_in_string(value, old_name, new_name)
    if isinstance(value, list):
        return [rename_node_references(item, old_name, new_name) for item in value]
    if isinstance(value, dict):
        return {key: rename_node_references(val, old_name, new_name) for key, val in value.items()}
    return value


def _rename_in_string(string: str, old_name: str, new_name: str) -> str:
    if old_name not in string:
        return string

    old = re.escape(old_name)
    result = re.sub(
        rf"\$node\[(?P<q>[\"']){old}(?P=q)\]",
        lambda m: f"$node[{quote_node_name(new_name, m.group('q'))}]",
        string,
    )
    result = re.sub(
        rf"\$\((?P<q>[\"']){old}(?P=q)\)",
        lambda m: f"$({quote_node_name(new_name, m.group('q'))})",
        result,
    )
    if re.fullmatch(r"\w+", old_name):
        if re.fullmatch(r"\w+", new_name):
            dotted = f"$node.{new_name}"
        else:
            dotted = f"$node[{quote_node_name(new_name)}]"
        result = re.sub(rf"\$node\.{old}(?!\w)", lambda m: dotted, result)
    return result


def quote_node_name(name: str, quote: str = '"') -> str:
    """
    Quote a node name for a reference, switching quote style when the name
    contains the preferred one. References take the name verbatim, so a
    name holding both quote characters cannot be referenced.
    """
    if quote in name:
        quote = "'" if quote == '"' else '"'
    if quote in name:
        raise ValueError(f"Node name {name!r} contains both quote characters")
    return f"{quote}{name}{quote}"


# Singleton instance
expression_engine = ExpressionEngine()
