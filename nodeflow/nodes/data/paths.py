"""Dotted-path helpers for nested item data."""

from __future__ import annotations

from typing import Any


def get_path(obj: dict[str, Any], path: str) -> Any:
    """Get value at nested path, None when any segment is missing."""
    current: Any = obj
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        else:
            return None
    return current


def set_path(obj: dict[str, Any], path: str, value: Any) -> None:
    """Set value at nested path, creating intermediate objects as needed."""
    keys = path.split(".")
    current = obj

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def delete_path(obj: dict[str, Any], path: str) -> None:
    """Delete value at nested path. Missing paths are ignored."""
    keys = path.split(".")
    current = obj

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            return
        current = current[key]

    current.pop(keys[-1], None)
