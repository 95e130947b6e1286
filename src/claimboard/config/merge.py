"""Deep merge for cascading config layers."""

from __future__ import annotations

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` onto ``base`` without mutating either.

    - Nested dicts merge recursively
    - Lists are replaced, never concatenated
    - None in ``override`` leaves the base value alone
    """
    result = dict(base)

    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value

    return result


def merge_configs(*layers: dict[str, Any]) -> dict[str, Any]:
    """Fold config layers left to right; later layers win."""
    result: dict[str, Any] = {}
    for layer in layers:
        if layer:
            result = deep_merge(result, layer)
    return result
