"""
Sanitizing of tool parameter schemas for the Google Gemini API.

Gemini accepts an OpenAPI subset: no ``additionalProperties``, no JSON schema
bookkeeping keys, and optional values expressed as ``nullable`` instead of an
``anyOf`` with a ``null`` branch.
"""

from functools import singledispatch
from typing import Any, Dict, Set, cast

UNSUPPORTED_KEYS = frozenset({"additionalProperties", "$schema", "$defs", "definitions", "$id"})


def sanitize(schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Performs all necessary, recursive sanitization steps on a tool schema.

    Args:
        schema: The tool parameter schema to sanitize.

    Returns:
        A sanitized schema dictionary ready for the Gemini API.
    """
    return cast(Dict[str, Any], _recursive_sanitize(schema, set()))


@singledispatch
def _recursive_sanitize(schema: Any, seen: Set[int]) -> Any:
    return schema


@_recursive_sanitize.register(dict)
def _(schema: dict, seen: Set[int]) -> dict:
    obj_id = id(schema)
    if obj_id in seen:
        return schema
    seen.add(obj_id)

    level = _collapse_nullable(_ensure_required_params(schema))
    result = {key: _recursive_sanitize(value, seen) for key, value in level.items() if key not in UNSUPPORTED_KEYS}

    seen.remove(obj_id)
    return result


@_recursive_sanitize.register(list)
def _(schema: list, seen: Set[int]) -> list:
    obj_id = id(schema)
    if obj_id in seen:
        return schema
    seen.add(obj_id)

    result = [_recursive_sanitize(item, seen) for item in schema]

    seen.remove(obj_id)
    return result


def _ensure_required_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Drops names from ``required`` that ``properties`` does not define."""
    if "required" not in params or not isinstance(params.get("properties"), dict):
        return params

    _params = params.copy()
    defined = set(_params["properties"])
    valid_required = [name for name in _params["required"] if name in defined]

    if valid_required:
        _params["required"] = valid_required
    else:
        _params.pop("required", None)

    return _params


def _collapse_nullable(params: Dict[str, Any]) -> Dict[str, Any]:
    """Turns ``anyOf: [X, {"type": "null"}]`` into ``X`` with ``nullable: true``."""
    variants = params.get("anyOf")
    if not isinstance(variants, list):
        return params

    non_null = [variant for variant in variants if not (isinstance(variant, dict) and variant.get("type") == "null")]
    if len(non_null) != 1 or len(non_null) == len(variants) or not isinstance(non_null[0], dict):
        return params

    collapsed = {key: value for key, value in params.items() if key != "anyOf"}
    collapsed.update(non_null[0])
    collapsed["nullable"] = True
    return collapsed
