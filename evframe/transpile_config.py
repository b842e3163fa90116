"""Turning a JSON config object into block-style YAML text."""

from __future__ import annotations

import json
import math
from typing import Any, Iterator

_ALWAYS_UNSAFE_START = frozenset(",[]{}#&*!|>'\"%@`")
_INDICATOR_START = frozenset("-?:")


def _is_plain_safe(text: str) -> bool:
    if not text or text != text.strip() or not text.isprintable():
        return False
    if text[0] in _ALWAYS_UNSAFE_START:
        return False
    if text[0] in _INDICATOR_START and (len(text) == 1 or text[1] == " "):
        return False
    if ": " in text or " #" in text or text.endswith(":"):
        return False
    return True


def _string(text: str) -> str:
    # Strings are written unquoted wherever YAML allows it.
    if _is_plain_safe(text):
        return text
    return json.dumps(text, ensure_ascii=False)


def _scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value) if math.isfinite(value) else "null"
    if isinstance(value, str):
        return _string(value)
    if isinstance(value, dict):
        return "{}"
    if isinstance(value, (list, tuple)):
        return "[]"
    raise TypeError(f"Cannot convert value of type {type(value).__name__} to YAML")


def _is_nested(value: Any) -> bool:
    return isinstance(value, (dict, list, tuple)) and len(value) > 0


def _emit(value: Any, indent: int) -> Iterator[str]:
    pad = " " * indent
    if isinstance(value, dict) and value:
        for key, item in sorted(value.items()):
            name = _string(str(key))
            if _is_nested(item):
                yield f"{pad}{name}:"
                yield from _emit(item, indent + 2)
            else:
                yield f"{pad}{name}: {_scalar(item)}"
    elif isinstance(value, (list, tuple)) and value:
        for item in value:
            if _is_nested(item):
                first, *rest = _emit(item, indent + 2)
                yield f"{pad}- {first[indent + 2:]}"
                yield from rest
            else:
                yield f"{pad}- {_scalar(item)}"
    else:
        yield pad + _scalar(value)


def transpile_config(config_json: Any) -> str:
    """Render a JSON value as YAML, keys sorted and strings unquoted where possible."""
    return "\n".join(_emit(config_json, 0)) + "\n"