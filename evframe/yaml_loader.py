"""Loading of YAML (and legacy JSON) files into plain JSON-like values."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Union

import yaml

_log = logging.getLogger(__name__)

_NULL_VALUES = frozenset({"", "~", "null", "Null", "NULL"})
_INTEGER = re.compile(r"[+-]?\d+")
_REAL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class YamlLoadError(RuntimeError):
    """Raised when a YAML document cannot be parsed."""


def _convert_scalar(node: yaml.ScalarNode) -> Any:
    value = node.value
    if node.style is None:
        if value in _NULL_VALUES:
            return None
        if _INTEGER.fullmatch(value):
            return int(value)
        if _REAL.fullmatch(value):
            return float(value)
        if value == "true":
            return True
        if value == "false":
            return False
    return value


def _convert(node: yaml.Node) -> Any:
    if isinstance(node, yaml.MappingNode):
        result: dict[str, Any] = {}
        for key_node, value_node in node.value:
            if not isinstance(key_node, yaml.ScalarNode):
                raise YamlLoadError("YAML parsing error: mapping keys must be scalars")
            result[key_node.value] = _convert(value_node)
        return result
    if isinstance(node, yaml.SequenceNode):
        return [_convert(child) for child in node.value]
    return _convert_scalar(node)


def parse_yaml(text: str) -> Any:
    """Parse YAML text; unquoted numbers and true/false become typed values."""
    try:
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.YAMLError as exc:
        raise YamlLoadError(f"YAML parsing error: {exc}") from exc
    if root is None:
        return None
    return _convert(root)


def load_yaml(path: Union[str, Path]) -> Any:
    """Load a .yaml file, falling back to a .json file of the same stem."""
    path = Path(path)
    if path.suffix == ".json":
        _log.info("Deprecated: called load_yaml() with .json extension ('%s')", path)
        path = path.with_suffix(".yaml")
    elif path.suffix != ".yaml":
        raise ValueError(f"Trying to load a yaml file without yaml extension (path was '{path}')")

    if path.exists():
        return parse_yaml(path.read_text(encoding="utf-8"))

    json_path = path.with_suffix(".json")
    if json_path.exists():
        _log.info("Deprecated: loaded file in json format")
        return parse_yaml(json_path.read_text(encoding="utf-8"))

    raise FileNotFoundError(f"File '{path.stem}.(yaml|json)' does not exist")