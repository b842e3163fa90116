"""Core value types shared by the framework: requirements, identifiers and mappings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, (bool, int, float)):
        return int(value)
    raise TypeError(f"'{name}' must be a number, got {type(value).__name__}")


@dataclass(frozen=True, order=True)
class Requirement:
    """A requirement slot of a module, ordered by id and then by index."""

    id: str
    index: int = 0


@dataclass(frozen=True)
class Mapping:
    """Placement of a module or implementation in the EVSE/connector model."""

    evse: int
    connector: Optional[int] = None

    def to_json(self) -> dict[str, int]:
        result = {"evse": self.evse}
        if self.connector is not None:
            result["connector"] = self.connector
        return result

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Mapping":
        evse = _as_int(data["evse"], "evse")
        connector = _as_int(data["connector"], "connector") if "connector" in data else None
        return cls(evse, connector)


@dataclass(frozen=True)
class ImplementationIdentifier:
    """Identifies one implementation of a module; the mapping does not take part in equality."""

    module_id: str
    implementation_id: str
    mapping: Optional[Mapping] = field(default=None, compare=False)

    def to_string(self) -> str:
        return f"{self.module_id}->{self.implementation_id}"

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class TelemetryConfig:
    """Telemetry settings of a module."""

    id: int

    def to_json(self) -> dict[str, int]:
        return {"id": self.id}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "TelemetryConfig":
        return cls(_as_int(data["id"], "id"))


def _optional_mapping(data: Any) -> Optional[Mapping]:
    return None if data is None else Mapping.from_json(data)


@dataclass
class ModuleTierMappings:
    """Mapping of a whole module plus per-implementation overrides."""

    module: Optional[Mapping] = None
    implementations: dict[str, Optional[Mapping]] = field(default_factory=dict)

    def to_json(self) -> Optional[dict[str, Any]]:
        """Serialise to JSON; returns None when there is nothing to describe."""
        result: Optional[dict[str, Any]] = None
        if self.module is not None:
            result = {"module": self.module.to_json()}
        if self.implementations:
            if result is None:
                result = {}
            result["implementations"] = {
                impl_id: mapping.to_json()
                for impl_id, mapping in self.implementations.items()
                if mapping is not None
            }
        return result

    @classmethod
    def from_json(cls, data: Optional[dict[str, Any]]) -> "ModuleTierMappings":
        mappings = cls()
        if data is None:
            return mappings
        if "module" in data:
            mappings.module = _optional_mapping(data["module"])
        for impl_id, impl_mapping in data.get("implementations", {}).items():
            mappings.implementations[impl_id] = _optional_mapping(impl_mapping)
        return mappings