"""Tracking which modules have reported ready, and config helpers around it."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

_log = logging.getLogger(__name__)


class ReadyEvent(Enum):
    """What a ready report means for the whole set of modules."""

    NONE = "none"
    ALL_MODULES_STARTED = "all_modules_started"
    WAITING_FOR_STANDALONE_MODULES = "waiting_for_standalone_modules"


class ModuleReadyTracker:
    """Thread-safe record of the ready state of every started module."""

    def __init__(self, standalone_modules: Iterable[str] = (), start_time: Optional[float] = None) -> None:
        self.standalone_modules: tuple[str, ...] = tuple(standalone_modules)
        self._start_time = time.monotonic() if start_time is None else start_time
        self._ready: dict[str, bool] = {}
        self._lock = threading.Lock()

    def add_module(self, module_name: str) -> None:
        """Register a module as not ready; a module already known keeps its state."""
        with self._lock:
            self._ready.setdefault(module_name, False)

    def set_ready(self, module_name: str, ready: bool) -> ReadyEvent:
        """Record a module's ready state and report what it means for all modules."""
        with self._lock:
            if module_name not in self._ready:
                raise KeyError(f"Unknown module: {module_name}")
            self._ready[module_name] = bool(ready)

            for name, state in self._ready.items():
                _log.debug("  %s: %s", name, "ready" if state else "not ready")
            modules_spawned = sum(self._ready.values())

            if module_name in self.standalone_modules:
                _log.info("Standalone module %s initialized.", module_name)

            if all(self._ready.values()):
                elapsed_ms = int((time.monotonic() - self._start_time) * 1000)
                _log.info("All modules are initialized. EVerest up and running [%sms]", elapsed_ms)
                return ReadyEvent.ALL_MODULES_STARTED

            if self.standalone_modules and modules_spawned == len(self._ready) - len(self.standalone_modules):
                _log.info("Modules started by manager are ready, waiting for standalone modules.")
                return ReadyEvent.WAITING_FOR_STANDALONE_MODULES

            return ReadyEvent.NONE

    def all_ready(self) -> bool:
        with self._lock:
            return all(self._ready.values())

    def is_ready(self, module_name: str) -> bool:
        with self._lock:
            return self._ready[module_name]

    @property
    def modules(self) -> list[str]:
        with self._lock:
            return list(self._ready)

    def clear(self) -> None:
        """Forget every module."""
        with self._lock:
            self._ready.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._ready)

    def __contains__(self, module_name: object) -> bool:
        with self._lock:
            return module_name in self._ready


def module_capabilities(module_config: Mapping[str, Any]) -> list[str]:
    """Return the capabilities a module's config asks for, or an empty list."""
    capabilities = module_config.get("capabilities")
    if capabilities is None:
        return []
    if isinstance(capabilities, str):
        raise TypeError("'capabilities' must be a list of strings")
    return [str(capability) for capability in capabilities]


def collect_standalone_modules(
    main_config: Mapping[str, Mapping[str, Any]], standalone_modules: Sequence[str] = ()
) -> list[str]:
    """Add modules marked standalone in the config to the given standalone list."""
    result = list(standalone_modules)
    for module_id, module_config in main_config.items():
        if module_config.get("standalone", False) and module_id not in result:
            _log.info("Module %s marked as standalone in config", module_id)
            result.append(module_id)
    return result