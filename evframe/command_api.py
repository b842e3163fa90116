"""Commands offered by the controller to its web clients."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from evframe.transpile_config import transpile_config
from evframe.yaml_loader import load_yaml


class CommandApiParamsError(RuntimeError):
    """Raised when a command receives invalid parameters."""


class CommandApiMethodNotFound(RuntimeError):
    """Raised when a command is not known."""


@dataclass(frozen=True)
class CommandApiConfig:
    """Directories and limits the command API works with."""

    module_dir: str
    interface_dir: str
    configs_dir: str
    controller_rpc_timeout_ms: int


class _IpcRequester(Protocol):
    def ipc_request(self, method: str, params: Any, only_notify: bool) -> Any: ...


def _load_yaml_files(directory: Path) -> dict[str, Any]:
    return {
        item.stem: load_yaml(item)
        for item in sorted(directory.iterdir())
        if item.is_file() and item.suffix == ".yaml"
    }


class CommandApi:
    """Dispatches controller commands by name."""

    def __init__(self, config: CommandApiConfig, rpc: _IpcRequester) -> None:
        self.config = config
        self._rpc = rpc

    def handle(self, cmd: str, params: Optional[Any]) -> Any:
        """Run the command cmd with params and return its JSON-like result."""
        if cmd == "get_modules":
            return self._get_modules()
        if cmd == "get_configs":
            return _load_yaml_files(Path(self.config.configs_dir))
        if cmd == "get_interfaces":
            return _load_yaml_files(Path(self.config.interface_dir))
        if cmd == "save_config":
            return self._save_config(params)
        if cmd == "restart_modules":
            self._rpc.ipc_request("restart_modules", None, True)
            return None
        if cmd == "get_rpc_timeout":
            return self.config.controller_rpc_timeout_ms
        raise CommandApiMethodNotFound(f"Command '{cmd}' unknown")

    def _get_modules(self) -> dict[str, Any]:
        modules: dict[str, Any] = {}
        for module_path in sorted(Path(self.config.module_dir).iterdir()):
            if not module_path.is_dir():
                continue
            manifest_path = module_path / "manifest.yaml"
            if not manifest_path.is_file():
                continue
            modules[module_path.name] = load_yaml(manifest_path)
        return modules

    def _save_config(self, params: Optional[Any]) -> bool:
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise CommandApiParamsError(
                "The save_config needs a 'name' parameter for the config file of type string"
            )
        name = params["name"]
        config_json = params.get("config", {})

        configs_path = Path(self.config.configs_dir)
        check_path = configs_path / f"_{name}.yaml"
        check_path.write_text(transpile_config(config_json), encoding="utf-8")

        result = self._rpc.ipc_request("check_config", str(check_path), False)
        if isinstance(result, str):
            check_path.unlink(missing_ok=True)
            raise CommandApiParamsError(result)

        check_path.replace(configs_path / f"{name}.yaml")
        return True