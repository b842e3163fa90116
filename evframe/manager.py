"""Command line entry point of the manager: validates the config and supervises module processes."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from evframe.launcher import (
    NAMESPACE,
    MqttSettings,
    ModuleStartInfo,
    find_module_start_info,
    shutdown_modules,
    spawn_modules,
)
from evframe.readiness import collect_standalone_modules, module_capabilities
from evframe.system_unix import SubProcessError, set_real_user
from evframe.yaml_loader import load_yaml

_log = logging.getLogger(__name__)

PROJECT_NAME = "everest-framework"
PROJECT_VERSION = "0.1.0"
DUMP_INDENT = 2
DEFAULT_PREFIX = "/usr"
CONFIG_FILENAME = "config.json"
MANIFEST_FILENAME = "manifest.yaml"

PathLike = Union[str, Path]


@dataclass
class ManagerOptions:
    """Options the manager was started with."""

    version: bool = False
    check: bool = False
    dump: Optional[str] = None
    dumpmanifests: Optional[str] = None
    prefix: str = DEFAULT_PREFIX
    standalone: list[str] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)
    dontvalidateschema: bool = False
    config: Optional[str] = None
    status_fifo: str = ""
    modules_dir: Optional[str] = None
    log_config: str = ""
    run_as_user: str = ""
    mqtt_broker_host: str = "localhost"
    mqtt_broker_port: int = 1883
    mqtt_broker_socket_path: str = ""
    mqtt_everest_prefix: str = "everest/"
    mqtt_external_prefix: str = ""

    @property
    def mqtt_settings(self) -> MqttSettings:
        return MqttSettings(
            broker_host=self.mqtt_broker_host,
            broker_port=self.mqtt_broker_port,
            broker_socket_path=self.mqtt_broker_socket_path,
            everest_prefix=self.mqtt_everest_prefix,
            external_prefix=self.mqtt_external_prefix,
        )

    def resolved_modules_dir(self) -> Path:
        if self.modules_dir:
            return Path(self.modules_dir)
        return Path(self.prefix) / "libexec" / NAMESPACE / "modules"


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser of the manager."""
    parser = argparse.ArgumentParser(prog="manager", description="EVerest manager")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--check", action="store_true", help="Check and validate all config files and exit (0=success)")
    parser.add_argument(
        "--dump", help="Dump validated and augmented main config and all used module manifests into dir"
    )
    parser.add_argument(
        "--dumpmanifests", help="Dump manifests of all modules into dir (even modules not used in config) and exit"
    )
    parser.add_argument("--prefix", default=DEFAULT_PREFIX, help="Prefix path of everest installation")
    parser.add_argument(
        "--standalone",
        "-s",
        nargs="+",
        action="extend",
        default=[],
        help="Module ID(s) to not automatically start child processes for "
        "(those must be started manually to make the framework start!).",
    )
    parser.add_argument(
        "--ignore",
        nargs="+",
        action="extend",
        default=[],
        help="Module ID(s) to ignore: Do not automatically start child processes "
        "and do not require that they are started.",
    )
    parser.add_argument(
        "--dontvalidateschema", action="store_true", help="Don't validate json schema on every message"
    )
    parser.add_argument(
        "--config",
        help="Full path to a config file. If the file does not exist and has no extension, "
        "it will be looked up in <prefix>/etc/everest",
    )
    parser.add_argument(
        "--status-fifo",
        dest="status_fifo",
        default="",
        help="Path to a named pipe, that shall be used for status updates from the manager",
    )
    parser.add_argument("--modules-dir", dest="modules_dir", help="Directory holding the modules")
    parser.add_argument("--log-config", dest="log_config", default="", help="Logging configuration file")
    parser.add_argument("--run-as-user", dest="run_as_user", default="", help="System user to run as")
    parser.add_argument("--mqtt-broker-host", dest="mqtt_broker_host", default="localhost")
    parser.add_argument("--mqtt-broker-port", dest="mqtt_broker_port", type=int, default=1883)
    parser.add_argument("--mqtt-broker-socket-path", dest="mqtt_broker_socket_path", default="")
    parser.add_argument("--mqtt-everest-prefix", dest="mqtt_everest_prefix", default="everest/")
    parser.add_argument("--mqtt-external-prefix", dest="mqtt_external_prefix", default="")
    return parser


def parse_options(argv: Optional[Sequence[str]] = None) -> ManagerOptions:
    """Parse command line arguments into ManagerOptions."""
    namespace = build_parser().parse_args(None if argv is None else list(argv))
    return ManagerOptions(**vars(namespace))


def dump_config(main_config: Mapping[str, Any], manifests: Mapping[str, Any], dump_path: PathLike) -> list[Path]:
    """Write the main config and each manifest as JSON into dump_path; returns the files written."""
    target = Path(dump_path)
    target.mkdir(parents=True, exist_ok=True)
    written = [target / CONFIG_FILENAME]
    written[0].write_text(json.dumps(main_config, indent=DUMP_INDENT), encoding="utf-8")
    for name, manifest in manifests.items():
        path = target / f"{name}.json"
        path.write_text(json.dumps(manifest, indent=DUMP_INDENT), encoding="utf-8")
        written.append(path)
    return written


def _load_all_manifests(modules_dir: Path) -> dict[str, Any]:
    if not modules_dir.is_dir():
        raise FileNotFoundError(f"Modules directory '{modules_dir}' does not exist")
    return {
        entry.name: load_yaml(entry / MANIFEST_FILENAME)
        for entry in sorted(modules_dir.iterdir())
        if entry.is_dir() and (entry / MANIFEST_FILENAME).is_file()
    }


def _used_manifests(main_config: Mapping[str, Any], modules_dir: Path) -> dict[str, Any]:
    manifests: dict[str, Any] = {}
    for module_config in main_config.values():
        module_type = module_config["module"]
        manifest_path = modules_dir / module_type / MANIFEST_FILENAME
        if module_type not in manifests and manifest_path.is_file():
            manifests[module_type] = load_yaml(manifest_path)
    return manifests


def _resolve_config_path(config: Optional[str], prefix: str) -> Path:
    if not config:
        raise ValueError("No config file given")
    path = Path(config)
    if path.exists() or path.suffix:
        return path
    return Path(prefix) / "etc" / NAMESPACE / f"{config}.yaml"


def _load_main_config(path: Path) -> dict[str, Any]:
    loaded = load_yaml(path)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError("The main config must be a mapping of module ids to module configs")
    for module_id, module_config in loaded.items():
        if not isinstance(module_config, dict):
            raise ValueError(f"Config of module '{module_id}' must be a mapping")
        if not isinstance(module_config.get("module"), str):
            raise ValueError(f"Config of module '{module_id}' needs a 'module' entry of type string")
    return loaded


def _modules_to_spawn(
    main_config: Mapping[str, Any], options: ManagerOptions, standalone: Sequence[str]
) -> list[ModuleStartInfo]:
    modules_dir = options.resolved_modules_dir()
    result = []
    for module_id, module_config in main_config.items():
        if module_id in options.ignore:
            _log.info("Ignoring module: %s", module_id)
            continue
        if module_id in standalone:
            _log.info("Not starting standalone module: %s", module_id)
            continue
        result.append(
            find_module_start_info(
                module_id, module_id, module_config["module"], modules_dir, module_capabilities(module_config)
            )
        )
    return result


def _supervise(handles: dict[int, str]) -> int:
    while True:
        try:
            pid, wstatus = os.waitpid(-1, 0)
        except ChildProcessError as exc:
            raise RuntimeError(f"Syscall to waitpid() failed ({exc.strerror})") from exc
        module_name = handles.pop(pid, None)
        if module_name is None:
            raise RuntimeError(f"Unknown child with pid ({pid}) died.")
        _log.critical(
            "Module %s (pid: %s) exited with status: %s. Terminating all modules.", module_name, pid, wstatus
        )
        shutdown_modules(handles)
        _log.critical("Exiting manager.")
        return 1


def _boot(options: ManagerOptions) -> int:
    _log.info("%s %s", PROJECT_NAME, PROJECT_VERSION)
    settings = options.mqtt_settings
    if settings.uses_socket():
        _log.info("Using MQTT broker unix domain sockets: %s", settings.broker_socket_path)
    else:
        _log.info("Using MQTT broker %s:%s", settings.broker_host, settings.broker_port)
    if options.run_as_user:
        _log.info("EVerest will run as system user: %s", options.run_as_user)

    modules_dir = options.resolved_modules_dir()

    if options.dumpmanifests:
        target = Path(options.dumpmanifests)
        for name, manifest in _load_all_manifests(modules_dir).items():
            (target / f"{name}.yaml").write_text(json.dumps(manifest, indent=DUMP_INDENT), encoding="utf-8")
        return 0

    try:
        main_config = _load_main_config(_resolve_config_path(options.config, options.prefix))
    except Exception as exc:
        _log.error("Failed to load and validate config!\n%s", exc)
        return 1

    if options.dump:
        dump_config(main_config, _used_manifests(main_config, modules_dir), options.dump)

    if options.check:
        _log.debug("Config is valid, terminating as requested")
        return 0

    standalone = collect_standalone_modules(main_config, options.standalone)
    modules = _modules_to_spawn(main_config, options, standalone)
    handles = spawn_modules(
        modules, options.prefix, options.log_config, settings, options.run_as_user
    )

    if options.run_as_user:
        try:
            set_real_user(options.run_as_user)
        except SubProcessError as exc:
            _log.error("Error switching manager to user %s: %s", options.run_as_user, exc)
            shutdown_modules(handles)
            return 1

    return _supervise(handles)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the manager and return its exit status."""
    try:
        options = parse_options(argv)
    except SystemExit as exc:
        if exc.code is None:
            return 0
        return exc.code if isinstance(exc.code, int) else 1

    if options.version:
        print(f"manager ({PROJECT_NAME} {PROJECT_VERSION})")
        return 0

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [manager] %(levelname)s %(message)s")
    try:
        return _boot(options)
    except Exception as exc:
        _log.error("Main manager process exits because of caught exception:\n%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())