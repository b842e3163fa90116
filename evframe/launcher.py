"""Locating module executables and starting them as child processes."""

from __future__ import annotations

import logging
import os
import signal
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping as TypingMapping
from typing import Optional, Sequence, Union

from evframe.system_unix import SubProcess

_log = logging.getLogger(__name__)

LIB_DIR = "lib"
NAMESPACE = "everest"

BINARY_SUFFIX = ""
JAVASCRIPT_FILENAME = "index.js"
PYTHON_FILENAME = "module.py"
NODE_BINARY = "node"
PYTHON_BINARY = "python3"

EV_MODULE = "EV_MODULE"
EV_PREFIX = "EV_PREFIX"
EV_LOG_CONF_FILE = "EV_LOG_CONF_FILE"
EV_MQTT_EVEREST_PREFIX = "EV_MQTT_EVEREST_PREFIX"
EV_MQTT_EXTERNAL_PREFIX = "EV_MQTT_EXTERNAL_PREFIX"
EV_MQTT_BROKER_SOCKET_PATH = "EV_MQTT_BROKER_SOCKET_PATH"
EV_MQTT_BROKER_HOST = "EV_MQTT_BROKER_HOST"
EV_MQTT_BROKER_PORT = "EV_MQTT_BROKER_PORT"
EV_VALIDATE_SCHEMA = "EV_VALIDATE_SCHEMA"

PathLike = Union[str, Path]


class Language(Enum):
    """How a module is provided."""

    cpp = "cpp"
    javascript = "javascript"
    python = "python"


@dataclass(frozen=True)
class MqttSettings:
    """Where the MQTT broker is and which topic prefixes are used."""

    broker_host: str = "localhost"
    broker_port: int = 1883
    broker_socket_path: str = ""
    everest_prefix: str = "everest/"
    external_prefix: str = ""

    def uses_socket(self) -> bool:
        return bool(self.broker_socket_path)


@dataclass(frozen=True)
class ModuleStartInfo:
    """Everything needed to start one module."""

    name: str
    printable_name: str
    language: Language
    path: Path
    capabilities: tuple[str, ...] = field(default_factory=tuple)


def find_module_start_info(
    module_name: str,
    printable_name: str,
    module_type: str,
    modules_dir: PathLike,
    capabilities: Sequence[str] = (),
) -> ModuleStartInfo:
    """Find a binary, JavaScript or Python implementation of a module type."""
    module_path = Path(modules_dir) / module_type
    binary_path = module_path / f"{module_type}{BINARY_SUFFIX}"
    javascript_path = module_path / JAVASCRIPT_FILENAME
    python_path = module_path / PYTHON_FILENAME
    caps = tuple(capabilities)

    if binary_path.exists():
        _log.debug("module: %s (%s) provided as binary", module_name, module_type)
        return ModuleStartInfo(module_name, printable_name, Language.cpp, binary_path, caps)
    if javascript_path.exists():
        _log.debug("module: %s (%s) provided as javascript library", module_name, module_type)
        return ModuleStartInfo(
            module_name, printable_name, Language.javascript, javascript_path.resolve(), caps
        )
    if python_path.exists():
        _log.debug("module: %s (%s) provided as python module", module_name, module_type)
        return ModuleStartInfo(module_name, printable_name, Language.python, python_path.resolve(), caps)

    raise FileNotFoundError(
        f"module: {module_name} ({module_type}) cannot be loaded because no Binary, JavaScript or Python "
        "module has been found\n"
        "  checked paths:\n"
        f"    binary: {binary_path}\n"
        f"    js:  {javascript_path}\n"
        f"    py:  {python_path}\n"
    )


def build_exec_arguments(
    module_info: ModuleStartInfo,
    prefix: PathLike,
    logging_config_file: PathLike,
    mqtt_settings: MqttSettings,
) -> list[str]:
    """Return the argument vector a module is started with, argv[0] included."""
    if module_info.language is Language.cpp:
        arguments = [
            module_info.printable_name,
            "--prefix",
            str(prefix),
            "--module",
            module_info.name,
            "--log_config",
            str(logging_config_file),
            "--mqtt_everest_prefix",
            mqtt_settings.everest_prefix,
            "--mqtt_external_prefix",
            mqtt_settings.external_prefix,
        ]
        if mqtt_settings.uses_socket():
            arguments += ["--mqtt_broker_socket_path", mqtt_settings.broker_socket_path]
        else:
            arguments += [
                "--mqtt_broker_host",
                mqtt_settings.broker_host,
                "--mqtt_broker_port",
                str(mqtt_settings.broker_port),
            ]
        return arguments
    if module_info.language is Language.javascript:
        return [NODE_BINARY, "--unhandled-rejections=strict", str(module_info.path)]
    if module_info.language is Language.python:
        return [PYTHON_BINARY, str(module_info.path)]
    raise ValueError(f"Module language not supported: {module_info.language!r}")


def build_module_environment(
    module_info: ModuleStartInfo,
    prefix: PathLike,
    logging_config_file: PathLike,
    mqtt_settings: MqttSettings,
    validate_schema: bool = False,
    environ: Optional[TypingMapping[str, str]] = None,
) -> dict[str, str]:
    """Return the environment a module is started with.

    Binary modules get their settings on the command line and inherit the
    environment unchanged; script modules get them through variables, where
    existing values are kept except for the module name and schema validation.
    """
    env = dict(os.environ if environ is None else environ)
    if module_info.language is Language.cpp:
        return env

    lib_path = Path(prefix) / LIB_DIR / NAMESPACE
    if module_info.language is Language.javascript:
        env.setdefault("NODE_PATH", str(lib_path / "node_modules"))
    else:
        env.setdefault("PYTHONPATH", str(lib_path / "everestpy"))

    env[EV_MODULE] = module_info.name
    env.setdefault(EV_PREFIX, str(prefix))
    env.setdefault(EV_LOG_CONF_FILE, str(logging_config_file))
    env.setdefault(EV_MQTT_EVEREST_PREFIX, mqtt_settings.everest_prefix)
    env.setdefault(EV_MQTT_EXTERNAL_PREFIX, mqtt_settings.external_prefix)
    if mqtt_settings.uses_socket():
        env.setdefault(EV_MQTT_BROKER_SOCKET_PATH, mqtt_settings.broker_socket_path)
    else:
        env.setdefault(EV_MQTT_BROKER_HOST, mqtt_settings.broker_host)
        env.setdefault(EV_MQTT_BROKER_PORT, str(mqtt_settings.broker_port))

    if validate_schema:
        env[EV_VALIDATE_SCHEMA] = "1"
    return env


def _exec_module(
    proc_handle: SubProcess,
    module_info: ModuleStartInfo,
    prefix: PathLike,
    logging_config_file: PathLike,
    mqtt_settings: MqttSettings,
) -> None:
    arguments = build_exec_arguments(module_info, prefix, logging_config_file, mqtt_settings)
    env = build_module_environment(module_info, prefix, logging_config_file, mqtt_settings)
    if module_info.language is Language.cpp:
        executable = str(module_info.path)
        syscall = "execv"
    else:
        executable = arguments[0]
        syscall = "execvp"
    try:
        if module_info.language is Language.cpp:
            os.execve(executable, arguments, env)
        else:
            os.execvpe(executable, arguments, env)
    except OSError as exc:
        reason = exc.strerror or str(exc)
        proc_handle.send_error_and_exit(
            f'Syscall to {syscall}() with "{executable} {" ".join(arguments[1:])}" failed ({reason})'
        )


def spawn_modules(
    modules: Sequence[ModuleStartInfo],
    prefix: PathLike,
    logging_config_file: PathLike,
    mqtt_settings: MqttSettings,
    run_as_user: str = "",
) -> dict[int, str]:
    """Fork and exec every module; returns module names by process id."""
    started: dict[int, str] = {}
    for module in modules:
        if module.capabilities:
            _log.info(
                "Module %s wants to aquire the following capabilities: %s",
                module.name,
                " ".join(module.capabilities),
            )
        proc_handle = SubProcess.create(run_as_user)
        if proc_handle.is_child():
            try:
                _exec_module(proc_handle, module, prefix, logging_config_file, mqtt_settings)
            except BaseException as exc:  # the child must never return into the caller
                proc_handle.send_error_and_exit(str(exc))
            proc_handle.send_error_and_exit("exec returned unexpectedly")

        child_pid = proc_handle.check_child_executed()
        _log.debug("Forked module %s with pid: %s", module.name, child_pid)
        started[child_pid] = module.name
    return started


def _send_signal(pid: int, sig: signal.Signals) -> Optional[OSError]:
    try:
        os.kill(pid, sig)
    except OSError as exc:
        return exc
    return None


def shutdown_modules(modules: TypingMapping[int, str]) -> dict[int, Optional[signal.Signals]]:
    """Terminate every module, escalating to SIGKILL; returns the signal that got through per pid."""
    results: dict[int, Optional[signal.Signals]] = {}
    for pid, name in modules.items():
        error = _send_signal(pid, signal.SIGTERM)
        if error is None:
            _log.info("SIGTERM of child: %s (pid: %s) succeeded.", name, pid)
            results[pid] = signal.SIGTERM
            continue
        _log.critical(
            "SIGTERM of child: %s (pid: %s) failed: %s. Escalating to SIGKILL", name, pid, error
        )
        error = _send_signal(pid, signal.SIGKILL)
        if error is None:
            _log.info("SIGKILL of child: %s (pid: %s) succeeded.", name, pid)
            results[pid] = signal.SIGKILL
        else:
            _log.critical("SIGKILL of child: %s (pid: %s) failed: %s.", name, pid, error)
            results[pid] = None
    return results