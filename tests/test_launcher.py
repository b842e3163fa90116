import os
import signal
import stat
from pathlib import Path

import pytest

from evframe.launcher import (
    EV_MODULE,
    EV_MQTT_BROKER_HOST,
    EV_MQTT_BROKER_PORT,
    EV_MQTT_BROKER_SOCKET_PATH,
    EV_PREFIX,
    EV_VALIDATE_SCHEMA,
    Language,
    ModuleStartInfo,
    MqttSettings,
    build_exec_arguments,
    build_module_environment,
    find_module_start_info,
    shutdown_modules,
    spawn_modules,
)
from evframe.system_unix import SubProcessError


def _script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def test_uses_socket():
    assert MqttSettings(broker_socket_path="/tmp/mqtt.sock").uses_socket() is True
    assert MqttSettings().uses_socket() is False


def test_find_binary_preferred(tmp_path):
    module_dir = tmp_path / "Mod"
    module_dir.mkdir()
    (module_dir / "Mod").write_text("")
    (module_dir / "index.js").write_text("")
    info = find_module_start_info("m1", "m1:Mod", "Mod", tmp_path, ["cap_net_raw"])
    assert info.language is Language.cpp
    assert info.path == module_dir / "Mod"
    assert info.capabilities == ("cap_net_raw",)


def test_find_javascript_then_python(tmp_path):
    module_dir = tmp_path / "Mod"
    module_dir.mkdir()
    (module_dir / "index.js").write_text("")
    (module_dir / "module.py").write_text("")
    info = find_module_start_info("m1", "m1", "Mod", tmp_path)
    assert info.language is Language.javascript
    assert info.path == (module_dir / "index.js").resolve()
    (module_dir / "index.js").unlink()
    info = find_module_start_info("m1", "m1", "Mod", tmp_path)
    assert info.language is Language.python
    assert info.path.name == "module.py"


def test_find_missing_module(tmp_path):
    with pytest.raises(FileNotFoundError, match="cannot be loaded"):
        find_module_start_info("m1", "m1", "Nope", tmp_path)


def test_cpp_arguments_with_host():
    info = ModuleStartInfo("m1", "pretty", Language.cpp, Path("/x/bin"))
    settings = MqttSettings(broker_host="broker", broker_port=1883)
    args = build_exec_arguments(info, "/opt/ev", "/opt/log.ini", settings)
    assert args[0] == "pretty"
    assert args[args.index("--module") + 1] == "m1"
    assert args[args.index("--prefix") + 1] == "/opt/ev"
    assert args[-4:] == ["--mqtt_broker_host", "broker", "--mqtt_broker_port", "1883"]
    assert "--mqtt_broker_socket_path" not in args


def test_cpp_arguments_with_socket():
    info = ModuleStartInfo("m1", "pretty", Language.cpp, Path("/x/bin"))
    settings = MqttSettings(broker_socket_path="/run/mqtt.sock")
    args = build_exec_arguments(info, "/opt/ev", "/opt/log.ini", settings)
    assert args[-2:] == ["--mqtt_broker_socket_path", "/run/mqtt.sock"]
    assert "--mqtt_broker_host" not in args


def test_script_arguments():
    js = ModuleStartInfo("m1", "m1", Language.javascript, Path("/m/index.js"))
    py = ModuleStartInfo("m1", "m1", Language.python, Path("/m/module.py"))
    settings = MqttSettings()
    assert build_exec_arguments(js, "/p", "/l", settings) == [
        "node",
        "--unhandled-rejections=strict",
        "/m/index.js",
    ]
    assert build_exec_arguments(py, "/p", "/l", settings) == ["python3", "/m/module.py"]


def test_cpp_environment_unchanged():
    info = ModuleStartInfo("m1", "m1", Language.cpp, Path("/x"))
    environ = {"HOME": "/home/user"}
    assert build_module_environment(info, "/p", "/l", MqttSettings(), True, environ) == environ


def test_python_environment_keeps_existing_values():
    info = ModuleStartInfo("m1", "m1", Language.python, Path("/m/module.py"))
    environ = {EV_MODULE: "old", EV_PREFIX: "/kept", "PYTHONPATH": "/mine"}
    env = build_module_environment(info, "/p", "/l", MqttSettings(broker_host="h"), True, environ)
    assert env[EV_MODULE] == "m1"
    assert env[EV_PREFIX] == "/kept"
    assert env["PYTHONPATH"] == "/mine"
    assert env[EV_MQTT_BROKER_HOST] == "h"
    assert env[EV_VALIDATE_SCHEMA] == "1"
    assert environ[EV_MODULE] == "old"


def test_javascript_environment_paths_and_socket():
    info = ModuleStartInfo("m1", "m1", Language.javascript, Path("/m/index.js"))
    settings = MqttSettings(broker_socket_path="/run/s")
    env = build_module_environment(info, "/p", "/l", settings, False, {})
    assert env["NODE_PATH"].endswith("node_modules")
    assert env["NODE_PATH"].startswith("/p")
    assert env[EV_MQTT_BROKER_SOCKET_PATH] == "/run/s"
    assert EV_MQTT_BROKER_PORT not in env
    assert EV_VALIDATE_SCHEMA not in env


def test_spawn_binary_module_receives_arguments(tmp_path):
    binary = _script(tmp_path / "Mod" / "Mod", 'echo "$@" > "$(dirname "$0")/args.txt"')
    info = find_module_start_info("mod1", "mod1:Mod", "Mod", tmp_path)
    assert info.path == binary
    started = spawn_modules([info], tmp_path, tmp_path / "log.ini", MqttSettings())
    assert list(started.values()) == ["mod1"]
    (pid,) = started
    _, status = os.waitpid(pid, 0)
    assert os.WIFEXITED(status) and os.WEXITSTATUS(status) == 0
    written = (tmp_path / "Mod" / "args.txt").read_text()
    assert "--module mod1" in written


def test_spawn_failing_exec_raises(tmp_path):
    info = ModuleStartInfo("m1", "m1", Language.cpp, tmp_path / "missing")
    with pytest.raises(SubProcessError, match="did not complete exec"):
        spawn_modules([info], tmp_path, tmp_path / "log.ini", MqttSettings())


def test_shutdown_terminates_module(tmp_path):
    _script(tmp_path / "Sleep" / "Sleep", "exec sleep 30")
    info = find_module_start_info("s1", "s1", "Sleep", tmp_path)
    started = spawn_modules([info], tmp_path, tmp_path / "log.ini", MqttSettings())
    result = shutdown_modules(started)
    (pid,) = started
    assert result == {pid: signal.SIGTERM}
    _, status = os.waitpid(pid, 0)
    assert os.WIFSIGNALED(status)
    assert os.WTERMSIG(status) == signal.SIGTERM


def test_shutdown_unknown_pid():
    pid = 2**31 - 1
    assert shutdown_modules({pid: "ghost"}) == {pid: None}