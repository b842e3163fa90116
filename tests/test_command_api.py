import pytest

from evframe.command_api import (
    CommandApi,
    CommandApiConfig,
    CommandApiMethodNotFound,
    CommandApiParamsError,
)
from evframe.yaml_loader import load_yaml


class FakeRpc:
    def __init__(self, reply=None):
        self.reply = reply
        self.calls = []
        self.seen_files = []

    def ipc_request(self, method, params, only_notify):
        self.calls.append((method, params, only_notify))
        if method == "check_config":
            self.seen_files.append(load_yaml(params))
        return self.reply


@pytest.fixture
def dirs(tmp_path):
    modules = tmp_path / "modules"
    interfaces = tmp_path / "interfaces"
    configs = tmp_path / "configs"
    for d in (modules, interfaces, configs):
        d.mkdir()
    return modules, interfaces, configs


def make_api(dirs, rpc, timeout=2000):
    modules, interfaces, configs = dirs
    config = CommandApiConfig(str(modules), str(interfaces), str(configs), timeout)
    return CommandApi(config, rpc)


def test_get_modules_reads_manifests_of_directories(dirs):
    modules, _, _ = dirs
    (modules / "Alpha").mkdir()
    (modules / "Alpha" / "manifest.yaml").write_text("description: first\n")
    (modules / "Empty").mkdir()
    (modules / "loose.yaml").write_text("x: 1\n")
    api = make_api(dirs, FakeRpc())
    assert api.handle("get_modules", None) == {"Alpha": {"description": "first"}}


def test_get_configs_only_yaml_files(dirs):
    _, _, configs = dirs
    (configs / "a.yaml").write_text("active_modules:\n  m:\n    module: M\n")
    (configs / "b.txt").write_text("ignored")
    (configs / "sub.yaml").mkdir()
    api = make_api(dirs, FakeRpc())
    assert api.handle("get_configs", None) == {"a": {"active_modules": {"m": {"module": "M"}}}}


def test_get_interfaces(dirs):
    _, interfaces, _ = dirs
    (interfaces / "power.yaml").write_text("cmds:\n  on: {}\n")
    (interfaces / "notes.md").write_text("no")
    api = make_api(dirs, FakeRpc())
    assert api.handle("get_interfaces", {}) == {"power": {"cmds": {"on": {}}}}


def test_save_config_success_renames_file(dirs):
    _, _, configs = dirs
    rpc = FakeRpc(reply=None)
    api = make_api(dirs, rpc)
    config = {"active_modules": {"store": {"module": "Store", "config_module": {"n": 3}}}}
    assert api.handle("save_config", {"name": "mine", "config": config}) is True
    assert rpc.calls == [("check_config", str(configs / "_mine.yaml"), False)]
    assert rpc.seen_files == [config]
    assert not (configs / "_mine.yaml").exists()
    assert load_yaml(configs / "mine.yaml") == config


def test_save_config_rejected_removes_file(dirs):
    _, _, configs = dirs
    rpc = FakeRpc(reply="config broken")
    api = make_api(dirs, rpc)
    with pytest.raises(CommandApiParamsError, match="config broken"):
        api.handle("save_config", {"name": "bad", "config": {"a": 1}})
    assert list(configs.iterdir()) == []


@pytest.mark.parametrize("params", [None, {}, {"name": 5}, {"config": {}}])
def test_save_config_needs_string_name(dirs, params):
    rpc = FakeRpc()
    api = make_api(dirs, rpc)
    with pytest.raises(CommandApiParamsError, match="'name' parameter"):
        api.handle("save_config", params)
    assert rpc.calls == []


def test_restart_modules_notifies(dirs):
    rpc = FakeRpc(reply="unused")
    api = make_api(dirs, rpc)
    assert api.handle("restart_modules", None) is None
    assert rpc.calls == [("restart_modules", None, True)]


def test_get_rpc_timeout(dirs):
    api = make_api(dirs, FakeRpc(), timeout=1234)
    assert api.handle("get_rpc_timeout", None) == 1234


def test_unknown_command(dirs):
    api = make_api(dirs, FakeRpc())
    with pytest.raises(CommandApiMethodNotFound) as info:
        api.handle("fly", None)
    assert str(info.value) == "Command 'fly' unknown"