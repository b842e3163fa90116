# evframe

`evframe` starts and supervises the modules of a modular charging-station
framework and provides the helpers around it:

- `evframe.manager` – the `evframe-manager` command: loads the main config,
  locates each module (binary, JavaScript `index.js` or Python `module.py`),
  forks and execs them, and stops all of them when one exits;
- `evframe.launcher` – locating module implementations, building their
  argument vectors and environments, spawning and terminating them;
- `evframe.readiness` – a thread-safe tracker of which modules reported ready;
- `evframe.system_unix` – forking with exec error reporting through a pipe,
  and switching to another system user;
- `evframe.yaml_loader` – loading `.yaml` files (with `.json` fallback) into
  plain values;
- `evframe.transpile_config` – rendering a JSON value as block-style YAML;
- `evframe.types` – requirements, implementation identifiers and 3-tier
  model mappings with JSON conversion;
- `evframe.command_api` – the commands a controller offers to web clients;
- `evframe.server` – an aiohttp server serving static files and a JSON
  websocket channel;
- `evframe.adapter` – `MqttProvider` and `TelemetryProvider` wrappers around
  publish/subscribe functions supplied by the caller.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Running the manager

```
evframe-manager --config /path/to/config.yaml
```

The config maps module ids to module configs; each needs a `module` entry
naming the module type. If `--config` names a path that does not exist and
has no extension, `<prefix>/etc/everest/<name>.yaml` is used.

Options:

- `--prefix DIR` – installation prefix (default `/usr`).
- `--modules-dir DIR` – where module types live (default
  `<prefix>/libexec/everest/modules`).
- `--check` – load the config and exit with 0 if it is valid.
- `--dump DIR` – write the main config as `config.json` and the manifests of
  the used module types as `<type>.json` into `DIR`.
- `--dumpmanifests DIR` – write the manifest of every module type, as JSON,
  into `DIR/<type>.yaml` and exit.
- `--standalone ID ...` / `-s` – modules not to start; modules with
  `standalone: true` in the config are added to this list.
- `--ignore ID ...` – modules not to start.
- `--log-config FILE`, `--run-as-user USER` – passed on to the modules; with
  a user the manager also switches to it after starting them.
- `--mqtt-broker-host`, `--mqtt-broker-port`, `--mqtt-broker-socket-path`,
  `--mqtt-everest-prefix`, `--mqtt-external-prefix` – broker settings handed
  to every module on its command line or in its environment.
- `--version` – print the version and exit.

Once the modules run, the manager waits for child processes. When one exits
it sends `SIGTERM` (escalating to `SIGKILL`) to the others and exits with 1.

## Using the library

```python
from evframe.yaml_loader import load_yaml, parse_yaml

manifest = load_yaml("modules/Example/manifest.yaml")
parse_yaml("a: 1\nb: '1'")  # {"a": 1, "b": "1"}
```

`load_yaml` accepts `.yaml` paths; a `.json` path is looked up as `.yaml`
first and falls back to the `.json` file. Parse errors raise `YamlLoadError`.

```python
from evframe.types import Mapping, ModuleTierMappings

Mapping(evse=1, connector=2).to_json()  # {"evse": 1, "connector": 2}
ModuleTierMappings.from_json({"module": {"evse": 1}}).module  # Mapping(evse=1)
```

```python
from evframe.transpile_config import transpile_config

transpile_config({"b": [1, 2], "a": "x"})  # "a: x\nb:\n  - 1\n  - 2\n"
```

```python
from evframe.readiness import ModuleReadyTracker, ReadyEvent

tracker = ModuleReadyTracker()
tracker.add_module("evse_manager")
tracker.set_ready("evse_manager", True)  # ReadyEvent.ALL_MODULES_STARTED
```

```python
from evframe.launcher import MqttSettings, find_module_start_info, build_exec_arguments

info = find_module_start_info("evse", "evse", "EvseManager", "modules")
build_exec_arguments(info, "/usr", "logging.ini", MqttSettings())
```

`CommandApi` takes a `CommandApiConfig` and any object with an
`ipc_request(method, params, only_notify)` method; `handle("get_configs",
None)` returns the `.yaml` files of `configs_dir`, `save_config` writes a
config after the requester accepts it, unknown commands raise
`CommandApiMethodNotFound`.

`Server().run(handler, html_origin, port)` blocks, serving files from
`html_origin` and passing each websocket message text to `handler`; a
non-`None` reply is sent back as JSON. `push(msg)` sends to every client,
`stop()` shuts the server down.

## What the package does not do

- There is no controller process: nothing reads JSON-RPC requests, routes
  them to `CommandApi`, or carries messages between the manager and a
  controller. The `ipc_request` side of `CommandApi` must be supplied by the
  caller.
- The manager does not connect to an MQTT broker. It does not publish
  interfaces, types or module configs, and it does not listen for module
  ready reports; `ModuleReadyTracker` is available but not wired in.
- `--status-fifo` and `--dontvalidateschema` are accepted but have no effect;
  configs and manifests are not checked against schemas.