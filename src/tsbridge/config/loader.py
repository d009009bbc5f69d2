"""Reading config layers and turning the merged result into a Config.

Each source (YAML file, environment, command-line overrides) becomes a
plain dict; the dicts are merged and then converted field by field, with
schema defaults for anything left unset.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from tsbridge.config.merge import merge_configs
from tsbridge.config.paths import get_config_paths
from tsbridge.config.schema import (
    FRAMING_CONTENT_LENGTH,
    FRAMING_LINE,
    Config,
    LoggingConfig,
    ProtocolConfig,
    ServerConfig,
    ShutdownConfig,
    TimeoutConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("tsbridge.config")

_KNOWN_KEYS = {"server", "protocol", "timeouts", "shutdown", "logging"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Read one YAML layer. Missing, unreadable or malformed files give {}."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        _log.warning("Cannot read config %s: %s", path, e)
        return {}

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        _log.warning("Ignoring config %s, invalid YAML: %s", path, e)
        return {}

    if not isinstance(data, dict):
        if data is not None:
            _log.warning("Ignoring config %s, top level is not a mapping", path)
        return {}
    return data


def env_overrides() -> dict[str, Any]:
    """Build config dict from TSBRIDGE_* environment variables."""
    overrides: dict[str, Any] = {}

    node = os.environ.get("TSBRIDGE_NODE")
    if node:
        overrides.setdefault("server", {})["node"] = node

    tsserver = os.environ.get("TSBRIDGE_TSSERVER")
    if tsserver:
        overrides.setdefault("server", {})["tsserver"] = tsserver

    log_path = os.environ.get("TSBRIDGE_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    return overrides


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    Raises:
        ValueError: If protocol.framing names an unknown framing mode.
    """
    server_data = _section(data, "server")
    server = ServerConfig(
        node=str(server_data.get("node", "node")),
        tsserver=str(server_data.get("tsserver", ServerConfig.tsserver)),
        args=[str(a) for a in server_data.get("args", [])],
        cwd=server_data.get("cwd"),
        env={str(k): str(v) for k, v in server_data.get("env", {}).items()},
    )

    protocol_data = _section(data, "protocol")
    framing = protocol_data.get("framing", FRAMING_CONTENT_LENGTH)
    if framing not in (FRAMING_CONTENT_LENGTH, FRAMING_LINE):
        raise ValueError(f"Unknown framing mode: {framing!r}")
    protocol = ProtocolConfig(
        framing=framing,
        ready_event=protocol_data.get("ready_event", ProtocolConfig.ready_event),
        fire_and_forget=[
            c for c in protocol_data.get("fire_and_forget", []) if isinstance(c, str)
        ],
        read_chunk_size=int(protocol_data.get("read_chunk_size", ProtocolConfig.read_chunk_size)),
    )

    timeout_data = _section(data, "timeouts")
    timeouts = TimeoutConfig(
        request=float(timeout_data.get("request", TimeoutConfig.request)),
        startup=float(timeout_data.get("startup", TimeoutConfig.startup)),
    )

    shutdown_data = _section(data, "shutdown")
    shutdown = ShutdownConfig(
        exit_timeout=float(shutdown_data.get("exit_timeout", ShutdownConfig.exit_timeout)),
        interrupt_timeout=float(
            shutdown_data.get("interrupt_timeout", ShutdownConfig.interrupt_timeout)
        ),
        terminate_timeout=float(
            shutdown_data.get("terminate_timeout", ShutdownConfig.terminate_timeout)
        ),
    )

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        server=server,
        protocol=protocol,
        timeouts=timeouts,
        shutdown=shutdown,
        logging=logging_config,
        extra=extra,
    )


def load_config(
    project_root: str | None = None,
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. ``overrides`` (e.g. command-line flags)
    2. Environment variables
    3. Explicit ``config_path``
    4. Project config ($project_root/.tsbridge/config.yaml)
    5. User config

    Args:
        project_root: Project directory for project-level config.
        config_path: Additional config file to layer on top of the others.
        overrides: Dict layered last.

    Returns:
        Merged Config object.
    """
    layers: list[dict[str, Any]] = []

    paths = get_config_paths(project_root)
    if config_path is not None:
        paths.append(config_path)

    for path in paths:
        data = load_yaml_file(path)
        if data:
            _log.debug("Loaded config from %s", path)
            layers.append(data)

    env_config = env_overrides()
    if env_config:
        layers.append(env_config)

    if overrides:
        layers.append(overrides)

    return dict_to_config(merge_configs(*layers))
