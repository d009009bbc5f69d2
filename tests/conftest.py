"""Root pytest configuration for all tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from tsbridge.config import Config, ServerConfig, ShutdownConfig, TimeoutConfig
from tsbridge.logging import reset_logging

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)

FAKE_TSSERVER = Path(__file__).parent / "fake_tsserver.py"


def fake_config(*args: str, **timeouts: float) -> Config:
    """Config that runs the scripted fake tsserver under the current interpreter."""
    framing = "line" if "--line" in args else "content-length"
    config = Config(
        server=ServerConfig(node=sys.executable, tsserver=str(FAKE_TSSERVER), args=list(args)),
        timeouts=TimeoutConfig(
            request=timeouts.get("request", 2.0),
            startup=timeouts.get("startup", 5.0),
        ),
        shutdown=ShutdownConfig(
            exit_timeout=timeouts.get("exit", 2.0),
            interrupt_timeout=1.0,
            terminate_timeout=1.0,
        ),
    )
    config.protocol.framing = framing
    return config


@pytest.fixture
def make_config():
    """Factory for fake-tsserver configs: make_config("--no-ready", startup=0.3)."""
    return fake_config


@pytest.fixture(autouse=True)
def _clean_logging():
    """Each test starts with unconfigured tsbridge logging."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _isolated_config_env(monkeypatch, tmp_path):
    """Keep user config files and TSBRIDGE_* variables out of tests."""
    for name in ("TSBRIDGE_NODE", "TSBRIDGE_TSSERVER", "TSBRIDGE_LOG"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
