"""Configuration schema dataclasses for tsbridge.

All fields have defaults so partial YAML files merge cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

FRAMING_CONTENT_LENGTH = "content-length"
FRAMING_LINE = "line"


@dataclass
class ServerConfig:
    """How to launch the tsserver process.

    Example config.yaml:
        server:
          node: /usr/local/bin/node
          tsserver: ./node_modules/typescript/lib/tsserver.js
          args: ["--locale", "en"]
    """

    node: str = "node"  # Executable that runs the entry script
    tsserver: str = "node_modules/typescript/bin/tsserver"  # Entry script, relative to cwd
    args: list[str] = field(default_factory=list)  # Extra arguments after the script
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)  # Merged over os.environ


@dataclass
class ProtocolConfig:
    """Wire protocol settings.

    framing must be chosen per deployment; there is no auto-detection.
    """

    framing: str = FRAMING_CONTENT_LENGTH  # "content-length" or "line"
    ready_event: str = "typingsInstallerPid"  # Event that opens the readiness gate
    fire_and_forget: list[str] = field(default_factory=list)  # Extra no-reply commands
    read_chunk_size: int = 65536


@dataclass
class TimeoutConfig:
    """Timeouts in seconds."""

    request: float = 5.0
    startup: float = 10.0


@dataclass
class ShutdownConfig:
    """Shutdown timeout configuration."""

    exit_timeout: float = 2.0
    """Seconds to wait for the process to leave after the exit command."""

    interrupt_timeout: float = 2.0
    """Seconds to wait after sending interrupt (SIGINT/Ctrl+Break)."""

    terminate_timeout: float = 3.0
    """Seconds to wait after sending terminate (SIGTERM)."""


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level keys, kept for extensions
    extra: dict[str, Any] = field(default_factory=dict)
