"""tsbridge: async stdio client for the TypeScript language server (tsserver)."""

__version__ = "0.1.0"

# Public API
from tsbridge.client import TSServerClient
from tsbridge.config import Config, load_config
from tsbridge.correlation import CorrelationTable, PendingRequest
from tsbridge.dispatcher import Dispatcher
from tsbridge.errors import (
    CommandFailedError,
    MalformedFrameError,
    NotReadyError,
    ProcessExitedError,
    ProcessSpawnError,
    RequestTimeoutError,
    StartupTimeoutError,
    StreamUnwritableError,
    TSBridgeError,
)
from tsbridge.protocol import CommandEnvelope, DecodedMessage, FrameDecoder, LineFrameDecoder
from tsbridge.readiness import READY_SENTINEL_ID, ReadinessGate
from tsbridge.supervisor import ProcessSupervisor

__all__ = [
    # Main entry point
    "TSServerClient",
    # Config
    "Config",
    "load_config",
    # Components
    "CorrelationTable",
    "PendingRequest",
    "Dispatcher",
    "ReadinessGate",
    "READY_SENTINEL_ID",
    "ProcessSupervisor",
    "FrameDecoder",
    "LineFrameDecoder",
    "CommandEnvelope",
    "DecodedMessage",
    # Errors
    "TSBridgeError",
    "MalformedFrameError",
    "RequestTimeoutError",
    "StartupTimeoutError",
    "NotReadyError",
    "StreamUnwritableError",
    "ProcessExitedError",
    "ProcessSpawnError",
    "CommandFailedError",
]
