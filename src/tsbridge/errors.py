"""Exception hierarchy for tsbridge.

Every failure a caller can observe is a subclass of TSBridgeError:

- MalformedFrameError: a frame header or body could not be parsed.
  Recovered locally by the decoder/dispatcher, only logged.
- RequestTimeoutError: no reply arrived within the call's timeout.
- StartupTimeoutError: the readiness event never arrived.
- NotReadyError: call issued before the server is running and ready.
- StreamUnwritableError: the server's stdin is closed or broken.
- ProcessExitedError: the server went away while the call was pending.
- ProcessSpawnError: the server process could not be started.
- CommandFailedError: the server replied with success=false.
"""

from __future__ import annotations

from typing import Any


class TSBridgeError(Exception):
    """Base class for all tsbridge errors."""

    pass


class MalformedFrameError(TSBridgeError):
    """Error in message framing or decoding.

    Raised when:
    - The header block is empty or a header line has no colon
    - Content-Length is missing, not an integer, or negative
    - The body is not valid UTF-8 JSON
    - The decoded JSON is not an object
    """

    pass


class RequestTimeoutError(TSBridgeError, TimeoutError):
    """No reply arrived for a correlated request in time."""

    def __init__(self, seq: int, command: str, timeout: float) -> None:
        self.seq = seq
        self.command = command
        self.timeout = timeout
        super().__init__(f"tsserver did not answer {command!r} (seq={seq}) within {timeout}s")


class StartupTimeoutError(TSBridgeError, TimeoutError):
    """The readiness event was not observed within the startup window."""

    def __init__(self, event: str, timeout: float) -> None:
        self.event = event
        self.timeout = timeout
        super().__init__(f"Timeout waiting for tsserver to be ready ({event!r} not seen in {timeout}s)")


class NotReadyError(TSBridgeError):
    """A call was attempted before the server was running and ready."""

    pass


class StreamUnwritableError(TSBridgeError):
    """The server's standard input is not writable."""

    pass


class ProcessExitedError(TSBridgeError):
    """The server process exited while a call was outstanding."""

    def __init__(self, returncode: int | None = None) -> None:
        self.returncode = returncode
        super().__init__(f"tsserver process exited (code {returncode})")


class ProcessSpawnError(TSBridgeError):
    """The server process could not be started."""

    pass


class CommandFailedError(TSBridgeError):
    """The server answered a request with success=false."""

    def __init__(self, command: str, message: str | None, response: Any = None) -> None:
        self.command = command
        self.message = message
        self.response = response
        super().__init__(f"tsserver command {command!r} failed: {message or 'no message'}")
