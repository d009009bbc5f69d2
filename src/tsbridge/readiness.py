"""One-time startup handshake.

tsserver is usable once it has announced itself with a specific event
(``typingsInstallerPid`` by default). The gate parks a PendingRequest
under a reserved negative id in the correlation table before the process
is spawned, so an announcement that arrives immediately cannot be missed.
A startup timer of its own, separate from any per-request timeout,
rejects the sentinel if the announcement never comes.
"""

from __future__ import annotations

import asyncio
from typing import Any

from tsbridge.correlation import CorrelationTable
from tsbridge.errors import NotReadyError, StartupTimeoutError
from tsbridge.logging import get_logger
from tsbridge.protocol.commands import DEFAULT_READY_EVENT
from tsbridge.protocol.messages import DecodedMessage

log = get_logger("readiness")

# Sequence numbers start at 1, so this can never collide.
READY_SENTINEL_ID = -1


class ReadinessGate:
    """Defers "usable" until the ready event arrives."""

    def __init__(
        self,
        table: CorrelationTable,
        ready_event: str = DEFAULT_READY_EVENT,
        startup_timeout: float = 10.0,
    ) -> None:
        self._table = table
        self.ready_event = ready_event
        self.startup_timeout = startup_timeout
        self._future: asyncio.Future[Any] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_armed(self) -> bool:
        """True between arm() and the gate settling."""
        return READY_SENTINEL_ID in self._table

    def arm(self) -> None:
        """Register the sentinel and start the startup timer.

        Must be called before the process is spawned.

        Raises:
            RuntimeError: If the gate was already armed.
        """
        if self._future is not None:
            raise RuntimeError("Readiness gate can only be armed once")

        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self._table.register(
            READY_SENTINEL_ID,
            on_success=self._on_ready,
            on_failure=self._on_failed,
            timeout=None,
            command=f"<{self.ready_event}>",
        )
        self._timer = loop.call_later(self.startup_timeout, self._on_startup_timeout)

    def matches(self, message: DecodedMessage) -> bool:
        """True if ``message`` is the ready event and the gate is still waiting."""
        return message.is_event and message.event == self.ready_event and self.is_armed

    def signal(self, message: DecodedMessage) -> None:
        self._table.resolve(READY_SENTINEL_ID, message)

    def check(self) -> None:
        """Raise NotReadyError unless the gate is open."""
        if not self._ready:
            raise NotReadyError("tsserver is not ready")

    async def wait(self) -> None:
        """Wait for the gate to settle; raises the startup failure, if any."""
        if self._future is None:
            raise NotReadyError("Readiness gate was never armed")
        await asyncio.shield(self._future)

    def abort(self) -> None:
        """Withdraw the sentinel without reporting a failure.

        Used when startup fails before the gate could settle on its own,
        e.g. the process never spawned.
        """
        self._cancel_timer()
        self._table.discard(READY_SENTINEL_ID)
        if self._future is not None and not self._future.done():
            self._future.cancel()

    def _on_ready(self, message: Any) -> None:
        self._cancel_timer()
        self._ready = True
        log.info("tsserver is ready")
        if self._future is not None and not self._future.done():
            self._future.set_result(message)

    def _on_failed(self, error: BaseException) -> None:
        self._cancel_timer()
        log.error("tsserver failed to start: %s", error)
        if self._future is not None and not self._future.done():
            self._future.set_exception(error)

    def _on_startup_timeout(self) -> None:
        self._timer = None
        self._table.reject(
            READY_SENTINEL_ID, StartupTimeoutError(self.ready_event, self.startup_timeout)
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
