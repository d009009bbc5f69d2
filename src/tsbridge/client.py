"""tsserver client: one process, one correlation table, one dispatcher.

Usage::

    client = TSServerClient(load_config(project_root))
    await client.start()
    reply = await client.quick_info("src/index.ts", 3, 7)
    await client.exit_server()
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from tsbridge.config import Config
from tsbridge.correlation import CorrelationTable
from tsbridge.dispatcher import Dispatcher, EventListener
from tsbridge.errors import NotReadyError, ProcessExitedError, StreamUnwritableError
from tsbridge.logging import get_logger
from tsbridge.operations import LanguageOperations
from tsbridge.protocol.commands import (
    DIAGNOSTIC_EVENTS,
    EXIT_COMMAND,
    REQUEST_COMPLETED_EVENT,
    fire_and_forget_table,
)
from tsbridge.protocol.framing import create_decoder
from tsbridge.protocol.messages import DecodedMessage
from tsbridge.readiness import ReadinessGate
from tsbridge.supervisor import ProcessSupervisor

log = get_logger("client")


class TSServerClient(LanguageOperations):
    """Async client for a single tsserver process.

    Args:
        config: Full configuration; defaults are used when omitted.
        node: Overrides ``config.server.node``.
        tsserver: Overrides ``config.server.tsserver``.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        node: str | None = None,
        tsserver: str | None = None,
    ) -> None:
        config = config or Config()
        if node is not None or tsserver is not None:
            config = replace(
                config,
                server=replace(
                    config.server,
                    node=node or config.server.node,
                    tsserver=tsserver or config.server.tsserver,
                ),
            )
        self.config = config

        server = config.server
        self._table = CorrelationTable()
        self._gate = ReadinessGate(
            self._table,
            ready_event=config.protocol.ready_event,
            startup_timeout=config.timeouts.startup,
        )
        self._supervisor = ProcessSupervisor(
            server.node,
            self._resolve_script(server.tsserver, server.cwd),
            server.args,
            on_stdout=self._on_stdout,
            on_exit=self._on_exit,
            cwd=server.cwd,
            env=server.env,
            read_chunk_size=config.protocol.read_chunk_size,
        )
        self._dispatcher = Dispatcher(
            self._table,
            self._gate,
            self._supervisor.write,
            create_decoder(config.protocol.framing),
            default_timeout=config.timeouts.request,
            fire_and_forget=fire_and_forget_table(config.protocol.fire_and_forget),
        )

    @staticmethod
    def _resolve_script(script: str, cwd: str | None) -> str:
        if os.path.isabs(script):
            return script
        return os.path.abspath(os.path.join(cwd or os.getcwd(), script))

    # -- state ----------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._supervisor.running

    @property
    def is_ready(self) -> bool:
        return self._gate.is_ready and self._supervisor.running

    @property
    def pid(self) -> int | None:
        return self._supervisor.pid

    @property
    def returncode(self) -> int | None:
        return self._supervisor.returncode

    @property
    def pending_count(self) -> int:
        """Outstanding correlated requests, the readiness sentinel included."""
        return len(self._table)

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Spawn tsserver and wait for its ready event.

        Raises:
            ProcessSpawnError: The executable could not be started.
            StartupTimeoutError: The ready event did not arrive in time.
            ProcessExitedError: The process exited before becoming ready.
        """
        self._gate.arm()
        try:
            await self._supervisor.spawn()
        except BaseException:
            self._gate.abort()
            raise

        try:
            await self._gate.wait()
        except BaseException:
            log.error("tsserver did not become ready, killing it")
            await self.kill_server()
            raise

    async def exit_server(self, timeout: float | None = None) -> int | None:
        """Ask tsserver to exit and wait for it, escalating if it lingers.

        Returns:
            The process exit code.
        """
        if not self._supervisor.running:
            return self._supervisor.returncode

        shutdown = self.config.shutdown
        wait_timeout = shutdown.exit_timeout if timeout is None else timeout
        try:
            await self._dispatcher.notify(EXIT_COMMAND)
        except (NotReadyError, StreamUnwritableError) as e:
            log.warning("Could not send exit command: %s", e)
            wait_timeout = 0.0

        try:
            return await self._supervisor.wait(timeout=wait_timeout)
        except asyncio.TimeoutError:
            log.warning("tsserver still running %ss after exit, terminating", wait_timeout)
        return await self._supervisor.terminate(
            shutdown.interrupt_timeout, shutdown.terminate_timeout
        )

    async def kill_server(self) -> int | None:
        """Kill tsserver now. Pending calls and event waits fail immediately.

        The process has not been reaped at that point, so their
        ProcessExitedError carries ``returncode=None``.

        Returns:
            The process exit code.
        """
        self._supervisor.kill()
        failed = self._fail_outstanding(lambda: ProcessExitedError(None))
        if failed:
            log.info("Failed %d pending call(s) on kill", failed)
        return await self._supervisor.wait()

    # -- requests -------------------------------------------------------------

    def _ensure_running(self) -> None:
        if not self._supervisor.running:
            raise NotReadyError("tsserver is not running")

    async def send(
        self,
        command: str,
        arguments: Any = None,
        *,
        timeout: float | None = None,
    ) -> DecodedMessage | None:
        """Send a command and wait for its reply.

        Fire-and-forget commands return None once written.
        """
        self._ensure_running()
        return await self._dispatcher.send(command, arguments, timeout)

    async def notify(self, command: str, arguments: Any = None) -> int:
        """Send a command without waiting for a reply; returns its seq."""
        self._ensure_running()
        return await self._dispatcher.notify(command, arguments)

    # -- events ---------------------------------------------------------------

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        return self._dispatcher.add_listener(listener)

    async def wait_for_event(
        self,
        name: str,
        predicate: Callable[[DecodedMessage], bool] | None = None,
        timeout: float | None = None,
    ) -> DecodedMessage:
        """Wait for an event; fails with ProcessExitedError if tsserver goes away."""
        self._ensure_running()
        return await self._dispatcher.wait_for_event(name, predicate, timeout)

    async def collect_diagnostics(
        self,
        files: list[str],
        delay: int = 0,
        timeout: float | None = None,
    ) -> list[DecodedMessage]:
        """Run geterr for ``files`` and gather the diagnostic events it produces.

        Returns once tsserver reports ``requestCompleted`` for the geterr
        sequence number. Diagnostic events from other concurrent geterr
        requests are included too.

        Raises:
            asyncio.TimeoutError: If completion is not seen within ``timeout``.
            ProcessExitedError: If tsserver exits first.
        """
        events: list[DecodedMessage] = []
        completed: set[int] = set()
        expected: int | None = None
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def finish() -> None:
            if expected in completed and not done.done():
                done.set_result(None)

        def listener(message: DecodedMessage) -> None:
            if message.event in DIAGNOSTIC_EVENTS:
                events.append(message)
            elif message.event == REQUEST_COMPLETED_EVENT and isinstance(message.body, dict):
                completed.add(message.body.get("request_seq"))
                finish()

        # Registered before geterr is written so no event can slip past
        unregister = self.add_listener(listener)
        release = self._dispatcher.track_waiter(done)
        try:
            expected = await self.get_errors(files, delay)
            finish()
            await asyncio.wait_for(done, timeout)
        finally:
            release()
            unregister()
        return events

    # -- process callbacks ----------------------------------------------------

    def _on_stdout(self, chunk: bytes) -> None:
        self._dispatcher.ingest(chunk)

    def _fail_outstanding(self, error_factory: Callable[[], ProcessExitedError]) -> int:
        return self._table.fail_all(error_factory) + self._dispatcher.fail_waiters(error_factory)

    def _on_exit(self, returncode: int | None) -> None:
        failed = self._fail_outstanding(lambda: ProcessExitedError(returncode))
        if failed:
            log.warning("tsserver exited with %d call(s) pending", failed)
