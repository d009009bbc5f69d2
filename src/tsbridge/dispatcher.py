"""Outgoing command dispatch and incoming message routing.

Outgoing: every command is wrapped in a CommandEnvelope and written as
one JSON line. Commands in the fire-and-forget table are written and
forgotten. All others get a sequence number, a correlation table entry
and a future that settles when the matching reply, a timeout or the
process exit ends the entry.

Incoming: ``ingest()`` is called once per stdout chunk. It feeds the
frame decoder and routes each decoded message:

- reply with a pending ``request_seq``  -> resolve/reject that entry
- reply without one                     -> logged and discarded
- the first ready event                 -> readiness gate
- anything else                         -> every registered listener
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from tsbridge.correlation import CorrelationTable
from tsbridge.errors import CommandFailedError, MalformedFrameError, StreamUnwritableError
from tsbridge.logging import TRACE, VERBOSE, get_logger
from tsbridge.protocol.commands import FIRE_AND_FORGET_COMMANDS
from tsbridge.protocol.framing import Decoder, encode_command
from tsbridge.protocol.messages import CommandEnvelope, DecodedMessage, decode_message
from tsbridge.readiness import ReadinessGate

log = get_logger("dispatcher")

Writer = Callable[[bytes], Awaitable[None]]
EventListener = Callable[[DecodedMessage], None]


def _settle_result(future: asyncio.Future[Any], value: Any) -> None:
    if not future.done():
        future.set_result(value)


def _settle_error(future: asyncio.Future[Any], error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


class Dispatcher:
    """Routes commands out and messages in for one server process.

    Args:
        table: Correlation table shared with the readiness gate.
        gate: Readiness gate; sends are refused until it opens.
        write: Coroutine writing raw bytes to the server's stdin. Must
            raise StreamUnwritableError if the stream is closed.
        decoder: Frame decoder for the server's stdout.
        default_timeout: Per-request timeout in seconds.
        fire_and_forget: Commands that never get a direct reply.
    """

    def __init__(
        self,
        table: CorrelationTable,
        gate: ReadinessGate,
        write: Writer,
        decoder: Decoder,
        default_timeout: float = 5.0,
        fire_and_forget: Iterable[str] = FIRE_AND_FORGET_COMMANDS,
    ) -> None:
        self._table = table
        self._gate = gate
        self._write = write
        self._decoder = decoder
        self.default_timeout = default_timeout
        self.fire_and_forget = frozenset(fire_and_forget)
        self._listeners: list[EventListener] = []
        self._waiters: set[asyncio.Future[Any]] = set()

    # -- outgoing -----------------------------------------------------------

    def is_fire_and_forget(self, command: str) -> bool:
        return command in self.fire_and_forget

    async def send(
        self,
        command: str,
        arguments: Any = None,
        timeout: float | None = None,
    ) -> DecodedMessage | None:
        """Send a command and wait for its reply.

        Fire-and-forget commands return None as soon as they are written.

        Raises:
            NotReadyError: The readiness gate has not opened.
            StreamUnwritableError: The server's stdin is closed.
            RequestTimeoutError: No reply within ``timeout`` seconds.
            CommandFailedError: The server replied with success=false.
            ProcessExitedError: The server exited while waiting.
        """
        self._gate.check()

        if self.is_fire_and_forget(command):
            await self._post(command, arguments)
            return None

        return await self._request(command, arguments, timeout)

    async def notify(self, command: str, arguments: Any = None) -> int:
        """Write a command without waiting for any reply.

        Returns:
            The sequence number put on the envelope. tsserver echoes it in
            events such as ``requestCompleted``.
        """
        self._gate.check()
        return await self._post(command, arguments)

    async def _post(self, command: str, arguments: Any) -> int:
        seq = self._table.next_seq()
        await self._write_envelope(CommandEnvelope(command=command, arguments=arguments, seq=seq))
        return seq

    async def _request(
        self,
        command: str,
        arguments: Any,
        timeout: float | None,
    ) -> DecodedMessage:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[DecodedMessage] = loop.create_future()
        seq = self._table.next_seq()
        self._table.register(
            seq,
            on_success=lambda reply: _settle_result(future, reply),
            on_failure=lambda error: _settle_error(future, error),
            timeout=self.default_timeout if timeout is None else timeout,
            command=command,
        )

        envelope = CommandEnvelope(command=command, arguments=arguments, seq=seq)
        try:
            await self._write_envelope(envelope)
        except StreamUnwritableError as e:
            self._table.reject(seq, e)
        except BaseException:
            self._table.discard(seq)
            raise

        try:
            return await future
        except asyncio.CancelledError:
            self._table.discard(seq)
            raise

    async def _write_envelope(self, envelope: CommandEnvelope) -> None:
        data = encode_command(envelope.to_dict())
        log.log(TRACE, "-> %s", data.rstrip(b"\n").decode("utf-8", errors="replace"))
        await self._write(data)

    # -- incoming -----------------------------------------------------------

    def ingest(self, chunk: bytes | str) -> None:
        """Feed one stdout chunk and route every message it completes."""
        for frame in self._decoder.feed(chunk):
            try:
                message = decode_message(frame)
            except MalformedFrameError as e:
                log.error("Dropping malformed frame: %s", e)
                continue
            log.log(TRACE, "<- %s", frame.rstrip(b"\n").decode("utf-8", errors="replace"))
            self.route(message)

    def route(self, message: DecodedMessage) -> None:
        """Route one decoded message."""
        if message.is_response:
            self._route_reply(message)
            return

        if self._gate.matches(message):
            self._gate.signal(message)
            return

        if message.is_event:
            log.log(VERBOSE, "Event %s: %s", message.event, message.body)
        else:
            log.debug("Unsolicited %s message: %s", message.type, message.raw)
        self._emit(message)

    def _route_reply(self, message: DecodedMessage) -> None:
        seq = message.request_seq
        entry = self._table.get(seq) if seq is not None else None
        if seq is None or entry is None:
            log.debug("Discarding reply to unknown or expired request %s (%s)", seq, message.command)
            return

        if message.succeeded:
            self._table.resolve(seq, message)
        else:
            self._table.reject(
                seq,
                CommandFailedError(message.command or entry.command, message.message, message),
            )

    # -- observer channel ---------------------------------------------------

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """Register a callback for events and other unsolicited messages.

        Returns:
            A function that unregisters the listener.
        """
        self._listeners.append(listener)

        def unregister() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unregister

    async def wait_for_event(
        self,
        name: str,
        predicate: Callable[[DecodedMessage], bool] | None = None,
        timeout: float | None = None,
    ) -> DecodedMessage:
        """Wait for the next event called ``name`` that satisfies ``predicate``.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
            ProcessExitedError: The server exited while waiting.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[DecodedMessage] = loop.create_future()

        def listener(message: DecodedMessage) -> None:
            if message.event != name or future.done():
                return
            if predicate is None or predicate(message):
                future.set_result(message)

        unregister = self.add_listener(listener)
        release = self.track_waiter(future)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            release()
            unregister()

    def track_waiter(self, future: asyncio.Future[Any]) -> Callable[[], None]:
        """Register a future that waits on events rather than a reply.

        Tracked futures are failed by ``fail_waiters()`` when the process
        goes away. Returns a function that stops tracking it.
        """
        self._waiters.add(future)
        return lambda: self._waiters.discard(future)

    def fail_waiters(self, error_factory: Callable[[], BaseException]) -> int:
        """Fail every tracked event waiter; returns how many were still open."""
        waiters = list(self._waiters)
        self._waiters.clear()
        failed = 0
        for future in waiters:
            if not future.done():
                future.set_exception(error_factory())
                failed += 1
        return failed

    def _emit(self, message: DecodedMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                log.warning("Event listener error: %s", e)
