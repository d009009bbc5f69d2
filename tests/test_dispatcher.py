"""Tests for command dispatch and message routing, without a process."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from tsbridge.correlation import CorrelationTable
from tsbridge.dispatcher import Dispatcher
from tsbridge.errors import (
    CommandFailedError,
    NotReadyError,
    ProcessExitedError,
    RequestTimeoutError,
    StreamUnwritableError,
)
from tsbridge.protocol.framing import Decoder, FrameDecoder, LineFrameDecoder, encode_frame
from tsbridge.protocol.messages import DecodedMessage
from tsbridge.readiness import ReadinessGate


class FakeStdin:
    """Records written commands; can be closed to simulate a dead pipe."""

    def __init__(self) -> None:
        self.commands: list[dict[str, Any]] = []
        self.closed = False

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise StreamUnwritableError("tsserver stdin not writable")
        assert data.endswith(b"\n") and data.count(b"\n") == 1
        self.commands.append(json.loads(data))


def response(request_seq: int, success: bool = True, **extra: Any) -> bytes:
    return encode_frame(
        {"seq": 0, "type": "response", "request_seq": request_seq, "success": success, **extra}
    )


def event(name: str, body: Any = None) -> bytes:
    return encode_frame({"seq": 0, "type": "event", "event": name, "body": body})


def make_dispatcher(
    stdin: FakeStdin,
    timeout: float = 2.0,
    decoder: Decoder | None = None,
) -> tuple[Dispatcher, CorrelationTable, ReadinessGate]:
    table = CorrelationTable()
    gate = ReadinessGate(table)
    dispatcher = Dispatcher(
        table, gate, stdin.write, decoder or FrameDecoder(), default_timeout=timeout
    )
    return dispatcher, table, gate


async def open_gate(dispatcher: Dispatcher, gate: ReadinessGate) -> None:
    gate.arm()
    dispatcher.ingest(event("typingsInstallerPid", {"pid": 1}))
    await gate.wait()


async def wait_written(stdin: FakeStdin, count: int) -> None:
    for _ in range(100):
        if len(stdin.commands) >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {count} commands, got {len(stdin.commands)}")


class TestSend:
    """Tests for correlated sends."""

    @pytest.mark.asyncio
    async def test_reply_resolves_send(self) -> None:
        """The reply with the matching request_seq resolves the call."""
        stdin = FakeStdin()
        dispatcher, table, gate = make_dispatcher(stdin)
        await open_gate(dispatcher, gate)

        task = asyncio.create_task(dispatcher.send("quickinfo", {"file": "a.ts"}))
        await wait_written(stdin, 1)
        sent = stdin.commands[0]
        assert sent == {
            "seq": 1,
            "type": "request",
            "command": "quickinfo",
            "arguments": {"file": "a.ts"},
        }
        assert 1 in table

        dispatcher.ingest(response(1, body={"displayString": "const x: number"}))
        reply = await task
        assert isinstance(reply, DecodedMessage)
        assert reply.body == {"displayString": "const x: number"}
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_out_of_order_replies(self) -> None:
        """Replies for 2 then 1 each resolve their own caller."""
        stdin = FakeStdin()
        dispatcher, _, gate = make_dispatcher(stdin)
        await open_gate(dispatcher, gate)

        first = asyncio.create_task(dispatcher.send("definition"))
        second = asyncio.create_task(dispatcher.send("references"))
        await wait_written(stdin, 2)

        dispatcher.ingest(response(2, body="two") + response(1, body="one"))
        assert (await first).body == "one"
        assert (await second).body == "two"

    @pytest.mark.asyncio
    async def test_failed_reply_raises(self) -> None:
        """success=false rejects with CommandFailedError carrying the message."""
        stdin = FakeStdin()
        dispatcher, _, gate = make_dispatcher(stdin)
        await open_gate(dispatcher, gate)

        task = asyncio.create_task(dispatcher.send("rename"))
        await wait_written(stdin, 1)
        dispatcher.ingest(response(1, success=False, command="rename", message="No project."))

        with pytest.raises(CommandFailedError, match="No project.") as exc_info:
            await task
        assert exc_info.value.command == "rename"
        assert exc_info.value.response is not None

    @pytest.mark.asyncio
    async def test_timeout_then_stale_reply(self) -> None:
        """A timed-out call stays failed when its reply shows up late."""
        stdin = FakeStdin()
        dispatcher, table, gate = make_dispatcher(stdin)
        await open_gate(dispatcher, gate)

        with pytest.raises(RequestTimeoutError):
            await dispatcher.send("navto", timeout=0.05)
        assert len(table) == 0

        received: list[DecodedMessage] = []
        dispatcher.add_listener(received.append)
        dispatcher.ingest(response(1, body="late"))
        assert received == []

    @pytest.mark.asyncio
    async def test_unwritable_stream_rejects(self) -> None:
        """A closed stdin fails the call at once and leaves no entry."""
        stdin = FakeStdin()
        dispatcher, table, gate = make_dispatcher(stdin)
        await open_gate(dispatcher, gate)
        stdin.closed = True

        with pytest.raises(StreamUnwritableError):
            await dispatcher.send("quickinfo")
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_cancelled_send_discards_entry(self) -> None:
        """Cancelling the awaiting task removes its table entry."""
        stdin = FakeStdin()
        dispatcher, table, gate = make_dispatcher(stdin)
        await open_gate(dispatcher, gate)

        task = asyncio.create_task(dispatcher.send("completionInfo"))
        await wait_written(stdin, 1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_send_before_ready_raises(self) -> None:
        """Calls before the gate opens fail with NotReadyError, nothing is written."""
        stdin = FakeStdin()
        dispatcher, _, gate = make_dispatcher(stdin)
        gate.arm()

        with pytest.raises(NotReadyError):
            await dispatcher.send("quickinfo")
        assert stdin.commands == []
        gate.abort()


class TestFireAndForget:
    """Tests for commands that get no direct reply."""

    @pytest.mark.asyncio
    async def test_no_table_entry_no_timer(self) -> None:
        """open resolves at once with no entry and no timer scheduled."""
        stdin = FakeStdin()
        dispatcher, table, gate = make_dispatcher(stdin, timeout=0.05)
        await open_gate(dispatcher, gate)

        assert await dispatcher.send("open", {"file": "a.ts"}) is None
        assert len(table) == 0
        assert stdin.commands[0]["command"] == "open"

        # Nothing can time out later
        await asyncio.sleep(0.1)
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_notify_returns_seq(self) -> None:
        """notify() stamps and returns a sequence number."""
        stdin = FakeStdin()
        dispatcher, table, gate = make_dispatcher(stdin)
        await open_gate(dispatcher, gate)

        seq = await dispatcher.notify("geterr", {"files": ["a.ts"], "delay": 0})
        assert seq == 1
        assert stdin.commands[0]["seq"] == 1
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_custom_table(self) -> None:
        """The fire-and-forget set is configurable."""
        stdin = FakeStdin()
        table = CorrelationTable()
        gate = ReadinessGate(table)
        dispatcher = Dispatcher(table, gate, stdin.write, FrameDecoder(), fire_and_forget={"x"})
        await open_gate(dispatcher, gate)

        assert dispatcher.is_fire_and_forget("x")
        assert not dispatcher.is_fire_and_forget("open")
        assert await dispatcher.send("x") is None


class TestRouting:
    """Tests for incoming message routing."""

    @pytest.mark.asyncio
    async def test_ready_event_not_emitted(self) -> None:
        """The first ready event goes to the gate only."""
        stdin = FakeStdin()
        dispatcher, _, gate = make_dispatcher(stdin)
        received: list[DecodedMessage] = []
        dispatcher.add_listener(received.append)

        await open_gate(dispatcher, gate)
        assert gate.is_ready
        assert received == []

        dispatcher.ingest(event("typingsInstallerPid", {"pid": 2}))
        assert [m.event for m in received] == ["typingsInstallerPid"]

    @pytest.mark.asyncio
    async def test_events_reach_listeners(self) -> None:
        """Events are delivered to every listener until unregistered."""
        stdin = FakeStdin()
        dispatcher, _, _ = make_dispatcher(stdin)
        first: list[DecodedMessage] = []
        second: list[DecodedMessage] = []
        unregister = dispatcher.add_listener(first.append)
        dispatcher.add_listener(second.append)

        dispatcher.ingest(event("semanticDiag", {"file": "a.ts", "diagnostics": []}))
        unregister()
        dispatcher.ingest(event("syntaxDiag"))

        assert [m.event for m in first] == ["semanticDiag"]
        assert [m.event for m in second] == ["semanticDiag", "syntaxDiag"]

    @pytest.mark.asyncio
    async def test_listener_error_isolated(self) -> None:
        """A failing listener does not stop delivery to the others."""
        stdin = FakeStdin()
        dispatcher, _, _ = make_dispatcher(stdin)
        received: list[DecodedMessage] = []

        def broken(message: DecodedMessage) -> None:
            raise RuntimeError("listener bug")

        dispatcher.add_listener(broken)
        dispatcher.add_listener(received.append)
        dispatcher.ingest(event("projectLoadingStart"))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_malformed_frame_dropped(self) -> None:
        """A frame that is not JSON is dropped; later frames still route."""
        stdin = FakeStdin()
        dispatcher, _, _ = make_dispatcher(stdin)
        received: list[DecodedMessage] = []
        dispatcher.add_listener(received.append)

        dispatcher.ingest(b"Content-Length: 5\r\n\r\nnope!" + event("ok"))
        assert [m.event for m in received] == ["ok"]

    @pytest.mark.asyncio
    async def test_chunked_input(self) -> None:
        """A reply split across chunks resolves once complete."""
        stdin = FakeStdin()
        dispatcher, _, gate = make_dispatcher(stdin)
        await open_gate(dispatcher, gate)

        task = asyncio.create_task(dispatcher.send("brace"))
        await wait_written(stdin, 1)
        data = response(1, body=[])
        for i in range(len(data)):
            dispatcher.ingest(data[i : i + 1])
        assert (await task).body == []

    @pytest.mark.asyncio
    async def test_line_framing(self) -> None:
        """With line framing each JSON line is a message."""
        stdin = FakeStdin()
        dispatcher, _, gate = make_dispatcher(stdin, decoder=LineFrameDecoder())
        gate.arm()
        dispatcher.ingest(b'{"type":"event","event":"typingsInstallerPid"}\n')
        await gate.wait()

        task = asyncio.create_task(dispatcher.send("status"))
        await wait_written(stdin, 1)
        dispatcher.ingest(b'{"type":"response","request_seq":1,"success":true,"body":{"version":"5.4"}}\n')
        assert (await task).body == {"version": "5.4"}


class TestWaitForEvent:
    """Tests for wait_for_event."""

    @pytest.mark.asyncio
    async def test_waits_for_matching_event(self) -> None:
        """Only an event with the right name and predicate completes the wait."""
        stdin = FakeStdin()
        dispatcher, _, _ = make_dispatcher(stdin)

        waiter = asyncio.create_task(
            dispatcher.wait_for_event(
                "requestCompleted", lambda m: m.body["request_seq"] == 5, timeout=1.0
            )
        )
        await asyncio.sleep(0)
        dispatcher.ingest(event("requestCompleted", {"request_seq": 4}))
        dispatcher.ingest(event("semanticDiag"))
        dispatcher.ingest(event("requestCompleted", {"request_seq": 5}))

        message = await waiter
        assert message.body == {"request_seq": 5}

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """wait_for_event gives up after its timeout."""
        stdin = FakeStdin()
        dispatcher, _, _ = make_dispatcher(stdin)
        with pytest.raises(asyncio.TimeoutError):
            await dispatcher.wait_for_event("never", timeout=0.05)

    @pytest.mark.asyncio
    async def test_fail_waiters(self) -> None:
        """fail_waiters ends an open wait with the given error and stops tracking it."""
        stdin = FakeStdin()
        dispatcher, _, _ = make_dispatcher(stdin)

        waiter = asyncio.create_task(dispatcher.wait_for_event("never"))
        await asyncio.sleep(0)
        assert dispatcher.fail_waiters(lambda: ProcessExitedError(7)) == 1

        with pytest.raises(ProcessExitedError) as exc_info:
            await waiter
        assert exc_info.value.returncode == 7
        assert dispatcher.fail_waiters(lambda: ProcessExitedError(7)) == 0
