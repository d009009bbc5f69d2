"""Tests for the process supervisor.

These tests spawn small Python scripts as the supervised process.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import textwrap

import pytest

from tsbridge.errors import ProcessSpawnError, StreamUnwritableError
from tsbridge.supervisor import ProcessSupervisor, graceful_shutdown

# Path to Python interpreter
PYTHON = sys.executable

ECHO_SCRIPT = textwrap.dedent("""
    import sys
    for line in sys.stdin.buffer:
        sys.stdout.buffer.write(b"got " + line)
        sys.stdout.buffer.flush()
        if line.strip() == b"quit":
            sys.exit(5)
""")


class Collector:
    """Captures supervisor callbacks."""

    def __init__(self) -> None:
        self.chunks: list[bytes] = []
        self.exit_codes: list[int | None] = []

    def on_stdout(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    def on_exit(self, returncode: int | None) -> None:
        self.exit_codes.append(returncode)

    @property
    def output(self) -> bytes:
        return b"".join(self.chunks)


def python_supervisor(code: str, collector: Collector) -> ProcessSupervisor:
    return ProcessSupervisor(
        PYTHON,
        "-c",
        [code],
        on_stdout=collector.on_stdout,
        on_exit=collector.on_exit,
    )


class TestProcessSupervisor:
    """Tests for ProcessSupervisor with real subprocesses."""

    @pytest.mark.asyncio
    async def test_round_trip_and_exit(self) -> None:
        """Writes reach stdin, stdout is delivered, exit is reported once."""
        collector = Collector()
        supervisor = python_supervisor(ECHO_SCRIPT, collector)
        await supervisor.spawn()
        assert supervisor.running
        assert supervisor.pid is not None

        await supervisor.write(b"hello\n")
        await supervisor.write(b"quit\n")
        returncode = await supervisor.wait(timeout=10.0)

        assert returncode == 5
        assert collector.output == b"got hello\ngot quit\n"
        assert collector.exit_codes == [5]
        assert not supervisor.running
        assert not supervisor.is_writable()

    @pytest.mark.asyncio
    async def test_output_drained_before_exit_callback(self) -> None:
        """Everything written before exit is delivered before on_exit runs."""
        code = "import sys; sys.stdout.write('x' * 200000); sys.stdout.flush()"
        seen_at_exit: list[int] = []
        collector = Collector()
        supervisor = ProcessSupervisor(
            PYTHON,
            "-c",
            [code],
            on_stdout=collector.on_stdout,
            on_exit=lambda rc: seen_at_exit.append(len(collector.output)),
            read_chunk_size=4096,
        )
        await supervisor.spawn()
        await supervisor.wait(timeout=10.0)

        assert seen_at_exit == [200000]

    @pytest.mark.asyncio
    async def test_write_after_exit_raises(self) -> None:
        """Writing to a process that has exited fails fast."""
        collector = Collector()
        supervisor = python_supervisor("pass", collector)
        await supervisor.spawn()
        await supervisor.wait(timeout=10.0)

        with pytest.raises(StreamUnwritableError):
            await supervisor.write(b"late\n")

    @pytest.mark.asyncio
    async def test_write_before_spawn_raises(self) -> None:
        """Writing without a process fails fast."""
        supervisor = python_supervisor("pass", Collector())
        with pytest.raises(StreamUnwritableError):
            await supervisor.write(b"x\n")

    @pytest.mark.asyncio
    async def test_stderr_logged_as_warning(self, caplog) -> None:
        """stderr lines are logged, not treated as protocol output."""
        caplog.set_level(logging.WARNING, logger="tsbridge")
        collector = Collector()
        code = "import sys; sys.stderr.write('heap warning\\n'); sys.stderr.flush()"
        supervisor = python_supervisor(code, collector)
        await supervisor.spawn()
        await supervisor.wait(timeout=10.0)
        # Let the stderr pump finish its last line
        await asyncio.sleep(0.1)

        assert collector.output == b""
        assert any("heap warning" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_spawn_twice_raises(self) -> None:
        """A supervisor owns a single process."""
        supervisor = python_supervisor("pass", Collector())
        await supervisor.spawn()
        try:
            with pytest.raises(RuntimeError):
                await supervisor.spawn()
        finally:
            await supervisor.wait(timeout=10.0)

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path) -> None:
        """A missing executable raises ProcessSpawnError."""
        supervisor = ProcessSupervisor(
            str(tmp_path / "missing-node"),
            "tsserver.js",
            on_stdout=lambda chunk: None,
            on_exit=lambda rc: None,
        )
        with pytest.raises(ProcessSpawnError, match="not found"):
            await supervisor.spawn()
        assert not supervisor.running

    @pytest.mark.asyncio
    async def test_kill(self) -> None:
        """kill() ends a process that would otherwise run forever."""
        collector = Collector()
        supervisor = python_supervisor("import time\nwhile True: time.sleep(0.1)", collector)
        await supervisor.spawn()

        supervisor.kill()
        returncode = await supervisor.wait(timeout=10.0)
        assert returncode is not None and returncode != 0
        assert collector.exit_codes == [returncode]

    @pytest.mark.asyncio
    async def test_env_layered(self) -> None:
        """Configured variables are added to the inherited environment."""
        collector = Collector()
        supervisor = ProcessSupervisor(
            PYTHON,
            "-c",
            ["import os; print(os.environ['TSBRIDGE_TEST_VAR'], 'PATH' in os.environ)"],
            on_stdout=collector.on_stdout,
            on_exit=collector.on_exit,
            env={"TSBRIDGE_TEST_VAR": "layered"},
        )
        await supervisor.spawn()
        await supervisor.wait(timeout=10.0)
        assert collector.output.strip() == b"layered True"


class TestGracefulShutdown:
    """Integration tests for graceful_shutdown with real subprocesses."""

    @pytest.mark.asyncio
    async def test_shutdown_ignores_interrupt(self) -> None:
        """A process that ignores interrupt is still brought down."""
        script = textwrap.dedent("""
            import signal
            import sys
            import time

            signal.signal(signal.SIGINT, lambda signum, frame: None)
            if hasattr(signal, 'SIGBREAK'):
                signal.signal(signal.SIGBREAK, lambda signum, frame: None)
            if hasattr(signal, 'SIGTERM'):
                signal.signal(signal.SIGTERM, lambda signum, frame: sys.exit(0))

            print("ready", flush=True)
            while True:
                time.sleep(0.1)
        """)
        collector = Collector()
        supervisor = python_supervisor(script, collector)
        await supervisor.spawn()
        # Wait until the handlers are installed
        for _ in range(100):
            if b"ready" in collector.output:
                break
            await asyncio.sleep(0.05)

        returncode = await supervisor.terminate(interrupt_timeout=0.3, terminate_timeout=2.0)
        assert returncode is not None
        assert not supervisor.running

    @pytest.mark.asyncio
    async def test_shutdown_already_exited(self) -> None:
        """Process that exits before shutdown is called."""
        process = await asyncio.create_subprocess_exec(
            PYTHON, "-c", "import sys; sys.exit(42)",
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        await process.wait()

        await graceful_shutdown(process, interrupt_timeout=1.0, terminate_timeout=1.0)
        assert process.returncode == 42
