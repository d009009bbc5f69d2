"""tsserver process ownership: spawn, stdin writes, output pumps, termination."""

from __future__ import annotations

import asyncio
import os
import platform
import signal
from collections.abc import Callable, Sequence

from tsbridge.errors import ProcessSpawnError, StreamUnwritableError
from tsbridge.logging import get_logger

log = get_logger("supervisor")

# Windows-specific subprocess creation flags
_WINDOWS = platform.system() == "Windows"
_CREATE_NEW_PROCESS_GROUP = 0x00000200 if _WINDOWS else 0

# How long the exit watcher lets the output pumps drain before reporting the exit
_DRAIN_TIMEOUT = 1.0


def _send_interrupt(process: asyncio.subprocess.Process) -> None:
    """Ctrl+Break on Windows, SIGINT elsewhere; SIGTERM if that cannot be sent."""
    sig = signal.CTRL_BREAK_EVENT if _WINDOWS else signal.SIGINT  # type: ignore[attr-defined]
    try:
        os.kill(process.pid, sig)
    except OSError:
        process.terminate()


def _send_terminate(process: asyncio.subprocess.Process) -> None:
    process.terminate()


async def graceful_shutdown(
    process: asyncio.subprocess.Process,
    interrupt_timeout: float = 2.0,
    terminate_timeout: float = 3.0,
) -> None:
    """Bring a process down in escalating steps.

    Interrupt, then terminate, each followed by a bounded wait; whatever
    is still alive after that is killed.

    Args:
        process: The subprocess to shut down
        interrupt_timeout: Seconds to wait after the interrupt
        terminate_timeout: Seconds to wait after SIGTERM
    """
    steps = (
        ("interrupt", _send_interrupt, interrupt_timeout),
        ("terminate", _send_terminate, terminate_timeout),
    )
    for name, send, grace in steps:
        if process.returncode is not None:
            return
        try:
            send(process)
        except ProcessLookupError:
            break
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
            return
        except asyncio.TimeoutError:
            log.debug("Process %s still alive %ss after %s", process.pid, grace, name)

    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


class ProcessSupervisor:
    """Owns one tsserver process and its three standard streams.

    Stdout chunks are handed to ``on_stdout`` as they arrive; stderr lines
    are only logged. When the process ends, ``on_exit`` is called once with
    the exit code, after stdout has been drained.

    Args:
        executable: Program to run (normally ``node``).
        script: Entry script passed as the first argument (tsserver).
        args: Extra arguments after the script.
        on_stdout: Called with each raw stdout chunk.
        on_exit: Called with the exit code when the process ends.
        cwd: Working directory for the process.
        env: Variables layered over the current environment.
        read_chunk_size: Maximum bytes per stdout read.
    """

    def __init__(
        self,
        executable: str,
        script: str,
        args: Sequence[str] = (),
        *,
        on_stdout: Callable[[bytes], None],
        on_exit: Callable[[int | None], None],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        read_chunk_size: int = 65536,
    ) -> None:
        self.executable = executable
        self.script = script
        self.args = list(args)
        self.cwd = cwd
        self.env = dict(env or {})
        self.read_chunk_size = read_chunk_size
        self._on_stdout = on_stdout
        self._on_exit = on_exit
        self._process: asyncio.subprocess.Process | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._exit_task: asyncio.Task[None] | None = None
        self._exited = False

    @property
    def command_line(self) -> list[str]:
        return [self.executable, self.script, *self.args]

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def running(self) -> bool:
        """True while a spawned process has not exited."""
        return (
            self._process is not None
            and not self._exited
            and self._process.returncode is None
        )

    def is_writable(self) -> bool:
        if not self.running or self._process is None or self._process.stdin is None:
            return False
        return not self._process.stdin.is_closing()

    async def spawn(self) -> None:
        """Start the process and the background pumps.

        Raises:
            ProcessSpawnError: If the executable cannot be started.
            RuntimeError: If this supervisor already spawned a process.
        """
        if self._process is not None:
            raise RuntimeError("tsserver process was already spawned")

        process_env = os.environ.copy()
        process_env.update(self.env)

        log.info("Spawning tsserver: %s", " ".join(self.command_line))
        try:
            # On Windows, create in new process group to enable Ctrl+Break signaling
            self._process = await asyncio.create_subprocess_exec(
                *self.command_line,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=process_env,
                creationflags=_CREATE_NEW_PROCESS_GROUP,  # type: ignore[arg-type]
            )
        except FileNotFoundError as e:
            raise ProcessSpawnError(f"Executable not found: {self.executable}") from e
        except PermissionError as e:
            raise ProcessSpawnError(f"Permission denied: {self.executable}") from e
        except OSError as e:
            raise ProcessSpawnError(f"Failed to start tsserver: {e}") from e

        log.info("tsserver started (pid %s)", self._process.pid)
        self._stdout_task = asyncio.create_task(self._pump_stdout())
        self._stderr_task = asyncio.create_task(self._pump_stderr())
        self._exit_task = asyncio.create_task(self._watch_exit())

    async def write(self, data: bytes) -> None:
        """Write to the process's stdin.

        Raises:
            StreamUnwritableError: If stdin is closed, the process is gone,
                or the pipe breaks while flushing.
        """
        if not self.is_writable() or self._process is None or self._process.stdin is None:
            raise StreamUnwritableError("tsserver stdin not writable")

        stdin = self._process.stdin
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise StreamUnwritableError(f"tsserver stdin closed: {e}") from e

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait until the process has exited and on_exit has run.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        if self._exit_task is None:
            return None
        await asyncio.wait_for(asyncio.shield(self._exit_task), timeout)
        return self.returncode

    def kill(self) -> None:
        """Send the OS kill signal right away."""
        if not self.running or self._process is None:
            return
        log.info("Killing tsserver (pid %s)", self._process.pid)
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def terminate(
        self,
        interrupt_timeout: float = 2.0,
        terminate_timeout: float = 3.0,
    ) -> int | None:
        """Escalating shutdown: interrupt, terminate, kill. Returns the exit code."""
        if self._process is None:
            return None
        if self.running:
            log.info("Terminating tsserver (pid %s)", self._process.pid)
            await graceful_shutdown(self._process, interrupt_timeout, terminate_timeout)
        return await self.wait()

    async def _pump_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        while True:
            chunk = await stdout.read(self.read_chunk_size)
            if not chunk:
                log.debug("tsserver stdout closed")
                return
            try:
                self._on_stdout(chunk)
            except Exception:
                log.exception("Error handling tsserver output")

    async def _pump_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        while True:
            line = await stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                log.warning("tsserver stderr: %s", text)

    async def _watch_exit(self) -> None:
        assert self._process is not None
        returncode = await self._process.wait()

        pumps = {t for t in (self._stdout_task, self._stderr_task) if t is not None}
        if pumps:
            _, pending = await asyncio.wait(pumps, timeout=_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()

        self._exited = True
        if self._process.stdin is not None:
            self._process.stdin.close()
        log.info("tsserver process exited with code %s", returncode)
        try:
            self._on_exit(returncode)
        except Exception:
            log.exception("Error handling tsserver exit")
