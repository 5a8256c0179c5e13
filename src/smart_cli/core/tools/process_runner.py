"""Process runner — executes one command inside the sandbox directory.

Both output pipes are drained by their own task so a full stderr pipe can
never stall stdout (or the other way round). A supervisor task races the
process against its deadline; whichever finishes first decides the single
terminal event that closes the stream.
"""

import asyncio
import codecs
import logging
import os
import signal
import time
from typing import AsyncIterator, Callable, List, Optional

from ..exceptions import ExecutionTimeoutError, SpawnError
from ..types import OutputEvent, RunOutcome

logger = logging.getLogger(__name__)


class ProcessRun:
    """One subprocess invocation.

    ``events()`` yields output chunks as soon as the OS hands them over and
    ends with exactly one terminal event (completed or failed). ``outcome``
    holds the full text of both streams, collected by the readers
    themselves and independent of how fast the events are consumed.
    """

    def __init__(
        self,
        command: str,
        work_dir: str,
        timeout_seconds: float,
        kill_grace_seconds: float = 2.0,
        use_shell: bool = True,
        chunk_size: int = 4096,
    ):
        self.command = command
        self.work_dir = work_dir
        self.timeout_seconds = timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds
        self.use_shell = use_shell
        self.chunk_size = chunk_size

        self.outcome = RunOutcome()
        self.terminal: Optional[OutputEvent] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stdout_parts: List[str] = []
        self._stderr_parts: List[str] = []
        self._started_at = 0.0
        self._consumed = False

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def started(self) -> bool:
        return self._consumed

    @property
    def finished(self) -> bool:
        return self.terminal is not None

    async def events(self) -> AsyncIterator[OutputEvent]:
        """Run the command and stream its events.

        Closing the iterator early (consumer gone) terminates the process
        through the same path as a timeout.
        """
        if self._consumed:
            raise RuntimeError("A process run can only be streamed once")
        self._consumed = True

        self._started_at = time.monotonic()
        try:
            self._process = await self._spawn()
        except (OSError, ValueError) as e:
            error = SpawnError(str(e) or e.__class__.__name__, command=self.command)
            logger.error(f"Failed to start command '{self.command}': {error.message}")
            self.outcome.spawn_error = error.message
            self.outcome.duration_ms = self._elapsed_ms()
            self.terminal = OutputEvent.failed(error.message)
            yield self.terminal
            return

        logger.info(f"Started pid {self._process.pid}: {self.command}")

        queue: asyncio.Queue = asyncio.Queue()
        readers = [
            asyncio.create_task(
                self._pump(self._process.stdout, OutputEvent.stdout, self._stdout_parts, queue)
            ),
            asyncio.create_task(
                self._pump(self._process.stderr, OutputEvent.stderr, self._stderr_parts, queue)
            ),
        ]
        supervisor = asyncio.create_task(self._supervise(readers, queue))

        try:
            while True:
                event = await queue.get()
                yield event
                if event.is_terminal:
                    break
        finally:
            if not supervisor.done():
                logger.warning(f"Stream for pid {self.pid} closed early, terminating")
                supervisor.cancel()
                for reader in readers:
                    reader.cancel()
                await self._terminate()
                await asyncio.gather(supervisor, *readers, return_exceptions=True)
                self._collect()
                self.outcome.failure = "Execution aborted before completion"
                self.outcome.duration_ms = self._elapsed_ms()

    async def _spawn(self) -> asyncio.subprocess.Process:
        kwargs = {
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": self.work_dir,
            "env": os.environ.copy(),
        }
        if os.name == "posix":
            # Own process group, so termination reaches the shell's children too
            kwargs["start_new_session"] = True

        if self.use_shell:
            return await asyncio.create_subprocess_shell(self.command, **kwargs)

        args = self.command.split()
        if not args:
            raise ValueError("Empty command")
        return await asyncio.create_subprocess_exec(*args, **kwargs)

    async def _pump(
        self,
        stream: asyncio.StreamReader,
        make_event: Callable[[str], OutputEvent],
        parts: List[str],
        queue: asyncio.Queue,
    ):
        """Copy one pipe into the event queue, chunk by chunk."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(self.chunk_size)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                parts.append(text)
                await queue.put(make_event(text))

        tail = decoder.decode(b"", final=True)
        if tail:
            parts.append(tail)
            await queue.put(make_event(tail))

    async def _drain(self, readers: List[asyncio.Task]) -> int:
        await asyncio.gather(*readers)
        return await self._process.wait()

    async def _supervise(self, readers: List[asyncio.Task], queue: asyncio.Queue):
        """Race the process against the deadline and emit the terminal event."""
        try:
            exit_code = await asyncio.wait_for(self._drain(readers), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            error = ExecutionTimeoutError(self.timeout_seconds)
            logger.warning(f"pid {self.pid} timed out after {self.timeout_seconds:g}s, terminating")
            await self._terminate()
            self.outcome.timed_out = True
            terminal = OutputEvent.failed(error.message)
        except Exception as e:
            logger.error(f"Error while running '{self.command}': {e}", exc_info=True)
            await self._terminate()
            self.outcome.failure = str(e) or e.__class__.__name__
            terminal = OutputEvent.failed(f"Execution failed: {self.outcome.failure}")
        else:
            self.outcome.exit_code = exit_code
            terminal = OutputEvent.completed(exit_code, self._elapsed_ms())
            if exit_code == 0:
                logger.info(f"pid {self.pid} exited successfully")
            else:
                logger.warning(f"pid {self.pid} exited with code {exit_code}")
        finally:
            for reader in readers:
                reader.cancel()

        self._collect()
        if terminal.duration_ms is not None:
            self.outcome.duration_ms = terminal.duration_ms
        else:
            self.outcome.duration_ms = self._elapsed_ms()
        self.terminal = terminal
        await queue.put(terminal)

    async def _terminate(self):
        """SIGTERM the process group, then SIGKILL it if it lingers.

        The group is signalled even when the shell itself has already
        exited: background children may still hold the output pipes.
        """
        process = self._process
        if process is None:
            return

        self._signal(signal.SIGTERM)
        if await self._wait_stopped(self.kill_grace_seconds):
            return
        logger.warning(f"pid {process.pid} group ignored SIGTERM, killing")

        self._signal(signal.SIGKILL if hasattr(signal, "SIGKILL") else signal.SIGTERM)
        if not await self._wait_stopped(self.kill_grace_seconds):
            logger.error(f"pid {process.pid} group still present after SIGKILL")

    async def _wait_stopped(self, timeout: float) -> bool:
        """Wait for the shell to be reaped and its group to empty."""
        process = self._process
        deadline = time.monotonic() + timeout
        if process.returncode is None:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return False

        while self._group_alive():
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(0.05)
        return True

    def _group_alive(self) -> bool:
        if os.name != "posix":
            return False
        try:
            os.killpg(self._process.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def _signal(self, sig: int):
        try:
            if os.name == "posix":
                os.killpg(self._process.pid, sig)
            else:
                self._process.send_signal(sig)
        except ProcessLookupError:
            # Nothing left in the group
            pass

    def _collect(self):
        self.outcome.stdout = "".join(self._stdout_parts)
        self.outcome.stderr = "".join(self._stderr_parts)

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started_at) * 1000)


class ProcessRunner:
    """Spawns commands in a fixed working directory.

    Environment variables (PATH in particular) are inherited from the
    server process. No isolation beyond the working directory is applied.
    """

    DEFAULT_TIMEOUT_SECONDS = 30.0
    CHUNK_SIZE = 4096

    def __init__(
        self,
        work_dir: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        kill_grace_seconds: float = 2.0,
        use_shell: bool = True,
    ):
        """Initialize ProcessRunner.

        Args:
            work_dir: Sandbox directory every command runs in
            timeout_seconds: Wall-clock limit per command
            kill_grace_seconds: Wait between SIGTERM and SIGKILL
            use_shell: Run through /bin/sh -c; if False, split on whitespace and exec
        """
        self.work_dir = work_dir
        self.timeout_seconds = timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds
        self.use_shell = use_shell

    def run(
        self,
        command: str,
        work_dir: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> ProcessRun:
        """Prepare a run. Nothing is spawned until its events are iterated."""
        return ProcessRun(
            command,
            work_dir or self.work_dir,
            timeout_seconds if timeout_seconds is not None else self.timeout_seconds,
            kill_grace_seconds=self.kill_grace_seconds,
            use_shell=self.use_shell,
            chunk_size=self.CHUNK_SIZE,
        )
