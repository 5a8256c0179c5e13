"""Execution Coordinator — admits one command at a time and runs it.

Flow per request:
  1. Take the execution slot, or reject as busy (no queueing)
  2. Ask the policy gate; on rejection release the slot and report why
  3. Hand back a session that streams the process runner's events live
  4. When the stream ends, write exactly one log record
  5. Release the slot, whatever happened in 3 or 4

Steps 1-2 run synchronously, so admission and busy errors reach the caller
before any stream is opened.
"""

import logging
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional

from .exceptions import (
    BusyError,
    ExecutionTimeoutError,
    RuntimeExitError,
    ValidationError,
)
from .nervous_system.execution_log import ExecutionLog, truncate_output
from .nervous_system.policy_gate import CommandPolicyGate
from .nervous_system.state_machine import (
    ExecutionSlot,
    ExecutionState,
    ExecutionStateMachine,
)
from .timezone import iso_timestamp
from .tools.process_runner import ProcessRun, ProcessRunner
from .types import (
    CommandRequest,
    ExecutionStatus,
    LogRecord,
    OutputEvent,
    ValidationResult,
)

logger = logging.getLogger(__name__)

# Exit code stored when the process never produced one
SENTINEL_EXIT_CODE = -1


class ExecutionSession:
    """One admitted command.

    Usage:
        async with coordinator.submit("ls -la") as session:
            async for event in session.events():
                relay(event)

    Leaving the block finalizes the session even if ``events()`` was never
    iterated or was abandoned halfway; an abandoned stream terminates the
    process first.
    """

    def __init__(
        self,
        coordinator: "ExecutionCoordinator",
        request: CommandRequest,
        run: ProcessRun,
        ticket: object,
    ):
        self.coordinator = coordinator
        self.request = request
        self.run = run
        self._ticket = ticket
        self.record: Optional[LogRecord] = None
        self._events: Optional[AsyncGenerator[OutputEvent, None]] = None
        self._failure: Optional[str] = None
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def events(self) -> AsyncIterator[OutputEvent]:
        """Relay the run's events, ending with exactly one terminal event."""
        if self._events is None:
            self._events = self._relay()
        return self._events

    async def _relay(self) -> AsyncGenerator[OutputEvent, None]:
        stream = self.run.events()
        try:
            async for event in stream:
                yield event
        except Exception as e:
            logger.error(f"Stream for '{self.request.text}' broke: {e}", exc_info=True)
            self._failure = str(e) or e.__class__.__name__
            if not self.run.finished:
                yield OutputEvent.failed(f"Execution failed: {self._failure}")
        finally:
            await stream.aclose()
            await self.finalize()

    async def finalize(self):
        """Log the execution and free the slot. Safe to call more than once."""
        if self._finalized:
            return
        self._finalized = True

        try:
            if self.run.started:
                self.coordinator.state_machine.transition(ExecutionState.FINALIZING)
                self.record = self.coordinator.build_record(self.request.text, self.run, self._failure)
                await self.coordinator.execution_log.append(self.record)
            else:
                logger.info(f"Session for '{self.request.text}' closed before it ran")
        except Exception as e:
            logger.error(f"Failed to record execution of '{self.request.text}': {e}", exc_info=True)
        finally:
            self.coordinator.release(self._ticket)

    async def __aenter__(self) -> "ExecutionSession":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._events is not None:
            await self._events.aclose()
        await self.finalize()


class ExecutionCoordinator:
    """Single-flight orchestrator over policy gate, process runner and log."""

    def __init__(
        self,
        policy_gate: CommandPolicyGate,
        runner: ProcessRunner,
        execution_log: ExecutionLog,
        max_output_chars: int = 10000,
        state_machine: Optional[ExecutionStateMachine] = None,
        slot: Optional[ExecutionSlot] = None,
    ):
        """Initialize coordinator.

        Args:
            policy_gate: Admission check for every command
            runner: Spawns commands in the sandbox directory
            execution_log: Where finished executions are recorded
            max_output_chars: Cap for stored stdout/stderr text
            state_machine: Shared state tracker (a fresh one if omitted)
            slot: Single-flight lock (a fresh one if omitted)
        """
        self.policy_gate = policy_gate
        self.runner = runner
        self.execution_log = execution_log
        self.max_output_chars = max_output_chars
        self.state_machine = state_machine or ExecutionStateMachine()
        self.slot = slot or ExecutionSlot()

    @property
    def is_executing(self) -> bool:
        return self.slot.held

    def admit(self, command: object) -> ValidationResult:
        """Policy check only; never touches the slot."""
        return self.policy_gate.admit(command)

    def submit(self, command: object) -> ExecutionSession:
        """Admit a command and reserve the slot for it.

        Raises:
            BusyError: Another command holds the slot
            ValidationError: The policy gate rejected the command
        """
        # Identifies this admission to the slot; only its session can free it
        ticket = object()
        if not self.slot.try_acquire(ticket):
            logger.warning(f"Busy, rejecting: {command!r}")
            raise BusyError()

        try:
            self.state_machine.transition(ExecutionState.VALIDATING, str(command))
            result = self.policy_gate.admit(command)
            if not result.valid:
                logger.warning(f"POLICY GATE BLOCKED: {result.reason} — command={command!r}")
                self.state_machine.transition(ExecutionState.IDLE)
                raise ValidationError(
                    result.reason,
                    command=command if isinstance(command, str) else None,
                )
            self.state_machine.transition(ExecutionState.RUNNING)
        except BaseException:
            self.release(ticket)
            raise

        logger.info(f"Executing command: {command}")
        request = CommandRequest(text=command)
        return ExecutionSession(self, request, self.runner.run(request.text), ticket)

    def release(self, ticket: object) -> bool:
        """Return to IDLE and free the slot, if ``ticket`` holds it.

        Returns:
            False if the slot belongs to another admission (nothing changes)
        """
        if not self.slot.owned_by(ticket):
            logger.warning("Release requested by an admission that does not hold the slot")
            return False

        if self.state_machine.state == ExecutionState.FINALIZING:
            self.state_machine.transition(ExecutionState.IDLE)
        elif self.state_machine.state != ExecutionState.IDLE:
            self.state_machine.reset()
        return self.slot.release(ticket)

    def build_record(self, command: str, run: ProcessRun, failure: Optional[str] = None) -> LogRecord:
        """Classify a finished run and cap its text for storage."""
        outcome = run.outcome
        failure = failure or outcome.failure
        exit_code: Optional[int] = outcome.exit_code
        timed_out = False

        if outcome.spawn_error is not None:
            status = ExecutionStatus.ERROR
            exit_code = SENTINEL_EXIT_CODE
            error_text = outcome.spawn_error
        elif outcome.timed_out:
            status = ExecutionStatus.ERROR
            exit_code = SENTINEL_EXIT_CODE
            timed_out = True
            error_text = self._join(ExecutionTimeoutError(run.timeout_seconds).message, outcome.stderr)
        elif failure is not None:
            status = ExecutionStatus.ERROR
            exit_code = SENTINEL_EXIT_CODE
            error_text = self._join(failure, outcome.stderr)
        elif exit_code == 0:
            status = ExecutionStatus.SUCCESS
            error_text = outcome.stderr
        else:
            logger.info(RuntimeExitError(exit_code).message)
            status = ExecutionStatus.FAILED
            error_text = outcome.stderr

        return LogRecord(
            timestamp=iso_timestamp(),
            command=command,
            status=status,
            exit_code=exit_code,
            output=truncate_output(outcome.stdout, self.max_output_chars),
            error=truncate_output(error_text, self.max_output_chars),
            duration_ms=outcome.duration_ms,
            timed_out=timed_out,
        )

    async def history(self) -> List[LogRecord]:
        """Execution history, newest first."""
        return await self.execution_log.load()

    def health(self) -> Dict[str, Any]:
        """Liveness probe payload."""
        return {
            "status": "ok",
            "timestamp": iso_timestamp(),
            "isExecuting": self.is_executing,
        }

    @staticmethod
    def _join(message: str, stderr: str) -> str:
        return f"{message}\n{stderr}" if stderr else message
