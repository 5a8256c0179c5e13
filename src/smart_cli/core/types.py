"""Shared data types for the command execution service."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass
class ServerConfig:
    """Runtime configuration, built by ``load_config``."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # Execution
    sandbox_dir: str = "./sandbox"
    execution_timeout_seconds: float = 30.0
    kill_grace_seconds: float = 2.0
    use_shell: bool = True

    # History
    data_dir: str = "./data"
    max_history: int = 100
    max_output_chars: int = 10000

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def logs_file(self) -> str:
        return str(Path(self.data_dir) / "logs.json")


@dataclass(frozen=True)
class CommandRequest:
    """A single command submission."""
    text: str


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a policy check. ``reason`` is set only on rejection."""
    valid: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationResult":
        return cls(valid=False, reason=reason)


class EventType(Enum):
    """Kinds of events emitted while a command runs."""
    STDOUT = "stdout"
    STDERR = "stderr"
    COMPLETED = "complete"
    FAILED = "error"


@dataclass(frozen=True)
class OutputEvent:
    """One event in an execution stream.

    Chunk events carry ``data``; ``COMPLETED`` carries ``exit_code`` and
    ``duration_ms``; ``FAILED`` carries the failure message in ``data``.
    """

    type: EventType
    data: str = ""
    exit_code: Optional[int] = None
    duration_ms: Optional[int] = None

    @classmethod
    def stdout(cls, data: str) -> "OutputEvent":
        return cls(EventType.STDOUT, data)

    @classmethod
    def stderr(cls, data: str) -> "OutputEvent":
        return cls(EventType.STDERR, data)

    @classmethod
    def completed(cls, exit_code: int, duration_ms: int) -> "OutputEvent":
        return cls(EventType.COMPLETED, exit_code=exit_code, duration_ms=duration_ms)

    @classmethod
    def failed(cls, message: str) -> "OutputEvent":
        return cls(EventType.FAILED, message)

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.COMPLETED, EventType.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used by the event stream."""
        if self.type == EventType.COMPLETED:
            return {
                "type": self.type.value,
                "exitCode": self.exit_code,
                "duration": self.duration_ms,
            }
        return {"type": self.type.value, "data": self.data}


class ExecutionStatus(Enum):
    """Classification stored on each log record."""
    SUCCESS = "success"    # Exit code 0
    FAILED = "failed"      # Ran, exited non-zero
    ERROR = "error"        # Could not run, timed out, or broke mid-stream


@dataclass(frozen=True)
class LogRecord:
    """One entry of the execution history. Text fields are already capped."""

    timestamp: str
    command: str
    status: ExecutionStatus
    exit_code: Optional[int] = None
    output: str = ""
    error: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "command": self.command,
            "status": self.status.value,
            "exitCode": self.exit_code,
            "output": self.output,
            "error": self.error,
            "durationMs": self.duration_ms,
            "timedOut": self.timed_out,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogRecord":
        """Build a record from its stored form.

        Raises:
            ValueError: If the status is unknown or a field has the wrong type
        """
        exit_code = data.get("exitCode")
        duration = data.get("durationMs", data.get("duration", 0))
        return cls(
            timestamp=str(data.get("timestamp", "")),
            command=str(data.get("command", "")),
            status=ExecutionStatus(data.get("status", "error")),
            exit_code=int(exit_code) if exit_code is not None else None,
            output=str(data.get("output") or ""),
            error=str(data.get("error") or ""),
            duration_ms=int(duration or 0),
            timed_out=bool(data.get("timedOut", False)),
        )


@dataclass
class RunOutcome:
    """What the process runner knows once a run has ended."""

    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    duration_ms: int = 0
    timed_out: bool = False
    spawn_error: Optional[str] = None
    failure: Optional[str] = None
