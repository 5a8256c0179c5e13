"""Exceptions for the command execution service.

Validation and busy errors are raised synchronously by the coordinator
before any stream is opened. Spawn, timeout and non-zero exits never reach
the stream consumer as exceptions; they become terminal events and log
records. Log persistence errors stay inside the execution log.

Usage:
    from smart_cli.core.exceptions import BusyError, ValidationError

    try:
        session = coordinator.submit(command)
    except ValidationError as e:
        return {"error": e.reason}
    except BusyError:
        ...
"""

from typing import Any, Dict, Optional


class SmartCLIError(Exception):
    """Base exception for all service errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Admission Errors (raised before execution)
# ============================================

class ValidationError(SmartCLIError):
    """Command rejected by the policy gate"""

    def __init__(self, reason: str, command: Optional[str] = None):
        details = {"command": command} if command is not None else {}
        super().__init__(reason, code="VALIDATION_ERROR", details=details)
        self.reason = reason


class BusyError(SmartCLIError):
    """Another command holds the execution slot"""

    def __init__(self, message: str = "Another command is currently executing. Please wait."):
        super().__init__(message, code="BUSY")


# ============================================
# Execution Errors (reported as terminal events)
# ============================================

class SpawnError(SmartCLIError):
    """The subprocess could not be started"""

    def __init__(self, message: str, command: str = ""):
        super().__init__(message, code="SPAWN_FAILED", details={"command": command})


class ExecutionTimeoutError(SmartCLIError):
    """The subprocess outlived its deadline and was terminated"""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Command execution timeout ({timeout_seconds:g}s)",
            code="TIMEOUT",
            details={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class RuntimeExitError(SmartCLIError):
    """The subprocess ran and exited non-zero"""

    def __init__(self, exit_code: int):
        super().__init__(
            f"Command exited with code {exit_code}",
            code="NON_ZERO_EXIT",
            details={"exit_code": exit_code},
        )
        self.exit_code = exit_code


# ============================================
# Persistence Errors (never leave the log)
# ============================================

class LogPersistenceError(SmartCLIError):
    """The execution history could not be written"""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message, code="LOG_PERSISTENCE", details={"path": path})
