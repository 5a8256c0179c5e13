"""Policy Gate — deterministic admission checks before a command runs.

Sits between the HTTP channel (which receives commands) and the process
runner (which executes them). Every command passes through ``admit`` first.

Known limitation: this is pattern matching on the raw command text, not a
shell parser. Quoting, variable expansion, globbing, aliases and other
indirection can build commands that slip past every rule here. Treat it as
a best-effort denylist in front of a working-directory sandbox, not as a
security boundary.
"""

import re
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from ..types import ValidationResult

# (pattern, what it guards against); first match wins
DENYLIST: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"rm\s+-rf\s+/"), "recursive deletion from the filesystem root"),
    (re.compile(r":\(\)\{\s*:\|:&\s*\};:"), "fork bomb"),
    (re.compile(r"shutdown"), "system shutdown"),
    (re.compile(r"reboot"), "system reboot"),
    (re.compile(r"halt"), "system halt"),
    (re.compile(r"poweroff"), "system power-off"),
    (re.compile(r"init\s+0"), "runlevel switch to halt"),
    (re.compile(r"init\s+6"), "runlevel switch to reboot"),
    (re.compile(r"killall"), "bulk process killing"),
    (re.compile(r"pkill.*-9"), "bulk process killing"),
    (re.compile(r"dd\s+if="), "raw disk write"),
    (re.compile(r"mkfs\."), "filesystem formatting"),
    (re.compile(r"fdisk"), "disk partitioning"),
    (re.compile(r">\s*/dev/sd"), "redirect into a disk device"),
    (re.compile(r"chmod\s+777"), "overly permissive permission change"),
    (re.compile(r"chown\s+root"), "ownership change to root"),
    (re.compile(r"sudo"), "privilege escalation"),
    (re.compile(r"su\s"), "privilege escalation"),
    (re.compile(r"wget.*\|.*sh"), "piping a downloaded script into a shell"),
    (re.compile(r"curl.*\|.*sh"), "piping a downloaded script into a shell"),
    (re.compile(r"eval.*\$"), "dynamic evaluation of variable content"),
    (re.compile(r"exec.*\$"), "dynamic execution of variable content"),
]

# Absolute paths a command may mention. Checked by substring containment,
# so one safe path anywhere in the text admits every other absolute path.
SAFE_ABSOLUTE_PATHS: Tuple[str, ...] = ("/usr/bin", "/bin", "/tmp")

# Leading absolute path, or one introduced as a later argument
ABSOLUTE_PATH_PATTERN = re.compile(r"^\s*/|\s/")

TRAVERSAL_TOKEN = ".."


class CommandPolicyGate:
    """Deterministic denylist gate for shell commands.

    Checks, in order, first failure wins:
    1. Command is a non-empty string
    2. No denylist pattern matches
    3. No parent-directory traversal token
    4. No absolute path outside the safe list

    Stateless: the same command always gets the same answer.
    """

    def __init__(
        self,
        denylist: Optional[Sequence[Tuple[Pattern[str], str]]] = None,
        safe_absolute_paths: Optional[Iterable[str]] = None,
    ):
        """Initialize policy gate.

        Args:
            denylist: (pattern, description) pairs; defaults to DENYLIST
            safe_absolute_paths: Allowed absolute paths; defaults to SAFE_ABSOLUTE_PATHS
        """
        self.denylist = list(denylist if denylist is not None else DENYLIST)
        self.safe_absolute_paths = tuple(
            safe_absolute_paths if safe_absolute_paths is not None else SAFE_ABSOLUTE_PATHS
        )

    def admit(self, command: object) -> ValidationResult:
        """Check whether a command may run.

        Args:
            command: Raw command text as received from the caller

        Returns:
            ValidationResult; on rejection ``reason`` names the rule that fired
        """
        # 1. Shape
        if not isinstance(command, str) or not command.strip():
            return ValidationResult.reject("Command must be a non-empty string")

        # 2. Denylist
        match = self.find_denylist_match(command)
        if match:
            pattern, description = match
            return ValidationResult.reject(
                f"Command contains dangerous pattern ({description}): {pattern.pattern}"
            )

        # 3. Traversal
        if TRAVERSAL_TOKEN in command:
            return ValidationResult.reject("Command contains path traversal attempt (..)")

        # 4. Absolute paths
        if ABSOLUTE_PATH_PATTERN.search(command) and not self._mentions_safe_path(command):
            return ValidationResult.reject("Command contains absolute paths outside sandbox")

        return ValidationResult.accept()

    def find_denylist_match(self, command: str) -> Optional[Tuple[Pattern[str], str]]:
        """Return the first denylist entry matching the command, if any."""
        for pattern, description in self.denylist:
            if pattern.search(command):
                return pattern, description
        return None

    def _mentions_safe_path(self, command: str) -> bool:
        return any(safe_path in command for safe_path in self.safe_absolute_paths)


_default_gate = CommandPolicyGate()


def admit(command: object) -> ValidationResult:
    """Check a command against the default policy."""
    return _default_gate.admit(command)
