"""Smart CLI — run shell commands in a sandbox directory with live output.

WARNING: the policy gate is a best-effort denylist, not an OS-level sandbox.
Commands run as the server's user with its environment; only the working
directory is fixed.
"""

__version__ = "0.1.0"
