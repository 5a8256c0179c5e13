"""Transport channels package.

All channels are thin wrappers around ExecutionCoordinator.
They only handle transport - execution logic is channel-agnostic.
"""

from .http_channel import HttpChannel

__all__ = ["HttpChannel"]
