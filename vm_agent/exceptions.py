"""Base exceptions shared by every vm-agent component.

Storage specific errors live in :mod:`vm_agent.storage.exceptions`; service
clients define their own subclasses next to the client that raises them.
"""

from __future__ import annotations

from typing import Sequence


class AgentError(Exception):
    """Base exception for all provisioning failures."""


class CommandError(AgentError):
    """An external tool exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        message = f"Command failed ({' '.join(self.command)}) rc={returncode}"
        if output:
            message += f": {output}"
        super().__init__(message)


class PollTimeoutError(AgentError):
    """A polling loop reached its attempt or time bound."""

    def __init__(self, description: str, attempts: int, elapsed_seconds: float):
        self.description = description
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            f"Timed out waiting for {description} after {attempts} attempts "
            f"({elapsed_seconds:.1f}s)"
        )


class OperationCancelledError(AgentError):
    """The provisioning run was cancelled by a signal or supervisor."""

    def __init__(self, description: str):
        self.description = description
        super().__init__(f"Cancelled while waiting for {description}")
