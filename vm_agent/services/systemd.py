"""systemd unit orchestration.

A unit moves ``NOT_STARTED -> STARTING -> ACTIVE | FAILED``. ``systemctl
is-active`` exits non-zero for every state except ``active``, so the state is
classified from its output text rather than its exit status:

    activating  -> STARTING (keep polling)
    active      -> ACTIVE
    anything else, or a failure to run systemctl -> FAILED

On failure the last journal lines of the unit are logged; a journal read that
fails itself never hides the original error.
"""

from __future__ import annotations

import subprocess
import threading
from typing import Callable, List, Optional, Sequence

from vm_agent.domain.models import ServiceState
from vm_agent.exceptions import AgentError, CommandError
from vm_agent.logging import EventLogger, LoggerFactory
from vm_agent.services.polling import PollPolicy, poll_until
from vm_agent.storage.devices import command_output, run_command


JOURNAL_LINES = 25

CommandRunner = Callable[..., subprocess.CompletedProcess]


class ServiceError(AgentError):
    """Base exception for systemd unit management."""

    def __init__(self, message: str, service: str, journal: Sequence[str] = ()):
        self.service = service
        self.journal = list(journal)
        super().__init__(message)


class ServiceStartError(ServiceError):
    """``systemctl start`` failed."""

    def __init__(self, service: str, output: str = "", journal: Sequence[str] = ()):
        self.output = output
        message = f"Failed to start {service}"
        if output:
            message += f": {output}"
        super().__init__(message, service, journal)


class ServiceFailedError(ServiceError):
    """The unit reached a failed state while being waited on."""

    def __init__(self, service: str, status: str = "", journal: Sequence[str] = ()):
        self.status = status
        message = f"Service {service} failed to start"
        if status:
            message += f" (status: {status})"
        super().__init__(message, service, journal)


class SystemdService:
    """Starts units and follows them to a terminal state."""

    def __init__(self, command_runner: Optional[CommandRunner] = None):
        self._run = command_runner or run_command
        self.log = LoggerFactory.for_service()

    def journal_lines(self, name: str, lines: int = JOURNAL_LINES) -> List[str]:
        """Last ``lines`` journal lines of ``name``; empty when unavailable."""
        try:
            result = self._run(
                ["journalctl", "-u", name, "-n", str(lines), "--no-pager"],
                check=False,
                log_output=False,
            )
        except CommandError as error:
            self.log.warning(f"Could not read journal for {name}: {error}")
            return []
        if result.returncode != 0:
            self.log.warning(f"Could not read journal for {name}: {command_output(result)}")
            return []
        return [line for line in (result.stdout or "").splitlines() if line.strip()]

    def _log_journal(self, name: str) -> List[str]:
        journal = self.journal_lines(name)
        for line in journal:
            self.log.error(f"[{name}] {line}")
        return journal

    def start_service(self, name: str) -> None:
        """Run ``systemctl start``.

        Raises:
            ServiceStartError: If systemctl exits non-zero or cannot run
        """
        self.log.info(f"Starting service {name}")
        try:
            self._run(["systemctl", "start", name])
        except CommandError as error:
            journal = self._log_journal(name)
            raise ServiceStartError(name, error.output, journal) from error

    def get_service_status(self, name: str) -> ServiceState:
        try:
            result = self._run(["systemctl", "is-active", name], check=False, log_output=False)
        except CommandError as error:
            self.log.warning(f"Could not query {name}: {error}")
            return ServiceState.FAILED
        state = ServiceState.from_status_text(result.stdout)
        self.log.trace(f"{name} is {(result.stdout or '').strip() or 'unknown'}")
        return state

    def wait_for_service(
        self,
        name: str,
        policy: PollPolicy,
        cancel: Optional[threading.Event] = None,
    ) -> ServiceState:
        """Poll ``name`` until it leaves STARTING.

        Raises:
            ServiceFailedError: If the unit ends up FAILED
            PollTimeoutError: If it is still activating when the policy runs out
        """
        state = poll_until(
            lambda: self.get_service_status(name),
            lambda current: current.is_terminal,
            policy,
            cancel=cancel,
            description=f"service {name}",
        )
        EventLogger.log_service_state(self.log, name, state.value)
        if state is ServiceState.FAILED:
            journal = self._log_journal(name)
            raise ServiceFailedError(name, state.value, journal)
        return state

    def start_and_wait(
        self,
        name: str,
        policy: PollPolicy,
        cancel: Optional[threading.Event] = None,
    ) -> ServiceState:
        self.start_service(name)
        return self.wait_for_service(name, policy, cancel)
