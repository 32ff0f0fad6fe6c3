"""SELinux labelling and port policy through the policycoreutils tools."""

from __future__ import annotations

import subprocess
from typing import Callable, Optional

from vm_agent.exceptions import AgentError, CommandError
from vm_agent.logging import LoggerFactory
from vm_agent.storage.devices import run_command


CHCON = "/usr/bin/chcon"
SEMANAGE = "/usr/sbin/semanage"
SETSEBOOL = "/usr/sbin/setsebool"

PROTOCOLS = ("tcp", "udp")


class SeLinuxError(AgentError):
    """A chcon, semanage or setsebool call failed."""


class SeLinuxService:
    def __init__(self, command_runner: Optional[Callable[..., subprocess.CompletedProcess]] = None):
        self._run = command_runner or run_command
        self.log = LoggerFactory.for_system()

    def _exec(self, command: list[str], summary: str) -> None:
        try:
            self._run(command)
        except CommandError as error:
            raise SeLinuxError(f"{summary}: {error.output or error}") from error

    def change_context(
        self,
        path: str,
        user: str,
        role: str,
        type_: str,
        recursive: bool = False,
    ) -> None:
        """chcon ``path`` to ``user:role:type_``."""
        command = [CHCON]
        if recursive:
            command.append("-R")
        command.extend(["-u", user, "-r", role, "-t", type_, path])
        self.log.info(f"Relabelling {path} as {user}:{role}:{type_}")
        self._exec(command, f"Failed to chcon {path}")

    def open_inbound_port(self, port: int, protocol: str) -> None:
        """Allow the http_port_t domain to bind ``port``."""
        proto = protocol.lower()
        if proto not in PROTOCOLS:
            raise SeLinuxError(f"Unsupported protocol {protocol!r} for port {port}")
        self.log.info(f"Opening inbound port {port}/{proto}")
        command = [SEMANAGE, "port", "--add", "--type", "http_port_t", "--proto", proto, str(port)]
        try:
            self._run(command)
        except CommandError as error:
            if "already defined" in error.output:
                self.log.info(f"Port {port}/{proto} is already labelled")
                return
            raise SeLinuxError(f"Failed to open port {port}/{proto}: {error.output or error}") from error

    def allow_all_outbound(self) -> None:
        """Let haproxy connect to any backend port."""
        self._exec(
            [SETSEBOOL, "-P", "haproxy_connect_any", "1"],
            "Failed to set haproxy_connect_any",
        )
