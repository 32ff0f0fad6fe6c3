import argparse
import signal
import threading
from pathlib import Path

from vm_agent import __version__
from vm_agent.app.context import AppContext
from vm_agent.config import settings
from vm_agent.exceptions import AgentError, OperationCancelledError
from vm_agent.logging import LoggerFactory, level_from_environment, setup_logging
from vm_agent.roles import dispatch
from vm_agent.services.polling import wait_or_cancel


class HostnameUnavailableError(AgentError):
    """/etc/hostname never held a real hostname."""


def read_hostname(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return ""


def wait_for_hostname(
    path: Path,
    attempts: int,
    interval_seconds: float,
    cancel: threading.Event,
) -> str:
    """Wait until ``path`` holds something other than ``localhost``."""
    log = LoggerFactory.for_system()
    for attempt in range(1, attempts + 1):
        hostname = read_hostname(path)
        if hostname and hostname != "localhost":
            return hostname
        log.debug(f"Hostname not set yet (attempt {attempt}/{attempts})")
        if attempt < attempts:
            wait_or_cancel(interval_seconds, cancel, "hostname")
    raise HostnameUnavailableError(f"{path} still holds no hostname after {attempts} attempts")


def install_signal_handlers(cancel: threading.Event) -> None:
    def _handle(signum, _frame):
        LoggerFactory.for_system().warning(f"Received signal {signum}, cancelling")
        cancel.set()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)


def main(argv=None):
    parser = argparse.ArgumentParser(description="First boot provisioning agent")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output (very verbose)")
    parser.add_argument("--hostname", help="Use this hostname instead of reading /etc/hostname")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    env_debug, env_trace = level_from_environment()
    log_dir = args.log_dir or Path(settings.get_setting("log_dir", "/var/log/vm-agent"))
    setup_logging(debug=args.debug or env_debug, trace=args.trace or env_trace, log_dir=log_dir)
    log = LoggerFactory.for_system()
    log.info(f"vm-agent {__version__} starting")

    cancel = threading.Event()
    install_signal_handlers(cancel)

    try:
        hostname = args.hostname or wait_for_hostname(
            Path(settings.get_setting("hostname_path", "/etc/hostname")),
            settings.get_int("hostname_wait_attempts", 60),
            settings.get_float("hostname_wait_interval_seconds", 1.0),
            cancel,
        )
        log.info(f"Provisioning {hostname}")

        context = AppContext.from_settings(hostname)
        context.cancel = cancel
        log.info("Retrieving vm details")
        vm = context.inventory.get_vm_details()
        log.debug(f"Retrieved vm details for vm {vm.vm_id}")

        role = dispatch(context, vm)
    except OperationCancelledError as error:
        log.warning(str(error))
        return 1
    except AgentError as error:
        log.error(f"Provisioning failed: {error}")
        return 1

    if role is None:
        log.info("Nothing to provision")
    else:
        log.success(f"Provisioned {hostname} as {role}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
