"""Loguru configuration and context-bound loggers for vm-agent.

Every record carries three ``extra`` fields that the sinks print:

    source   component that emitted it (``disk``, ``systemd``, ``dns``...)
    job_id   correlation id of the role run or copy job
    tags     list used by the console filter

Poll attempts (tag ``poll``) only reach the console at TRACE and raw command
output (tag ``command-output``) only at DEBUG, so a normal first-boot journal
stays readable while ``--trace`` shows every systemctl and seal-status probe.
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(os.environ.get("VM_AGENT_LOG_DIR", "/var/log/vm-agent"))

_RECORD_PREFIX = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {extra[source]: <12} | {extra[job_id]: <20} | "

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> "
    "<level>{level: <8}</level> "
    "<cyan>{extra[source]}</cyan>: "
    "{message}"
)


class _FileSink(NamedTuple):
    name: str
    level: str
    rotation: str
    retention: str
    format: str
    serialize: bool = False
    diagnose: bool = False


OPERATIONS_SINK = _FileSink(
    "operations.log", "INFO", "5 MB", "7 days", _RECORD_PREFIX + "{level: <8} | {message}"
)
DEBUG_SINK = _FileSink(
    "debug.log",
    "DEBUG",
    "10 MB",
    "3 days",
    _RECORD_PREFIX + "{level: <8} | {extra[tags]} | {message}",
    diagnose=True,
)
TRACE_SINK = _FileSink("trace.log", "TRACE", "50 MB", "1 day", _RECORD_PREFIX + "{message}")
STRUCTURED_SINK = _FileSink(
    "structured.jsonl", "INFO", "10 MB", "7 days", "{message}", serialize=True
)


def _level_no(name: str) -> int:
    return logger.level(name).no


def _hide_poll_ticks(record) -> bool:
    if "poll" not in record["extra"].get("tags", []):
        return True
    return record["level"].no >= _level_no("WARNING") or record["level"].no <= _level_no("TRACE")


def _hide_command_output(record) -> bool:
    if "command-output" not in record["extra"].get("tags", []):
        return True
    return record["level"].no <= _level_no("DEBUG")


def console_filter(record) -> bool:
    """Console rule set: quiet poll ticks and tool output unless verbose."""
    return _hide_poll_ticks(record) and _hide_command_output(record)


def level_from_environment() -> tuple[bool, bool]:
    """``LOG_LEVEL`` as ``(debug, trace)`` flags; TRACE implies DEBUG."""
    level = os.environ.get("LOG_LEVEL", "").strip().upper()
    return level in ("DEBUG", "TRACE"), level == "TRACE"


def _add_file_sink(log_dir: Path, sink: _FileSink) -> None:
    logger.add(
        log_dir / sink.name,
        level=sink.level,
        rotation=sink.rotation,
        retention=sink.retention,
        compression="zip",
        serialize=sink.serialize,
        backtrace=sink.diagnose,
        diagnose=sink.diagnose,
        format=sink.format,
    )


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """Replace loguru's default handler with the vm-agent sinks.

    The console (stderr, captured by the journal) follows the requested
    verbosity. ``operations.log`` and ``structured.jsonl`` are always
    written; ``debug.log`` and ``trace.log`` only exist for verbose runs.

    Args:
        debug: Add DEBUG output and ``debug.log``
        trace: Add TRACE output and ``trace.log`` (implies debug)
        log_dir: Directory for the log files, defaults to ``/var/log/vm-agent``
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "agent"})

    debug = debug or trace
    console_level = "TRACE" if trace else "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        level=console_level,
        filter=console_filter,
        colorize=True,
        backtrace=False,
        diagnose=False,
        format=CONSOLE_FORMAT,
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    sinks = [OPERATIONS_SINK, STRUCTURED_SINK]
    if debug:
        sinks.append(DEBUG_SINK)
    if trace:
        sinks.append(TRACE_SINK)
    for sink in sinks:
        _add_file_sink(log_dir, sink)
    return logger


def _new_job_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def operation_context(operation: str, **details):
    """Log the start and the outcome of ``operation`` with its duration.

    Everything logged inside the block (from any module) carries the
    operation's job id. Exceptions are logged and re-raised.

    Example:
        with operation_context("vault", hostname="vault-1") as log:
            log.debug("Provisioning data volume")
    """
    job_id = _new_job_id(operation)
    title = operation.capitalize()
    log = logger.bind(source=operation, job_id=job_id, tags=[operation])
    started = time.time()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log.bind(**details).info(f"{title} started")
        try:
            yield log
        except Exception as e:
            log.bind(
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(time.time() - started, 2),
            ).error(f"{title} failed: {e}")
            raise
        log.bind(duration_seconds=round(time.time() - started, 2)).success(f"{title} completed")


class LoggerFactory:
    """Pre-bound loggers, one per component of the agent."""

    @staticmethod
    def for_disk() -> Logger:
        return logger.bind(source="disk", tags=["disk", "storage"])

    @staticmethod
    def for_filesystem() -> Logger:
        return logger.bind(source="filesystem", tags=["filesystem", "storage"])

    @staticmethod
    def for_copy(job_id: str | None = None) -> Logger:
        """Copy jobs get their own id unless one is given."""
        return logger.bind(
            source="copy", job_id=job_id or _new_job_id("copy"), tags=["copy", "storage"]
        )

    @staticmethod
    def for_service() -> Logger:
        return logger.bind(source="systemd", tags=["systemd", "service"])

    @staticmethod
    def for_vault() -> Logger:
        return logger.bind(source="vault", tags=["vault", "http"])

    @staticmethod
    def for_inventory() -> Logger:
        return logger.bind(source="inventory", tags=["inventory", "http"])

    @staticmethod
    def for_role(role: str) -> Logger:
        return logger.bind(source=role, tags=["role", role])

    @staticmethod
    def for_poll(description: str) -> Logger:
        """Poll attempts; hidden from the console below TRACE."""
        return logger.bind(source="poll", tags=["poll"], target=description)

    @staticmethod
    def for_system() -> Logger:
        return logger.bind(source="system", tags=["system"])


class ThrottledLogger:
    """Emits at most one message per key every ``interval_seconds``.

    Used for the "still waiting for ..." lines of long polls.
    """

    def __init__(self, log: Logger, interval_seconds: float = 30.0):
        self.log = log
        self.interval = interval_seconds
        self._last_emitted: dict[str, float] = {}

    def _due(self, key: str) -> bool:
        now = time.time()
        if now - self._last_emitted.get(key, 0.0) < self.interval:
            return False
        self._last_emitted[key] = now
        return True

    def info(self, key: str, message: str) -> None:
        if self._due(key):
            self.log.info(message)


class EventLogger:
    """Provisioning events with a fixed ``event_type`` and field set.

    The fields end up in ``structured.jsonl`` for later searching.
    """

    @staticmethod
    def log_partition_created(log: Logger, device: str, partition: str) -> None:
        log.bind(event_type="partition_created", device=device, partition=partition).info(
            f"Created partition {partition} on {device}"
        )

    @staticmethod
    def log_file_copied(log: Logger, source: str, destination: str, size_bytes: int) -> None:
        log.bind(
            event_type="file_copied",
            source_path=source,
            destination=destination,
            size_bytes=size_bytes,
        ).debug(f"Copied {source} to {destination} ({size_bytes} bytes)")

    @staticmethod
    def log_service_state(log: Logger, service: str, state: str) -> None:
        log.bind(event_type="service_state", service=service, state=state).info(
            f"Service {service} is {state}"
        )
