"""Bounded polling loops for external state machines.

Every wait in the agent goes through this module so that a single
cancellation event (set from the SIGTERM/SIGINT handlers) interrupts it:

    policy = PollPolicy(interval_seconds=1.0, timeout_seconds=300.0)
    state = poll_until(
        lambda: get_service_status("named"),
        lambda state: state.is_terminal,
        policy,
        cancel=context.cancel,
        description="named to leave activating",
    )

A probe that raises propagates immediately; only "not done yet" results are
repeated.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from vm_agent.exceptions import OperationCancelledError, PollTimeoutError
from vm_agent.logging import LoggerFactory, ThrottledLogger


T = TypeVar("T")


@dataclass(frozen=True)
class PollPolicy:
    """Fixed-delay retry bound: a deadline, an attempt cap, or both."""

    interval_seconds: float = 1.0
    timeout_seconds: Optional[float] = 300.0
    max_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if self.timeout_seconds is None and self.max_attempts is None:
            raise ValueError("PollPolicy needs timeout_seconds or max_attempts")

    def exhausted(self, attempts: int, elapsed: float) -> bool:
        if self.max_attempts is not None and attempts >= self.max_attempts:
            return True
        if self.timeout_seconds is not None and elapsed >= self.timeout_seconds:
            return True
        return False


def wait_or_cancel(
    seconds: float,
    cancel: Optional[threading.Event],
    description: str,
) -> None:
    """Sleep for ``seconds`` unless ``cancel`` is set first.

    Raises:
        OperationCancelledError: If the cancellation event is (or becomes) set
    """
    if cancel is None:
        time.sleep(seconds)
        return
    if cancel.wait(seconds):
        raise OperationCancelledError(description)


def poll_until(
    probe: Callable[[], T],
    is_done: Callable[[T], bool],
    policy: PollPolicy,
    cancel: Optional[threading.Event] = None,
    description: str = "condition",
) -> T:
    """Call ``probe`` until ``is_done`` accepts its result.

    Returns:
        The first accepted probe result

    Raises:
        PollTimeoutError: When the policy is exhausted first
        OperationCancelledError: When ``cancel`` is set during a wait
    """
    log = LoggerFactory.for_poll(description)
    throttled = ThrottledLogger(LoggerFactory.for_system(), interval_seconds=30.0)
    started = time.monotonic()
    attempts = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError(description)
        result = probe()
        attempts += 1
        if is_done(result):
            log.debug(f"{description}: done after {attempts} attempt(s)")
            return result
        elapsed = time.monotonic() - started
        log.trace(f"{description}: attempt {attempts} not done ({result!r})")
        if policy.exhausted(attempts, elapsed):
            raise PollTimeoutError(description, attempts, elapsed)
        throttled.info(description, f"Still waiting for {description} ({int(elapsed)}s)")
        wait_or_cancel(policy.interval_seconds, cancel, description)


async def async_poll_until(
    probe: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    policy: PollPolicy,
    cancel: Optional[threading.Event] = None,
    description: str = "condition",
) -> T:
    """Coroutine flavour of :func:`poll_until` for HTTP probes."""
    log = LoggerFactory.for_poll(description)
    throttled = ThrottledLogger(LoggerFactory.for_system(), interval_seconds=30.0)
    started = time.monotonic()
    attempts = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError(description)
        result = await probe()
        attempts += 1
        if is_done(result):
            log.debug(f"{description}: done after {attempts} attempt(s)")
            return result
        elapsed = time.monotonic() - started
        log.trace(f"{description}: attempt {attempts} not done ({result!r})")
        if policy.exhausted(attempts, elapsed):
            raise PollTimeoutError(description, attempts, elapsed)
        throttled.info(description, f"Still waiting for {description} ({int(elapsed)}s)")
        await asyncio.sleep(policy.interval_seconds)
