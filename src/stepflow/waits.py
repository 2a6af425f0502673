"""
Readiness-wait policy and the race combinator used by the driver.

Provides:
- Default bounds for every driver operation (milliseconds)
- A monotonic deadline shared by the waits of one operation
- First-to-complete racing of passive waiters, cancelling the losers
- Confirmation matching for plain and formatted inputs
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, replace

import structlog

logger = structlog.get_logger(__name__)

_NON_DIGIT = re.compile(r"\D")


@dataclass(frozen=True)
class WaitPolicy:
    """Bounds for each driver operation, in milliseconds."""

    open_timeout_ms: int = 15000
    field_ready_timeout_ms: int = 10000
    confirm_timeout_ms: int = 5000
    select_timeout_ms: int = 5000
    transition_timeout_ms: int = 20000
    submit_timeout_ms: int = 30000
    poll_interval_ms: int = 100
    screenshot_on_timeout: bool = True

    def scaled(self, factor: float) -> WaitPolicy:
        """Copy with every bound multiplied by ``factor`` (poll interval unchanged)."""
        if factor <= 0:
            raise ValueError("Scale factor must be positive")
        return replace(
            self,
            open_timeout_ms=int(self.open_timeout_ms * factor),
            field_ready_timeout_ms=int(self.field_ready_timeout_ms * factor),
            confirm_timeout_ms=int(self.confirm_timeout_ms * factor),
            select_timeout_ms=int(self.select_timeout_ms * factor),
            transition_timeout_ms=int(self.transition_timeout_ms * factor),
            submit_timeout_ms=int(self.submit_timeout_ms * factor),
        )


class Deadline:
    """Outer bound shared by several consecutive waits."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        self._start = time.monotonic()
        self._end = self._start + timeout_ms / 1000

    @property
    def remaining_ms(self) -> int:
        # Never hand out 0: automation libraries read it as "no timeout"
        return max(1, int((self._end - time.monotonic()) * 1000))

    @property
    def remaining_s(self) -> float:
        return max(0.0, self._end - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._end

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)


async def first_completed(
    waiters: Mapping[str, asyncio.Task[object]],
    deadline: Deadline,
) -> str | None:
    """
    Race named waiters and return the name of the first to succeed.

    A waiter that fails (its own timeout, or any error) drops out of the race
    without ending it. Returns None when no waiter succeeds before the
    deadline. When several finish in the same tick, insertion order wins.
    Pending waiters are left running; pair with :func:`cancel_pending`.
    """
    pending: set[asyncio.Task[object]] = set(waiters.values())

    while pending and not deadline.expired:
        done, pending = await asyncio.wait(
            pending,
            timeout=deadline.remaining_s,
            return_when=asyncio.FIRST_COMPLETED,
        )
        for name, task in waiters.items():
            if task in done and not task.cancelled() and task.exception() is None:
                return name
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.debug("Waiter dropped out", error=str(task.exception()))

    return None


async def cancel_pending(tasks: Mapping[str, asyncio.Task[object]]) -> None:
    """Cancel unfinished waiters and reap them so none leaks into the next operation."""
    for task in tasks.values():
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks.values(), return_exceptions=True)


def digits_only(value: str) -> str:
    return _NON_DIGIT.sub("", value)


def values_match(expected: str, observed: str | None, formatted: bool = False) -> bool:
    """
    Whether a live input value reflects what was written.

    Formatted inputs (phone masks) may add punctuation or a country prefix, so
    they match when the live digits contain the written digits.
    """
    if observed is None:
        return False
    if observed == expected:
        return True
    if not formatted:
        return False

    expected_digits = digits_only(expected)
    observed_digits = digits_only(observed)
    if not expected_digits:
        return not observed_digits
    return len(observed_digits) >= len(expected_digits) and expected_digits in observed_digits
