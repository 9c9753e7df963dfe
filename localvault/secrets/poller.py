"""Long-running operation polling.

Tracks an asynchronous backend transition (delete, recover) through a token
and waits for it to reach a terminal state with capped exponential backoff.
Stopping or cancelling a wait is local: the backend operation keeps going.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from localvault.core.logging_config import correlation_scope, current_correlation_id

from .exceptions import InvalidStateError, OperationFailedError, PollTimeoutError

logger = logging.getLogger(__name__)


class PollStatus(str, Enum):
    """Status of a long-running operation."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PollStatus.SUCCEEDED, PollStatus.FAILED)


class TerminalStatus(str, Enum):
    """Outcome of waiting on an operation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class OperationHandle:
    """Reference to an operation started by the store."""

    token: str
    kind: str
    secret_name: str


@dataclass(frozen=True)
class PollResponse:
    """Single status observation of an operation."""

    status: PollStatus
    value: Any = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TerminalResult:
    """Tagged result of a wait."""

    status: TerminalStatus
    value: Any = None
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == TerminalStatus.SUCCEEDED


@dataclass
class PollingPolicy:
    """Backoff settings for waiting on an operation."""

    initial_interval: float = 0.05  # seconds
    max_interval: float = 2.0  # seconds
    multiplier: float = 2.0

    def __post_init__(self):
        """Validate configuration."""
        if self.initial_interval <= 0:
            raise ValueError("initial_interval must be positive")
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

    def next_interval(self, current: float) -> float:
        """Return the interval to use after ``current``."""
        return min(current * self.multiplier, self.max_interval)


DEADLINE_EXCEEDED = "deadline exceeded"
WAIT_STOPPED = "wait stopped"

PollFunction = Callable[[str], Awaitable[PollResponse]]
CancelFunction = Callable[[str], Awaitable[None]]


class OperationPoller:
    """Polls a backend operation until it succeeds or fails."""

    def __init__(
        self,
        handle: OperationHandle,
        poll_operation: PollFunction,
        policy: Optional[PollingPolicy] = None,
        cancel_operation: Optional[CancelFunction] = None,
    ):
        """Initialize poller.

        Args:
            handle: Operation to track
            poll_operation: Coroutine function returning the status for a token
            policy: Backoff settings
            cancel_operation: Backend cancellation, if the backend supports it
        """
        self.handle = handle
        self.policy = policy or PollingPolicy()
        self._poll_operation = poll_operation
        self._cancel_operation = cancel_operation
        self._stopped = asyncio.Event()
        self.last_response: Optional[PollResponse] = None

    @property
    def supports_cancellation(self) -> bool:
        return self._cancel_operation is not None

    async def poll(self) -> PollResponse:
        """Check the operation status once."""
        response = await self._poll_operation(self.handle.token)
        self.last_response = response
        logger.debug(
            f"Polled {self.handle.kind} operation {self.handle.token} "
            f"for '{self.handle.secret_name}': {response.status.value}"
        )
        return response

    def stop(self) -> None:
        """Abandon any wait in progress without touching the operation."""
        self._stopped.set()

    async def wait(self, timeout: Optional[float] = None) -> TerminalResult:
        """Wait for a terminal state.

        A stop() issued before the wait gets to run still ends it. Records
        logged during the wait carry the operation token as correlation id
        unless a request already set one.

        Args:
            timeout: Seconds to wait (None = no limit, 0 = poll once)

        Returns:
            TerminalResult tagged succeeded, failed or timed_out
        """
        with correlation_scope(current_correlation_id() or self.handle.token):
            try:
                return await self._wait(timeout)
            finally:
                self._stopped.clear()

    async def _wait(self, timeout: Optional[float]) -> TerminalResult:
        loop = asyncio.get_running_loop()
        start = loop.time()
        deadline = None if timeout is None else start + max(0.0, timeout)
        interval = self.policy.initial_interval

        while True:
            response = await self.poll()
            now = loop.time()

            if response.status == PollStatus.SUCCEEDED:
                logger.info(f"{self.handle.kind} of '{self.handle.secret_name}' completed")
                return TerminalResult(TerminalStatus.SUCCEEDED, response.value, None, now - start)
            if response.status == PollStatus.FAILED:
                logger.warning(
                    f"{self.handle.kind} of '{self.handle.secret_name}' failed: {response.error}"
                )
                return TerminalResult(TerminalStatus.FAILED, response.value, response.error, now - start)

            if deadline is not None and now >= deadline:
                return TerminalResult(TerminalStatus.TIMED_OUT, None, DEADLINE_EXCEEDED, now - start)

            sleep_for = interval if deadline is None else min(interval, deadline - now)
            if await self._sleep(sleep_for):
                return TerminalResult(TerminalStatus.TIMED_OUT, None, WAIT_STOPPED, loop.time() - start)
            interval = self.policy.next_interval(interval)

    async def wait_for_completion(self, timeout: Optional[float] = None) -> TerminalResult:
        """Wait for success.

        Raises:
            PollTimeoutError: If the deadline passes or the wait is stopped
            OperationFailedError: If the operation fails
        """
        result = await self.wait(timeout)
        if result.status == TerminalStatus.TIMED_OUT:
            if result.error == WAIT_STOPPED:
                raise PollTimeoutError(self.handle.token, timeout, stopped=True)
            raise PollTimeoutError(self.handle.token, timeout)
        if result.status == TerminalStatus.FAILED:
            raise OperationFailedError(self.handle.token, result.error)
        return result

    async def cancel_operation(self) -> None:
        """Cancel the backend operation itself.

        Raises:
            InvalidStateError: If the backend cannot cancel operations
        """
        if self._cancel_operation is None:
            raise InvalidStateError(
                "Backend does not support operation cancellation",
                self.handle.secret_name,
            )
        await self._cancel_operation(self.handle.token)
        logger.info(f"Requested cancellation of {self.handle.kind} operation {self.handle.token}")

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped; returns True when stop() was called."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
