"""
Retry policy, backoff formulas and the attempt driver shared by every call path.

A call is executed as a sequence of attempts. Each attempt receives an
immutable ``AttemptState`` and returns one of ``Resolved``, ``Retry`` or
``Failed``; ``run_with_retries`` loops over them, sleeping between attempts
without blocking the event loop.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .error_handler import ClientError, RetriesExhaustedError

logger = logging.getLogger(__name__)

MAX_RETRIES = 5

RETRY_EVENT = 'retry'
SUCCESSFUL_RETRY_EVENT = 'successful retry'
EVENTS = (RETRY_EVENT, SUCCESSFUL_RETRY_EVENT)


def exponential_backoff(retries: int) -> int:
    """Delay in ms scheduled by an attempt: 0, 50, 100, 200, ..."""
    if retries <= 0:
        return 0
    return 50 * 2 ** (retries - 1)


def linear_backoff(retries: int) -> int:
    """Delay in ms scheduled by an attempt: 50, 150, 250, 350, ..."""
    return retries * 100 + 50


class RetryPolicy:
    """Decides whether a failed attempt is retried and how long to wait."""

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        backoff: Callable[[int], int] = exponential_backoff
    ):
        self.max_retries = max_retries
        self.backoff = backoff

    def should_retry(self, error: Exception, retries: int) -> bool:
        return isinstance(error, ClientError) and error.can_retry() and retries < self.max_retries

    def delay_ms(self, retries: int) -> int:
        return self.backoff(retries)

    def classify(self, error: ClientError, state: 'AttemptState') -> Union['Retry', 'Failed']:
        """
        Turn a recognized service error into the next outcome.

        Args:
            error: Error decoded from the response body
            state: State of the attempt that produced the error

        Returns:
            Retry when the error is retryable and under the ceiling, Failed otherwise
        """
        if self.should_retry(error, state.retries):
            return Retry(
                next_state=AttemptState(retries=state.retries + 1, last_error=error),
                delay_ms=self.delay_ms(state.retries),
                error=error
            )
        if error.can_retry():
            return Failed(RetriesExhaustedError(error, attempts=state.retries + 1), state)
        return Failed(error, state)


@dataclass(frozen=True)
class AttemptState:
    retries: int = 0
    last_error: Optional[ClientError] = None


@dataclass(frozen=True)
class Resolved:
    result: Any
    state: AttemptState


@dataclass(frozen=True)
class Retry:
    next_state: AttemptState
    delay_ms: int
    error: ClientError


@dataclass(frozen=True)
class Failed:
    error: Exception
    state: AttemptState


Outcome = Union[Resolved, Retry, Failed]


class RetryListeners:
    """Registry of lifecycle listeners (``retry`` and ``successful retry``)."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable[[Optional[ClientError]], Any]]] = defaultdict(list)

    def on(self, event: str, listener: Callable[[Optional[ClientError]], Any]) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event '{event}', expected one of {EVENTS}")
        self._listeners[event].append(listener)

    def emit(self, event: str, error: Optional[ClientError]) -> None:
        for listener in list(self._listeners[event]):
            listener(error)


async def run_with_retries(
    attempt: Callable[[AttemptState], Awaitable[Outcome]],
    listeners: Optional[RetryListeners] = None,
    state: Optional[AttemptState] = None,
    on_settled: Optional[Callable[[AttemptState], None]] = None
) -> Any:
    """
    Drive attempts until one resolves or fails.

    Args:
        attempt: Coroutine function performing a single attempt
        listeners: Lifecycle listeners notified on retry and successful retry
        state: Initial state (defaults to a fresh one)
        on_settled: Called with the final state before returning or raising

    Returns:
        The resolved result

    Raises:
        The error carried by a Failed outcome
    """
    state = state or AttemptState()

    while True:
        outcome = await attempt(state)

        if isinstance(outcome, Retry):
            logger.debug(
                f"Retrying after {outcome.delay_ms}ms (attempt {outcome.next_state.retries}): {outcome.error.code}"
            )
            if listeners:
                listeners.emit(RETRY_EVENT, outcome.error)
            await asyncio.sleep(outcome.delay_ms / 1000.0)
            state = outcome.next_state
            continue

        if on_settled:
            on_settled(outcome.state)

        if isinstance(outcome, Failed):
            raise outcome.error

        if outcome.state.retries > 0 and listeners:
            listeners.emit(SUCCESSFUL_RETRY_EVENT, outcome.state.last_error)
        return outcome.result
