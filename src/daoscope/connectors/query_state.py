"""
State machine for asynchronous analytics query executions.

    SUBMITTED --poll(pending)--> RUNNING --poll(completed)--> COMPLETED
        |                           |
        +-----poll(failed)----------+--> FAILED
        |                           |
        +-----deadline passed-------+--> TIMED_OUT

Terminal states never transition again. The deadline is checked before
every poll so a stuck execution cannot loop past `max_wait_ms`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


class QueryState(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({QueryState.COMPLETED, QueryState.FAILED, QueryState.TIMED_OUT})

# Upstream execution states mapped onto ours
_UPSTREAM_STATES: dict[str, QueryState] = {
    "QUERY_STATE_PENDING": QueryState.SUBMITTED,
    "QUERY_STATE_EXECUTING": QueryState.RUNNING,
    "QUERY_STATE_COMPLETED": QueryState.COMPLETED,
    "QUERY_STATE_COMPLETED_PARTIAL": QueryState.COMPLETED,
    "QUERY_STATE_FAILED": QueryState.FAILED,
    "QUERY_STATE_CANCELLED": QueryState.FAILED,
    "QUERY_STATE_EXPIRED": QueryState.FAILED,
}


def map_upstream_state(raw: str) -> QueryState:
    """Map an upstream execution state string. Unknown values count as running."""
    return _UPSTREAM_STATES.get(raw, QueryState.RUNNING)


class InvalidTransitionError(Exception):
    """Raised when a terminal execution is asked to transition."""


@dataclass
class QueryExecution:
    """
    Tracks one execution from submission to a terminal state.

    Attributes:
        execution_id: Upstream execution identifier.
        query_id: Query that was executed.
        max_wait_ms: Wall-clock budget measured from submission.
    """

    execution_id: str
    query_id: str
    max_wait_ms: int
    state: QueryState = QueryState.SUBMITTED
    submitted_at_ms: int = field(default=0)
    polls: int = 0
    last_upstream_state: str = ""
    error: str = ""

    _time_fn: Callable[[], int] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.max_wait_ms <= 0:
            raise ValueError(f"max_wait_ms must be positive, got {self.max_wait_ms}")
        if self.submitted_at_ms == 0:
            self.submitted_at_ms = self._now_ms()

    def _now_ms(self) -> int:
        """Get current time in milliseconds (monotonic)."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.monotonic() * 1000)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def elapsed_ms(self) -> int:
        return self._now_ms() - self.submitted_at_ms

    @property
    def remaining_ms(self) -> int:
        return max(0, self.max_wait_ms - self.elapsed_ms)

    def check_deadline(self) -> bool:
        """
        Move to TIMED_OUT if the wait budget is spent.

        Returns:
            True if the execution may still be polled.
        """
        if self.is_terminal:
            return False
        if self.elapsed_ms >= self.max_wait_ms:
            self.state = QueryState.TIMED_OUT
            self.error = f"Query {self.query_id} did not finish within {self.max_wait_ms}ms"
            return False
        return True

    def apply_status(self, upstream_state: str, error: str = "") -> QueryState:
        """
        Apply one status poll result.

        Args:
            upstream_state: Raw upstream state string.
            error: Error text reported with a failed state.

        Returns:
            The new state.

        Raises:
            InvalidTransitionError: If the execution is already terminal.
        """
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Execution {self.execution_id} already {self.state.value}"
            )
        self.polls += 1
        self.last_upstream_state = upstream_state
        new_state = map_upstream_state(upstream_state)
        # Never move backwards from RUNNING to SUBMITTED
        if new_state == QueryState.SUBMITTED and self.state == QueryState.RUNNING:
            new_state = QueryState.RUNNING
        if new_state == QueryState.FAILED:
            self.error = error or upstream_state
        self.state = new_state
        return self.state
