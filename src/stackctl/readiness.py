"""Bounded fixed-interval polling for service readiness.

The prober is a two-way state machine: it starts ``WAITING`` and ends either
``READY`` (first tick where the policy is satisfied) or ``TIMED_OUT`` (after
``ceil(timeout / interval)`` ticks). There is no backoff and no jitter.
"""
from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum

from .config import ReadinessConfig
from .errors import ComposeError
from .providers.compose import ServiceState

LOGGER = logging.getLogger(__name__)


class ReadinessState(str, Enum):
    """Prober lifecycle states."""

    WAITING = "waiting"
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class Tick:
    """One poll of the readiness loop."""

    index: int
    elapsed: float
    remaining: float


@dataclass(frozen=True, slots=True)
class ReadinessDeadline:
    """Fixed ceiling and poll interval, exposed as a finite tick iterator."""

    timeout: float = 60.0
    interval: float = 5.0

    @classmethod
    def from_config(cls, config: ReadinessConfig) -> ReadinessDeadline:
        """Build a deadline from the readiness configuration."""
        return cls(timeout=config.timeout, interval=config.interval)

    @property
    def max_ticks(self) -> int:
        """Return the upper bound on polls."""
        return max(1, math.ceil(self.timeout / self.interval))

    def ticks(self) -> Iterator[Tick]:
        """Yield at most :attr:`max_ticks` ticks."""
        for index in range(self.max_ticks):
            elapsed = index * self.interval
            yield Tick(index=index + 1, elapsed=elapsed, remaining=self.timeout - elapsed)


@dataclass(frozen=True, slots=True)
class ReadinessResult:
    """Final prober state and the last observation."""

    state: ReadinessState
    ticks: int
    services: tuple[ServiceState, ...] = ()
    pending: tuple[str, ...] = ()

    @property
    def ready(self) -> bool:
        """Return ``True`` when the prober reached ``READY``."""
        return self.state is ReadinessState.READY


def evaluate_readiness(
    states: Sequence[ServiceState],
    expected: Sequence[str],
    policy: str = "all",
) -> tuple[bool, tuple[str, ...]]:
    """Return ``(ready, pending)`` for one observation.

    ``all`` requires every expected service to be up. ``any`` accepts a single
    running service as proof the whole stack is up.
    """
    up = {state.name for state in states if state.is_up}
    pending = tuple(name for name in expected if name not in up)
    if policy == "any":
        return bool(up), pending
    return not pending, pending


class ReadinessProber:
    """Poll service state until ready or the deadline expires."""

    def __init__(
        self,
        deadline: ReadinessDeadline,
        expected: Sequence[str],
        *,
        policy: str = "all",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Configure the prober; *sleep* is injectable for tests."""
        self.deadline = deadline
        self.expected = tuple(expected)
        self.policy = policy
        self._sleep = sleep
        self.state = ReadinessState.WAITING
        if policy == "any":
            LOGGER.warning(
                "Readiness policy 'any' treats one running service as the whole stack being up."
            )

    def wait(self, observe: Callable[[], Sequence[ServiceState]]) -> ReadinessResult:
        """Run the poll loop using *observe* to sample service state."""
        self.state = ReadinessState.WAITING
        states: tuple[ServiceState, ...] = ()
        pending = self.expected
        for tick in self.deadline.ticks():
            try:
                states = tuple(observe())
            except ComposeError as exc:
                LOGGER.debug("Readiness tick %d could not read state: %s", tick.index, exc)
                states = ()
            ready, pending = evaluate_readiness(states, self.expected, self.policy)
            if ready:
                self.state = ReadinessState.READY
                LOGGER.debug("Services ready after %d tick(s).", tick.index)
                return ReadinessResult(self.state, tick.index, states, pending)
            LOGGER.debug(
                "Tick %d: waiting on %s (%.0fs remaining).",
                tick.index,
                ", ".join(pending) or "any service",
                tick.remaining,
            )
            self._sleep(self.deadline.interval)
        self.state = ReadinessState.TIMED_OUT
        return ReadinessResult(self.state, self.deadline.max_ticks, states, pending)


__all__ = [
    "ReadinessDeadline",
    "ReadinessProber",
    "ReadinessResult",
    "ReadinessState",
    "Tick",
    "evaluate_readiness",
]
