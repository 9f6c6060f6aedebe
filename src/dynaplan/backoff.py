# src/dynaplan/backoff.py
"""
Bounded exponential wait used for schema-change polling and throttle retry.

`step` is pure: it only computes the next wait. `Backoff` owns the loops and
the sleeping, one fresh `BackoffState` per retry sequence.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar, Union

from .errors import RetryableStoreError
from .models import EXCEEDED, BackoffState, _Exceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffConfig:
    """Wait parameters in milliseconds"""
    initial_wait: int = 1000
    exponent: float = 1.05
    max_wait: int = 10 * 60 * 1000

    @classmethod
    def from_settings(cls, settings) -> BackoffConfig:
        return cls(
            initial_wait=settings.initial_wait,
            exponent=settings.wait_exponent,
            max_wait=settings.max_wait,
        )

    def initial_state(self) -> BackoffState:
        return BackoffState(wait_interval=self.initial_wait, total_waited=0)


StepResult = Union[Tuple[BackoffState, int], _Exceeded]


def step(state: BackoffState, config: BackoffConfig) -> StepResult:
    """
    Next wait for a retry sequence.

    The first step waits `initial_wait`; every later step raises the previous
    wait to `exponent`. Returns EXCEEDED when the wait would take the total
    past `max_wait`.
    """
    if state.total_waited == 0:
        to_wait = state.wait_interval
    else:
        to_wait = round(state.wait_interval ** config.exponent)

    if state.total_waited + to_wait > config.max_wait:
        return EXCEEDED

    return BackoffState(wait_interval=to_wait, total_waited=state.total_waited + to_wait), to_wait


def _sleep_ms(milliseconds: int) -> None:
    time.sleep(milliseconds / 1000.0)


class Backoff:
    """Runs retry and poll loops over `step`"""

    def __init__(self, config: Optional[BackoffConfig] = None,
                 sleeper: Callable[[int], None] = _sleep_ms):
        self.config = config or BackoffConfig()
        self.sleeper = sleeper

    def wait(self, state: BackoffState, reason: str) -> Optional[BackoffState]:
        """Sleep for the next step; None when the ceiling is reached"""
        result = step(state, self.config)
        if result is EXCEEDED:
            return None
        new_state, to_wait = result  # type: ignore[misc]
        logger.info(f"{reason} ... waiting {to_wait} milliseconds (waited so far: {state.total_waited} ms)")
        self.sleeper(to_wait)
        return new_state

    def call(self, fn: Callable[[], T], description: str = "store call",
             state: Optional[BackoffState] = None) -> T:
        """Call `fn`, retrying RetryableStoreError until the wait ceiling"""
        state = state or self.config.initial_state()
        while True:
            try:
                return fn()
            except RetryableStoreError as e:
                logger.warning(f"{description} throttled: {e.code or e}")
                next_state = self.wait(state, f"{e.code or 'Throttled'} on {description}")
                if next_state is None:
                    logger.error(f"{description}: wait exceeding configured max wait time, giving up")
                    raise
                state = next_state

    def poll(self, check: Callable[[], bool], description: str = "poll",
             state: Optional[BackoffState] = None) -> bool:
        """
        Call `check` until it returns True.

        Returns True when the polled resource became ready (Active) and False
        when the ceiling was reached first (Failed).
        """
        state = state or self.config.initial_state()
        while not check():
            next_state = self.wait(state, f"{description}: not ready")
            if next_state is None:
                return False
            state = next_state
        return True
