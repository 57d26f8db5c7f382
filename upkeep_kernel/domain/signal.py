"""
Scan signals -- externally advancing counters used to pick scan windows.

The funding watchdog derives the start of each underfunded scan from a
monotonically changing value so that consecutive invocations look at
different parts of the watch-list.  The value is a fairness heuristic,
not a source of randomness, and nothing depends on its exact sequence.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from upkeep_kernel.domain.clock import Clock


@runtime_checkable
class ScanSignal(Protocol):
    """Anything that yields a non-decreasing integer."""

    def current(self) -> int: ...


class BlockHeightSignal:
    """Approximates a block height from an injected clock.

    ``height = (now - genesis_ts) // block_time_seconds``
    """

    def __init__(
        self,
        clock: Clock,
        block_time_seconds: int = 12,
        genesis_ts: int = 0,
    ):
        if block_time_seconds <= 0:
            raise ValueError("block_time_seconds must be positive")
        self._clock = clock
        self._block_time = block_time_seconds
        self._genesis_ts = genesis_ts

    def current(self) -> int:
        return max(0, (self._clock.timestamp() - self._genesis_ts) // self._block_time)


class CounterSignal:
    """Manually advanced counter (tests, CLI dry runs)."""

    def __init__(self, start: int = 0):
        self._value = start

    def current(self) -> int:
        return self._value

    def advance(self, steps: int = 1) -> int:
        self._value += steps
        return self._value
