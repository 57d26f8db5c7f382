"""upkeep_kernel.domain -- Pure time and signal abstractions."""

from upkeep_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from upkeep_kernel.domain.signal import (
    BlockHeightSignal,
    CounterSignal,
    ScanSignal,
)

__all__ = [
    "BlockHeightSignal",
    "Clock",
    "CounterSignal",
    "DeterministicClock",
    "ScanSignal",
    "SystemClock",
]
