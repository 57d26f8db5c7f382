"""
upkeep_funding.domain.types -- Pure frozen dataclasses for the watchdog.

ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class WatchdogParams:
    """Tunable top-up policy of one watchdog."""

    max_batch_size: int = 10
    min_percentage: int = 120  # underfunded below min_balance * 120%
    target_percentage: int = 300  # top up towards min_balance * 300%
    max_top_up_amount: Decimal = Decimal("10")
    max_iterations: int = 10


@dataclass(frozen=True)
class UnderfundedScan:
    """Result of ``check_underfunded``: parallel job ids and top-up amounts."""

    job_ids: tuple[int, ...] = ()
    amounts: tuple[Decimal, ...] = ()

    @property
    def needed(self) -> bool:
        return len(self.job_ids) > 0

    @property
    def total(self) -> Decimal:
        return sum(self.amounts, Decimal("0"))


@dataclass(frozen=True)
class TopUpOutcome:
    """One entry of a perform_top_up call."""

    job_id: int
    amount: Decimal
    succeeded: bool
    reason: str | None = None


@dataclass(frozen=True)
class TopUpResult:
    outcomes: tuple[TopUpOutcome, ...] = ()

    @property
    def funded(self) -> tuple[int, ...]:
        return tuple(o.job_id for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> tuple[int, ...]:
        return tuple(o.job_id for o in self.outcomes if not o.succeeded)

    @property
    def total_funded(self) -> Decimal:
        return sum((o.amount for o in self.outcomes if o.succeeded), Decimal("0"))
