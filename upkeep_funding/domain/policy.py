"""
Pure funding policy functions.

Contract:
    Every function here is PURE.  Balances come from the registry via the
    watchdog service; the service owns all reads and writes.

Invariants enforced:
    - A job is underfunded iff ``balance < min_balance * min_percentage / 100``.
    - A top-up never exceeds ``max_top_up_amount`` and never overshoots
      ``min_balance * target_percentage / 100``.
    - A scan visits at most ``max_iterations`` distinct positions.
"""

from __future__ import annotations

from decimal import Decimal

from upkeep_kernel.exceptions import InvalidFundingConfigError

from upkeep_funding.domain.types import WatchdogParams

HUNDRED = Decimal("100")


def is_underfunded(balance: Decimal, min_balance: Decimal, min_percentage: int) -> bool:
    return balance < min_balance * Decimal(min_percentage) / HUNDRED


def top_up_amount(
    balance: Decimal,
    min_balance: Decimal,
    target_percentage: int,
    max_top_up_amount: Decimal,
) -> Decimal:
    """Amount that brings ``balance`` to the target, capped; never negative."""
    target = min_balance * Decimal(target_percentage) / HUNDRED
    return max(Decimal("0"), min(max_top_up_amount, target - balance))


def scan_indices(start: int, length: int, max_iterations: int) -> list[int]:
    """Positions visited by one scan, wrapping around the watch-list."""
    if length <= 0:
        return []
    first = start % length
    return [(first + i) % length for i in range(min(max_iterations, length))]


def validate_params(params: WatchdogParams) -> None:
    """Raises InvalidFundingConfigError on an inconsistent configuration."""
    if params.min_percentage < 100:
        raise InvalidFundingConfigError(
            f"min_percentage must be >= 100, got {params.min_percentage}"
        )
    if params.target_percentage <= params.min_percentage:
        raise InvalidFundingConfigError(
            f"target_percentage ({params.target_percentage}) must exceed "
            f"min_percentage ({params.min_percentage})"
        )
    if params.max_batch_size <= 0:
        raise InvalidFundingConfigError("max_batch_size must be positive")
    if params.max_iterations <= 0:
        raise InvalidFundingConfigError("max_iterations must be positive")
    if params.max_top_up_amount <= 0:
        raise InvalidFundingConfigError("max_top_up_amount must be positive")
