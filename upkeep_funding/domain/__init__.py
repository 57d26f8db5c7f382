from upkeep_funding.domain.policy import (
    is_underfunded,
    scan_indices,
    top_up_amount,
    validate_params,
)
from upkeep_funding.domain.types import (
    TopUpOutcome,
    TopUpResult,
    UnderfundedScan,
    WatchdogParams,
)

__all__ = [
    "TopUpOutcome",
    "TopUpResult",
    "UnderfundedScan",
    "WatchdogParams",
    "is_underfunded",
    "scan_indices",
    "top_up_amount",
    "validate_params",
]
