"""
upkeep_jobs.tasks -- Per-entity action protocol, registry and implementations.
"""

from upkeep_jobs.tasks.base import (
    ActionContext,
    ActionRegistry,
    ActionResult,
    EntityAction,
    default_action_registry,
)
from upkeep_jobs.tasks.distribute import (
    DistributeAction,
    RecordingDistributor,
    RewardDistributor,
)
from upkeep_jobs.tasks.fetch_price import (
    FetchPriceAction,
    PriceOracle,
    StaticPriceOracle,
)

__all__ = [
    "ActionContext",
    "ActionRegistry",
    "ActionResult",
    "DistributeAction",
    "EntityAction",
    "FetchPriceAction",
    "PriceOracle",
    "RecordingDistributor",
    "RewardDistributor",
    "StaticPriceOracle",
    "default_action_registry",
]
