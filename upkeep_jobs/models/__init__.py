"""
upkeep_jobs.models -- ORM models for managers, entity slots and jobs.

Architecture: upkeep_jobs/models. Imports from upkeep_kernel.db.base only.
"""

from upkeep_jobs.models.records import (
    DistributionRecordModel,
    TokenPriceModel,
    TokenWhitelistModel,
)
from upkeep_jobs.models.upkeep import (
    EntitySlotModel,
    UpkeepJobModel,
    UpkeepManagerModel,
)

__all__ = [
    "DistributionRecordModel",
    "EntitySlotModel",
    "TokenPriceModel",
    "TokenWhitelistModel",
    "UpkeepJobModel",
    "UpkeepManagerModel",
]
