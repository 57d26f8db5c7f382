"""
upkeep_funding.models -- ORM models for watchdogs and their watch-lists.
"""

from upkeep_funding.models.watchdog import FundingWatchdogModel, WatchListEntryModel

__all__ = [
    "FundingWatchdogModel",
    "WatchListEntryModel",
]
