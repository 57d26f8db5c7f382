"""
upkeep_jobs.domain -- Pure types, schedule arithmetic and event decoding.

ZERO I/O.  All types are frozen dataclasses.
"""

from upkeep_jobs.domain.types import (
    ActionKind,
    ActionStatus,
    BatchPerformResult,
    CursorSnapshot,
    DomainEvent,
    Entity,
    EntityVisit,
    JobState,
    ManagerKind,
    MembershipAction,
    MembershipResult,
    UpkeepJob,
    WithdrawResult,
)

__all__ = [
    "ActionKind",
    "ActionStatus",
    "BatchPerformResult",
    "CursorSnapshot",
    "DomainEvent",
    "Entity",
    "EntityVisit",
    "JobState",
    "ManagerKind",
    "MembershipAction",
    "MembershipResult",
    "UpkeepJob",
    "WithdrawResult",
]
