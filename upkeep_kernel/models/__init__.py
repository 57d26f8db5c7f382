"""
upkeep_kernel.models -- Kernel-owned ORM models (event log, access grants, local job registry).
"""

from upkeep_kernel.models.access import AccessGrantModel
from upkeep_kernel.models.event_record import EventRecordModel
from upkeep_kernel.models.registry import RegistryJobModel

__all__ = [
    "AccessGrantModel",
    "EventRecordModel",
    "RegistryJobModel",
]
