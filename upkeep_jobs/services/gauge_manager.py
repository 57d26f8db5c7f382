"""
GaugeUpkeepManager -- weekly emissions distribution per gauge.

Gauges enter through the voter's GaugeCreated / GaugeRevived events and
leave through GaugeKilled.  Gauges whose factory is excluded (e.g. the
cross-chain factory) are never registered.
"""

from __future__ import annotations

from upkeep_jobs.domain.types import ManagerKind
from upkeep_jobs.services.manager import UpkeepManagerService
from upkeep_jobs.tasks.distribute import DISTRIBUTE


class GaugeUpkeepManager(UpkeepManagerService):
    kind = ManagerKind.GAUGE
    action_name = DISTRIBUTE
