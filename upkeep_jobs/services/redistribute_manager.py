"""
RedistributeUpkeepManager -- gauge distribution with an owner-set batch size.

Same membership rules as GaugeUpkeepManager; the owner may additionally
tune how many gauges one run_batch call processes.
"""

from __future__ import annotations

from upkeep_kernel.db.engine import atomic
from upkeep_kernel.exceptions import InvalidBatchSizeError

from upkeep_jobs.domain.types import ManagerKind
from upkeep_jobs.services.manager import UpkeepManagerService
from upkeep_jobs.tasks.distribute import DISTRIBUTE


class RedistributeUpkeepManager(UpkeepManagerService):
    kind = ManagerKind.REDISTRIBUTE
    action_name = DISTRIBUTE

    def batch_size(self) -> int:
        return self.model().batch_size

    def set_batch_size(self, caller: str, batch_size: int) -> None:
        """Owner-only.

        Raises:
            InvalidBatchSizeError: ``batch_size`` is 0 or above ``entities_per_job``.
        """
        with atomic(self.session):
            m = self._owned(caller)
            if not 0 < batch_size <= m.entities_per_job:
                raise InvalidBatchSizeError(batch_size, m.entities_per_job)
            m.batch_size = batch_size
            self.events.emit(self.scope, "batch_size_set", actor=caller, batch_size=batch_size)
