"""
DistributeAction -- push the current epoch's rewards to one gauge.

The reward source is the ``RewardDistributor`` collaborator (the protocol's
voter).  ``RecordingDistributor`` is the database-backed stand-in used by
dry runs and tests: it writes one DistributionRecordModel per gauge per
window and reports repeats as skipped.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.orm import Session

from upkeep_jobs.domain.types import ActionStatus
from upkeep_jobs.models.records import DistributionRecordModel
from upkeep_jobs.tasks.base import ActionContext, ActionResult

DISTRIBUTE = "distribute"


@runtime_checkable
class RewardDistributor(Protocol):
    """Returns the distributed amount, or None when already distributed."""

    def distribute(self, session: Session, gauge: str, window_ts: int) -> Decimal | None: ...


class RecordingDistributor:
    """Persist distributions; amounts come from ``amount_for`` (default 0)."""

    def __init__(self, amount_for: Callable[[str], Decimal] | None = None):
        self._amount_for = amount_for or (lambda gauge: Decimal("0"))

    def distribute(self, session: Session, gauge: str, window_ts: int) -> Decimal | None:
        existing = session.execute(
            select(DistributionRecordModel.id).where(
                DistributionRecordModel.gauge == gauge,
                DistributionRecordModel.window_ts == window_ts,
            )
        ).first()
        if existing is not None:
            return None
        amount = self._amount_for(gauge)
        session.add(
            DistributionRecordModel(gauge=gauge, window_ts=window_ts, amount=amount)
        )
        session.flush()
        return amount


class DistributeAction:
    """Per-gauge "distribute" action shared by gauge and redistribute managers."""

    def __init__(self, distributor: RewardDistributor):
        self._distributor = distributor

    @property
    def action_name(self) -> str:
        return DISTRIBUTE

    def execute(self, entity: str, index: int, context: ActionContext) -> ActionResult:
        amount = self._distributor.distribute(context.session, entity, context.window_ts)
        if amount is None:
            return ActionResult(status=ActionStatus.SKIPPED)
        return ActionResult(
            status=ActionStatus.SUCCEEDED,
            result_data={"amount": str(amount)},
        )
