"""
BatchWorker -- cursor-driven, SAVEPOINT-per-entity batch execution.

Contract:
    Drives the jobs of one manager.
    - ``check_due()`` is a pure read returning ``(due, CursorSnapshot)``.
    - ``run_batch()`` (trusted forwarder only) re-validates the guard,
      processes up to ``batch_size`` live slots from the cursor, and wraps
      the cursor once ``end_index`` is reached.

Architecture: upkeep_jobs/services.  Uses the manager service for state
    and access checks, the ActionRegistry for the per-entity work, and
    upkeep_jobs.domain.schedule for the pure due-ness decision.

Invariants enforced:
    - Each entity action runs in its own SAVEPOINT; a failure is rolled
      back, recorded as ``entity_action_failed`` and does not stop the batch.
    - Placeholders are skipped without counting against ``batch_size``,
      and trailing placeholders are consumed so a pass can always finish.
    - The interval is captured when a pass starts at ``start_index``; the
      next due time is derived from that captured value.
    - A call that is not due, or that carries a stale cursor snapshot,
      raises ``UpkeepNotNeededError`` and changes nothing.
"""

from __future__ import annotations

import time

from sqlalchemy import func, select

from upkeep_kernel.db.engine import atomic
from upkeep_kernel.domain.clock import Clock
from upkeep_kernel.exceptions import UpkeepNotNeededError
from upkeep_kernel.logging_config import LogContext, get_logger
from upkeep_kernel.services.access_control import FORWARDER

from upkeep_jobs.domain.schedule import (
    DueDecision,
    evaluate_due,
    next_boundary,
    window_start,
)
from upkeep_jobs.domain.types import (
    ActionStatus,
    BatchPerformResult,
    CursorSnapshot,
    EntityVisit,
    JobState,
)
from upkeep_jobs.models.upkeep import (
    EntitySlotModel,
    UpkeepJobModel,
    UpkeepManagerModel,
)
from upkeep_jobs.services.manager import UpkeepManagerService
from upkeep_jobs.tasks.base import ActionContext, ActionRegistry, EntityAction

logger = get_logger("jobs.worker")


class BatchWorker:
    """Batch execution for every job of one manager.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT poll -- KeeperScheduler decides when to call.
    """

    def __init__(
        self,
        manager: UpkeepManagerService,
        actions: ActionRegistry,
        clock: Clock | None = None,
    ):
        self._manager = manager
        self._actions = actions
        self._session = manager.session
        self._clock = clock or manager.clock
        self._events = manager.events

    @property
    def manager(self) -> UpkeepManagerService:
        return self._manager

    # -------------------------------------------------------------------------
    # Check
    # -------------------------------------------------------------------------

    def check_due(self, job_id: int) -> tuple[bool, CursorSnapshot]:
        """Pure read: is ``job_id`` due, and where is its cursor?"""
        m = self._manager.model()
        job = self._manager.job_model(job_id)
        decision = self._evaluate(m, job, self._clock.timestamp())
        return decision.due, _snapshot(job)

    def due_jobs(self) -> tuple[CursorSnapshot, ...]:
        """Snapshots of every active job that is due now."""
        m = self._manager.model()
        now = self._clock.timestamp()
        jobs = self._session.execute(
            select(UpkeepJobModel)
            .where(
                UpkeepJobModel.manager_id == m.id,
                UpkeepJobModel.state == JobState.ACTIVE.value,
            )
            .order_by(UpkeepJobModel.seq)
        ).scalars().all()
        return tuple(
            _snapshot(job) for job in jobs if self._evaluate(m, job, now).due
        )

    # -------------------------------------------------------------------------
    # Perform
    # -------------------------------------------------------------------------

    def run_batch(self, caller: str, snapshot: CursorSnapshot) -> BatchPerformResult:
        """Process one batch of ``snapshot.job_id``.

        Raises:
            UnauthorizedCallerError: Caller is not a trusted forwarder.
            UpkeepNotNeededError: Job not due or snapshot stale.
            JobNotFoundError: Manager has no such job.
        """
        started = time.monotonic()
        with LogContext.bind(
            manager=self._manager.name, job_id=str(snapshot.job_id), actor=caller,
        ), atomic(self._session):
            m = self._manager.model()
            self._manager.access.require_role(FORWARDER, caller)
            job = self._manager.job_model(snapshot.job_id)

            if job.current_index != snapshot.current_index:
                raise UpkeepNotNeededError(job.job_id, "stale cursor snapshot")

            now = self._clock.timestamp()
            decision = self._evaluate(m, job, now)
            if not decision.due:
                raise UpkeepNotNeededError(job.job_id, decision.reason)

            if decision.restart_pass:
                self._complete_pass(m, job, caller, now)

            if job.current_index == job.start_index:
                job.interval_seconds = m.interval_seconds
                job.pass_started_ts = now
                self._session.flush()

            action = self._actions.get(self._manager.action_name)
            context = ActionContext(
                session=self._session,
                manager_name=m.name,
                manager_id=m.id,
                job_id=job.job_id,
                window_ts=window_start(job.pass_started_ts, job.interval_seconds),
                now_ts=now,
            )

            slots = dict(
                self._session.execute(
                    select(EntitySlotModel.slot_index, EntitySlotModel.address).where(
                        EntitySlotModel.manager_id == m.id,
                        EntitySlotModel.job_id == job.job_id,
                        EntitySlotModel.slot_index >= job.current_index,
                        EntitySlotModel.slot_index < job.end_index,
                    )
                ).all()
            )

            first = job.current_index
            end = job.end_index
            cursor = first
            visits: list[EntityVisit] = []
            while cursor < end and len(visits) < m.batch_size:
                entity = slots.get(cursor)
                index = cursor
                cursor += 1
                if entity is None:
                    continue
                visits.append(self._visit(action, entity, index, context, caller))

            while cursor < end and slots.get(cursor) is None:
                cursor += 1

            job.current_index = cursor
            self._session.flush()

            self._events.emit(
                self._manager.scope, "batch_performed", actor=caller,
                job_id=job.job_id, start=first, end=cursor,
                processed=len(visits),
                failed=sum(1 for v in visits if v.status == ActionStatus.FAILED),
            )

            cycle_completed = cursor >= end
            if cycle_completed:
                self._complete_pass(m, job, caller, now)

            logger.info(
                "batch_run_completed",
                extra={
                    "job_id": job.job_id,
                    "start": first,
                    "end": cursor,
                    "visited": len(visits),
                    "cycle_completed": cycle_completed,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )

            return BatchPerformResult(
                job_id=job.job_id,
                start=first,
                end=cursor,
                visits=tuple(visits),
                cycle_completed=cycle_completed,
            )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _visit(
        self,
        action: EntityAction,
        entity: str,
        index: int,
        context: ActionContext,
        caller: str,
    ) -> EntityVisit:
        """Run one entity action inside its own SAVEPOINT."""
        savepoint = self._session.begin_nested()
        try:
            result = action.execute(entity, index, context)
            if result.status == ActionStatus.SUCCEEDED:
                savepoint.commit()
            else:
                savepoint.rollback()
        except Exception as exc:
            savepoint.rollback()
            logger.warning(
                "entity_action_exception",
                extra={"entity": entity, "index": index},
                exc_info=True,
            )
            visit = EntityVisit(
                index=index,
                entity=entity,
                status=ActionStatus.FAILED,
                error_code="UNHANDLED_EXCEPTION",
                error_message=str(exc),
            )
        else:
            visit = EntityVisit(
                index=index,
                entity=entity,
                status=result.status,
                error_code=result.error_code,
                error_message=result.error_message,
            )

        if visit.status == ActionStatus.FAILED:
            self._events.emit(
                self._manager.scope, "entity_action_failed", actor=caller,
                job_id=context.job_id, entity=entity, index=index,
                error_code=visit.error_code, error_message=visit.error_message,
            )
        else:
            self._events.emit(
                self._manager.scope, "entity_action_performed", actor=caller,
                job_id=context.job_id, entity=entity, index=index,
                action=action.action_name,
                success=visit.status == ActionStatus.SUCCEEDED,
            )
        return visit

    def _complete_pass(
        self,
        m: UpkeepManagerModel,
        job: UpkeepJobModel,
        caller: str,
        now: int,
    ) -> None:
        interval = job.interval_seconds or m.interval_seconds
        anchor = job.pass_started_ts if job.pass_started_ts is not None else now
        job.next_due_ts = next_boundary(anchor, interval)
        job.current_index = job.start_index
        self._session.flush()

        self._events.emit(
            self._manager.scope, "cycle_completed", actor=caller,
            job_id=job.job_id, pass_started_ts=job.pass_started_ts,
            next_due_ts=job.next_due_ts,
        )
        self._manager.on_cycle_complete(m, job)

    def _evaluate(
        self, m: UpkeepManagerModel, job: UpkeepJobModel, now: int,
    ) -> DueDecision:
        return evaluate_due(
            job.to_dto(m.name),
            now,
            active_from_cursor=self._active_between(m, job, job.current_index),
            active_in_range=self._active_between(m, job, job.start_index),
        )

    def _active_between(
        self, m: UpkeepManagerModel, job: UpkeepJobModel, start: int,
    ) -> int:
        return self._session.execute(
            select(func.count(EntitySlotModel.id)).where(
                EntitySlotModel.manager_id == m.id,
                EntitySlotModel.job_id == job.job_id,
                EntitySlotModel.slot_index >= start,
                EntitySlotModel.slot_index < job.end_index,
                EntitySlotModel.address.is_not(None),
            )
        ).scalar_one()


def _snapshot(job: UpkeepJobModel) -> CursorSnapshot:
    return CursorSnapshot(
        job_id=job.job_id,
        current_index=job.current_index,
        start_index=job.start_index,
        end_index=job.end_index,
    )
