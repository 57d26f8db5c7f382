"""
KeeperScheduler -- in-process polling loop acting as the trusted forwarder.

Contract:
    Each ``tick()`` walks every manager's due jobs and runs one batch per
    job, then asks every watchdog for underfunded jobs and tops them up.
    Every unit of work (one batch, one watchdog top-up) runs in its own
    session and commits on its own; a failing unit is rolled back, logged
    and does not affect the others.

Architecture: upkeep_jobs/services.  Components are built per session by
    the ``orchestrator_factory`` (normally ``KeeperOrchestrator.from_session``).

Invariants enforced:
    - Graceful shutdown: the stop signal is checked between units.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from upkeep_kernel.logging_config import LogContext, get_logger

if TYPE_CHECKING:
    from upkeep_jobs.orchestrator import KeeperOrchestrator

logger = get_logger("jobs.scheduler")


@dataclass(frozen=True)
class TickSummary:
    """What one tick did."""

    batches: int = 0
    top_ups: int = 0
    failures: int = 0


class KeeperScheduler:
    """Polling scheduler for batch jobs and funding watchdogs.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
        - Runs at most one batch per job per tick.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        orchestrator_factory: Callable[[Session], KeeperOrchestrator],
        forwarder: str,
        tick_interval_seconds: int = 60,
    ):
        self._session_factory = session_factory
        self._orchestrator_factory = orchestrator_factory
        self._forwarder = forwarder
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> TickSummary:
        """Run every due unit of work once (public for testing).

        Every record logged during the tick carries the same ``correlation_id``.
        """
        with LogContext.bind(correlation_id=f"tick-{uuid4().hex[:12]}"):
            return self._tick()

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="keeper-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current unit to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _tick(self) -> TickSummary:
        try:
            managers, watchdogs = self._discover()
        except Exception:
            logger.exception("scheduler_discovery_failed")
            return TickSummary(failures=1)

        batches = top_ups = failures = 0

        for manager_name, job_ids in managers:
            for job_id in job_ids:
                if self._stop_event.is_set():
                    break
                ok = self._unit(
                    "batch", manager_name, job_id,
                    lambda orch, m=manager_name, j=job_id: self._run_batch(orch, m, j),
                )
                if ok is None:
                    failures += 1
                elif ok:
                    batches += 1

        for watchdog_name in watchdogs:
            if self._stop_event.is_set():
                break
            ok = self._unit(
                "top_up", watchdog_name, None,
                lambda orch, w=watchdog_name: self._run_top_up(orch, w),
            )
            if ok is None:
                failures += 1
            elif ok:
                top_ups += 1

        summary = TickSummary(batches=batches, top_ups=top_ups, failures=failures)
        logger.info(
            "scheduler_tick_completed",
            extra={"batches": batches, "top_ups": top_ups, "failures": failures},
        )
        return summary

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _discover(self) -> tuple[list[tuple[str, tuple[int, ...]]], tuple[str, ...]]:
        """Read-only pass: due job ids per manager, and watchdog names."""
        session = self._session_factory()
        try:
            orch = self._orchestrator_factory(session)
            managers = [
                (name, tuple(s.job_id for s in orch.create_worker(name).due_jobs()))
                for name in orch.manager_names()
            ]
            return managers, orch.watchdog_names()
        finally:
            session.close()

    def _unit(
        self,
        kind: str,
        component: str,
        job_id: int | None,
        work: Callable[[KeeperOrchestrator], bool],
    ) -> bool | None:
        """Run ``work`` in a fresh session.  None means it failed."""
        session = self._session_factory()
        try:
            performed = work(self._orchestrator_factory(session))
            session.commit()
            return performed
        except Exception:
            session.rollback()
            logger.exception(
                "scheduler_unit_failed",
                extra={"unit": kind, "component": component, "job_id": job_id},
            )
            return None
        finally:
            session.close()

    def _run_batch(self, orch: KeeperOrchestrator, manager_name: str, job_id: int) -> bool:
        worker = orch.create_worker(manager_name)
        due, snapshot = worker.check_due(job_id)
        if not due:
            return False
        worker.run_batch(self._forwarder, snapshot)
        return True

    def _run_top_up(self, orch: KeeperOrchestrator, watchdog_name: str) -> bool:
        watchdog = orch.create_watchdog(watchdog_name)
        scan = watchdog.check_underfunded()
        if not scan.needed:
            return False
        watchdog.perform_top_up(self._forwarder, scan.job_ids, scan.amounts)
        return True
