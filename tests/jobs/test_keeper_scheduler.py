"""
Tests for upkeep_jobs.services.scheduler -- the polling keeper loop.

Every unit runs in its own session from ``session_factory``; assertions
read state back through a fresh session.
"""

from decimal import Decimal

import pytest

from upkeep_config.schema import (
    KeeperConfig,
    ManagerConfig,
    SchedulerConfig,
    WatchdogConfig,
)

from upkeep_jobs.orchestrator import KeeperOrchestrator
from upkeep_jobs.services.scheduler import KeeperScheduler, TickSummary
from upkeep_jobs.tasks.base import ActionRegistry

from tests.conftest import KEEPER, NEXT_EPOCH, OWNER, RELAY, VOTER, gauge_addresses

CONFIG = KeeperConfig(
    scheduler=SchedulerConfig(forwarder=KEEPER, tick_interval_seconds=3600),
    watchdogs=(
        WatchdogConfig(
            name="main", owner=OWNER,
            initial_deposit=Decimal("100"), forwarders=(KEEPER,),
        ),
    ),
    managers=(
        ManagerConfig(
            name="gauges", kind="gauge", owner=OWNER, relay=RELAY,
            upstream_source=VOTER, watchdog="main",
            initial_deposit=Decimal("10"), forwarders=(KEEPER,),
        ),
    ),
)


@pytest.fixture
def keeper(session_factory, clock, signal):
    """Bootstrap CONFIG, register 7 gauges, and return a scheduler factory."""

    def _orchestrator(session, actions=None):
        return KeeperOrchestrator.from_session(
            session, clock=clock, config=CONFIG, signal=signal, actions=actions,
        )

    with session_factory() as session:
        orch = _orchestrator(session)
        orch.bootstrap()
        orch.create_manager_service("gauges").register(OWNER, gauge_addresses(7))
        session.commit()

    def _scheduler(actions=None):
        with session_factory() as session:
            return _orchestrator(session, actions).create_scheduler(session_factory)

    return _scheduler


def _read(session_factory, fn):
    with session_factory() as session:
        return fn(KeeperOrchestrator.from_session(session, config=CONFIG))


class TestTick:
    def test_underfunded_new_job_is_topped_up(self, keeper, session_factory):
        scheduler = keeper()

        assert scheduler.tick() == TickSummary(batches=0, top_ups=1, failures=0)

        balance = _read(session_factory, lambda orch: orch.registry.get_balance(1))
        assert balance == Decimal("0.3")
        assert scheduler.tick() == TickSummary()

    def test_due_job_advances_one_batch_per_tick(self, keeper, session_factory, clock):
        scheduler = keeper()
        scheduler.tick()
        clock.set_timestamp(NEXT_EPOCH)

        assert scheduler.tick().batches == 1
        cursor = _read(
            session_factory,
            lambda orch: orch.create_manager_service("gauges").get_job(1).current_index,
        )
        assert cursor == 5

        assert scheduler.tick().batches == 1
        assert scheduler.tick().batches == 0

    def test_failing_unit_does_not_stop_the_tick(
        self, keeper, session_factory, clock, captured_logs,
    ):
        scheduler = keeper(actions=ActionRegistry())
        clock.set_timestamp(NEXT_EPOCH)

        summary = scheduler.tick()

        assert summary == TickSummary(batches=0, top_ups=1, failures=1)
        cursor = _read(
            session_factory,
            lambda orch: orch.create_manager_service("gauges").get_job(1).current_index,
        )
        assert cursor == 0
        failed = [r for r in captured_logs() if r["message"] == "scheduler_unit_failed"]
        assert failed[0]["unit"] == "batch"

    def test_tick_records_share_a_correlation_id(self, keeper, captured_logs):
        scheduler = keeper()

        scheduler.tick()
        scheduler.tick()

        records = captured_logs()
        completed = [r for r in records if r["message"] == "scheduler_tick_completed"]
        first, second = (r["correlation_id"] for r in completed)
        assert first.startswith("tick-")
        assert first != second
        top_up = next(r for r in records if r["message"] == "top_up_succeeded")
        assert top_up["correlation_id"] == first

    def test_discovery_failure_is_reported(self):
        def broken_factory():
            raise RuntimeError("database unavailable")

        scheduler = KeeperScheduler(
            session_factory=broken_factory,
            orchestrator_factory=lambda session: None,
            forwarder=KEEPER,
        )
        assert scheduler.tick() == TickSummary(failures=1)


class TestLifecycle:
    def test_start_and_stop(self, keeper):
        scheduler = keeper()

        scheduler.start()
        assert scheduler.is_running
        scheduler.stop(timeout=10)

        assert not scheduler.is_running
