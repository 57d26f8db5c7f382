"""
Tests for upkeep_jobs.services.redistribute_manager -- owner-set batch size.
"""

import pytest

from upkeep_kernel.exceptions import InvalidBatchSizeError, UnauthorizedCallerError

from upkeep_jobs.domain.actions import GAUGE_CREATED
from upkeep_jobs.domain.types import ActionStatus, DomainEvent
from upkeep_jobs.services.gauge_manager import GaugeUpkeepManager
from upkeep_jobs.services.redistribute_manager import RedistributeUpkeepManager
from upkeep_jobs.services.worker import BatchWorker
from upkeep_jobs.tasks.base import ActionRegistry
from upkeep_jobs.tasks.distribute import DistributeAction, RecordingDistributor

from tests.conftest import KEEPER, NEXT_EPOCH, OWNER, RELAY, STRANGER, VOTER, gauge_addresses


@pytest.fixture
def actions():
    registry = ActionRegistry()
    registry.register(DistributeAction(RecordingDistributor()))
    return registry


@pytest.fixture
def redistribute(make_manager):
    return make_manager(cls=RedistributeUpkeepManager, name="redistribute")


class TestBatchSize:
    def test_set_batch_size(self, redistribute, events):
        redistribute.set_batch_size(OWNER, 3)

        assert redistribute.batch_size() == 3
        emitted = events.events(scope=redistribute.scope, name="batch_size_set")
        assert emitted[0].payload == {"batch_size": 3}

    @pytest.mark.parametrize("value", [0, -1, 101])
    def test_out_of_range_is_rejected(self, redistribute, value):
        with pytest.raises(InvalidBatchSizeError):
            redistribute.set_batch_size(OWNER, value)
        assert redistribute.batch_size() == 5

    def test_owner_only(self, redistribute):
        with pytest.raises(UnauthorizedCallerError):
            redistribute.set_batch_size(STRANGER, 2)

    def test_worker_uses_new_batch_size(self, redistribute, actions, clock):
        redistribute.register(OWNER, gauge_addresses(10))
        redistribute.set_batch_size(OWNER, 4)
        worker = BatchWorker(redistribute, actions, clock=clock)
        clock.set_timestamp(NEXT_EPOCH)

        _, snapshot = worker.check_due(1)
        result = worker.run_batch(KEEPER, snapshot)

        assert (result.start, result.end) == (0, 4)


class TestSharedGaugeRules:
    def test_gauge_events_are_understood(self, redistribute):
        result = redistribute.handle_external_event(
            RELAY, DomainEvent(VOTER, GAUGE_CREATED, "g1"),
        )
        assert result.registered == ("g1",)

    def test_second_distribution_in_window_is_skipped(
        self, make_manager, redistribute, actions, clock,
    ):
        gauges = make_manager(cls=GaugeUpkeepManager, name="gauges")
        gauges.register(OWNER, ["g1"])
        redistribute.register(OWNER, ["g1"])
        clock.set_timestamp(NEXT_EPOCH)

        first = BatchWorker(gauges, actions, clock=clock)
        second = BatchWorker(redistribute, actions, clock=clock)
        first_job = gauges.active_job_ids()[0]
        second_job = redistribute.active_job_ids()[0]

        done = first.run_batch(KEEPER, first.check_due(first_job)[1])
        again = second.run_batch(KEEPER, second.check_due(second_job)[1])

        assert done.visits[0].status == ActionStatus.SUCCEEDED
        assert again.visits[0].status == ActionStatus.SKIPPED
