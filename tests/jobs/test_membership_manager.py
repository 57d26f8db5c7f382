"""
Tests for upkeep_jobs.services.manager -- membership lifecycle.

Covers bulk register/deregister, the cancel threshold, cancelled-job
withdrawal with survivor reassignment, the relay event path, owner
setters, funding, paginated reads and watch-list integration.

Uses in-memory SQLite with the LocalJobRegistry (600s finality delay).
"""

from decimal import Decimal

import pytest

from upkeep_kernel.exceptions import (
    EntityNotFoundError,
    IndexOutOfRangeError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidBatchSizeError,
    JobNotFoundError,
    UnauthorizedCallerError,
)

from upkeep_jobs.domain.actions import GAUGE_CREATED, GAUGE_KILLED, GAUGE_REVIVED
from upkeep_jobs.domain.types import (
    ActionKind,
    DomainEvent,
    Entity,
    JobState,
    ManagerKind,
    MembershipAction,
)
from upkeep_jobs.services.manager import create_manager_record

from tests.conftest import (
    KEEPER,
    OWNER,
    RELAY,
    STRANGER,
    T0,
    VOTER,
    gauge_addresses,
)


# =============================================================================
# Registration and job assignment
# =============================================================================


class TestRegister:
    def test_first_registration_opens_and_funds_a_job(self, make_manager, registry):
        manager = make_manager()

        result = manager.register(OWNER, ["g1", "g2"])

        assert result.registered == ("g1", "g2")
        assert result.jobs_opened == (1,)
        assert manager.job_count() == 1
        assert manager.funding_balance() == Decimal("9.9")
        assert registry.get_balance(1) == Decimal("0.1")

        job = manager.get_job(1)
        assert (job.start_index, job.end_index) == (0, 2)
        assert job.state == JobState.ACTIVE
        assert job.active_count == 2

    def test_overflow_opens_a_second_job(self, make_manager):
        manager = make_manager()

        result = manager.register(OWNER, gauge_addresses(101))

        assert result.jobs_opened == (1, 2)
        assert manager.entity_list_length() == 101
        assert manager.get_job(1).end_index == 100
        job2 = manager.get_job(2)
        assert (job2.start_index, job2.end_index) == (100, 101)

    def test_duplicate_is_a_noop(self, make_manager):
        manager = make_manager()
        manager.register(OWNER, ["g1"])

        result = manager.register(RELAY, ["g1"])

        assert result.registered == ()
        assert result.already_active == ("g1",)
        assert manager.entity_list_length() == 1

    def test_excluded_category_is_rejected_per_entity(self, make_manager, events):
        manager = make_manager(excluded_categories=("xchain",))

        result = manager.register(OWNER, [Entity("g1", "xchain"), Entity("g2", "local")])

        assert result.registered == ("g2",)
        assert result.rejected == (("g1", "excluded_category"),)
        rejected = events.events(scope=manager.scope, name="entity_rejected")
        assert rejected[0].payload["entity"] == "g1"

    def test_stranger_cannot_register(self, make_manager):
        manager = make_manager()
        with pytest.raises(UnauthorizedCallerError):
            manager.register(STRANGER, ["g1"])

    def test_new_job_is_due_at_next_boundary(self, make_manager):
        manager = make_manager()
        manager.register(OWNER, ["g1"])
        assert manager.get_job(1).next_due_ts == 1_700_092_800

    def test_insufficient_funds_rolls_back_the_whole_call(self, make_manager, events):
        manager = make_manager(deposit=Decimal("0.15"), entities_per_job=2, batch_size=1)

        with pytest.raises(InsufficientFundsError):
            manager.register(OWNER, gauge_addresses(5))

        assert manager.entity_count() == 0
        assert manager.entity_list_length() == 0
        assert manager.jobs() == ()
        assert manager.funding_balance() == Decimal("0.15")
        assert events.events(scope=manager.scope, name="entity_registered") == ()

    def test_batch_size_above_capacity_is_rejected(self, session):
        with pytest.raises(InvalidBatchSizeError):
            create_manager_record(
                session, name="bad", kind=ManagerKind.GAUGE, owner=OWNER,
                entities_per_job=2, batch_size=3,
            )


# =============================================================================
# Deregistration and cancellation
# =============================================================================


class TestDeregister:
    def test_cancel_buffer_threshold(self, make_manager, registry):
        manager = make_manager()
        manager.register(OWNER, gauge_addresses(101))

        first = manager.deregister(OWNER, gauge_addresses(20))
        assert len(first.deregistered) == 20
        assert first.jobs_cancelled == ()
        assert manager.get_job(1).state == JobState.ACTIVE

        second = manager.deregister(RELAY, ["g020"])
        assert second.jobs_cancelled == (1,)
        assert manager.get_job(1).state == JobState.CANCELLED
        assert manager.active_job_ids() == (2,)
        assert manager.cancelled_job_ids() == (1,)
        assert registry.get_state(1) == "cancelled"
        assert manager.job_count() == 1
        assert manager.entity_count() == 80

    def test_last_entity_cancels_its_job(self, make_manager):
        manager = make_manager()
        manager.register(OWNER, ["g1"])

        result = manager.deregister(OWNER, ["g1"])

        assert result.jobs_cancelled == (1,)
        assert manager.job_count() == 0
        assert manager.cancelled_job_count() == 1

    def test_slots_are_never_shifted(self, make_manager):
        manager = make_manager()
        manager.register(OWNER, ["a", "b", "c"])

        manager.deregister(OWNER, ["b"])

        assert manager.entity_list_length() == 3
        assert manager.index_of("c") == 2
        assert manager.entity_list(0, 3) == ("a", "c")
        with pytest.raises(EntityNotFoundError):
            manager.entity_at(1)

    def test_unknown_entity_is_reported(self, make_manager):
        manager = make_manager()
        result = manager.deregister(OWNER, ["ghost"])
        assert result.not_found == ("ghost",)

    def test_cancelled_job_never_grows(self, make_manager):
        manager = make_manager()
        manager.register(OWNER, ["g1"])
        manager.deregister(OWNER, ["g1"])

        result = manager.register(OWNER, ["g2"])

        assert result.jobs_opened == (2,)
        job = manager.get_job(2)
        assert (job.start_index, job.end_index) == (1, 2)

    def test_reregistered_entity_gets_a_new_slot(self, make_manager):
        manager = make_manager()
        manager.register(OWNER, ["a", "b"])
        manager.deregister(OWNER, ["a"])

        manager.register(OWNER, ["a"])

        assert manager.index_of("a") == 2
        assert manager.entity_count() == 2


# =============================================================================
# Withdrawal and reassignment
# =============================================================================


class TestWithdrawCancelled:
    def test_finality_delay_then_reassign_into_new_job(self, make_manager, clock, events):
        manager = make_manager()
        manager.register(OWNER, gauge_addresses(200))
        manager.deregister(OWNER, gauge_addresses(21))

        early = manager.withdraw_cancelled(OWNER, 0, 10)
        assert early.withdrawn == ()
        assert early.not_ready == (1,)

        clock.advance(600)
        result = manager.withdraw_cancelled(OWNER, 0, 10)

        assert result.withdrawn == (1,)
        assert result.reclaimed == Decimal("0.1")
        assert len(result.reassigned) == 79
        assert result.jobs_opened == (3,)

        assert manager.get_job(1).state == JobState.WITHDRAWN
        assert manager.cancelled_job_count() == 0
        assert manager.index_of("g021") == 200
        assert manager.index_of("g099") == 278
        job3 = manager.get_job(3)
        assert (job3.start_index, job3.end_index) == (200, 279)
        assert manager.funding_balance() == Decimal("9.8")

        moves = events.events(scope=manager.scope, name="entity_reassigned")
        assert moves[0].payload == {
            "entity": "g021", "from_index": 21, "to_index": 200, "job_id": 3,
        }

    def test_survivors_fill_open_job_first(self, make_manager, clock):
        manager = make_manager()
        manager.register(OWNER, gauge_addresses(150))
        manager.deregister(OWNER, gauge_addresses(21))
        clock.advance(600)

        result = manager.withdraw_cancelled(OWNER, 0, 1)

        assert result.jobs_opened == (3,)
        job2 = manager.get_job(2)
        assert job2.end_index == 200
        assert job2.active_count == 100
        job3 = manager.get_job(3)
        assert (job3.start_index, job3.end_index) == (200, 229)

    def test_ranges_stay_disjoint_after_reassignment(self, make_manager, clock):
        manager = make_manager()
        manager.register(OWNER, gauge_addresses(150))
        manager.deregister(OWNER, gauge_addresses(21))
        clock.advance(600)
        manager.withdraw_cancelled(OWNER, 0, 1)

        live = [j for j in manager.jobs() if j.state != JobState.WITHDRAWN]
        spans = sorted((j.start_index, j.end_index) for j in live)
        for (_, end), (start, _) in zip(spans, spans[1:]):
            assert end == start

    def test_window_selects_from_cancelled_list(self, make_manager, clock):
        manager = make_manager(entities_per_job=1, batch_size=1)
        manager.register(OWNER, ["a", "b", "c"])
        manager.deregister(OWNER, ["a", "b", "c"])
        clock.advance(600)

        result = manager.withdraw_cancelled(OWNER, 1, 1)

        assert result.withdrawn == (2,)
        assert manager.cancelled_job_ids() == (1, 3)

    def test_nothing_to_withdraw(self, make_manager):
        manager = make_manager()
        result = manager.withdraw_cancelled(OWNER, 0, 5)
        assert result.withdrawn == ()
        assert result.reclaimed == Decimal("0")


# =============================================================================
# Event path
# =============================================================================


class TestEventPath:
    def test_relay_event_registers(self, make_manager):
        manager = make_manager()
        event = DomainEvent(VOTER, GAUGE_CREATED, "g1", category="f1")

        result = manager.handle_external_event(RELAY, event)

        assert result.registered == ("g1",)
        assert manager.is_active("g1")

    def test_killed_then_revived(self, make_manager):
        manager = make_manager()
        manager.handle_external_event(RELAY, DomainEvent(VOTER, GAUGE_CREATED, "g1"))

        manager.handle_external_event(RELAY, DomainEvent(VOTER, GAUGE_KILLED, "g1"))
        assert not manager.is_active("g1")

        manager.handle_external_event(RELAY, DomainEvent(VOTER, GAUGE_REVIVED, "g1"))
        assert manager.index_of("g1") == 1

    def test_only_relay_may_deliver_events(self, make_manager):
        manager = make_manager()
        event = DomainEvent(VOTER, GAUGE_CREATED, "g1")
        with pytest.raises(UnauthorizedCallerError):
            manager.handle_external_event(OWNER, event)

    def test_foreign_source_is_ignored(self, make_manager):
        manager = make_manager()
        result = manager.handle_external_event(
            RELAY, DomainEvent("other-voter", GAUGE_CREATED, "g1"),
        )
        assert result is None
        assert manager.entity_count() == 0

    def test_excluded_category_event_is_ignored(self, make_manager):
        manager = make_manager()
        manager.set_excluded_category(OWNER, "xchain", True)

        result = manager.handle_external_event(
            RELAY, DomainEvent(VOTER, GAUGE_CREATED, "g1", category="xchain"),
        )

        assert result is None
        assert not manager.is_active("g1")

    def test_check_event(self, make_manager):
        manager = make_manager()
        created = DomainEvent(VOTER, GAUGE_CREATED, "g1")
        killed = DomainEvent(VOTER, GAUGE_KILLED, "g1")

        assert manager.check_event(killed) == (False, None)
        needed, action = manager.check_event(created)
        assert needed
        assert action == MembershipAction(ActionKind.REGISTER, "g1")

        manager.perform_action(KEEPER, action)
        assert manager.check_event(created) == (False, None)
        assert manager.check_event(killed)[0]

    def test_perform_action_requires_forwarder(self, make_manager):
        manager = make_manager()
        with pytest.raises(UnauthorizedCallerError):
            manager.perform_action(STRANGER, MembershipAction(ActionKind.REGISTER, "g1"))


# =============================================================================
# Owner administration and funding
# =============================================================================


class TestAdministration:
    def test_fund_amount_applies_to_new_jobs(self, make_manager, registry):
        manager = make_manager()
        manager.set_new_job_fund_amount(OWNER, Decimal("0.5"))

        manager.register(OWNER, ["g1"])

        assert registry.get_balance(1) == Decimal("0.5")
        assert manager.funding_balance() == Decimal("9.5")

    def test_interval_applies_to_new_jobs(self, make_manager):
        manager = make_manager()
        manager.set_job_interval(OWNER, 3600)

        manager.register(OWNER, ["g1"])

        assert manager.get_job(1).next_due_ts == 1_700_002_800

    @pytest.mark.parametrize(
        "setter, value",
        [
            ("set_new_job_gas_limit", 0),
            ("set_new_job_fund_amount", Decimal("0")),
            ("set_job_interval", -1),
        ],
    )
    def test_setters_reject_non_positive_values(self, make_manager, setter, value):
        manager = make_manager()
        with pytest.raises(InvalidAmountError):
            getattr(manager, setter)(OWNER, value)

    @pytest.mark.parametrize(
        "setter, args",
        [
            ("set_new_job_gas_limit", (100,)),
            ("set_relay", ("new-relay",)),
            ("set_upstream_source", ("new-voter",)),
            ("set_watchdog", ("other",)),
            ("set_trusted_forwarder", ("bot", True)),
            ("set_excluded_category", ("xchain", True)),
        ],
    )
    def test_setters_are_owner_only(self, make_manager, setter, args):
        manager = make_manager()
        with pytest.raises(UnauthorizedCallerError):
            getattr(manager, setter)(STRANGER, *args)

    def test_relay_change_takes_effect(self, make_manager):
        manager = make_manager()
        manager.set_relay(OWNER, "new-relay")

        with pytest.raises(UnauthorizedCallerError):
            manager.register(RELAY, ["g1"])
        assert manager.register("new-relay", ["g1"]).registered == ("g1",)

    def test_withdraw_funding_balance(self, make_manager, events):
        manager = make_manager()

        amount = manager.withdraw_funding_balance(OWNER, "treasury")

        assert amount == Decimal("10")
        assert manager.funding_balance() == Decimal("0")
        emitted = events.events(scope=manager.scope, name="funding_balance_withdrawn")
        assert emitted[0].payload["recipient"] == "treasury"

    def test_deposit_rejects_non_positive(self, make_manager):
        manager = make_manager()
        with pytest.raises(InvalidAmountError):
            manager.deposit(OWNER, Decimal("-1"))


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    def test_entity_list_pagination(self, make_manager):
        manager = make_manager()
        manager.register(OWNER, gauge_addresses(10))
        manager.deregister(OWNER, ["g003"])

        assert manager.entity_list(2, 5) == ("g002", "g004")
        assert manager.entity_list(8, 50) == ("g008", "g009")
        assert manager.entity_count() == 9

    def test_index_errors(self, make_manager):
        manager = make_manager()
        manager.register(OWNER, ["g1"])

        with pytest.raises(IndexOutOfRangeError):
            manager.entity_at(1)
        with pytest.raises(IndexOutOfRangeError):
            manager.job_id_at(1)
        with pytest.raises(JobNotFoundError):
            manager.get_job(99)
        assert manager.job_id_at(0) == 1
        assert manager.index_of("ghost") is None


# =============================================================================
# Watch-list integration
# =============================================================================


class TestWatchListIntegration:
    def test_jobs_follow_the_watch_list(self, make_watchdog, make_manager):
        watchdog = make_watchdog()
        watchdog.grant_watch_list_manager(OWNER, "manager:gauges")
        manager = make_manager(watchdog_name="main")

        manager.register(OWNER, gauge_addresses(101))
        assert watchdog.get_watch_list() == (1, 2)

        manager.deregister(OWNER, gauge_addresses(21))
        assert watchdog.get_watch_list() == (2,)

    def test_ungranted_manager_cannot_open_jobs(self, make_watchdog, make_manager):
        make_watchdog()
        manager = make_manager(watchdog_name="main")

        with pytest.raises(UnauthorizedCallerError):
            manager.register(OWNER, ["g1"])
        assert manager.entity_count() == 0

    def test_registration_time_is_recorded(self, make_manager, events):
        manager = make_manager()
        manager.register(OWNER, ["g1"])
        registered = events.events(scope=manager.scope, name="job_registered")
        assert registered[0].emitted_ts == T0
