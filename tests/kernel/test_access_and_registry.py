"""
Tests for AccessControl and LocalJobRegistry.
"""

from decimal import Decimal

import pytest

from upkeep_kernel.exceptions import (
    InvalidAmountError,
    JobNotActiveError,
    JobNotFoundError,
    JobNotWithdrawableError,
    UnauthorizedCallerError,
)
from upkeep_kernel.registry.client import JobRegistryClient
from upkeep_kernel.services.access_control import FORWARDER, AccessControl


class TestAccessControl:
    def test_owner_check(self, session):
        access = AccessControl(session, "manager:g")
        access.require_owner("alice", "alice")
        with pytest.raises(UnauthorizedCallerError):
            access.require_owner("alice", "bob")

    def test_roles_are_scoped_and_idempotent(self, session):
        a = AccessControl(session, "manager:a")
        b = AccessControl(session, "manager:b")

        assert a.set_role(FORWARDER, "keeper", True, "owner") is True
        assert a.set_role(FORWARDER, "keeper", True, "owner") is False
        assert a.has_role(FORWARDER, "keeper")
        assert not b.has_role(FORWARDER, "keeper")
        assert a.members(FORWARDER) == ("keeper",)

        assert a.set_role(FORWARDER, "keeper", False, "owner") is True
        assert not a.has_role(FORWARDER, "keeper")

    def test_require_role_accepts_owner(self, session):
        access = AccessControl(session, "watchdog:main")
        access.require_role("watchlist_manager", "boss", owner="boss")
        with pytest.raises(UnauthorizedCallerError):
            access.require_role("watchlist_manager", "someone", owner="boss")

    def test_require_address_rejects_unset(self, session):
        access = AccessControl(session, "manager:g")
        with pytest.raises(UnauthorizedCallerError):
            access.require_address(None, "relay", "relay")


class TestLocalJobRegistry:
    def test_satisfies_protocol(self, registry):
        assert isinstance(registry, JobRegistryClient)

    def test_ids_start_at_one(self, registry):
        assert registry.register("t", 500000, Decimal("0.1")) == 1
        assert registry.register("t", 500000, Decimal("0.1")) == 2
        assert registry.get_balance(1) == Decimal("0.1")
        assert registry.get_min_balance(1) == Decimal("0.1")

    def test_withdraw_requires_cancellation(self, registry):
        job_id = registry.register("t", 500000, Decimal("0.1"))
        with pytest.raises(JobNotWithdrawableError):
            registry.withdraw(job_id)

    def test_withdraw_waits_for_finality(self, registry, clock):
        job_id = registry.register("t", 500000, Decimal("0.1"))
        registry.cancel(job_id)

        clock.advance(registry.finality_delay_seconds - 1)
        with pytest.raises(JobNotWithdrawableError):
            registry.withdraw(job_id)

        clock.advance(1)
        assert registry.withdraw(job_id) == Decimal("0.1")
        assert registry.get_state(job_id) == "withdrawn"
        assert registry.get_balance(job_id) == Decimal("0")

    def test_fund_active_only(self, registry):
        job_id = registry.register("t", 500000, Decimal("0.1"))
        registry.fund(job_id, Decimal("0.2"))
        assert registry.get_balance(job_id) == Decimal("0.3")

        with pytest.raises(InvalidAmountError):
            registry.fund(job_id, Decimal("0"))

        registry.cancel(job_id)
        with pytest.raises(JobNotActiveError):
            registry.fund(job_id, Decimal("1"))

    def test_debit_is_capped_at_balance(self, registry):
        job_id = registry.register("t", 500000, Decimal("0.1"))
        assert registry.debit(job_id, Decimal("0.04")) == Decimal("0.06")
        assert registry.debit(job_id, Decimal("1")) == Decimal("0")

    def test_unknown_job(self, registry):
        with pytest.raises(JobNotFoundError):
            registry.get_balance(99)
