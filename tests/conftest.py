"""
Pytest fixtures for the upkeep test suite.

Provides:
- In-memory SQLite sessions (StaticPool, SAVEPOINT-capable) per test
- Deterministic clock, scan signal and local job registry
- Factories for managers and watchdogs wired the way the orchestrator wires them
- Structured log capture

Every test gets a fresh database; nothing is shared between tests.
"""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from upkeep_kernel.db.engine import build_engine, create_tables
from upkeep_kernel.domain.clock import DeterministicClock
from upkeep_kernel.domain.signal import CounterSignal
from upkeep_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from upkeep_kernel.registry.local import LocalJobRegistry
from upkeep_kernel.services.event_recorder import EventRecorder

from upkeep_funding.services.watchdog import FundingWatchdogService, create_watchdog_record
from upkeep_jobs.services.gauge_manager import GaugeUpkeepManager
from upkeep_jobs.services.manager import create_manager_record

# Tue 2023-11-14 22:13:20 UTC; the next weekly boundary is Thu 2023-11-16 00:00 UTC.
T0 = 1_700_000_000
NEXT_EPOCH = 1_700_092_800

OWNER = "owner"
RELAY = "voter-relay"
KEEPER = "keeper"
VOTER = "voter"
STRANGER = "stranger"


def gauge_addresses(count: int, prefix: str = "g") -> list[str]:
    return [f"{prefix}{i:03d}" for i in range(count)]


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture upkeep_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, make_manager):
            make_manager().register(OWNER, ["g1"])
            logs = captured_logs()
            assert any(r["message"] == "entity_registered" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("upkeep_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    sess = session_factory()
    yield sess
    try:
        sess.rollback()
    finally:
        sess.close()


# =============================================================================
# Time, signal, registry, events
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock.at_timestamp(T0)


@pytest.fixture
def signal():
    return CounterSignal()


@pytest.fixture
def registry(session, clock):
    return LocalJobRegistry(session, clock)


@pytest.fixture
def events(session, clock):
    return EventRecorder(session, clock)


# =============================================================================
# Component factories
# =============================================================================


@pytest.fixture
def watchdog_resolver(session, registry, signal, clock, events):
    def _resolve(name: str) -> FundingWatchdogService:
        return FundingWatchdogService(
            session, name, registry, signal, clock=clock, events=events,
        )

    return _resolve


@pytest.fixture
def make_watchdog(session, watchdog_resolver):
    """Create a watchdog row and return its service (keeper is a forwarder)."""

    def _make(name="main", params=None, deposit=Decimal("100"), forwarder=KEEPER):
        create_watchdog_record(session, name=name, owner=OWNER, params=params)
        service = watchdog_resolver(name)
        if forwarder is not None:
            service.set_trusted_forwarder(OWNER, forwarder, True)
        if deposit:
            service.deposit(OWNER, deposit)
        return service

    return _make


@pytest.fixture
def make_manager(session, registry, clock, events, watchdog_resolver):
    """Create a manager row and return its variant service.

    Defaults: gauge variant, owner/relay/voter wiring, keeper as trusted
    forwarder, 10 funding tokens deposited.
    """

    def _make(
        cls=GaugeUpkeepManager,
        name="gauges",
        deposit=Decimal("10"),
        oracle=None,
        **overrides,
    ):
        params = dict(
            kind=cls.kind,
            owner=OWNER,
            relay=RELAY,
            upstream_source=VOTER,
        )
        params.update(overrides)
        create_manager_record(session, name=name, **params)

        kwargs = {}
        if oracle is not None:
            kwargs["oracle"] = oracle
        service = cls(
            session,
            name,
            registry,
            clock=clock,
            watch_list_resolver=watchdog_resolver,
            events=events,
            **kwargs,
        )
        service.set_trusted_forwarder(OWNER, KEEPER, True)
        if deposit:
            service.deposit(OWNER, deposit)
        return service

    return _make
