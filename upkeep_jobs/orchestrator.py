"""
KeeperOrchestrator -- DI container for managers, workers, watchdogs and the scheduler.

Contract:
    Single place where every keeper dependency is composed for one session.
    - ``from_session()`` creates a fully wired orchestrator.
    - ``create_manager_service()`` dispatches on the manager's stored kind.
    - ``create_worker()`` / ``create_watchdog()`` / ``create_scheduler()``.
    - ``bootstrap()`` creates the managers and watchdogs a KeeperConfig names.

Architecture: upkeep_jobs (top-level).  The only module that imports
    upkeep_funding: it hands managers a resolver that turns a watchdog
    name into a FundingWatchdogService.

Invariants enforced:
    - Clock injection: every component receives the same Clock.
    - Managers and watchdogs share one EventRecorder and one registry client.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from upkeep_config.schema import KeeperConfig, ManagerConfig, WatchdogConfig
from upkeep_kernel.db.engine import atomic
from upkeep_kernel.domain.clock import Clock, SystemClock
from upkeep_kernel.domain.signal import BlockHeightSignal, ScanSignal
from upkeep_kernel.exceptions import ManagerNotFoundError
from upkeep_kernel.logging_config import get_logger
from upkeep_kernel.registry.client import JobRegistryClient
from upkeep_kernel.registry.local import LocalJobRegistry
from upkeep_kernel.services.event_recorder import EventRecorder

from upkeep_funding.domain.types import WatchdogParams
from upkeep_funding.models.watchdog import FundingWatchdogModel
from upkeep_funding.services.watchdog import (
    FundingWatchdogService,
    create_watchdog_record,
)

from upkeep_jobs.domain.types import ManagerKind
from upkeep_jobs.models.upkeep import UpkeepManagerModel
from upkeep_jobs.services.gauge_manager import GaugeUpkeepManager
from upkeep_jobs.services.manager import UpkeepManagerService, create_manager_record
from upkeep_jobs.services.redistribute_manager import RedistributeUpkeepManager
from upkeep_jobs.services.scheduler import KeeperScheduler
from upkeep_jobs.services.token_manager import TokenUpkeepManager
from upkeep_jobs.services.worker import BatchWorker
from upkeep_jobs.tasks.base import ActionRegistry
from upkeep_jobs.tasks.distribute import DistributeAction, RecordingDistributor
from upkeep_jobs.tasks.fetch_price import FetchPriceAction, PriceOracle, StaticPriceOracle

logger = get_logger("jobs.orchestrator")

MANAGER_CLASSES: dict[ManagerKind, type[UpkeepManagerService]] = {
    ManagerKind.GAUGE: GaugeUpkeepManager,
    ManagerKind.REDISTRIBUTE: RedistributeUpkeepManager,
    ManagerKind.TOKEN: TokenUpkeepManager,
}


def _default_action_registry(oracle: PriceOracle) -> ActionRegistry:
    """ActionRegistry with the distribute and fetch_price actions."""
    registry = ActionRegistry()
    registry.register(DistributeAction(RecordingDistributor()))
    registry.register(FetchPriceAction(oracle))
    return registry


class KeeperOrchestrator:
    """DI container for the keeper.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        registry: JobRegistryClient,
        actions: ActionRegistry,
        signal: ScanSignal,
        oracle: PriceOracle,
        clock: Clock | None = None,
        config: KeeperConfig | None = None,
    ) -> None:
        self._session = session
        self._registry = registry
        self._actions = actions
        self._signal = signal
        self._oracle = oracle
        self._clock = clock or SystemClock()
        self._config = config if config is not None else KeeperConfig()
        self._events = EventRecorder(session, self._clock)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        config: KeeperConfig | None = None,
        registry: JobRegistryClient | None = None,
        actions: ActionRegistry | None = None,
        signal: ScanSignal | None = None,
        oracle: PriceOracle | None = None,
    ) -> KeeperOrchestrator:
        """Create a fully wired orchestrator from a session.

        Args:
            session: SQLAlchemy session for persistence.
            clock: Optional clock for deterministic testing.
            config: Keeper configuration; defaults to an empty KeeperConfig.
            registry: Optional registry client.  Defaults to a
                LocalJobRegistry bound to ``session``.
            actions: Optional pre-configured action registry.
            signal: Optional scan signal.  Defaults to a BlockHeightSignal.
            oracle: Optional price oracle for the token variant.
        """
        effective_clock = clock or SystemClock()
        effective_config = config if config is not None else KeeperConfig()
        effective_oracle = oracle or StaticPriceOracle()
        return cls(
            session=session,
            registry=registry or LocalJobRegistry(
                session,
                effective_clock,
                finality_delay_seconds=effective_config.registry.finality_delay_seconds,
                default_min_balance=effective_config.registry.default_min_balance,
            ),
            actions=actions if actions is not None else _default_action_registry(effective_oracle),
            signal=signal or BlockHeightSignal(
                effective_clock, effective_config.scheduler.block_time_seconds,
            ),
            oracle=effective_oracle,
            clock=effective_clock,
            config=effective_config,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def registry(self) -> JobRegistryClient:
        return self._registry

    @property
    def actions(self) -> ActionRegistry:
        return self._actions

    @property
    def events(self) -> EventRecorder:
        return self._events

    @property
    def config(self) -> KeeperConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Component factories
    # -------------------------------------------------------------------------

    def create_manager_service(self, name: str) -> UpkeepManagerService:
        """Build the variant service matching the stored manager kind.

        Raises:
            ManagerNotFoundError: No manager named ``name``.
        """
        kind = self._session.execute(
            select(UpkeepManagerModel.kind).where(UpkeepManagerModel.name == name)
        ).scalar_one_or_none()
        if kind is None:
            raise ManagerNotFoundError(name)

        cls = MANAGER_CLASSES[ManagerKind(kind)]
        kwargs = dict(
            clock=self._clock,
            watch_list_resolver=self.create_watchdog,
            events=self._events,
        )
        if cls is TokenUpkeepManager:
            kwargs["oracle"] = self._oracle
        return cls(self._session, name, self._registry, **kwargs)

    def create_worker(self, manager_name: str) -> BatchWorker:
        return BatchWorker(
            self.create_manager_service(manager_name), self._actions, clock=self._clock,
        )

    def create_watchdog(self, name: str) -> FundingWatchdogService:
        return FundingWatchdogService(
            self._session,
            name,
            self._registry,
            self._signal,
            clock=self._clock,
            events=self._events,
        )

    def create_scheduler(
        self,
        session_factory: Callable[[], Session],
        tick_interval_seconds: int | None = None,
    ) -> KeeperScheduler:
        """KeeperScheduler building a fresh orchestrator per unit session."""
        scheduler_config = self._config.scheduler

        def orchestrator_for(session: Session) -> KeeperOrchestrator:
            return KeeperOrchestrator.from_session(
                session,
                clock=self._clock,
                config=self._config,
                actions=self._actions,
                signal=self._signal,
                oracle=self._oracle,
            )

        return KeeperScheduler(
            session_factory=session_factory,
            orchestrator_factory=orchestrator_for,
            forwarder=scheduler_config.forwarder,
            tick_interval_seconds=(
                tick_interval_seconds
                if tick_interval_seconds is not None
                else scheduler_config.tick_interval_seconds
            ),
        )

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def manager_names(self) -> tuple[str, ...]:
        return tuple(
            self._session.execute(
                select(UpkeepManagerModel.name).order_by(UpkeepManagerModel.name)
            ).scalars().all()
        )

    def watchdog_names(self) -> tuple[str, ...]:
        return tuple(
            self._session.execute(
                select(FundingWatchdogModel.name).order_by(FundingWatchdogModel.name)
            ).scalars().all()
        )

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    def bootstrap(self, config: KeeperConfig | None = None) -> tuple[str, ...]:
        """Create every watchdog and manager in ``config`` that does not exist yet.

        Existing components are left untouched.  Returns the names created.
        """
        config = config or self._config
        created: list[str] = []
        with atomic(self._session):
            existing_watchdogs = set(self.watchdog_names())
            for w in config.watchdogs:
                if w.name not in existing_watchdogs:
                    self._bootstrap_watchdog(w)
                    created.append(w.name)

            existing_managers = set(self.manager_names())
            for m in config.managers:
                if m.name not in existing_managers:
                    self._bootstrap_manager(m)
                    created.append(m.name)

        logger.info("keeper_bootstrapped", extra={"created": created})
        return tuple(created)

    def _bootstrap_watchdog(self, w: WatchdogConfig) -> None:
        create_watchdog_record(
            self._session,
            name=w.name,
            owner=w.owner,
            address=w.address,
            params=WatchdogParams(
                max_batch_size=w.max_batch_size,
                min_percentage=w.min_percentage,
                target_percentage=w.target_percentage,
                max_top_up_amount=w.max_top_up_amount,
                max_iterations=w.max_iterations,
            ),
        )
        service = self.create_watchdog(w.name)
        for forwarder in w.forwarders:
            service.set_trusted_forwarder(w.owner, forwarder, True)
        if w.initial_deposit > 0:
            service.deposit(w.owner, w.initial_deposit)

    def _bootstrap_manager(self, m: ManagerConfig) -> None:
        model = create_manager_record(
            self._session,
            name=m.name,
            kind=ManagerKind(m.kind),
            owner=m.owner,
            address=m.address,
            relay=m.relay,
            upstream_source=m.upstream_source,
            watchdog_name=m.watchdog,
            entities_per_job=m.entities_per_job,
            cancel_buffer=m.cancel_buffer,
            batch_size=m.batch_size,
            interval_seconds=m.interval_seconds,
            gas_limit=m.gas_limit,
            fund_amount=m.fund_amount,
            excluded_categories=m.excluded_categories,
        )
        service = self.create_manager_service(m.name)
        for forwarder in m.forwarders:
            service.set_trusted_forwarder(m.owner, forwarder, True)
        if m.initial_deposit > Decimal("0"):
            service.deposit(m.owner, m.initial_deposit)
        if m.watchdog is not None:
            watchdog = self.create_watchdog(m.watchdog)
            watchdog.grant_watch_list_manager(watchdog.model().owner, model.address)
