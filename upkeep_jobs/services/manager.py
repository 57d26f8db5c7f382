"""
UpkeepManagerService -- membership lifecycle of entities and their jobs.

Contract:
    Owns one manager's entity list and jobs.
    - ``register()`` / ``deregister()`` bulk membership changes (owner or relay).
    - ``handle_external_event()`` relay-only event path; ``check_event()`` and
      ``perform_action()`` are the split check/perform form of the same path.
    - ``withdraw_cancelled()`` reclaims cancelled jobs past finality and
      reassigns their surviving entities.
    - Owner setters, funding deposit/withdrawal and paginated reads.

Architecture: upkeep_jobs/services.  Talks to the job registry through
    ``JobRegistryClient`` and to the funding watchdog through
    ``WatchListSink``; never imports upkeep_funding.

Invariants enforced:
    - Index stability: slots are appended, overwritten with a placeholder on
      removal, and never shifted.  A slot's owning job never changes.
    - Assignment is append-to-open-job: only the most recently created job
      can grow, and only while active and below ``entities_per_job``.
    - Ranges of non-withdrawn jobs are contiguous and non-overlapping.
    - A job is cancelled once its active count reaches zero or its
      cumulative removals exceed ``cancel_buffer``.
    - Every public entry point is atomic (``upkeep_kernel.db.engine.atomic``).

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT drive the batch cursor -- that is BatchWorker's job.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, ClassVar, Iterable, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from upkeep_kernel.db.engine import atomic
from upkeep_kernel.domain.clock import Clock, SystemClock
from upkeep_kernel.exceptions import (
    DuplicateComponentError,
    EntityNotFoundError,
    IndexOutOfRangeError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidBatchSizeError,
    JobNotFoundError,
    JobNotWithdrawableError,
    ManagerNotFoundError,
)
from upkeep_kernel.logging_config import LogContext, get_logger
from upkeep_kernel.registry.client import JobRegistryClient
from upkeep_kernel.services.access_control import FORWARDER, AccessControl
from upkeep_kernel.services.event_recorder import EventRecorder

from upkeep_jobs.domain.actions import decode_event
from upkeep_jobs.domain.schedule import next_boundary
from upkeep_jobs.domain.types import (
    ActionKind,
    DomainEvent,
    Entity,
    JobState,
    ManagerKind,
    MembershipAction,
    MembershipResult,
    UpkeepJob,
    WithdrawResult,
)
from upkeep_jobs.models.upkeep import (
    EntitySlotModel,
    UpkeepJobModel,
    UpkeepManagerModel,
)

logger = get_logger("jobs.manager")


class WatchListSink(Protocol):
    """The part of the funding watchdog a manager needs."""

    def add_to_watch_list(self, caller: str, job_id: int) -> bool: ...

    def remove_from_watch_list(self, caller: str, job_id: int) -> bool: ...


def manager_scope(name: str) -> str:
    return f"manager:{name}"


def create_manager_record(
    session: Session,
    *,
    name: str,
    kind: ManagerKind,
    owner: str,
    address: str | None = None,
    relay: str | None = None,
    upstream_source: str | None = None,
    watchdog_name: str | None = None,
    entities_per_job: int = 100,
    cancel_buffer: int = 20,
    batch_size: int = 5,
    interval_seconds: int = 604800,
    gas_limit: int = 500000,
    fund_amount: Decimal = Decimal("0.1"),
    excluded_categories: Iterable[str] = (),
) -> UpkeepManagerModel:
    """Insert a manager row.

    Raises:
        DuplicateComponentError: If a manager with ``name`` exists.
        InvalidBatchSizeError: If ``batch_size`` is outside 1..entities_per_job.
    """
    existing = session.execute(
        select(UpkeepManagerModel.id).where(UpkeepManagerModel.name == name)
    ).first()
    if existing is not None:
        raise DuplicateComponentError("manager", name)
    if not 0 < batch_size <= entities_per_job:
        raise InvalidBatchSizeError(batch_size, entities_per_job)

    model = UpkeepManagerModel(
        name=name,
        kind=kind.value,
        address=address or manager_scope(name),
        owner=owner,
        relay=relay,
        upstream_source=upstream_source,
        watchdog_name=watchdog_name,
        entities_per_job=entities_per_job,
        cancel_buffer=cancel_buffer,
        batch_size=batch_size,
        interval_seconds=interval_seconds,
        gas_limit=gas_limit,
        fund_amount=fund_amount,
        funding_balance=Decimal("0"),
        excluded_categories=sorted(set(excluded_categories)),
        entity_list_length=0,
        next_job_seq=1,
        next_cancel_seq=1,
        created_by=owner,
    )
    session.add(model)
    session.flush()
    logger.info(
        "manager_created",
        extra={"manager": name, "kind": kind.value, "owner": owner},
    )
    return model


class UpkeepManagerService:
    """Membership lifecycle manager shared by all entity/action variants.

    Subclasses set ``kind`` and ``action_name`` and may override
    ``_ineligibility()``, ``_on_action()`` and ``on_cycle_complete()``.
    """

    kind: ClassVar[ManagerKind]
    action_name: ClassVar[str]

    def __init__(
        self,
        session: Session,
        manager_name: str,
        registry: JobRegistryClient,
        clock: Clock | None = None,
        watch_list_resolver: Callable[[str], WatchListSink] | None = None,
        events: EventRecorder | None = None,
    ):
        self._session = session
        self._name = manager_name
        self._registry = registry
        self._clock = clock or SystemClock()
        self._resolve_watch_list = watch_list_resolver
        self._events = events or EventRecorder(session, self._clock)
        self._access = AccessControl(session, manager_scope(manager_name))

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def scope(self) -> str:
        return self._access.scope

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def events(self) -> EventRecorder:
        return self._events

    @property
    def access(self) -> AccessControl:
        return self._access

    def model(self) -> UpkeepManagerModel:
        """Load the manager row.

        Raises:
            ManagerNotFoundError: If the manager was never created.
        """
        model = self._session.execute(
            select(UpkeepManagerModel).where(UpkeepManagerModel.name == self._name)
        ).scalar_one_or_none()
        if model is None:
            raise ManagerNotFoundError(self._name)
        return model

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def register(self, caller: str, entities: Iterable[Entity | str]) -> MembershipResult:
        """Register entities, opening and funding jobs as needed.

        Duplicates are no-ops; ineligible entities are rejected per entity.

        Raises:
            UnauthorizedCallerError: Caller is neither owner nor relay.
            InsufficientFundsError: A new job cannot be funded.
        """
        with LogContext.bind(manager=self._name, actor=caller), atomic(self._session):
            m = self.model()
            self._require_owner_or_relay(m, caller)
            return self._register(m, [_as_entity(e) for e in entities], caller)

    def deregister(self, caller: str, entities: Iterable[Entity | str]) -> MembershipResult:
        """Deregister entities, cancelling jobs that cross the threshold.

        Raises:
            UnauthorizedCallerError: Caller is neither owner nor relay.
        """
        with LogContext.bind(manager=self._name, actor=caller), atomic(self._session):
            m = self.model()
            self._require_owner_or_relay(m, caller)
            return self._deregister(m, [_as_entity(e).address for e in entities], caller)

    def check_event(self, event: DomainEvent) -> tuple[bool, MembershipAction | None]:
        """Pure read: would ``event`` change membership?"""
        m = self.model()
        action = decode_event(self.kind, event, m.upstream_source)
        if action is None:
            return False, None
        active = self._active_slot(m, action.entity) is not None
        if action.kind is ActionKind.REGISTER:
            entity = Entity(action.entity, action.category)
            if active or self._ineligibility(m, entity, pending=action) is not None:
                return False, None
        elif not active:
            return False, None
        return True, action

    def handle_external_event(
        self, caller: str, event: DomainEvent,
    ) -> MembershipResult | None:
        """Relay-only: decode ``event`` and apply it.

        Events from a foreign source, with an unknown signature, or naming
        an excluded category are ignored and return None.

        Raises:
            UnauthorizedCallerError: Caller is not the relay.
        """
        with LogContext.bind(manager=self._name, actor=caller), atomic(self._session):
            m = self.model()
            self._access.require_address(m.relay, caller, "relay")
            action = decode_event(self.kind, event, m.upstream_source)
            if action is None:
                logger.debug(
                    "external_event_ignored",
                    extra={"source": event.source, "signature": event.signature},
                )
                return None
            if (
                action.kind is ActionKind.REGISTER
                and action.category is not None
                and action.category in (m.excluded_categories or [])
            ):
                logger.info(
                    "external_event_excluded",
                    extra={"entity": action.entity, "category": action.category},
                )
                return None
            return self._apply(m, action, caller)

    def perform_action(self, caller: str, action: MembershipAction) -> MembershipResult:
        """Forwarder-only perform half of the check/perform event path.

        Raises:
            UnauthorizedCallerError: Caller is not a trusted forwarder.
        """
        with LogContext.bind(manager=self._name, actor=caller), atomic(self._session):
            self._access.require_role(FORWARDER, caller)
            return self._apply(self.model(), action, caller)

    def withdraw_cancelled(self, caller: str, offset: int, count: int) -> WithdrawResult:
        """Withdraw cancelled jobs in ``[offset, offset + count)`` of the cancelled list.

        Jobs whose finality delay has not elapsed are skipped.  Reclaimed
        funds are credited to the manager; entities still active in a
        withdrawn job's range are re-appended to the open (or a new) job.
        """
        with LogContext.bind(manager=self._name, actor=caller), atomic(self._session):
            m = self.model()
            jobs = self._session.execute(
                select(UpkeepJobModel)
                .where(
                    UpkeepJobModel.manager_id == m.id,
                    UpkeepJobModel.state == JobState.CANCELLED.value,
                )
                .order_by(UpkeepJobModel.cancel_seq)
                .offset(max(offset, 0))
                .limit(max(count, 0))
            ).scalars().all()

            withdrawn: list[int] = []
            not_ready: list[int] = []
            reassigned: list[str] = []
            opened: list[int] = []
            reclaimed = Decimal("0")

            for job in jobs:
                try:
                    with self._session.begin_nested():
                        amount = self._registry.withdraw(job.job_id)
                except JobNotWithdrawableError as exc:
                    not_ready.append(job.job_id)
                    logger.info(
                        "job_withdraw_not_ready",
                        extra={"job_id": job.job_id, "reason": exc.reason},
                    )
                    continue

                m.funding_balance = m.funding_balance + amount
                reclaimed += amount
                job.state = JobState.WITHDRAWN.value
                job.withdrawn_ts = self._clock.timestamp()
                self._session.flush()
                withdrawn.append(job.job_id)
                self._events.emit(
                    self.scope, "job_withdrawn", actor=caller,
                    job_id=job.job_id, amount=amount,
                )

                moved, new_jobs = self._reassign_survivors(m, job, caller)
                reassigned.extend(moved)
                opened.extend(new_jobs)

            return WithdrawResult(
                withdrawn=tuple(withdrawn),
                not_ready=tuple(not_ready),
                reclaimed=reclaimed,
                reassigned=tuple(reassigned),
                jobs_opened=tuple(opened),
            )

    # -------------------------------------------------------------------------
    # Owner administration
    # -------------------------------------------------------------------------

    def set_new_job_gas_limit(self, caller: str, gas_limit: int) -> None:
        with atomic(self._session):
            m = self._owned(caller)
            if gas_limit <= 0:
                raise InvalidAmountError(Decimal(gas_limit))
            m.gas_limit = gas_limit
            self._events.emit(self.scope, "new_job_gas_limit_set", actor=caller, gas_limit=gas_limit)

    def set_new_job_fund_amount(self, caller: str, amount: Decimal) -> None:
        with atomic(self._session):
            m = self._owned(caller)
            if amount <= 0:
                raise InvalidAmountError(amount)
            m.fund_amount = amount
            self._events.emit(self.scope, "new_job_fund_amount_set", actor=caller, amount=amount)

    def set_trusted_forwarder(self, caller: str, address: str, allowed: bool) -> None:
        with atomic(self._session):
            self._owned(caller)
            if self._access.set_role(FORWARDER, address, allowed, caller):
                self._events.emit(
                    self.scope, "trusted_forwarder_set", actor=caller,
                    forwarder=address, allowed=allowed,
                )

    def set_relay(self, caller: str, relay: str | None) -> None:
        with atomic(self._session):
            m = self._owned(caller)
            m.relay = relay
            self._events.emit(self.scope, "relay_set", actor=caller, relay=relay)

    def set_upstream_source(self, caller: str, source: str | None) -> None:
        with atomic(self._session):
            m = self._owned(caller)
            m.upstream_source = source
            self._events.emit(self.scope, "upstream_source_set", actor=caller, source=source)

    def set_excluded_category(self, caller: str, category: str, excluded: bool) -> None:
        with atomic(self._session):
            m = self._owned(caller)
            current = set(m.excluded_categories or [])
            if excluded:
                current.add(category)
            else:
                current.discard(category)
            m.excluded_categories = sorted(current)
            self._events.emit(
                self.scope, "excluded_category_set", actor=caller,
                category=category, excluded=excluded,
            )

    def set_job_interval(self, caller: str, interval_seconds: int) -> None:
        """Change the pass interval.  Passes already in flight keep theirs."""
        with atomic(self._session):
            m = self._owned(caller)
            if interval_seconds <= 0:
                raise InvalidAmountError(Decimal(interval_seconds))
            m.interval_seconds = interval_seconds
            self._events.emit(
                self.scope, "job_interval_set", actor=caller, interval_seconds=interval_seconds,
            )

    def set_watchdog(self, caller: str, watchdog_name: str | None) -> None:
        with atomic(self._session):
            m = self._owned(caller)
            m.watchdog_name = watchdog_name
            self._events.emit(self.scope, "watchdog_set", actor=caller, watchdog=watchdog_name)

    def deposit(self, caller: str, amount: Decimal) -> Decimal:
        """Transfer funding tokens to the manager.  Returns the new balance."""
        with atomic(self._session):
            if amount <= 0:
                raise InvalidAmountError(amount)
            m = self.model()
            m.funding_balance = m.funding_balance + amount
            self._session.flush()
            logger.info(
                "manager_funded",
                extra={"manager": self._name, "amount": amount, "sender": caller},
            )
            return m.funding_balance

    def withdraw_funding_balance(self, caller: str, to: str) -> Decimal:
        """Owner-only: send the whole funding balance to ``to``."""
        with atomic(self._session):
            m = self._owned(caller)
            amount = m.funding_balance
            m.funding_balance = Decimal("0")
            self._events.emit(
                self.scope, "funding_balance_withdrawn", actor=caller,
                recipient=to, amount=amount,
            )
            return amount

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def entity_count(self) -> int:
        m = self.model()
        return self._session.execute(
            select(func.count(EntitySlotModel.id)).where(
                EntitySlotModel.manager_id == m.id,
                EntitySlotModel.address.is_not(None),
            )
        ).scalar_one()

    def entity_list_length(self) -> int:
        return self.model().entity_list_length

    def entity_list(self, start: int, end: int) -> tuple[str, ...]:
        """Active entities among slots ``[start, end)``, in index order."""
        m = self.model()
        return tuple(
            self._session.execute(
                select(EntitySlotModel.address)
                .where(
                    EntitySlotModel.manager_id == m.id,
                    EntitySlotModel.slot_index >= start,
                    EntitySlotModel.slot_index < end,
                    EntitySlotModel.address.is_not(None),
                )
                .order_by(EntitySlotModel.slot_index)
            ).scalars().all()
        )

    def entity_at(self, index: int) -> str:
        """Raises IndexOutOfRangeError past the end, EntityNotFoundError on a placeholder."""
        m = self.model()
        if not 0 <= index < m.entity_list_length:
            raise IndexOutOfRangeError(index, m.entity_list_length)
        slot = self._slot(m, index)
        if slot is None or slot.address is None:
            raise EntityNotFoundError(index)
        return slot.address

    def index_of(self, entity: str) -> int | None:
        slot = self._active_slot(self.model(), entity)
        return None if slot is None else slot.slot_index

    def is_active(self, entity: str) -> bool:
        return self._active_slot(self.model(), entity) is not None

    def job_count(self) -> int:
        """Number of active jobs."""
        m = self.model()
        return self._session.execute(
            select(func.count(UpkeepJobModel.id)).where(
                UpkeepJobModel.manager_id == m.id,
                UpkeepJobModel.state == JobState.ACTIVE.value,
            )
        ).scalar_one()

    def active_job_ids(self) -> tuple[int, ...]:
        m = self.model()
        return tuple(
            self._session.execute(
                select(UpkeepJobModel.job_id)
                .where(
                    UpkeepJobModel.manager_id == m.id,
                    UpkeepJobModel.state == JobState.ACTIVE.value,
                )
                .order_by(UpkeepJobModel.seq)
            ).scalars().all()
        )

    def job_id_at(self, index: int) -> int:
        ids = self.active_job_ids()
        if not 0 <= index < len(ids):
            raise IndexOutOfRangeError(index, len(ids))
        return ids[index]

    def cancelled_job_ids(self, offset: int = 0, count: int | None = None) -> tuple[int, ...]:
        m = self.model()
        stmt = (
            select(UpkeepJobModel.job_id)
            .where(
                UpkeepJobModel.manager_id == m.id,
                UpkeepJobModel.state == JobState.CANCELLED.value,
            )
            .order_by(UpkeepJobModel.cancel_seq)
            .offset(max(offset, 0))
        )
        if count is not None:
            stmt = stmt.limit(max(count, 0))
        return tuple(self._session.execute(stmt).scalars().all())

    def cancelled_job_count(self) -> int:
        m = self.model()
        return self._session.execute(
            select(func.count(UpkeepJobModel.id)).where(
                UpkeepJobModel.manager_id == m.id,
                UpkeepJobModel.state == JobState.CANCELLED.value,
            )
        ).scalar_one()

    def get_job(self, job_id: int) -> UpkeepJob:
        return self.job_model(job_id).to_dto(self._name)

    def jobs(self) -> tuple[UpkeepJob, ...]:
        m = self.model()
        rows = self._session.execute(
            select(UpkeepJobModel)
            .where(UpkeepJobModel.manager_id == m.id)
            .order_by(UpkeepJobModel.seq)
        ).scalars().all()
        return tuple(r.to_dto(self._name) for r in rows)

    def funding_balance(self) -> Decimal:
        return self.model().funding_balance

    def job_model(self, job_id: int) -> UpkeepJobModel:
        """Raises JobNotFoundError if this manager has no such job."""
        m = self.model()
        job = self._session.execute(
            select(UpkeepJobModel).where(
                UpkeepJobModel.manager_id == m.id,
                UpkeepJobModel.job_id == job_id,
            )
        ).scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    # -------------------------------------------------------------------------
    # Batch worker hooks
    # -------------------------------------------------------------------------

    def on_cycle_complete(self, m: UpkeepManagerModel, job: UpkeepJobModel) -> None:
        """Called by the worker when ``job``'s cursor wraps."""

    # -------------------------------------------------------------------------
    # Variant hooks
    # -------------------------------------------------------------------------

    def _ineligibility(
        self,
        m: UpkeepManagerModel,
        entity: Entity,
        pending: MembershipAction | None = None,
    ) -> str | None:
        """Reason ``entity`` may not be registered, or None if eligible."""
        if entity.category is not None and entity.category in (m.excluded_categories or []):
            return "excluded_category"
        return None

    def _on_action(self, m: UpkeepManagerModel, action: MembershipAction, actor: str) -> None:
        """Side effects of an event-driven action before it is applied."""

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _owned(self, caller: str) -> UpkeepManagerModel:
        m = self.model()
        self._access.require_owner(m.owner, caller)
        return m

    def _require_owner_or_relay(self, m: UpkeepManagerModel, caller: str) -> None:
        if caller == m.owner:
            return
        self._access.require_address(m.relay, caller, "owner or relay")

    def _apply(
        self, m: UpkeepManagerModel, action: MembershipAction, actor: str,
    ) -> MembershipResult:
        self._on_action(m, action, actor)
        if action.kind is ActionKind.REGISTER:
            return self._register(m, [Entity(action.entity, action.category)], actor)
        return self._deregister(m, [action.entity], actor)

    def _register(
        self, m: UpkeepManagerModel, entities: list[Entity], actor: str,
    ) -> MembershipResult:
        registered: list[str] = []
        already: list[str] = []
        rejected: list[tuple[str, str]] = []
        opened: list[int] = []

        for entity in entities:
            reason = self._ineligibility(m, entity)
            if reason is not None:
                rejected.append((entity.address, reason))
                self._events.emit(
                    self.scope, "entity_rejected", actor=actor,
                    entity=entity.address, reason=reason,
                )
                continue
            if self._active_slot(m, entity.address) is not None:
                already.append(entity.address)
                continue

            slot, new_job = self._assign(m, entity, actor)
            if new_job is not None:
                opened.append(new_job)
            registered.append(entity.address)
            self._events.emit(
                self.scope, "entity_registered", actor=actor,
                entity=entity.address, index=slot.slot_index, job_id=slot.job_id,
            )

        return MembershipResult(
            registered=tuple(registered),
            already_active=tuple(already),
            rejected=tuple(rejected),
            jobs_opened=tuple(opened),
        )

    def _deregister(
        self, m: UpkeepManagerModel, addresses: list[str], actor: str,
    ) -> MembershipResult:
        removed: list[str] = []
        missing: list[str] = []
        cancelled: list[int] = []

        for address in addresses:
            slot = self._active_slot(m, address)
            if slot is None:
                missing.append(address)
                continue

            job = self.job_model(slot.job_id)
            slot.address = None
            slot.category = None
            job.active_count -= 1
            job.cancel_count += 1
            self._session.flush()

            if job.state == JobState.ACTIVE.value and (
                job.active_count <= 0 or job.cancel_count > m.cancel_buffer
            ):
                self._cancel_job(m, job, actor)
                cancelled.append(job.job_id)

            removed.append(address)
            self._events.emit(
                self.scope, "entity_deregistered", actor=actor,
                entity=address, index=slot.slot_index, job_id=job.job_id,
            )

        return MembershipResult(
            deregistered=tuple(removed),
            not_found=tuple(missing),
            jobs_cancelled=tuple(cancelled),
        )

    def _assign(
        self, m: UpkeepManagerModel, entity: Entity, actor: str,
    ) -> tuple[EntitySlotModel, int | None]:
        """Append ``entity`` and attach it to the open job (opening one if needed)."""
        job = self._open_job(m)
        new_job_id: int | None = None
        if job is None:
            job = self._open_new_job(m, actor)
            new_job_id = job.job_id

        index = m.entity_list_length
        slot = EntitySlotModel(
            manager_id=m.id,
            slot_index=index,
            address=entity.address,
            category=entity.category,
            job_id=job.job_id,
            created_by=actor,
        )
        self._session.add(slot)
        m.entity_list_length = index + 1
        job.end_index = index + 1
        job.active_count += 1
        self._session.flush()
        return slot, new_job_id

    def _open_job(self, m: UpkeepManagerModel) -> UpkeepJobModel | None:
        last = self._session.execute(
            select(UpkeepJobModel)
            .where(UpkeepJobModel.manager_id == m.id)
            .order_by(UpkeepJobModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        if last is None or last.state != JobState.ACTIVE.value:
            return None
        if last.end_index != m.entity_list_length:
            return None
        if last.end_index - last.start_index >= m.entities_per_job:
            return None
        return last

    def _open_new_job(self, m: UpkeepManagerModel, actor: str) -> UpkeepJobModel:
        if m.funding_balance < m.fund_amount:
            raise InsufficientFundsError(m.address, m.fund_amount, m.funding_balance)
        m.funding_balance = m.funding_balance - m.fund_amount

        seq = m.next_job_seq
        job_id = self._registry.register(f"{m.name}#{seq}", m.gas_limit, m.fund_amount)
        now = self._clock.timestamp()
        start = m.entity_list_length
        job = UpkeepJobModel(
            manager_id=m.id,
            job_id=job_id,
            seq=seq,
            start_index=start,
            end_index=start,
            state=JobState.ACTIVE.value,
            current_index=start,
            cancel_count=0,
            active_count=0,
            next_due_ts=next_boundary(now, m.interval_seconds),
            created_by=actor,
        )
        self._session.add(job)
        m.next_job_seq = seq + 1
        self._session.flush()

        sink = self._watch_list(m)
        if sink is not None:
            sink.add_to_watch_list(m.address, job_id)

        self._events.emit(
            self.scope, "job_registered", actor=actor,
            job_id=job_id, start_index=start, gas_limit=m.gas_limit,
            fund_amount=m.fund_amount,
        )
        return job

    def _cancel_job(self, m: UpkeepManagerModel, job: UpkeepJobModel, actor: str) -> None:
        self._registry.cancel(job.job_id)
        job.state = JobState.CANCELLED.value
        job.cancelled_ts = self._clock.timestamp()
        job.cancel_seq = m.next_cancel_seq
        m.next_cancel_seq = m.next_cancel_seq + 1
        self._session.flush()

        sink = self._watch_list(m)
        if sink is not None:
            sink.remove_from_watch_list(m.address, job.job_id)

        self._events.emit(
            self.scope, "job_cancelled", actor=actor,
            job_id=job.job_id, active_remaining=job.active_count,
            removals=job.cancel_count,
        )

    def _reassign_survivors(
        self, m: UpkeepManagerModel, job: UpkeepJobModel, actor: str,
    ) -> tuple[list[str], list[int]]:
        survivors = self._session.execute(
            select(EntitySlotModel)
            .where(
                EntitySlotModel.manager_id == m.id,
                EntitySlotModel.job_id == job.job_id,
                EntitySlotModel.address.is_not(None),
            )
            .order_by(EntitySlotModel.slot_index)
        ).scalars().all()

        moved: list[str] = []
        opened: list[int] = []
        for old in survivors:
            entity = Entity(old.address, old.category)
            old_index = old.slot_index
            old.address = None
            old.category = None
            job.active_count -= 1
            self._session.flush()

            slot, new_job = self._assign(m, entity, actor)
            if new_job is not None:
                opened.append(new_job)
            moved.append(entity.address)
            self._events.emit(
                self.scope, "entity_reassigned", actor=actor,
                entity=entity.address, from_index=old_index,
                to_index=slot.slot_index, job_id=slot.job_id,
            )
        return moved, opened

    def _active_slot(self, m: UpkeepManagerModel, address: str) -> EntitySlotModel | None:
        return self._session.execute(
            select(EntitySlotModel).where(
                EntitySlotModel.manager_id == m.id,
                EntitySlotModel.address == address,
            )
        ).scalar_one_or_none()

    def _slot(self, m: UpkeepManagerModel, index: int) -> EntitySlotModel | None:
        return self._session.execute(
            select(EntitySlotModel).where(
                EntitySlotModel.manager_id == m.id,
                EntitySlotModel.slot_index == index,
            )
        ).scalar_one_or_none()

    def _watch_list(self, m: UpkeepManagerModel) -> WatchListSink | None:
        if self._resolve_watch_list is None or m.watchdog_name is None:
            return None
        return self._resolve_watch_list(m.watchdog_name)


def _as_entity(value: Entity | str) -> Entity:
    if isinstance(value, Entity):
        return value
    return Entity(str(value))
