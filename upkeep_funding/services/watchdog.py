"""
FundingWatchdogService -- watch-list upkeep and registry top-ups.

Contract:
    - ``add_to_watch_list()`` / ``add_multiple()`` / ``remove_from_watch_list()``
      are idempotent and restricted to the owner or a granted
      ``watchlist_manager`` (managers are granted that role).
    - ``check_underfunded()`` is a pure read over a rotating window of the
      watch-list starting at ``signal.current() % length``.
    - ``perform_top_up()`` (trusted forwarder only) re-validates every entry
      and funds it from the watchdog balance inside its own SAVEPOINT.

Architecture: upkeep_funding/services.  Policy math lives in
    upkeep_funding.domain.policy; balances come from the JobRegistryClient.

Invariants enforced:
    - Watch-list positions stay dense: removal swaps the last entry into
      the freed position.
    - The cumulative amount proposed by one scan never exceeds the
      watchdog balance.
    - A failed top-up entry is rolled back alone and reported as
      ``top_up_failed``; the rest of the batch proceeds.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from upkeep_kernel.db.engine import atomic
from upkeep_kernel.domain.clock import Clock, SystemClock
from upkeep_kernel.domain.signal import ScanSignal
from upkeep_kernel.exceptions import (
    DuplicateComponentError,
    IndexOutOfRangeError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidPerformDataError,
    WatchdogNotFoundError,
)
from upkeep_kernel.logging_config import LogContext, get_logger
from upkeep_kernel.registry.client import JobRegistryClient
from upkeep_kernel.services.access_control import (
    FORWARDER,
    WATCHLIST_MANAGER,
    AccessControl,
)
from upkeep_kernel.services.event_recorder import EventRecorder

from upkeep_funding.domain.policy import (
    is_underfunded,
    scan_indices,
    top_up_amount,
    validate_params,
)
from upkeep_funding.domain.types import (
    TopUpOutcome,
    TopUpResult,
    UnderfundedScan,
    WatchdogParams,
)
from upkeep_funding.models.watchdog import FundingWatchdogModel, WatchListEntryModel

logger = get_logger("funding.watchdog")


def watchdog_scope(name: str) -> str:
    return f"watchdog:{name}"


def create_watchdog_record(
    session: Session,
    *,
    name: str,
    owner: str,
    address: str | None = None,
    params: WatchdogParams | None = None,
) -> FundingWatchdogModel:
    """Insert a watchdog row.

    Raises:
        DuplicateComponentError: If a watchdog with ``name`` exists.
        InvalidFundingConfigError: If ``params`` are inconsistent.
    """
    params = params or WatchdogParams()
    validate_params(params)
    existing = session.execute(
        select(FundingWatchdogModel.id).where(FundingWatchdogModel.name == name)
    ).first()
    if existing is not None:
        raise DuplicateComponentError("watchdog", name)

    model = FundingWatchdogModel(
        name=name,
        address=address or watchdog_scope(name),
        owner=owner,
        balance=Decimal("0"),
        max_batch_size=params.max_batch_size,
        min_percentage=params.min_percentage,
        target_percentage=params.target_percentage,
        max_top_up_amount=params.max_top_up_amount,
        max_iterations=params.max_iterations,
        created_by=owner,
    )
    session.add(model)
    session.flush()
    logger.info("watchdog_created", extra={"watchdog": name, "owner": owner})
    return model


class FundingWatchdogService:
    """Watch-list maintenance and top-ups for one watchdog."""

    def __init__(
        self,
        session: Session,
        watchdog_name: str,
        registry: JobRegistryClient,
        signal: ScanSignal,
        clock: Clock | None = None,
        events: EventRecorder | None = None,
    ):
        self._session = session
        self._name = watchdog_name
        self._registry = registry
        self._signal = signal
        self._clock = clock or SystemClock()
        self._events = events or EventRecorder(session, self._clock)
        self._access = AccessControl(session, watchdog_scope(watchdog_name))

    @property
    def name(self) -> str:
        return self._name

    @property
    def scope(self) -> str:
        return self._access.scope

    @property
    def access(self) -> AccessControl:
        return self._access

    @property
    def events(self) -> EventRecorder:
        return self._events

    def model(self) -> FundingWatchdogModel:
        """Raises WatchdogNotFoundError if the watchdog was never created."""
        model = self._session.execute(
            select(FundingWatchdogModel).where(FundingWatchdogModel.name == self._name)
        ).scalar_one_or_none()
        if model is None:
            raise WatchdogNotFoundError(self._name)
        return model

    # -------------------------------------------------------------------------
    # Watch-list
    # -------------------------------------------------------------------------

    def add_to_watch_list(self, caller: str, job_id: int) -> bool:
        """Returns False when ``job_id`` was already watched."""
        with atomic(self._session):
            w = self.model()
            self._access.require_role(WATCHLIST_MANAGER, caller, owner=w.owner)
            return self._add(w, job_id, caller)

    def add_multiple(self, caller: str, job_ids: Iterable[int]) -> tuple[int, ...]:
        """Add several job ids; returns the ones that were new."""
        with atomic(self._session):
            w = self.model()
            self._access.require_role(WATCHLIST_MANAGER, caller, owner=w.owner)
            return tuple(j for j in job_ids if self._add(w, j, caller))

    def remove_from_watch_list(self, caller: str, job_id: int) -> bool:
        """Swap-with-last removal.  Returns False when ``job_id`` was not watched."""
        with atomic(self._session):
            w = self.model()
            self._access.require_role(WATCHLIST_MANAGER, caller, owner=w.owner)
            entry = self._entry_for(w, job_id)
            if entry is None:
                return False

            position = entry.position
            last = self._session.execute(
                select(WatchListEntryModel)
                .where(WatchListEntryModel.watchdog_id == w.id)
                .order_by(WatchListEntryModel.position.desc())
                .limit(1)
            ).scalar_one()
            self._session.delete(entry)
            self._session.flush()
            if last.job_id != job_id:
                last.position = position
                self._session.flush()

            self._events.emit(
                self.scope, "watch_list_removed", actor=caller,
                job_id=job_id, position=position,
            )
            return True

    def grant_watch_list_manager(self, caller: str, address: str) -> bool:
        with atomic(self._session):
            w = self.model()
            self._access.require_owner(w.owner, caller)
            changed = self._access.set_role(WATCHLIST_MANAGER, address, True, caller)
            if changed:
                self._events.emit(
                    self.scope, "watch_list_manager_granted", actor=caller, address=address,
                )
            return changed

    def revoke_watch_list_manager(self, caller: str, address: str) -> bool:
        with atomic(self._session):
            w = self.model()
            self._access.require_owner(w.owner, caller)
            changed = self._access.set_role(WATCHLIST_MANAGER, address, False, caller)
            if changed:
                self._events.emit(
                    self.scope, "watch_list_manager_revoked", actor=caller, address=address,
                )
            return changed

    # -------------------------------------------------------------------------
    # Check / perform
    # -------------------------------------------------------------------------

    def check_underfunded(self) -> UnderfundedScan:
        """Pure read: which watched jobs need funds, and how much."""
        w = self.model()
        watched = self.get_watch_list()
        if not watched:
            return UnderfundedScan()

        job_ids: list[int] = []
        amounts: list[Decimal] = []
        committed = Decimal("0")
        for position in scan_indices(self._signal.current(), len(watched), w.max_iterations):
            job_id = watched[position]
            balance = self._registry.get_balance(job_id)
            min_balance = self._registry.get_min_balance(job_id)
            if not is_underfunded(balance, min_balance, w.min_percentage):
                continue
            amount = top_up_amount(
                balance, min_balance, w.target_percentage, w.max_top_up_amount,
            )
            if amount <= 0:
                continue
            if committed + amount > w.balance:
                break
            job_ids.append(job_id)
            amounts.append(amount)
            committed += amount
            if len(job_ids) >= w.max_batch_size:
                break

        return UnderfundedScan(job_ids=tuple(job_ids), amounts=tuple(amounts))

    def perform_top_up(
        self,
        caller: str,
        job_ids: Sequence[int],
        amounts: Sequence[Decimal],
    ) -> TopUpResult:
        """Fund each listed job, re-validating it first.

        Raises:
            UnauthorizedCallerError: Caller is not a trusted forwarder.
            InvalidPerformDataError: ``job_ids`` and ``amounts`` differ in length.
        """
        with LogContext.bind(actor=caller), atomic(self._session):
            w = self.model()
            self._access.require_role(FORWARDER, caller)
            if len(job_ids) != len(amounts):
                raise InvalidPerformDataError(
                    f"{len(job_ids)} job ids but {len(amounts)} amounts"
                )

            outcomes: list[TopUpOutcome] = []
            for job_id, amount in zip(job_ids, amounts):
                amount = Decimal(amount)
                savepoint = self._session.begin_nested()
                try:
                    reason = self._top_up(w, job_id, amount)
                except Exception as exc:
                    savepoint.rollback()
                    logger.warning(
                        "top_up_exception",
                        extra={"job_id": job_id, "amount": amount},
                        exc_info=True,
                    )
                    reason = getattr(exc, "code", "UNHANDLED_EXCEPTION")
                else:
                    if reason is None:
                        savepoint.commit()
                    else:
                        savepoint.rollback()

                if reason is None:
                    outcomes.append(TopUpOutcome(job_id, amount, True))
                    self._events.emit(
                        self.scope, "top_up_succeeded", actor=caller,
                        job_id=job_id, amount=amount,
                    )
                else:
                    outcomes.append(TopUpOutcome(job_id, amount, False, reason))
                    self._events.emit(
                        self.scope, "top_up_failed", actor=caller,
                        job_id=job_id, amount=amount, reason=reason,
                    )

            return TopUpResult(outcomes=tuple(outcomes))

    # -------------------------------------------------------------------------
    # Owner administration and funding
    # -------------------------------------------------------------------------

    def deposit(self, caller: str, amount: Decimal) -> Decimal:
        """Transfer funding tokens to the watchdog.  Returns the new balance."""
        with atomic(self._session):
            if amount <= 0:
                raise InvalidAmountError(amount)
            w = self.model()
            w.balance = w.balance + amount
            self._session.flush()
            logger.info(
                "watchdog_funded",
                extra={"watchdog": self._name, "amount": amount, "sender": caller},
            )
            return w.balance

    def withdraw(self, caller: str, amount: Decimal, to: str) -> Decimal:
        """Owner-only.  Returns the remaining balance.

        Raises:
            InsufficientFundsError: ``amount`` exceeds the balance.
        """
        with atomic(self._session):
            w = self.model()
            self._access.require_owner(w.owner, caller)
            if amount <= 0:
                raise InvalidAmountError(amount)
            if amount > w.balance:
                raise InsufficientFundsError(w.address, amount, w.balance)
            w.balance = w.balance - amount
            self._session.flush()
            self._events.emit(
                self.scope, "funds_withdrawn", actor=caller, amount=amount, recipient=to,
            )
            return w.balance

    def set_config(self, caller: str, params: WatchdogParams) -> None:
        """Owner-only.  Raises InvalidFundingConfigError on bad values."""
        with atomic(self._session):
            w = self.model()
            self._access.require_owner(w.owner, caller)
            validate_params(params)
            w.max_batch_size = params.max_batch_size
            w.min_percentage = params.min_percentage
            w.target_percentage = params.target_percentage
            w.max_top_up_amount = params.max_top_up_amount
            w.max_iterations = params.max_iterations
            self._session.flush()
            self._events.emit(
                self.scope, "config_set", actor=caller,
                max_batch_size=params.max_batch_size,
                min_percentage=params.min_percentage,
                target_percentage=params.target_percentage,
                max_top_up_amount=params.max_top_up_amount,
                max_iterations=params.max_iterations,
            )

    def set_trusted_forwarder(self, caller: str, address: str, allowed: bool) -> None:
        with atomic(self._session):
            w = self.model()
            self._access.require_owner(w.owner, caller)
            if self._access.set_role(FORWARDER, address, allowed, caller):
                self._events.emit(
                    self.scope, "trusted_forwarder_set", actor=caller,
                    forwarder=address, allowed=allowed,
                )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def params(self) -> WatchdogParams:
        w = self.model()
        return WatchdogParams(
            max_batch_size=w.max_batch_size,
            min_percentage=w.min_percentage,
            target_percentage=w.target_percentage,
            max_top_up_amount=w.max_top_up_amount,
            max_iterations=w.max_iterations,
        )

    def balance(self) -> Decimal:
        return self.model().balance

    def get_watch_list(self) -> tuple[int, ...]:
        w = self.model()
        return tuple(
            self._session.execute(
                select(WatchListEntryModel.job_id)
                .where(WatchListEntryModel.watchdog_id == w.id)
                .order_by(WatchListEntryModel.position)
            ).scalars().all()
        )

    def watch_list_length(self) -> int:
        return self._length(self.model())

    def watch_list_item(self, index: int) -> int:
        w = self.model()
        entry = self._session.execute(
            select(WatchListEntryModel.job_id).where(
                WatchListEntryModel.watchdog_id == w.id,
                WatchListEntryModel.position == index,
            )
        ).scalar_one_or_none()
        if entry is None:
            raise IndexOutOfRangeError(index, self._length(w))
        return entry

    def is_watched(self, job_id: int) -> bool:
        return self._entry_for(self.model(), job_id) is not None

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _add(self, w: FundingWatchdogModel, job_id: int, actor: str) -> bool:
        if self._entry_for(w, job_id) is not None:
            return False
        position = self._length(w)
        self._session.add(
            WatchListEntryModel(
                watchdog_id=w.id, position=position, job_id=job_id, created_by=actor,
            )
        )
        self._session.flush()
        self._events.emit(
            self.scope, "watch_list_added", actor=actor, job_id=job_id, position=position,
        )
        return True

    def _top_up(self, w: FundingWatchdogModel, job_id: int, amount: Decimal) -> str | None:
        """Fund one job.  Returns a failure reason, or None on success."""
        if amount <= 0:
            return "non_positive_amount"
        if amount > w.max_top_up_amount:
            return "amount_exceeds_max_top_up"
        if self._entry_for(w, job_id) is None:
            return "not_watched"
        balance = self._registry.get_balance(job_id)
        min_balance = self._registry.get_min_balance(job_id)
        if not is_underfunded(balance, min_balance, w.min_percentage):
            return "not_underfunded"
        if amount > w.balance:
            return "insufficient_watchdog_balance"

        self._registry.fund(job_id, amount)
        w.balance = w.balance - amount
        self._session.flush()
        return None

    def _entry_for(self, w: FundingWatchdogModel, job_id: int) -> WatchListEntryModel | None:
        return self._session.execute(
            select(WatchListEntryModel).where(
                WatchListEntryModel.watchdog_id == w.id,
                WatchListEntryModel.job_id == job_id,
            )
        ).scalar_one_or_none()

    def _length(self, w: FundingWatchdogModel) -> int:
        return self._session.execute(
            select(func.count(WatchListEntryModel.id)).where(
                WatchListEntryModel.watchdog_id == w.id,
            )
        ).scalar_one()
