"""
TokenUpkeepManager -- hourly price fetching per whitelisted token.

Tokens enter and leave through the voter's WhitelistToken(token, flag)
event.  The manager mirrors the whitelist so bulk ``register()`` calls can
reject tokens that are not whitelisted.  On top of the shared lifecycle it
offers price reads and list cleanup: once the jobs at the tail of the list
are withdrawn, their (all-placeholder) slots are trimmed.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from upkeep_kernel.db.engine import atomic
from upkeep_kernel.domain.clock import Clock
from upkeep_kernel.registry.client import JobRegistryClient
from upkeep_kernel.services.event_recorder import EventRecorder

from upkeep_jobs.domain.types import (
    ActionKind,
    Entity,
    JobState,
    ManagerKind,
    MembershipAction,
)
from upkeep_jobs.models.records import TokenPriceModel, TokenWhitelistModel
from upkeep_jobs.models.upkeep import (
    EntitySlotModel,
    UpkeepJobModel,
    UpkeepManagerModel,
)
from upkeep_jobs.services.manager import UpkeepManagerService, WatchListSink
from upkeep_jobs.tasks.fetch_price import FETCH_PRICE, PriceOracle


class TokenUpkeepManager(UpkeepManagerService):
    kind = ManagerKind.TOKEN
    action_name = FETCH_PRICE

    def __init__(
        self,
        session: Session,
        manager_name: str,
        registry: JobRegistryClient,
        clock: Clock | None = None,
        watch_list_resolver: Callable[[str], WatchListSink] | None = None,
        events: EventRecorder | None = None,
        oracle: PriceOracle | None = None,
    ):
        super().__init__(
            session,
            manager_name,
            registry,
            clock=clock,
            watch_list_resolver=watch_list_resolver,
            events=events,
        )
        self._oracle = oracle

    # -------------------------------------------------------------------------
    # Whitelist mirror
    # -------------------------------------------------------------------------

    def is_whitelisted(self, token: str) -> bool:
        return self._whitelisted(self.model(), token)

    def sync_whitelist(self, caller: str, tokens: Iterable[str], allowed: bool) -> int:
        """Owner or relay: mirror upstream whitelist state.  Returns rows changed."""
        with atomic(self.session):
            m = self.model()
            self._require_owner_or_relay(m, caller)
            return sum(1 for t in tokens if self._set_whitelisted(m, t, allowed, caller))

    # -------------------------------------------------------------------------
    # Token reads
    # -------------------------------------------------------------------------

    def token_count(self) -> int:
        return self.entity_count()

    def token_list_length(self) -> int:
        return self.entity_list_length()

    def token_price(self, token: str, window_ts: int) -> Decimal | None:
        m = self.model()
        return self.session.execute(
            select(TokenPriceModel.price).where(
                TokenPriceModel.manager_id == m.id,
                TokenPriceModel.token == token,
                TokenPriceModel.window_ts == window_ts,
            )
        ).scalar_one_or_none()

    def latest_price(self, token: str) -> tuple[int, Decimal] | None:
        """(window_ts, price) of the most recent stored price."""
        m = self.model()
        row = self.session.execute(
            select(TokenPriceModel.window_ts, TokenPriceModel.price)
            .where(
                TokenPriceModel.manager_id == m.id,
                TokenPriceModel.token == token,
            )
            .order_by(TokenPriceModel.window_ts.desc())
            .limit(1)
        ).first()
        return None if row is None else (row[0], row[1])

    def fetch_first_price(self, start: int, end: int) -> tuple[str | None, int, Decimal]:
        """First active token in slots ``[start, end)`` with a non-zero oracle price.

        Returns ``(None, 0, Decimal(0))`` when there is none (or no oracle).
        """
        if self._oracle is None:
            return None, 0, Decimal("0")
        m = self.model()
        rows = self.session.execute(
            select(EntitySlotModel.slot_index, EntitySlotModel.address)
            .where(
                EntitySlotModel.manager_id == m.id,
                EntitySlotModel.slot_index >= start,
                EntitySlotModel.slot_index < end,
                EntitySlotModel.address.is_not(None),
            )
            .order_by(EntitySlotModel.slot_index)
        ).all()
        for index, token in rows:
            price = self._oracle.get_price(token)
            if price > 0:
                return token, index, price
        return None, 0, Decimal("0")

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    def cleanup_token_list(self, caller: str) -> int:
        """Owner-only: trim unreferenced trailing slots.  Returns the new length."""
        with atomic(self.session):
            m = self._owned(caller)
            return self._trim(m, caller, always_emit=True)

    def on_cycle_complete(self, m: UpkeepManagerModel, job: UpkeepJobModel) -> None:
        self._trim(m, None, always_emit=False)

    def _trim(self, m: UpkeepManagerModel, actor: str | None, always_emit: bool) -> int:
        referenced = self.session.execute(
            select(func.max(UpkeepJobModel.end_index)).where(
                UpkeepJobModel.manager_id == m.id,
                UpkeepJobModel.state != JobState.WITHDRAWN.value,
            )
        ).scalar_one_or_none() or 0
        last_active = self.session.execute(
            select(func.max(EntitySlotModel.slot_index)).where(
                EntitySlotModel.manager_id == m.id,
                EntitySlotModel.address.is_not(None),
            )
        ).scalar_one_or_none()
        new_length = max(referenced, 0 if last_active is None else last_active + 1)
        old_length = m.entity_list_length

        if new_length < old_length:
            self.session.execute(
                delete(EntitySlotModel).where(
                    EntitySlotModel.manager_id == m.id,
                    EntitySlotModel.slot_index >= new_length,
                )
            )
            m.entity_list_length = new_length
            self.session.flush()
        if new_length < old_length or always_emit:
            self.events.emit(
                self.scope, "token_list_cleaned", actor=actor,
                old_length=old_length, new_length=m.entity_list_length,
            )
        return m.entity_list_length

    # -------------------------------------------------------------------------
    # Variant hooks
    # -------------------------------------------------------------------------

    def _ineligibility(
        self,
        m: UpkeepManagerModel,
        entity: Entity,
        pending: MembershipAction | None = None,
    ) -> str | None:
        if (
            pending is not None
            and pending.kind is ActionKind.REGISTER
            and pending.entity == entity.address
        ):
            return None
        if not self._whitelisted(m, entity.address):
            return "token_not_whitelisted"
        return None

    def _on_action(self, m: UpkeepManagerModel, action: MembershipAction, actor: str) -> None:
        self._set_whitelisted(m, action.entity, action.kind is ActionKind.REGISTER, actor)

    def _whitelisted(self, m: UpkeepManagerModel, token: str) -> bool:
        return self.session.execute(
            select(TokenWhitelistModel.id).where(
                TokenWhitelistModel.manager_id == m.id,
                TokenWhitelistModel.token == token,
            )
        ).first() is not None

    def _set_whitelisted(
        self, m: UpkeepManagerModel, token: str, allowed: bool, actor: str,
    ) -> bool:
        present = self._whitelisted(m, token)
        if allowed and not present:
            self.session.add(
                TokenWhitelistModel(manager_id=m.id, token=token, created_by=actor)
            )
        elif not allowed and present:
            self.session.execute(
                delete(TokenWhitelistModel).where(
                    TokenWhitelistModel.manager_id == m.id,
                    TokenWhitelistModel.token == token,
                )
            )
        else:
            return False
        self.session.flush()
        return True
