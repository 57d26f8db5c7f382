"""
FetchPriceAction -- fetch and store one token's price per window.

A token whose price is already stored for the current window is SKIPPED
(visited, nothing written).  A zero price or an oracle exception is a
FAILED visit; the token is retried on the next pass.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Protocol, runtime_checkable

from sqlalchemy import select

from upkeep_jobs.domain.types import ActionStatus
from upkeep_jobs.models.records import TokenPriceModel
from upkeep_jobs.tasks.base import ActionContext, ActionResult

FETCH_PRICE = "fetch_price"


@runtime_checkable
class PriceOracle(Protocol):
    def get_price(self, token: str) -> Decimal: ...


class StaticPriceOracle:
    """Oracle answering from a fixed mapping; unknown tokens price at 0."""

    def __init__(self, prices: Mapping[str, Decimal] | None = None):
        self._prices = dict(prices or {})

    def set_price(self, token: str, price: Decimal) -> None:
        self._prices[token] = price

    def get_price(self, token: str) -> Decimal:
        return self._prices.get(token, Decimal("0"))


class FetchPriceAction:
    def __init__(self, oracle: PriceOracle):
        self._oracle = oracle

    @property
    def action_name(self) -> str:
        return FETCH_PRICE

    def execute(self, entity: str, index: int, context: ActionContext) -> ActionResult:
        session = context.session
        stored = session.execute(
            select(TokenPriceModel.id).where(
                TokenPriceModel.manager_id == context.manager_id,
                TokenPriceModel.token == entity,
                TokenPriceModel.window_ts == context.window_ts,
            )
        ).first()
        if stored is not None:
            return ActionResult(status=ActionStatus.SKIPPED)

        price = self._oracle.get_price(entity)
        if price <= 0:
            return ActionResult(
                status=ActionStatus.FAILED,
                error_code="PRICE_UNAVAILABLE",
                error_message=f"No price for {entity}",
            )

        session.add(
            TokenPriceModel(
                manager_id=context.manager_id,
                token=entity,
                window_ts=context.window_ts,
                price=price,
            )
        )
        session.flush()
        return ActionResult(
            status=ActionStatus.SUCCEEDED,
            result_data={"price": str(price), "window_ts": context.window_ts},
        )
