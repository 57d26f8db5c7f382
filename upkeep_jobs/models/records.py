"""
ORM models written by entity actions and the token variant.

DistributionRecordModel  -- one reward distribution per gauge per window
TokenPriceModel          -- one fetched price per token per window
TokenWhitelistModel      -- mirror of the upstream token whitelist
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from upkeep_kernel.db.base import TrackedBase, UUIDString


class DistributionRecordModel(TrackedBase):
    __tablename__ = "gauge_distributions"

    __table_args__ = (
        UniqueConstraint("gauge", "window_ts", name="uq_gauge_distribution_window"),
    )

    gauge: Mapped[str] = mapped_column(String(64), nullable=False)
    window_ts: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)


class TokenPriceModel(TrackedBase):
    __tablename__ = "token_prices"

    __table_args__ = (
        UniqueConstraint("manager_id", "token", "window_ts", name="uq_token_price_window"),
    )

    manager_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("upkeep_managers.id", ondelete="CASCADE"),
        nullable=False,
    )
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    window_ts: Mapped[int] = mapped_column(nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)


class TokenWhitelistModel(TrackedBase):
    __tablename__ = "token_whitelist"

    __table_args__ = (
        UniqueConstraint("manager_id", "token", name="uq_token_whitelist"),
    )

    manager_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("upkeep_managers.id", ondelete="CASCADE"),
        nullable=False,
    )
    token: Mapped[str] = mapped_column(String(64), nullable=False)
