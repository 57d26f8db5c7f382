"""
ORM models for funding watchdogs.

Invariants enforced:
    - (watchdog_id, position) is UNIQUE: positions are dense from 0.
    - (watchdog_id, job_id) is UNIQUE: a job is watched at most once.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from upkeep_kernel.db.base import TrackedBase, UUIDString


class FundingWatchdogModel(TrackedBase):
    """Watchdog identity, policy and funding-token balance."""

    __tablename__ = "funding_watchdogs"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    max_batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    min_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    target_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    max_top_up_amount: Mapped[Decimal] = mapped_column(nullable=False)
    max_iterations: Mapped[int] = mapped_column(Integer, nullable=False)


class WatchListEntryModel(TrackedBase):
    """One watched job id at a position of the watch-list."""

    __tablename__ = "watch_list_entries"

    __table_args__ = (
        UniqueConstraint("watchdog_id", "position", name="uq_watch_list_position"),
        UniqueConstraint("watchdog_id", "job_id", name="uq_watch_list_job"),
    )

    watchdog_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("funding_watchdogs.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    job_id: Mapped[int] = mapped_column(nullable=False)
