"""
ORM models for upkeep managers, their entity lists and their jobs.

Contract:
    UpkeepManagerModel holds a manager's parameters and funding balance.
    EntitySlotModel is one slot of the manager's entity list; a placeholder
    slot has ``address = NULL``.  UpkeepJobModel is one batch worker job
    with its index range, cursor and cancellation bookkeeping.

Architecture: upkeep_jobs/models. Imports from upkeep_kernel.db.base only.

Invariants enforced:
    - (manager_id, slot_index) is UNIQUE: a slot index is assigned once and
      never reused.
    - (manager_id, job_id) is UNIQUE: one row per registry job.
    - (manager_id, seq) is UNIQUE: job creation order is total.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from upkeep_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from upkeep_jobs.domain.types import UpkeepJob


class UpkeepManagerModel(TrackedBase):
    """Persistent manager configuration and balances."""

    __tablename__ = "upkeep_managers"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    relay: Mapped[str | None] = mapped_column(String(64), nullable=True)
    upstream_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    watchdog_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entities_per_job: Mapped[int] = mapped_column(Integer, nullable=False)
    cancel_buffer: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_seconds: Mapped[int] = mapped_column(nullable=False)
    gas_limit: Mapped[int] = mapped_column(nullable=False)
    fund_amount: Mapped[Decimal] = mapped_column(nullable=False)
    funding_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    excluded_categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    entity_list_length: Mapped[int] = mapped_column(nullable=False, default=0)
    next_job_seq: Mapped[int] = mapped_column(nullable=False, default=1)
    next_cancel_seq: Mapped[int] = mapped_column(nullable=False, default=1)


class EntitySlotModel(TrackedBase):
    """One slot of a manager's entity list."""

    __tablename__ = "entity_slots"

    __table_args__ = (
        UniqueConstraint("manager_id", "slot_index", name="uq_entity_slot_index"),
        Index("ix_entity_slots_manager_address", "manager_id", "address"),
        Index("ix_entity_slots_manager_job", "manager_id", "job_id"),
    )

    manager_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("upkeep_managers.id", ondelete="CASCADE"),
        nullable=False,
    )
    slot_index: Mapped[int] = mapped_column(nullable=False)
    address: Mapped[str | None] = mapped_column(String(64), nullable=True)  # NULL = placeholder
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    job_id: Mapped[int] = mapped_column(nullable=False)  # Owning registry job


class UpkeepJobModel(TrackedBase):
    """Persistent batch worker job."""

    __tablename__ = "upkeep_jobs"

    __table_args__ = (
        UniqueConstraint("manager_id", "job_id", name="uq_upkeep_job_id"),
        UniqueConstraint("manager_id", "seq", name="uq_upkeep_job_seq"),
        Index("ix_upkeep_jobs_manager_state", "manager_id", "state"),
    )

    manager_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("upkeep_managers.id", ondelete="CASCADE"),
        nullable=False,
    )
    job_id: Mapped[int] = mapped_column(nullable=False)
    seq: Mapped[int] = mapped_column(nullable=False)
    start_index: Mapped[int] = mapped_column(nullable=False)
    end_index: Mapped[int] = mapped_column(nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    current_index: Mapped[int] = mapped_column(nullable=False)
    cancel_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interval_seconds: Mapped[int | None] = mapped_column(nullable=True)
    pass_started_ts: Mapped[int | None] = mapped_column(nullable=True)
    next_due_ts: Mapped[int | None] = mapped_column(nullable=True)
    cancelled_ts: Mapped[int | None] = mapped_column(nullable=True)
    cancel_seq: Mapped[int | None] = mapped_column(nullable=True)
    withdrawn_ts: Mapped[int | None] = mapped_column(nullable=True)

    def to_dto(self, manager_name: str) -> UpkeepJob:
        from upkeep_jobs.domain.types import JobState, UpkeepJob

        return UpkeepJob(
            job_id=self.job_id,
            manager=manager_name,
            seq=self.seq,
            start_index=self.start_index,
            end_index=self.end_index,
            state=JobState(self.state),
            current_index=self.current_index,
            cancel_count=self.cancel_count,
            active_count=self.active_count,
            interval_seconds=self.interval_seconds,
            pass_started_ts=self.pass_started_ts,
            next_due_ts=self.next_due_ts,
            cancelled_ts=self.cancelled_ts,
        )
