"""
ORM model backing LocalJobRegistry.

One row per job registered with the local registry.  ``job_id`` is the
opaque handle handed back to managers (integers from 1).
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from upkeep_kernel.db.base import TrackedBase


class RegistryJobModel(TrackedBase):
    """Registry-side view of a job: budget, funds and cancellation."""

    __tablename__ = "registry_jobs"

    __table_args__ = (
        Index("ix_registry_jobs_state", "state"),
    )

    job_id: Mapped[int] = mapped_column(nullable=False, unique=True)
    target: Mapped[str] = mapped_column(String(200), nullable=False)
    gas_limit: Mapped[int] = mapped_column(nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    min_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_spent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    state: Mapped[str] = mapped_column(String(20), nullable=False)  # active | cancelled | withdrawn
    cancelled_ts: Mapped[int | None] = mapped_column(nullable=True)
