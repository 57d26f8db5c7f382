"""
ORM model for the persisted domain event log.

Every event a manager, worker or watchdog emits (entity_registered,
job_cancelled, top_up_succeeded, ...) is stored here with a monotonic
``seq`` so relays and tests can observe outcomes in emission order.
Events written inside a rolled-back SAVEPOINT disappear with it.
"""

from __future__ import annotations

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from upkeep_kernel.db.base import TrackedBase


class EventRecordModel(TrackedBase):
    """One emitted domain event."""

    __tablename__ = "upkeep_events"

    __table_args__ = (
        Index("ix_upkeep_events_scope_name", "scope", "name"),
    )

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)
    scope: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    emitted_ts: Mapped[int] = mapped_column(nullable=False)
