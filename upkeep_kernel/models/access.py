"""
ORM model for role grants (trusted forwarders, watch-list managers).

A grant is the triple (scope, role, address).  Owners are not stored
here; they live on the component row they own.
"""

from __future__ import annotations

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from upkeep_kernel.db.base import TrackedBase


class AccessGrantModel(TrackedBase):
    """Address holding a role within one component scope."""

    __tablename__ = "access_grants"

    __table_args__ = (
        UniqueConstraint("scope", "role", "address", name="uq_access_grant"),
    )

    scope: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    address: Mapped[str] = mapped_column(String(64), nullable=False)
