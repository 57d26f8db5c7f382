"""
AccessControl -- owner checks and role grants for one component scope.

Roles used across the packages:
    ``forwarder``          -- trusted execution forwarder (perform entry points)
    ``watchlist_manager``  -- may add/remove watchdog watch-list entries

Owners and relays are columns on the component row; this service only
compares them.  Grants are idempotent set membership.
"""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from upkeep_kernel.exceptions import UnauthorizedCallerError
from upkeep_kernel.logging_config import get_logger
from upkeep_kernel.models.access import AccessGrantModel

logger = get_logger("access")

FORWARDER = "forwarder"
WATCHLIST_MANAGER = "watchlist_manager"


class AccessControl:
    """Role checks scoped to a single manager or watchdog."""

    def __init__(self, session: Session, scope: str):
        self._session = session
        self._scope = scope

    @property
    def scope(self) -> str:
        return self._scope

    def require_owner(self, owner: str, caller: str) -> None:
        if caller != owner:
            raise UnauthorizedCallerError(caller, "owner", self._scope)

    def require_address(self, expected: str | None, caller: str, role: str) -> None:
        """Single-address roles such as the signal relay."""
        if expected is None or caller != expected:
            raise UnauthorizedCallerError(caller, role, self._scope)

    def require_role(self, role: str, caller: str, owner: str | None = None) -> None:
        """Caller must hold ``role`` (or be ``owner`` when one is given)."""
        if owner is not None and caller == owner:
            return
        if not self.has_role(role, caller):
            raise UnauthorizedCallerError(caller, role, self._scope)

    def has_role(self, role: str, address: str) -> bool:
        return self._session.execute(
            select(AccessGrantModel.id).where(
                AccessGrantModel.scope == self._scope,
                AccessGrantModel.role == role,
                AccessGrantModel.address == address,
            )
        ).first() is not None

    def set_role(self, role: str, address: str, allowed: bool, actor: str) -> bool:
        """Grant or revoke.  Returns True when membership changed."""
        present = self.has_role(role, address)
        if allowed and not present:
            self._session.add(
                AccessGrantModel(
                    scope=self._scope, role=role, address=address, created_by=actor,
                )
            )
        elif not allowed and present:
            self._session.execute(
                delete(AccessGrantModel).where(
                    AccessGrantModel.scope == self._scope,
                    AccessGrantModel.role == role,
                    AccessGrantModel.address == address,
                )
            )
        else:
            return False
        self._session.flush()
        logger.info(
            "role_changed",
            extra={"scope": self._scope, "role": role, "address": address, "allowed": allowed},
        )
        return True

    def members(self, role: str) -> tuple[str, ...]:
        return tuple(
            self._session.execute(
                select(AccessGrantModel.address)
                .where(
                    AccessGrantModel.scope == self._scope,
                    AccessGrantModel.role == role,
                )
                .order_by(AccessGrantModel.address)
            ).scalars().all()
        )
