"""
EntityAction protocol, supporting types, and ActionRegistry.

Contract:
    ``EntityAction`` is the per-slot work a batch worker performs
    ("distribute", "fetch_price").  ``ActionRegistry`` maps action names
    to implementations; each manager kind names the action it runs.

Architecture:
    upkeep_jobs/tasks.  Only imports from upkeep_jobs.domain and SQLAlchemy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from upkeep_jobs.domain.types import ActionStatus


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class ActionContext:
    """Everything an action may need besides the entity itself."""

    session: Session
    manager_name: str
    manager_id: UUID
    job_id: int
    window_ts: int  # Start of the interval window of the current pass
    now_ts: int


@dataclass(frozen=True)
class ActionResult:
    """Result returned by ``EntityAction.execute()``.

    The worker commits the entity's SAVEPOINT only for SUCCEEDED.
    """

    status: ActionStatus
    result_data: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None


# =============================================================================
# EntityAction Protocol
# =============================================================================


@runtime_checkable
class EntityAction(Protocol):
    """Protocol for per-entity batch actions.

    Contract:
        - ``action_name``: unique key registered in ActionRegistry.
        - ``execute()``: processes ONE entity inside a SAVEPOINT.  May raise;
          the worker converts exceptions into FAILED visits.

    Non-goals:
        - Does NOT manage transactions -- the worker owns the SAVEPOINT.
        - Does NOT retry -- a failed entity is revisited next pass.
    """

    @property
    def action_name(self) -> str: ...

    def execute(self, entity: str, index: int, context: ActionContext) -> ActionResult: ...


# =============================================================================
# ActionRegistry
# =============================================================================


class ActionRegistry:
    """Registry mapping action names to EntityAction implementations."""

    def __init__(self) -> None:
        self._actions: dict[str, EntityAction] = {}

    def register(self, action: EntityAction) -> None:
        """Register an action.

        Raises:
            ValueError: If an action with the same name is already registered.
        """
        if action.action_name in self._actions:
            raise ValueError(
                f"Action '{action.action_name}' is already registered"
            )
        self._actions[action.action_name] = action

    def get(self, action_name: str) -> EntityAction:
        """Retrieve a registered action.

        Raises:
            KeyError: If no action is registered under that name.
        """
        try:
            return self._actions[action_name]
        except KeyError:
            raise KeyError(
                f"No action registered for '{action_name}'. "
                f"Available: {sorted(self._actions.keys())}"
            ) from None

    def list_actions(self) -> tuple[str, ...]:
        return tuple(sorted(self._actions.keys()))

    def __len__(self) -> int:
        return len(self._actions)

    def __contains__(self, action_name: str) -> bool:
        return action_name in self._actions


def default_action_registry() -> ActionRegistry:
    """Create and return a fresh, empty ActionRegistry."""
    return ActionRegistry()
