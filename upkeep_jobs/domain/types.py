"""
upkeep_jobs.domain.types -- Pure frozen dataclasses for managers and workers.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from upkeep_kernel.exceptions import InvalidPerformDataError


# =============================================================================
# Enums
# =============================================================================


class ManagerKind(str, Enum):
    """Which entity/action pair a manager handles."""

    GAUGE = "gauge"  # distribute emissions per gauge
    REDISTRIBUTE = "redistribute"  # distribute with settable batch size
    TOKEN = "token"  # fetch price per whitelisted token


class JobState(str, Enum):
    """Job lifecycle: active -> cancelled -> withdrawn."""

    ACTIVE = "active"
    CANCELLED = "cancelled"  # Registry cancelled, funds locked until finality
    WITHDRAWN = "withdrawn"  # Funds reclaimed, live entities reassigned


class ActionKind(str, Enum):
    """Tagged variant decoded from an upstream event."""

    REGISTER = "register"
    DEREGISTER = "deregister"

    @property
    def code(self) -> int:
        return 0 if self is ActionKind.REGISTER else 1

    @classmethod
    def from_code(cls, value: int | str) -> ActionKind:
        text = str(value).strip().lower()
        if text in ("0", "register"):
            return cls.REGISTER
        if text in ("1", "deregister"):
            return cls.DEREGISTER
        raise InvalidPerformDataError(f"unknown action {value!r}")


class ActionStatus(str, Enum):
    """Outcome of one per-entity action inside a batch."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"  # Already processed this window (e.g. price stored)
    FAILED = "failed"  # Rolled back; retried next pass


# =============================================================================
# Entities and events
# =============================================================================


@dataclass(frozen=True)
class Entity:
    """A monitored address plus the category used for eligibility."""

    address: str
    category: str | None = None  # Gauge factory; None for tokens


@dataclass(frozen=True)
class DomainEvent:
    """Notification from the upstream protocol's event feed."""

    source: str  # Emitting contract
    signature: str  # e.g. "GaugeCreated", "WhitelistToken"
    entity: str
    category: str | None = None
    flag: bool | None = None  # WhitelistToken: whitelisted or not


@dataclass(frozen=True)
class MembershipAction:
    """Decoded register/deregister request."""

    kind: ActionKind
    entity: str
    category: str | None = None

    def to_perform_data(self) -> tuple[int, str]:
        return (self.kind.code, self.entity)

    @classmethod
    def from_perform_data(cls, data: tuple | list) -> MembershipAction:
        if not isinstance(data, (tuple, list)) or len(data) not in (2, 3):
            raise InvalidPerformDataError("expected (action, entity[, category])")
        entity = str(data[1]).strip()
        if not entity:
            raise InvalidPerformDataError("empty entity address")
        category = data[2] if len(data) == 3 else None
        return cls(kind=ActionKind.from_code(data[0]), entity=entity, category=category)


# =============================================================================
# Job DTOs
# =============================================================================


@dataclass(frozen=True)
class UpkeepJob:
    """Immutable snapshot of one batch worker job."""

    job_id: int  # Registry handle
    manager: str
    seq: int  # Creation order within the manager
    start_index: int
    end_index: int  # Exclusive
    state: JobState
    current_index: int
    cancel_count: int = 0
    active_count: int = 0
    interval_seconds: int | None = None  # Captured at pass start
    pass_started_ts: int | None = None
    next_due_ts: int | None = None
    cancelled_ts: int | None = None

    @property
    def capacity_used(self) -> int:
        return self.end_index - self.start_index

    @property
    def pass_in_flight(self) -> bool:
        return self.current_index > self.start_index


@dataclass(frozen=True)
class CursorSnapshot:
    """Cursor state handed from check_due to run_batch."""

    job_id: int
    current_index: int
    start_index: int
    end_index: int


@dataclass(frozen=True)
class EntityVisit:
    """One non-placeholder slot processed by run_batch."""

    index: int
    entity: str
    status: ActionStatus
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class BatchPerformResult:
    """Result of one run_batch call."""

    job_id: int
    start: int  # Cursor before the call
    end: int  # Cursor after the call (before wrapping)
    visits: tuple[EntityVisit, ...] = ()
    cycle_completed: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for v in self.visits if v.status == ActionStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for v in self.visits if v.status == ActionStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for v in self.visits if v.status == ActionStatus.SKIPPED)


@dataclass(frozen=True)
class MembershipResult:
    """Per-entity outcome of a bulk register/deregister."""

    registered: tuple[str, ...] = ()
    already_active: tuple[str, ...] = ()
    rejected: tuple[tuple[str, str], ...] = ()  # (entity, reason)
    deregistered: tuple[str, ...] = ()
    not_found: tuple[str, ...] = ()
    jobs_opened: tuple[int, ...] = ()
    jobs_cancelled: tuple[int, ...] = ()


@dataclass(frozen=True)
class WithdrawResult:
    """Outcome of withdraw_cancelled."""

    withdrawn: tuple[int, ...] = ()
    not_ready: tuple[int, ...] = ()
    reclaimed: Decimal = Decimal("0")
    reassigned: tuple[str, ...] = ()
    jobs_opened: tuple[int, ...] = ()
