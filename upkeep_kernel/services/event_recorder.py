"""
EventRecorder -- Persist and log domain events.

Contract:
    ``emit()`` writes one EventRecordModel row (monotonic ``seq``) and logs
    the event at INFO under ``upkeep_kernel.events``.  ``events()`` reads
    them back in emission order.

Non-goals:
    - Does NOT commit -- rows live and die with the caller's transaction,
      including per-entity SAVEPOINTs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from upkeep_kernel.domain.clock import Clock, SystemClock
from upkeep_kernel.logging_config import get_logger
from upkeep_kernel.models.event_record import EventRecordModel

logger = get_logger("events")


@dataclass(frozen=True)
class EmittedEvent:
    """Immutable view of one recorded event."""

    seq: int
    scope: str  # e.g. "manager:gauges", "watchdog:main"
    name: str  # e.g. "job_cancelled"
    payload: dict[str, Any] = field(default_factory=dict)
    emitted_ts: int = 0


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


class EventRecorder:
    """Append-only event log bound to one session."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def emit(
        self,
        scope: str,
        name: str,
        actor: str | None = None,
        **payload: Any,
    ) -> EmittedEvent:
        body = {k: _jsonable(v) for k, v in payload.items()}
        seq = (
            self._session.execute(
                select(func.max(EventRecordModel.seq))
            ).scalar_one_or_none()
            or 0
        ) + 1
        ts = self._clock.timestamp()

        self._session.add(
            EventRecordModel(
                seq=seq,
                scope=scope,
                name=name,
                payload=body,
                emitted_ts=ts,
                created_by=actor,
            )
        )
        self._session.flush()

        logger.info(
            name,
            extra={"scope": scope, "event_seq": seq, "payload": body},
        )
        return EmittedEvent(seq=seq, scope=scope, name=name, payload=body, emitted_ts=ts)

    def events(
        self,
        scope: str | None = None,
        name: str | None = None,
        since_seq: int = 0,
    ) -> tuple[EmittedEvent, ...]:
        """Recorded events, oldest first, optionally filtered."""
        stmt = select(EventRecordModel).where(EventRecordModel.seq > since_seq)
        if scope is not None:
            stmt = stmt.where(EventRecordModel.scope == scope)
        if name is not None:
            stmt = stmt.where(EventRecordModel.name == name)
        rows = self._session.execute(
            stmt.order_by(EventRecordModel.seq)
        ).scalars().all()
        return tuple(
            EmittedEvent(
                seq=r.seq,
                scope=r.scope,
                name=r.name,
                payload=dict(r.payload or {}),
                emitted_ts=r.emitted_ts,
            )
            for r in rows
        )

    def last_seq(self) -> int:
        return (
            self._session.execute(
                select(func.max(EventRecordModel.seq))
            ).scalar_one_or_none()
            or 0
        )
